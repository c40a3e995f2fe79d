import re
from datetime import datetime
from decimal import Decimal

import pytest

from models.order_query import OneOf, OrderQuery
from storage.query_compiler import OrderQueryCompiler, sanitize_order_column, validate_identifier


@pytest.fixture
def compiler():
    return OrderQueryCompiler()


def placeholders(sql):
    return re.findall(r"%\((\w+)\)s", sql)


def test_empty_query_has_no_where_clause(compiler):
    compiled = compiler.compile(OrderQuery())
    assert compiled.where_sql == ""
    assert compiled.select_sql == (
        "SELECT * FROM orders ORDER BY created_at DESC, id DESC LIMIT %(limit)s OFFSET %(offset)s"
    )
    assert compiled.count_sql == "SELECT COUNT(*) FROM orders"
    assert compiled.params == {}
    assert compiled.paging_params == {"limit": 20, "offset": 0}


def test_membership_filters_bind_one_parameter_per_value(compiler):
    query = OrderQuery().with_types(["sale", "refund"]).with_statuses(["paid"]).with_buyer_ids([1, "b2"])
    compiled = compiler.compile(query)
    assert "type IN (%(type_0)s, %(type_1)s)" in compiled.where_sql
    assert "status IN (%(status_0)s)" in compiled.where_sql
    assert "buyer_id IN (%(buyer_0)s, %(buyer_1)s)" in compiled.where_sql
    assert compiled.params == {
        "type_0": "sale",
        "type_1": "refund",
        "status_0": "paid",
        "buyer_0": "1",
        "buyer_1": "b2",
    }


def test_single_buyer_wins_over_buyer_set(compiler):
    compiled = compiler.compile(OrderQuery().with_buyer_ids([1, 2]).with_buyer_id(9))
    assert "buyer_id = %(buyer_id)s" in compiled.where_sql
    assert "IN" not in compiled.where_sql
    assert compiled.params == {"buyer_id": "9"}


def test_exact_order_no_wins_over_pattern(compiler):
    compiled = compiler.compile(OrderQuery().with_order_no_like("SO").with_order_no("SO-1"))
    assert compiled.where_sql == "WHERE order_no = %(order_no)s"
    assert compiled.params == {"order_no": "SO-1"}


@pytest.mark.parametrize("prefix_only, pattern", [(True, "abc%"), (False, "%abc%")])
def test_order_no_pattern(compiler, prefix_only, pattern):
    compiled = compiler.compile(OrderQuery().with_order_no_like("abc", prefix_only))
    assert compiled.where_sql == "WHERE order_no ILIKE %(order_no_like)s"
    assert compiled.params == {"order_no_like": pattern}


def test_keyword_searches_order_no_and_attributes(compiler):
    compiled = compiler.compile(OrderQuery().with_keyword("gift"))
    assert compiled.where_sql == (
        "WHERE (order_no ILIKE %(keyword)s OR attributes_json ILIKE %(keyword)s)"
    )
    assert compiled.params == {"keyword": "%gift%"}


def test_cleared_keyword_compiles_like_no_keyword(compiler):
    cleared = compiler.compile(OrderQuery().with_keyword("gift").with_keyword(""))
    assert cleared == compiler.compile(OrderQuery())


def test_date_and_amount_bounds(compiler):
    query = (
        OrderQuery()
        .with_created_between("2024-01-01", datetime(2024, 1, 31, 23, 59, 59))
        .with_updated_after("2024-02-01 10:00:00")
        .with_amount_between("10.005", 99)
    )
    compiled = compiler.compile(query)
    assert compiled.where_sql == (
        "WHERE created_at >= %(created_from)s AND created_at <= %(created_to)s"
        " AND updated_at >= %(updated_from)s"
        " AND amount >= %(amount_min)s AND amount <= %(amount_max)s"
    )
    assert compiled.params == {
        "created_from": "2024-01-01 00:00:00",
        "created_to": "2024-01-31 23:59:59",
        "updated_from": "2024-02-01 10:00:00",
        "amount_min": Decimal("10.005"),
        "amount_max": Decimal("99"),
    }


def test_multi_valued_relation_is_one_exists_predicate(compiler):
    compiled = compiler.compile(OrderQuery().with_relations({"tag": ["a", "b"]}))
    assert compiled.where_sql == (
        "WHERE EXISTS (SELECT 1 FROM order_relations kv WHERE kv.order_id = orders.id"
        " AND kv.rel_key = %(rel_key_1)s AND kv.rel_value IN (%(rel_val_1_0)s, %(rel_val_1_1)s))"
    )
    assert compiled.params == {"rel_key_1": "tag", "rel_val_1_0": "a", "rel_val_1_1": "b"}


def test_each_relation_key_is_anded(compiler):
    compiled = compiler.compile(OrderQuery().with_relations({"tag": "a", "color": "red"}))
    assert compiled.where_sql.count("EXISTS (") == 2
    assert ") AND EXISTS (" in compiled.where_sql
    assert compiled.params == {
        "rel_key_1": "tag",
        "rel_val_1": "a",
        "rel_key_2": "color",
        "rel_val_2": "red",
    }


def test_indexed_fields_use_their_own_table_and_names(compiler):
    query = OrderQuery().with_relations({"tag": "a"}).with_indexed_fields({"tag": ["x", "y"]})
    compiled = compiler.compile(query)
    assert "FROM order_relations kv" in compiled.where_sql
    assert "FROM order_indexed_fields kv" in compiled.where_sql
    assert compiled.params["idx_key_1"] == "tag"
    assert compiled.params["idx_val_1_0"] == "x"
    assert compiled.params["rel_val_1"] == "a"


def test_raw_filter_maps_are_resolved(compiler):
    query = OrderQuery(relations={"tag": ["a", None]})
    compiled = compiler.compile(query)
    assert compiled.params == {"rel_key_1": "tag", "rel_val_1_0": "a"}


def test_no_filter_value_is_interpolated(compiler):
    values = ["sale'--", "paid", "B-77", "SO-XYZ", "needle", "tagval", "redval", "idxval"]
    query = (
        OrderQuery()
        .with_types([values[0]])
        .with_statuses([values[1]])
        .with_buyer_id(values[2])
        .with_order_no(values[3])
        .with_keyword(values[4])
        .with_relations({"tag": [values[5], "other"], "color": values[6]})
        .with_indexed_fields({"channel": values[7]})
    )
    compiled = compiler.compile(query)
    for value in values:
        assert value not in compiled.select_sql
        assert value not in compiled.count_sql
    names = placeholders(compiled.where_sql)
    assert len(set(names)) == len(compiled.params)
    assert set(names) == set(compiled.params)


def test_unknown_sort_column_falls_back_to_default(compiler):
    compiled = compiler.compile(OrderQuery().order_by("password", "asc"))
    assert compiled.order_sql == "ORDER BY created_at ASC, id ASC"
    assert "password" not in compiled.select_sql


@pytest.mark.parametrize("column", ["id", "created_at", "updated_at", "order_no", "amount"])
def test_sortable_columns(compiler, column):
    compiled = compiler.compile(OrderQuery().order_by(column))
    assert compiled.order_sql.startswith(f"ORDER BY {column} DESC")
    assert sanitize_order_column(column) == column


def test_paging_is_bound(compiler):
    compiled = compiler.compile(OrderQuery().with_limit(5).with_offset(10))
    assert compiled.select_sql.endswith("LIMIT %(limit)s OFFSET %(offset)s")
    assert compiled.select_params() == {"limit": 5, "offset": 10}


def test_without_total_there_is_no_count_statement(compiler):
    assert compiler.compile(OrderQuery().with_total(False)).count_sql is None


def test_count_shares_the_filter(compiler):
    compiled = compiler.compile(OrderQuery().with_status("paid").with_limit(3))
    assert compiled.count_sql == "SELECT COUNT(*) FROM orders WHERE status IN (%(status_0)s)"
    assert "limit" not in compiled.params


def test_custom_tables():
    compiler = OrderQueryCompiler("shop.orders", "shop.rel", "shop.idx")
    compiled = compiler.compile(OrderQuery().with_indexed_fields({"k": "v"}))
    assert "FROM shop.idx kv WHERE kv.order_id = shop.orders.id" in compiled.where_sql
    assert compiled.select_sql.startswith("SELECT * FROM shop.orders WHERE")


@pytest.mark.parametrize("name", ["orders; DROP TABLE x", "1orders", "", "a.b.c"])
def test_invalid_table_names_are_rejected(name):
    with pytest.raises(ValueError):
        validate_identifier(name)


def test_pattern_filters_ignore_case(compiler):
    compiled = compiler.compile(OrderQuery().with_keyword("Gift").with_order_no_like("so-"))
    assert "order_no ILIKE %(order_no_like)s" in compiled.where_sql
    assert "attributes_json ILIKE %(keyword)s" in compiled.where_sql
    assert " LIKE " not in compiled.where_sql
    assert compiled.params["keyword"] == "%Gift%"


@pytest.mark.parametrize("value", [None, [], [None], OneOf(())])
def test_key_without_values_matches_nothing(compiler, value):
    compiled = compiler.compile(OrderQuery().with_relations({"tenant": value}))
    assert compiled.where_sql == (
        "WHERE EXISTS (SELECT 1 FROM order_relations kv WHERE kv.order_id = orders.id"
        " AND kv.rel_key = %(rel_key_1)s AND FALSE)"
    )
    assert compiled.params == {"rel_key_1": "tenant"}
    assert "IN ()" not in compiled.select_sql


def test_empty_key_still_anded_with_the_others(compiler):
    query = OrderQuery().with_indexed_fields({"tenant": None, "channel": "app"})
    compiled = compiler.compile(query)
    assert compiled.where_sql.count("EXISTS (") == 2
    assert "AND FALSE)" in compiled.where_sql
    assert compiled.params == {"idx_key_1": "tenant", "idx_key_2": "channel", "idx_val_2": "app"}
