"""
db/init_db.py
-------------
Creates the order tables if they do not already exist.
Run this module directly to initialize a fresh database:
    python -m db.init_db
"""

from config import ORDERS_TABLE, ORDER_RELATIONS_TABLE, ORDER_INDEXED_TABLE
from db.connection import get_connection, release_connection
from storage.query_compiler import validate_identifier
from utils.logger import get_logger

logger = get_logger(__name__)

SCHEMA_SQL = """
-- Orders table: one row per order, free-form data kept as JSON text
CREATE TABLE IF NOT EXISTS {orders} (
    id                  BIGSERIAL PRIMARY KEY,
    order_no            VARCHAR(64) UNIQUE NOT NULL,
    type                VARCHAR(32) NOT NULL,
    status              VARCHAR(32) NOT NULL,
    amount              NUMERIC(18,4) NOT NULL DEFAULT 0,
    currency            VARCHAR(8) NOT NULL,
    buyer_id            VARCHAR(64),
    attributes_json     TEXT,
    relations_json      TEXT,
    indexed_fields_json TEXT,
    created_at          TIMESTAMP NOT NULL,
    updated_at          TIMESTAMP NOT NULL
);

-- Relations side table: (order, key, value) triples, keys may repeat
CREATE TABLE IF NOT EXISTS {relations} (
    order_id            BIGINT NOT NULL REFERENCES {orders}(id) ON DELETE CASCADE,
    rel_key             VARCHAR(64) NOT NULL,
    rel_value           VARCHAR(255) NOT NULL
);

-- Indexed fields side table: same shape, independent namespace
CREATE TABLE IF NOT EXISTS {indexed} (
    order_id            BIGINT NOT NULL REFERENCES {orders}(id) ON DELETE CASCADE,
    rel_key             VARCHAR(64) NOT NULL,
    rel_value           VARCHAR(255) NOT NULL
);

-- Indexes for the common filters and the correlated lookups
CREATE INDEX IF NOT EXISTS idx_{orders_name}_buyer ON {orders}(buyer_id);
CREATE INDEX IF NOT EXISTS idx_{orders_name}_type_status ON {orders}(type, status);
CREATE INDEX IF NOT EXISTS idx_{orders_name}_created ON {orders}(created_at);
CREATE INDEX IF NOT EXISTS idx_{relations_name}_order ON {relations}(order_id);
CREATE INDEX IF NOT EXISTS idx_{relations_name}_kv ON {relations}(rel_key, rel_value);
CREATE INDEX IF NOT EXISTS idx_{indexed_name}_order ON {indexed}(order_id);
CREATE INDEX IF NOT EXISTS idx_{indexed_name}_kv ON {indexed}(rel_key, rel_value);
"""


def render_schema(
    orders: str = ORDERS_TABLE,
    relations: str = ORDER_RELATIONS_TABLE,
    indexed: str = ORDER_INDEXED_TABLE,
) -> str:
    """
    Fill the table names into SCHEMA_SQL.

    Names may be schema-qualified; index names use the bare table name.

    Raises:
        ValueError: If a name is not a plain SQL identifier.
    """
    tables = {
        "orders": validate_identifier(orders),
        "relations": validate_identifier(relations),
        "indexed": validate_identifier(indexed),
    }
    names = {f"{key}_name": name.rsplit(".", 1)[-1] for key, name in tables.items()}
    return SCHEMA_SQL.format(**tables, **names)


def create_tables() -> None:
    """
    Execute the schema SQL to create all tables.
    Safe to call multiple times (uses IF NOT EXISTS).
    """
    conn = get_connection()
    try:
        with conn.cursor() as cur:
            cur.execute(render_schema())
        conn.commit()
        logger.info("Database schema initialized successfully.")
    except Exception as e:
        conn.rollback()
        logger.error(f"Failed to initialize schema: {e}")
        raise
    finally:
        release_connection(conn)


if __name__ == "__main__":
    from db.connection import init_pool
    init_pool()
    create_tables()
    print("✅ Database schema created successfully.")
