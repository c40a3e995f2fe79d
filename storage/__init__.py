"""
storage/ - Storage Backends
===========================
Backends persist and search orders. The query compiler turns an OrderQuery
into parameterized SQL; PostgresOrderStorage runs it through the db layer.
"""
