"""
db/ - Database Layer
====================
Handles PostgreSQL connections and schema bootstrap for the order tables.
This layer sits below the repositories; it only borrows the table-name check from storage.
"""
