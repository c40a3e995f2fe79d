"""
models/ - Domain Models
=======================
Plain value objects: orders, order searches and result pages.
No database access happens here.
"""
