"""
repositories/ - Data Access Layer
==================================
Domain-facing entry points for loading and storing orders.
Repositories hand domain objects to a storage backend and return domain objects.
"""
