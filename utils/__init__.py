"""utils/ - Shared helpers (logging)."""
