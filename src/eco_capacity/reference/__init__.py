"""Static reference data (coordinates registry)."""
