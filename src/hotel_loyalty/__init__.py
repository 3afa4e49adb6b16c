"""Hotel loyalty points and tier engine."""
