"""Record stores: in-memory and PostgreSQL."""
