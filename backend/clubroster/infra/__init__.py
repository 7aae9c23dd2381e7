"""Infrastructure adapters (Postgres pool, Redis client)."""
