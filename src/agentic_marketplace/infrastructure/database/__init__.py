"""Database layer: engine, ORM models, and repositories."""
