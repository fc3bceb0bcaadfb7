"""Database layer: engine/session factory, ORM models and the SQL repository."""
