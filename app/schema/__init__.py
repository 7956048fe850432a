"""ORM models for the attendance domain."""
