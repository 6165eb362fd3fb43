"""Persistence layer: SQLModel tables, engine policy and migrations."""
