"""Persistence: SQLAlchemy base, query executor and cached repositories."""
