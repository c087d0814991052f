"""Persistence layer: ORM models, engine/session, repositories."""
