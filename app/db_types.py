"""Database-agnostic type definitions for SQLAlchemy models.

Bin optimization tables are created on PostgreSQL in production and on
SQLite (aiosqlite) in tests and local runs, so models import column types
from here instead of the postgresql dialect.
"""
from sqlalchemy import JSON, Uuid

# JSONB is PostgreSQL-specific, JSON works with both SQLite and PostgreSQL
JSONType = JSON

# Native UUID on PostgreSQL, CHAR(32) on SQLite
UUIDType = Uuid
