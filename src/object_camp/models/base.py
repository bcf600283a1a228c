"""Declarative base and shared column types."""

from datetime import UTC, datetime

from pgvector.sqlalchemy import Vector  # type: ignore[import-untyped]
from sqlalchemy import JSON
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    """Base class for all ObjectCamp models."""


# pgvector on PostgreSQL, a plain JSON array everywhere else (SQLite for local runs and tests)
FeatureVectorType = Vector().with_variant(JSON(none_as_null=True), "sqlite")

JSONType = JSON(none_as_null=True).with_variant(JSONB(none_as_null=True), "postgresql")


def utcnow() -> datetime:
    return datetime.now(UTC)
