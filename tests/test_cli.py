"""Tests for CLI argument handling and subject import."""

from __future__ import annotations

import asyncio
import json
from uuid import uuid4

import pytest
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool
from typer.testing import CliRunner

from object_camp import cli
from object_camp.cli import app
from object_camp.config import settings
from object_camp.db import create_schema
from object_camp.models import Subject

runner = CliRunner()


def test_invalid_uuid_rejected() -> None:
    result = runner.invoke(app, ["show-entity", "not-a-uuid"])
    assert result.exit_code == 1
    assert "Invalid UUID" in result.output


def test_merge_needs_two_entities() -> None:
    result = runner.invoke(app, ["merge", str(uuid4())])
    assert result.exit_code == 1
    assert "at least 2 entities" in result.output


def test_import_missing_file(tmp_path) -> None:
    result = runner.invoke(app, ["import-subjects", "doll", str(tmp_path / "missing.jsonl")])
    assert result.exit_code == 1
    assert "does not exist" in result.output


@pytest.fixture
def file_db(tmp_path, monkeypatch: pytest.MonkeyPatch) -> async_sessionmaker[AsyncSession]:
    """Point the CLI at a SQLite file in tmp_path."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'cli.db'}", poolclass=NullPool)
    factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    async def init_db() -> None:
        await create_schema(engine)

    monkeypatch.setattr(cli, "async_session_factory", factory)
    monkeypatch.setattr(cli, "init_db", init_db)
    monkeypatch.setattr(settings, "dim_feature_vector", 2)
    return factory


def count_subjects(factory: async_sessionmaker[AsyncSession]) -> int:
    async def _count() -> int:
        async with factory() as session:
            return (await session.execute(select(func.count()).select_from(Subject))).scalar_one()

    return asyncio.run(_count())


class TestImportSubjects:
    def test_bad_rows_are_reported_and_skipped(
        self, tmp_path, file_db: async_sessionmaker[AsyncSession]
    ) -> None:
        rows = [
            json.dumps({"source_image_id": "a", "sticker_path": "a.png", "confidence": 0.9,
                        "feature_vector": [1.0, 0.0]}),
            json.dumps({"source_image_id": "b", "sticker_path": "b.png"}),
            '{"source_image_id": "c", "sticker_path": "c.png", "confidence": 0.8, '
            '"feature_vector": [NaN, 0.0]}',
            json.dumps({"source_image_id": "d", "sticker_path": "d.png", "confidence": 0.7,
                        "feature_vector": []}),
            "not json",
            json.dumps({"source_image_id": "e", "sticker_path": "e.png", "confidence": 0.6}),
        ]
        path = tmp_path / "subjects.jsonl"
        path.write_text("\n".join(rows))

        assert runner.invoke(app, ["add-spec", "doll"]).exit_code == 0
        result = runner.invoke(app, ["import-subjects", "doll", str(path)])

        assert result.exit_code == 0, result.output
        assert "Line 2" in result.output
        assert "missing field 'confidence'" in result.output
        assert "Line 3" in result.output
        assert "Line 4" in result.output
        assert "Line 5" in result.output
        assert "Imported 2 subject(s)" in result.output
        assert count_subjects(file_db) == 2

    def test_unknown_spec_aborts(
        self, tmp_path, file_db: async_sessionmaker[AsyncSession]
    ) -> None:
        path = tmp_path / "subjects.jsonl"
        path.write_text(json.dumps({"source_image_id": "a", "sticker_path": "a.png",
                                    "confidence": 0.9}))

        result = runner.invoke(app, ["import-subjects", "ghost", str(path)])

        assert result.exit_code == 1
        assert "ghost" in result.output
        assert count_subjects(file_db) == 0
