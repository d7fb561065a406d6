"""Tests for the project registry and ingest keys."""

from __future__ import annotations

import pytest

from stacktrail.core import StackTrailDB
from tests._helpers import PopulatedDB


class TestCreateProject:
    def test_create(self, db: StackTrailDB) -> None:
        project = db.create_project("web", "Web app")
        assert project.project_key == "web"
        assert project.name == "Web app"
        assert len(project.ingest_key or "") == 48
        assert project.created_at.endswith("+00:00")

    def test_name_defaults_to_key(self, db: StackTrailDB) -> None:
        assert db.create_project("web").name == "web"

    def test_existing_project_renamed_key_kept(self, db: StackTrailDB) -> None:
        first = db.create_project("web", "Old")
        second = db.create_project("web", "New")
        assert second.name == "New"
        assert second.ingest_key == first.ingest_key

    def test_existing_project_without_name_unchanged(self, db: StackTrailDB) -> None:
        db.create_project("web", "Named")
        assert db.create_project("web").name == "Named"

    def test_invalid_key(self, db: StackTrailDB) -> None:
        with pytest.raises(ValueError):
            db.create_project("  ")

    def test_to_dict_hides_ingest_key(self, db: StackTrailDB) -> None:
        assert "ingest_key" not in db.create_project("web").to_dict()


class TestQueries:
    def test_get_unknown(self, db: StackTrailDB) -> None:
        with pytest.raises(KeyError):
            db.get_project("nope")

    def test_list(self, db: StackTrailDB) -> None:
        db.create_project("a")
        db.create_project("b")
        assert {p.project_key for p in db.list_projects()} == {"a", "b"}
        assert len(db.list_projects(limit=1)) == 1


class TestIngestKeys:
    def test_verify(self, db: StackTrailDB) -> None:
        key = db.create_project("web").ingest_key
        assert db.verify_ingest_key("web", key)
        assert db.verify_ingest_key("web", f"  {key}  ")
        assert not db.verify_ingest_key("web", "wrong")
        assert not db.verify_ingest_key("web", "")
        assert not db.verify_ingest_key("web", None)

    def test_verify_unknown_project(self, db: StackTrailDB) -> None:
        with pytest.raises(KeyError):
            db.verify_ingest_key("nope", "key")

    def test_rotate(self, db: StackTrailDB) -> None:
        old = db.create_project("web").ingest_key
        new = db.rotate_ingest_key("web")
        assert new != old
        assert db.get_ingest_key("web") == new
        assert not db.verify_ingest_key("web", old)

    def test_rotate_unknown(self, db: StackTrailDB) -> None:
        with pytest.raises(KeyError):
            db.rotate_ingest_key("nope")


class TestDeleteProject:
    def test_cascades(self, populated_db: PopulatedDB) -> None:
        db = populated_db.db
        db.delete_project("demo")
        with pytest.raises(KeyError):
            db.get_project("demo")
        with pytest.raises(KeyError):
            db.get_issue(populated_db.ids["open"])
        assert db.list_source_maps("demo") == []
        assert db.conn.execute("SELECT COUNT(*) FROM events WHERE project_key = 'demo'").fetchone()[0] == 0
        assert db.get_issue(populated_db.ids["other"]).project_key == "web"

    def test_unknown(self, db: StackTrailDB) -> None:
        with pytest.raises(KeyError):
            db.delete_project("nope")
