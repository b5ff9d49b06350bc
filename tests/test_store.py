"""
Blink-Attend — Local Store Tests
=================================
JSON enrollment store, user context view and JSONL attendance log.
"""

from __future__ import annotations

import asyncio
import json
import sys
from pathlib import Path
from unittest.mock import patch

# Add project root to path
_project_root = str(Path(__file__).resolve().parent.parent)
if _project_root not in sys.path:
    sys.path.insert(0, _project_root)

from attend_store import LocalAttendanceStore, LocalEnrollmentStore


# ─── Test 1: Enrollment persistence ───────────────────────────

def test_enrollment_round_trips_through_file(tmp_path):
    path = tmp_path / "data" / "enrollments.json"
    store = LocalEnrollmentStore(str(path))
    store.ensure_user("u1", "Ada")

    assert asyncio.run(store.update_face_embedding("u1", "0.1,0.2")) is True

    reloaded = LocalEnrollmentStore(str(path))
    user = reloaded.get_user("u1")
    assert user.name == "Ada"
    assert user.face_embedding == "0.1,0.2"
    assert user.enrolled


def test_unknown_user_is_rejected(tmp_path):
    store = LocalEnrollmentStore(str(tmp_path / "enrollments.json"))
    assert store.update_face_embedding_sync("ghost", "1,2,3") is False


def test_write_failure_returns_false_and_keeps_old_value(tmp_path):
    store = LocalEnrollmentStore(str(tmp_path / "enrollments.json"))
    store.ensure_user("u1", "Ada")
    store.update_face_embedding_sync("u1", "1,2,3")

    with patch("attend_store.os.replace", side_effect=OSError("disk full")):
        assert store.update_face_embedding_sync("u1", "4,5,6") is False
    assert store.get_user("u1").face_embedding == "1,2,3"


def test_corrupt_file_loads_empty(tmp_path):
    path = tmp_path / "enrollments.json"
    path.write_text("{not json", encoding="utf-8")
    assert LocalEnrollmentStore(str(path)).users == {}


# ─── Test 2: User context ─────────────────────────────────────

def test_user_context_reflects_enrollment(tmp_path):
    store = LocalEnrollmentStore(str(tmp_path / "enrollments.json"))
    context = store.user_context("u1", "Ada")

    assert context.user_id == "u1"
    assert context.name == "Ada"
    assert context.face_embedding == ""

    store.update_face_embedding_sync("u1", "0.5,0.5")
    assert context.face_embedding == "0.5,0.5"


def test_user_context_keeps_existing_name(tmp_path):
    store = LocalEnrollmentStore(str(tmp_path / "enrollments.json"))
    store.ensure_user("u1", "Ada")
    assert store.user_context("u1").name == "Ada"


# ─── Test 3: Attendance log ───────────────────────────────────

def test_check_in_appends_jsonl(tmp_path):
    path = tmp_path / "attendance.jsonl"
    store = LocalAttendanceStore(str(path))

    assert asyncio.run(store.check_in("u1", "Ada", "captures/a.jpg")) is True
    assert store.check_in_sync("u1", "Ada", "captures/b.jpg") is True

    lines = path.read_text(encoding="utf-8").splitlines()
    assert len(lines) == 2
    first = json.loads(lines[0])
    assert first["user_id"] == "u1"
    assert first["user_name"] == "Ada"
    assert first["image_path"] == "captures/a.jpg"
    assert "checked_in_at" in first
    assert [r["image_path"] for r in store.records()] == ["captures/a.jpg", "captures/b.jpg"]


def test_check_in_failure_returns_false(tmp_path):
    blocker = tmp_path / "blocker"
    blocker.write_text("", encoding="utf-8")
    store = LocalAttendanceStore(str(blocker / "attendance.jsonl"))

    assert store.check_in_sync("u1", "Ada", None) is False
    assert store.records() == []
