"""
Blink-Attend — Local Enrollment & Attendance Stores
====================================================
File-backed stand-ins for the remote user and attendance services.

  enrollments.json   {user_id: {"name": ..., "face_embedding": "0.1,..."}}
  attendance.jsonl   one check-in record per line

Both stores report failure as False (never raise) to match the
collaborator contract the session controller expects.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

_log = logging.getLogger("AttendStore")


@dataclass
class UserProfile:
    user_id: str
    name: str
    face_embedding: str = ""

    @property
    def enrolled(self) -> bool:
        return bool(self.face_embedding.strip())


class LocalEnrollmentStore:
    """JSON file of users and their enrolled face embeddings."""

    def __init__(self, path: str = "data/enrollments.json"):
        self.path = path
        self._lock = threading.Lock()
        self.users: dict[str, UserProfile] = {}
        self._load()

    def _load(self) -> None:
        if not os.path.exists(self.path):
            return
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as exc:
            _log.error("Failed to load enrollments from %s: %s", self.path, exc)
            return
        self.users = {
            uid: UserProfile(uid, entry.get("name", ""), entry.get("face_embedding", ""))
            for uid, entry in data.items()
        }

    def _save(self) -> None:
        data = {
            uid: {"name": user.name, "face_embedding": user.face_embedding}
            for uid, user in self.users.items()
        }
        directory = os.path.dirname(self.path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        tmp_path = self.path + ".tmp"
        with open(tmp_path, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2)
        os.replace(tmp_path, self.path)

    def get_user(self, user_id: str) -> Optional[UserProfile]:
        return self.users.get(user_id)

    def ensure_user(self, user_id: str, name: str) -> UserProfile:
        """Return the user, creating an unenrolled profile if missing."""
        with self._lock:
            user = self.users.get(user_id)
            if user is None:
                user = UserProfile(user_id, name)
                self.users[user_id] = user
            elif name and user.name != name:
                user.name = name
            return user

    def update_face_embedding_sync(self, user_id: str, embedding: str) -> bool:
        with self._lock:
            user = self.users.get(user_id)
            if user is None:
                _log.warning("Enrollment for unknown user %s", user_id)
                return False
            previous = user.face_embedding
            user.face_embedding = embedding
            try:
                self._save()
            except OSError as exc:
                user.face_embedding = previous
                _log.error("Failed to save enrollment for %s: %s", user_id, exc)
                return False
        _log.info("Face enrolled for %s", user_id)
        return True

    async def update_face_embedding(self, user_id: str, embedding: str) -> bool:
        return await asyncio.to_thread(self.update_face_embedding_sync, user_id, embedding)

    def user_context(self, user_id: str, name: str = "") -> "StoreUserContext":
        self.ensure_user(user_id, name)
        return StoreUserContext(self, user_id)


class StoreUserContext:
    """Read-only view of the current user, always reflecting the store."""

    def __init__(self, store: LocalEnrollmentStore, user_id: str):
        self._store = store
        self.user_id = user_id

    @property
    def name(self) -> str:
        user = self._store.get_user(self.user_id)
        return user.name if user else ""

    @property
    def face_embedding(self) -> str:
        user = self._store.get_user(self.user_id)
        return user.face_embedding if user else ""


class LocalAttendanceStore:
    """Append-only JSONL check-in log."""

    def __init__(self, path: str = "data/attendance.jsonl"):
        self.path = path
        self._lock = threading.Lock()

    def check_in_sync(self, user_id: str, user_name: str, image_path: Optional[str]) -> bool:
        record = {
            "user_id": user_id,
            "user_name": user_name,
            "image_path": image_path,
            "checked_in_at": datetime.now(timezone.utc).isoformat(),
        }
        try:
            with self._lock:
                directory = os.path.dirname(self.path)
                if directory:
                    os.makedirs(directory, exist_ok=True)
                with open(self.path, "a", encoding="utf-8") as f:
                    f.write(json.dumps(record) + "\n")
        except OSError as exc:
            _log.error("Failed to record check-in for %s: %s", user_id, exc)
            return False
        _log.info("Check-in recorded for %s (%s)", user_name, user_id)
        return True

    async def check_in(self, user_id: str, user_name: str, image_path: Optional[str]) -> bool:
        return await asyncio.to_thread(self.check_in_sync, user_id, user_name, image_path)

    def records(self) -> list[dict]:
        if not os.path.exists(self.path):
            return []
        with open(self.path, "r", encoding="utf-8") as f:
            return [json.loads(line) for line in f if line.strip()]
