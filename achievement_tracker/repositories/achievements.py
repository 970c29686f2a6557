from __future__ import annotations

import uuid
from datetime import UTC, datetime
from typing import Any

MUTABLE_FIELDS = ("title", "category", "level", "date", "description", "documents")


def _utcnow_iso() -> str:
    return datetime.now(UTC).isoformat()


def _clone(row: dict[str, Any]) -> dict[str, Any]:
    item = dict(row)
    item["documents"] = [dict(x) for x in row.get("documents") or []]
    return item


def _mutable_payload(achievement: dict[str, Any]) -> dict[str, Any]:
    payload = {key: achievement.get(key) for key in MUTABLE_FIELDS if key != "documents"}
    payload["documents"] = [dict(x) for x in achievement.get("documents") or []]
    return payload


class InMemoryAchievementsRepository:
    def __init__(self, achievements: dict[str, dict[str, Any]]) -> None:
        self._achievements = achievements

    def create(self, *, achievement: dict[str, Any]) -> dict[str, Any]:
        now = _utcnow_iso()
        row = _clone(achievement)
        row["id"] = uuid.uuid4().hex[:24]
        row["is_deleted"] = False
        row["deleted_at"] = None
        row["created_at"] = now
        row["updated_at"] = now
        self._achievements[str(row["achievement_id"])] = row
        return _clone(row)

    def find_by_id(self, *, achievement_id: str, include_deleted: bool = False) -> dict[str, Any] | None:
        row = self._achievements.get(achievement_id)
        if row is None:
            return None
        if row.get("is_deleted") and not include_deleted:
            return None
        return _clone(row)

    def find_by_student(self, *, student_id: str) -> list[dict[str, Any]]:
        rows = [
            _clone(row)
            for row in self._achievements.values()
            if row.get("student_id") == student_id and not row.get("is_deleted")
        ]
        rows.sort(key=lambda x: str(x.get("created_at") or ""), reverse=True)
        return rows

    def find_by_ids(self, *, achievement_ids: list[str]) -> list[dict[str, Any]]:
        wanted = set(achievement_ids)
        return [
            _clone(row)
            for key, row in self._achievements.items()
            if key in wanted and not row.get("is_deleted")
        ]

    def find_all(self) -> list[dict[str, Any]]:
        return [_clone(row) for row in self._achievements.values() if not row.get("is_deleted")]

    def update(self, *, achievement_id: str, achievement: dict[str, Any]) -> bool:
        row = self._achievements.get(achievement_id)
        if row is None or row.get("is_deleted"):
            return False
        row.update(_mutable_payload(achievement))
        row["updated_at"] = _utcnow_iso()
        return True

    def update_status(self, *, achievement_id: str, status: str) -> bool:
        row = self._achievements.get(achievement_id)
        if row is None or row.get("is_deleted"):
            return False
        row["status"] = status
        row["updated_at"] = _utcnow_iso()
        return True

    def soft_delete(self, *, achievement_id: str) -> bool:
        row = self._achievements.get(achievement_id)
        if row is None or row.get("is_deleted"):
            return False
        now = _utcnow_iso()
        row["is_deleted"] = True
        row["deleted_at"] = now
        row["updated_at"] = now
        return True

    def restore(self, *, achievement_id: str) -> bool:
        row = self._achievements.get(achievement_id)
        if row is None or not row.get("is_deleted"):
            return False
        row["is_deleted"] = False
        row["deleted_at"] = None
        row["updated_at"] = _utcnow_iso()
        return True

    def hard_delete(self, *, achievement_id: str) -> bool:
        return self._achievements.pop(achievement_id, None) is not None


def _from_mongo(row: dict[str, Any]) -> dict[str, Any]:
    item = dict(row)
    native_id = item.pop("_id", None)
    item["id"] = str(native_id) if native_id is not None else ""
    item["documents"] = [dict(x) for x in item.get("documents") or []]
    return item


class MongoAchievementsRepository:
    """Achievement documents in MongoDB, addressed by achievement_id rather than _id."""

    def __init__(self, *, collection: Any) -> None:
        self._collection = collection

    def ensure_indexes(self) -> None:
        self._collection.create_index([("achievement_id", 1)], unique=True)
        self._collection.create_index([("student_id", 1), ("is_deleted", 1)])

    def create(self, *, achievement: dict[str, Any]) -> dict[str, Any]:
        now = _utcnow_iso()
        payload = _clone(achievement)
        payload.pop("id", None)
        payload["is_deleted"] = False
        payload["deleted_at"] = None
        payload["created_at"] = now
        payload["updated_at"] = now
        result = self._collection.insert_one(payload)
        payload["_id"] = result.inserted_id
        return _from_mongo(payload)

    def find_by_id(self, *, achievement_id: str, include_deleted: bool = False) -> dict[str, Any] | None:
        query: dict[str, Any] = {"achievement_id": achievement_id}
        if not include_deleted:
            query["is_deleted"] = False
        row = self._collection.find_one(query)
        if row is None:
            return None
        return _from_mongo(row)

    def find_by_student(self, *, student_id: str) -> list[dict[str, Any]]:
        cursor = self._collection.find({"student_id": student_id, "is_deleted": False}).sort("created_at", -1)
        return [_from_mongo(row) for row in cursor]

    def find_by_ids(self, *, achievement_ids: list[str]) -> list[dict[str, Any]]:
        if not achievement_ids:
            return []
        cursor = self._collection.find({"achievement_id": {"$in": list(achievement_ids)}, "is_deleted": False})
        return [_from_mongo(row) for row in cursor]

    def find_all(self) -> list[dict[str, Any]]:
        return [_from_mongo(row) for row in self._collection.find({"is_deleted": False})]

    def update(self, *, achievement_id: str, achievement: dict[str, Any]) -> bool:
        fields = _mutable_payload(achievement)
        fields["updated_at"] = _utcnow_iso()
        result = self._collection.update_one(
            {"achievement_id": achievement_id, "is_deleted": False},
            {"$set": fields},
        )
        return result.matched_count > 0

    def update_status(self, *, achievement_id: str, status: str) -> bool:
        result = self._collection.update_one(
            {"achievement_id": achievement_id, "is_deleted": False},
            {"$set": {"status": status, "updated_at": _utcnow_iso()}},
        )
        return result.matched_count > 0

    def soft_delete(self, *, achievement_id: str) -> bool:
        now = _utcnow_iso()
        result = self._collection.update_one(
            {"achievement_id": achievement_id, "is_deleted": False},
            {"$set": {"is_deleted": True, "deleted_at": now, "updated_at": now}},
        )
        return result.matched_count > 0

    def restore(self, *, achievement_id: str) -> bool:
        result = self._collection.update_one(
            {"achievement_id": achievement_id, "is_deleted": True},
            {"$set": {"is_deleted": False, "deleted_at": None, "updated_at": _utcnow_iso()}},
        )
        return result.matched_count > 0

    def hard_delete(self, *, achievement_id: str) -> bool:
        result = self._collection.delete_one({"achievement_id": achievement_id})
        return result.deleted_count > 0
