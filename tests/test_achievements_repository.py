from __future__ import annotations

from types import SimpleNamespace

from achievement_tracker.repositories.achievements import InMemoryAchievementsRepository, MongoAchievementsRepository


def _achievement(achievement_id: str, *, student_id: str = "student_1") -> dict:
    return {
        "achievement_id": achievement_id,
        "student_id": student_id,
        "title": "Regional Robotics",
        "category": "Competition",
        "level": "Regional",
        "date": "2024-03-01",
        "description": "",
        "documents": [{"filename": "a.pdf", "filepath": "/tmp/a.pdf"}],
        "status": "draft",
    }


def test_inmemory_achievements_repository_soft_delete_hides_but_keeps_record():
    rows: dict[str, dict] = {}
    repo = InMemoryAchievementsRepository(rows)
    created = repo.create(achievement=_achievement("ach_1"))
    assert len(created["id"]) == 24
    assert created["is_deleted"] is False

    assert repo.soft_delete(achievement_id="ach_1") is True
    assert repo.soft_delete(achievement_id="ach_1") is False
    assert repo.find_by_id(achievement_id="ach_1") is None
    assert repo.find_by_student(student_id="student_1") == []
    assert repo.find_by_ids(achievement_ids=["ach_1"]) == []
    assert "ach_1" in rows
    assert repo.find_by_id(achievement_id="ach_1", include_deleted=True)["is_deleted"] is True

    assert repo.restore(achievement_id="ach_1") is True
    assert repo.find_by_id(achievement_id="ach_1") is not None


def test_inmemory_achievements_repository_returns_copies():
    repo = InMemoryAchievementsRepository({})
    repo.create(achievement=_achievement("ach_1"))
    loaded = repo.find_by_id(achievement_id="ach_1")
    loaded["documents"].append({"filename": "b.pdf"})
    loaded["status"] = "verified"

    again = repo.find_by_id(achievement_id="ach_1")
    assert len(again["documents"]) == 1
    assert again["status"] == "draft"


def test_inmemory_achievements_repository_update_replaces_mutable_fields_only():
    repo = InMemoryAchievementsRepository({})
    created = repo.create(achievement=_achievement("ach_1"))
    changed = dict(created, title="National Robotics", status="verified", student_id="intruder", documents=[])

    assert repo.update(achievement_id="ach_1", achievement=changed) is True
    loaded = repo.find_by_id(achievement_id="ach_1")
    assert loaded["title"] == "National Robotics"
    assert loaded["documents"] == []
    assert loaded["status"] == "draft"
    assert loaded["student_id"] == "student_1"
    assert repo.update(achievement_id="missing", achievement=changed) is False


def test_inmemory_achievements_repository_hard_delete_and_find_all():
    repo = InMemoryAchievementsRepository({})
    repo.create(achievement=_achievement("ach_1"))
    repo.create(achievement=_achievement("ach_2", student_id="student_2"))
    assert {x["achievement_id"] for x in repo.find_all()} == {"ach_1", "ach_2"}

    assert repo.hard_delete(achievement_id="ach_1") is True
    assert repo.hard_delete(achievement_id="ach_1") is False
    assert [x["achievement_id"] for x in repo.find_all()] == ["ach_2"]


class FakeCursor:
    def __init__(self, rows: list[dict]):
        self._rows = rows
        self.sort_key: tuple | None = None

    def sort(self, key: str, direction: int):
        self.sort_key = (key, direction)
        self._rows = sorted(self._rows, key=lambda x: x.get(key) or "", reverse=direction < 0)
        return self

    def __iter__(self):
        return iter(self._rows)


def _matches(row: dict, query: dict) -> bool:
    for key, expected in query.items():
        if isinstance(expected, dict) and "$in" in expected:
            if row.get(key) not in expected["$in"]:
                return False
        elif row.get(key) != expected:
            return False
    return True


class FakeCollection:
    def __init__(self):
        self.rows: list[dict] = []
        self.indexes: list[tuple] = []
        self._next_id = 1

    def create_index(self, keys, **kwargs):
        self.indexes.append((tuple(keys), kwargs))

    def insert_one(self, payload: dict):
        inserted_id = f"{self._next_id:024x}"
        self._next_id += 1
        self.rows.append({**payload, "_id": inserted_id})
        return SimpleNamespace(inserted_id=inserted_id)

    def find_one(self, query: dict):
        for row in self.rows:
            if _matches(row, query):
                return dict(row)
        return None

    def find(self, query: dict):
        return FakeCursor([dict(x) for x in self.rows if _matches(x, query)])

    def update_one(self, query: dict, update: dict):
        for row in self.rows:
            if _matches(row, query):
                row.update(update["$set"])
                return SimpleNamespace(matched_count=1)
        return SimpleNamespace(matched_count=0)

    def delete_one(self, query: dict):
        for index, row in enumerate(self.rows):
            if _matches(row, query):
                del self.rows[index]
                return SimpleNamespace(deleted_count=1)
        return SimpleNamespace(deleted_count=0)


def test_mongo_achievements_repository_maps_native_id_and_filters_deleted():
    collection = FakeCollection()
    repo = MongoAchievementsRepository(collection=collection)
    created = repo.create(achievement=_achievement("ach_1"))
    assert created["id"] == f"{1:024x}"
    assert "_id" not in created
    assert collection.rows[0]["is_deleted"] is False

    loaded = repo.find_by_id(achievement_id="ach_1")
    assert loaded is not None
    assert loaded["achievement_id"] == "ach_1"

    assert repo.soft_delete(achievement_id="ach_1") is True
    assert repo.soft_delete(achievement_id="ach_1") is False
    assert repo.find_by_id(achievement_id="ach_1") is None
    assert repo.find_by_id(achievement_id="ach_1", include_deleted=True) is not None
    assert repo.find_by_ids(achievement_ids=["ach_1"]) == []
    assert repo.restore(achievement_id="ach_1") is True
    assert repo.find_by_ids(achievement_ids=["ach_1"])[0]["achievement_id"] == "ach_1"


def test_mongo_achievements_repository_status_update_and_sorting():
    collection = FakeCollection()
    repo = MongoAchievementsRepository(collection=collection)
    repo.create(achievement=_achievement("ach_1"))
    repo.create(achievement=_achievement("ach_2"))
    collection.rows[0]["created_at"] = "2024-01-01T00:00:00+00:00"
    collection.rows[1]["created_at"] = "2024-02-01T00:00:00+00:00"

    assert repo.update_status(achievement_id="ach_1", status="submitted") is True
    assert repo.update_status(achievement_id="missing", status="submitted") is False
    rows = repo.find_by_student(student_id="student_1")
    assert [x["achievement_id"] for x in rows] == ["ach_2", "ach_1"]
    assert rows[1]["status"] == "submitted"

    assert repo.hard_delete(achievement_id="ach_2") is True
    assert repo.hard_delete(achievement_id="ach_2") is False
    assert repo.find_by_ids(achievement_ids=[]) == []


def test_mongo_achievements_repository_ensure_indexes():
    collection = FakeCollection()
    MongoAchievementsRepository(collection=collection).ensure_indexes()
    assert collection.indexes[0] == ((("achievement_id", 1),), {"unique": True})
    assert collection.indexes[1][0] == (("student_id", 1), ("is_deleted", 1))
