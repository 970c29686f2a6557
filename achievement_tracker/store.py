from __future__ import annotations

import os
from collections.abc import Mapping
from typing import Any

from achievement_tracker.attachments import create_attachment_storage_from_env
from achievement_tracker.db.mongo import MongoCollectionProvider
from achievement_tracker.db.postgres import PostgresTxRunner
from achievement_tracker.permission_cache import PermissionResolver, create_permission_cache_from_env
from achievement_tracker.repositories import (
    InMemoryAchievementReferencesRepository,
    InMemoryAchievementsRepository,
    InMemoryPermissionsRepository,
    InMemoryStudentsRepository,
    MongoAchievementsRepository,
    PostgresAchievementReferencesRepository,
    PostgresPermissionsRepository,
    PostgresStudentsRepository,
)
from achievement_tracker.security import AuthContext
from achievement_tracker.workflow import AchievementWorkflow


class InMemoryTrackerStore:
    """Process-local runtime: plain dicts behind the repository interfaces."""

    backend_name = "memory"

    def __init__(self) -> None:
        self.achievements: dict[str, dict[str, Any]] = {}
        self.references: dict[str, dict[str, Any]] = {}
        self.user_roles: dict[str, str] = {}
        self.user_names: dict[str, str] = {}
        self.students: dict[str, dict[str, Any]] = {}
        self.attachment_storage = create_attachment_storage_from_env(os.environ)
        self.permission_cache = create_permission_cache_from_env(os.environ)
        self._bind_repositories()

    def _bind_repositories(self) -> None:
        self.achievements_repository: Any = InMemoryAchievementsRepository(self.achievements)
        self.references_repository: Any = InMemoryAchievementReferencesRepository(
            self.references,
            self.user_names,
        )
        self.students_repository: Any = InMemoryStudentsRepository(self.students)
        self.permissions_repository: Any = InMemoryPermissionsRepository(self.user_roles)
        self._bind_workflow()

    def _bind_workflow(self) -> None:
        self.permission_resolver = PermissionResolver(
            cache=self.permission_cache,
            repository=self.permissions_repository,
        )
        self.workflow = AchievementWorkflow(
            achievements_repository=self.achievements_repository,
            references_repository=self.references_repository,
            attachment_storage=self.attachment_storage,
            students_repository=self.students_repository,
        )

    def register_user(self, *, user_id: str, role: str, full_name: str = "") -> None:
        self.user_roles[user_id] = role
        self.user_names[user_id] = full_name or user_id

    def register_student(self, *, user_id: str, advisor_id: str | None) -> None:
        self.students_repository.upsert(student={"user_id": user_id, "advisor_id": advisor_id})

    def observe_actor(self, actor: AuthContext) -> None:
        # No user table in memory: the first authenticated role seen for a user becomes its role.
        self.user_roles.setdefault(actor.user_id, actor.role)
        self.user_names.setdefault(actor.user_id, actor.user_id)

    def reset(self) -> None:
        self.attachment_storage = create_attachment_storage_from_env(os.environ)
        self.attachment_storage.reset()
        self.permission_cache = create_permission_cache_from_env(os.environ)
        self.achievements.clear()
        self.references.clear()
        self.user_roles.clear()
        self.user_names.clear()
        self.students.clear()
        self._bind_repositories()


class LiveTrackerStore(InMemoryTrackerStore):
    """MongoDB document store plus PostgreSQL reference store."""

    backend_name = "live"

    def __init__(
        self,
        *,
        mongo_uri: str,
        mongo_database: str = "achievements_db",
        achievements_collection: str = "achievements",
        postgres_dsn: str,
        references_table: str = "achievement_references",
    ) -> None:
        self._mongo = MongoCollectionProvider(uri=mongo_uri, database=mongo_database)
        self._tx_runner = PostgresTxRunner(postgres_dsn)
        self._achievements_collection = achievements_collection
        self._references_table = references_table
        super().__init__()

    @property
    def tx_runner(self) -> PostgresTxRunner:
        return self._tx_runner

    def _bind_repositories(self) -> None:
        self.achievements_repository = MongoAchievementsRepository(
            collection=self._mongo.collection(self._achievements_collection),
        )
        self.references_repository = PostgresAchievementReferencesRepository(
            tx_runner=self._tx_runner,
            table_name=self._references_table,
        )
        self.students_repository = PostgresStudentsRepository(tx_runner=self._tx_runner)
        self.permissions_repository = PostgresPermissionsRepository(tx_runner=self._tx_runner)
        self._bind_workflow()

    def register_user(self, *, user_id: str, role: str, full_name: str = "") -> None:
        raise RuntimeError("users are managed in PostgreSQL for the live backend")

    def register_student(self, *, user_id: str, advisor_id: str | None) -> None:
        raise RuntimeError("students are managed in PostgreSQL for the live backend")

    def observe_actor(self, actor: AuthContext) -> None:
        return None

    def reset(self) -> None:
        self.permission_cache.clear()

    def close(self) -> None:
        self._mongo.close()


def create_store_from_env(environ: Mapping[str, str] | None = None) -> InMemoryTrackerStore:
    env = os.environ if environ is None else environ
    backend = env.get("SAT_STORE_BACKEND", "memory").strip().lower() or "memory"
    if backend == "memory":
        return InMemoryTrackerStore()
    if backend == "live":
        mongo_uri = env.get("MONGO_URI", "").strip()
        if not mongo_uri:
            raise ValueError("MONGO_URI must be set when SAT_STORE_BACKEND=live")
        dsn = env.get("POSTGRES_DSN", "").strip()
        if not dsn:
            raise ValueError("POSTGRES_DSN must be set when SAT_STORE_BACKEND=live")
        return LiveTrackerStore(
            mongo_uri=mongo_uri,
            mongo_database=env.get("MONGO_DATABASE", "achievements_db").strip() or "achievements_db",
            achievements_collection=env.get("MONGO_ACHIEVEMENTS_COLLECTION", "achievements").strip()
            or "achievements",
            postgres_dsn=dsn,
            references_table=env.get("SAT_REFERENCES_TABLE", "achievement_references").strip()
            or "achievement_references",
        )
    raise RuntimeError(f"unsupported store backend: {backend}")


store = create_store_from_env()
