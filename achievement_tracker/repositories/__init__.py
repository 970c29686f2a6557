from achievement_tracker.repositories.achievement_references import (
    InMemoryAchievementReferencesRepository,
    PostgresAchievementReferencesRepository,
)
from achievement_tracker.repositories.achievements import InMemoryAchievementsRepository, MongoAchievementsRepository
from achievement_tracker.repositories.permissions import InMemoryPermissionsRepository, PostgresPermissionsRepository
from achievement_tracker.repositories.students import InMemoryStudentsRepository, PostgresStudentsRepository

__all__ = [
    "InMemoryAchievementReferencesRepository",
    "PostgresAchievementReferencesRepository",
    "InMemoryAchievementsRepository",
    "MongoAchievementsRepository",
    "InMemoryPermissionsRepository",
    "PostgresPermissionsRepository",
    "InMemoryStudentsRepository",
    "PostgresStudentsRepository",
]
