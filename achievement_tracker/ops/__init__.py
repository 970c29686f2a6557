from achievement_tracker.ops.status_consistency import audit_store
from achievement_tracker.ops.status_consistency import compare_achievement_statuses
from achievement_tracker.ops.status_consistency import load_all_references

__all__ = [
    "audit_store",
    "compare_achievement_statuses",
    "load_all_references",
]
