from __future__ import annotations

from typing import Any


def compare_achievement_statuses(
    documents: list[dict[str, Any]],
    references: list[dict[str, Any]],
) -> dict[str, Any]:
    """Audit the status mirror between the document store and the reference store."""
    docs_by_id = {str(x["achievement_id"]): x for x in documents}
    refs_by_id = {str(x["mongo_achievement_id"]): x for x in references}

    missing_reference = sorted(set(docs_by_id) - set(refs_by_id))
    missing_document = sorted(set(refs_by_id) - set(docs_by_id))
    mismatches: list[dict[str, Any]] = []
    for achievement_id in sorted(set(docs_by_id) & set(refs_by_id)):
        doc_status = docs_by_id[achievement_id].get("status")
        ref_status = refs_by_id[achievement_id].get("status")
        if doc_status != ref_status:
            mismatches.append(
                {
                    "achievement_id": achievement_id,
                    "document_status": doc_status,
                    "reference_status": ref_status,
                }
            )
    return {
        "all_consistent": not (missing_reference or missing_document or mismatches),
        "document_count": len(docs_by_id),
        "reference_count": len(refs_by_id),
        "documents_without_reference": missing_reference,
        "references_without_document": missing_document,
        "status_mismatches": mismatches,
    }


def load_all_references(references_repository: Any, *, page_size: int = 100) -> list[dict[str, Any]]:
    rows: list[dict[str, Any]] = []
    offset = 0
    while True:
        items, total = references_repository.find_all_with_filters(
            limit=page_size,
            offset=offset,
            sort_by="created_at",
            sort_order="asc",
        )
        rows.extend(items)
        offset += page_size
        if not items or offset >= total:
            return rows


def audit_store(store: Any) -> dict[str, Any]:
    documents = store.achievements_repository.find_all()
    references = load_all_references(store.references_repository)
    result = compare_achievement_statuses(documents, references)
    result["backend"] = getattr(store, "backend_name", "unknown")
    return result
