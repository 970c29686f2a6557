from __future__ import annotations

from pathlib import Path

from achievement_tracker.store import store

STUDENT = {"x-user-id": "stud_s", "x-user-role": "student"}
OTHER_STUDENT = {"x-user-id": "stud_t", "x-user-role": "student"}
LECTURER = {"x-user-id": "lect_l", "x-user-role": "lecturer"}
ADMIN = {"x-user-id": "admin_a", "x-user-role": "admin"}

FORM = {"title": "X", "category": "Comp", "level": "National", "date": "2024-01-01"}


def _create(client, *, headers=STUDENT, form=None, files=None) -> str:
    resp = client.post("/api/v1/achievements", headers=headers, data=form or FORM, files=files)
    assert resp.status_code == 201, resp.text
    return resp.json()["data"]["achievement_id"]


def test_create_submit_verify_scenario(client):
    resp = client.post(
        "/api/v1/achievements",
        headers=STUDENT,
        data=FORM,
        files=[("documents", ("certificate.pdf", b"%PDF-1.4", "application/pdf"))],
    )
    assert resp.status_code == 201
    body = resp.json()
    assert body["success"] is True
    created = body["data"]
    achievement_id = created["achievement_id"]
    assert created["status"] == "draft"
    assert created["student_id"] == "stud_s"
    assert created["documents"][0]["filename"] == "certificate.pdf"
    assert Path(created["documents"][0]["filepath"]).exists()
    assert store.references[achievement_id]["status"] == "draft"

    submitted = client.post(f"/api/v1/achievements/{achievement_id}/submit", headers=STUDENT)
    assert submitted.status_code == 200
    assert submitted.json()["data"]["reference"]["status"] == "submitted"
    assert submitted.json()["data"]["reference"]["submitted_at"]

    verified = client.post(f"/api/v1/achievements/{achievement_id}/verify", headers=LECTURER)
    assert verified.status_code == 200
    assert verified.json()["data"]["reference"]["verified_by"] == "lect_l"
    assert verified.json()["data"]["achievement"]["status"] == "verified"
    assert verified.json()["data"]["reference"]["verified_at"]

    fetched = client.get(f"/api/v1/achievements/{achievement_id}", headers=STUDENT)
    assert fetched.status_code == 200
    assert fetched.json()["data"]["status"] == "verified"


def test_reject_then_resubmit_fails_with_conflict(client):
    achievement_id = _create(client)
    client.post(f"/api/v1/achievements/{achievement_id}/submit", headers=STUDENT)

    rejected = client.post(
        f"/api/v1/achievements/{achievement_id}/reject",
        headers=LECTURER,
        json={"rejection_note": "incomplete docs"},
    )
    assert rejected.status_code == 200
    assert rejected.json()["data"]["reference"]["status"] == "rejected"
    assert rejected.json()["data"]["reference"]["rejection_note"] == "incomplete docs"

    again = client.post(f"/api/v1/achievements/{achievement_id}/submit", headers=STUDENT)
    assert again.status_code == 409
    assert again.json()["error"]["code"] == "WF_STATE_TRANSITION_INVALID"
    assert again.json()["error"]["class"] == "business_rule"


def test_reject_requires_note(client):
    achievement_id = _create(client)
    client.post(f"/api/v1/achievements/{achievement_id}/submit", headers=STUDENT)
    resp = client.post(f"/api/v1/achievements/{achievement_id}/reject", headers=LECTURER, json={"rejection_note": ""})
    assert resp.status_code == 400
    assert resp.json()["error"]["code"] == "ACHIEVEMENT_REJECTION_NOTE_REQUIRED"

    malformed = client.post(f"/api/v1/achievements/{achievement_id}/reject", headers=LECTURER, json=["x"])
    assert malformed.status_code == 400
    assert malformed.json()["error"]["code"] == "REQ_VALIDATION_FAILED"


def test_update_after_submit_keeps_content(client):
    achievement_id = _create(client)
    updated = client.put(f"/api/v1/achievements/{achievement_id}", headers=STUDENT, json={"title": "Better"})
    assert updated.status_code == 200
    assert updated.json()["data"]["title"] == "Better"

    client.post(f"/api/v1/achievements/{achievement_id}/submit", headers=STUDENT)
    blocked = client.put(f"/api/v1/achievements/{achievement_id}", headers=STUDENT, json={"title": "Late"})
    assert blocked.status_code == 409
    fetched = client.get(f"/api/v1/achievements/{achievement_id}", headers=STUDENT)
    assert fetched.json()["data"]["title"] == "Better"


def test_create_validation_errors(client):
    missing = client.post("/api/v1/achievements", headers=STUDENT, data={"title": "X"})
    assert missing.status_code == 400
    assert missing.json()["error"]["code"] == "ACHIEVEMENT_FIELDS_REQUIRED"

    bad_date = client.post("/api/v1/achievements", headers=STUDENT, data={**FORM, "date": "2024/01/01"})
    assert bad_date.status_code == 400
    assert bad_date.json()["error"]["code"] == "ACHIEVEMENT_DATE_INVALID"

    bad_file = client.post(
        "/api/v1/achievements",
        headers=STUDENT,
        data=FORM,
        files=[("documents", ("payload.exe", b"MZ", "application/octet-stream"))],
    )
    assert bad_file.status_code == 400
    assert bad_file.json()["error"]["code"] == "ATTACHMENT_TYPE_NOT_ALLOWED"
    assert store.achievements == {}


def test_permissions_are_enforced_per_route(client):
    achievement_id = _create(client)
    client.post(f"/api/v1/achievements/{achievement_id}/submit", headers=STUDENT)

    student_verify = client.post(f"/api/v1/achievements/{achievement_id}/verify", headers=STUDENT)
    assert student_verify.status_code == 403
    assert student_verify.json()["error"]["code"] == "AUTH_FORBIDDEN"

    lecturer_create = client.post("/api/v1/achievements", headers=LECTURER, data=FORM)
    assert lecturer_create.status_code == 403

    pending_for_student = client.get("/api/v1/achievements/pending", headers=STUDENT)
    assert pending_for_student.status_code == 403


def test_non_owner_cannot_read_or_delete(client):
    achievement_id = _create(client)
    read = client.get(f"/api/v1/achievements/{achievement_id}", headers=OTHER_STUDENT)
    assert read.status_code == 403

    delete = client.delete(f"/api/v1/achievements/{achievement_id}", headers=OTHER_STUDENT)
    assert delete.status_code == 403

    others = client.get("/api/v1/students/stud_s/achievements", headers=OTHER_STUDENT)
    assert others.status_code == 403

    own = client.get("/api/v1/students/stud_s/achievements", headers=STUDENT)
    assert own.status_code == 200
    assert [x["achievement_id"] for x in own.json()["data"]] == [achievement_id]


def test_soft_delete_hides_achievement_except_for_admin(client):
    achievement_id = _create(client)
    deleted = client.delete(f"/api/v1/achievements/{achievement_id}", headers=STUDENT)
    assert deleted.status_code == 200
    assert deleted.json()["data"] == {"achievement_id": achievement_id, "deleted": True}

    gone = client.get(f"/api/v1/achievements/{achievement_id}", headers=STUDENT)
    assert gone.status_code == 404
    assert gone.json()["error"]["code"] == "ACHIEVEMENT_NOT_FOUND"
    assert client.get("/api/v1/achievements", headers=STUDENT).json()["data"] == []

    admin_view = client.get(f"/api/v1/achievements/{achievement_id}?include_deleted=true", headers=ADMIN)
    assert admin_view.status_code == 200
    assert admin_view.json()["data"]["is_deleted"] is True
    assert achievement_id in store.achievements


def test_attachments_endpoint_appends_files(client):
    achievement_id = _create(client)
    resp = client.post(
        f"/api/v1/achievements/{achievement_id}/attachments",
        headers=STUDENT,
        files=[
            ("attachments", ("a.pdf", b"a", "application/pdf")),
            ("attachments", ("b.png", b"b", "image/png")),
        ],
    )
    assert resp.status_code == 200
    data = resp.json()["data"]
    assert data["total_documents"] == 2
    assert [x["mimetype"] for x in data["new_documents"]] == ["application/pdf", "image/png"]

    empty = client.post(f"/api/v1/achievements/{achievement_id}/attachments", headers=STUDENT)
    assert empty.status_code == 400
    assert empty.json()["error"]["code"] == "ACHIEVEMENT_ATTACHMENTS_REQUIRED"


def test_verifier_views_and_reports(client):
    store.register_student(user_id="stud_s", advisor_id="lect_l")
    store.register_user(user_id="stud_s", role="student", full_name="Siti")
    first = _create(client)
    second = _create(client)
    _create(client, headers=OTHER_STUDENT)
    client.post(f"/api/v1/achievements/{first}/submit", headers=STUDENT)
    client.post(f"/api/v1/achievements/{second}/submit", headers=STUDENT)
    client.post(f"/api/v1/achievements/{first}/verify", headers=LECTURER)

    pending = client.get("/api/v1/achievements/pending", headers=LECTURER)
    assert pending.status_code == 200
    assert [x["reference"]["mongo_achievement_id"] for x in pending.json()["data"]["items"]] == [second]

    advisees = client.get("/api/v1/achievements/advisees?page=1&limit=1", headers=LECTURER)
    assert advisees.json()["data"]["pagination"] == {"page": 1, "limit": 1, "total_items": 2, "total_pages": 2}

    everything = client.get("/api/v1/achievements/all?status=verified", headers=ADMIN)
    assert [x["achievement"]["achievement_id"] for x in everything.json()["data"]["items"]] == [first]
    bad_filter = client.get("/api/v1/achievements/all?status=archived", headers=ADMIN)
    assert bad_filter.status_code == 400
    assert bad_filter.json()["error"]["code"] == "ACHIEVEMENT_STATUS_FILTER_INVALID"

    review = client.get(f"/api/v1/achievements/{second}/review", headers=LECTURER)
    assert review.json()["data"]["reference"]["status"] == "submitted"

    history = client.get(f"/api/v1/achievements/{first}/history", headers=STUDENT)
    assert [x["status"] for x in history.json()["data"]["history"]] == ["draft", "submitted", "verified"]

    top = client.get("/api/v1/reports/top-students", headers=LECTURER)
    assert top.status_code == 200
    assert top.json()["data"]["items"] == [
        {
            "student_id": "stud_s",
            "student_name": "Siti",
            "total_achievements": 2,
            "verified_achievements": 1,
        }
    ]
    admin_top = client.get("/api/v1/reports/top-students", headers=ADMIN)
    assert [x["student_id"] for x in admin_top.json()["data"]["items"]] == ["stud_s", "stud_t"]


def test_unknown_achievement_returns_not_found(client):
    resp = client.post("/api/v1/achievements/missing/submit", headers=STUDENT)
    assert resp.status_code == 404
    assert resp.json()["error"]["code"] == "ACHIEVEMENT_NOT_FOUND"
    assert resp.json()["error"]["retryable"] is False


def test_top_students_reports_the_applied_limit(client):
    in_range = client.get("/api/v1/reports/top-students?limit=3", headers=LECTURER)
    assert in_range.status_code == 200
    assert in_range.json()["data"]["limit"] == 3

    out_of_range = client.get("/api/v1/reports/top-students?limit=500", headers=LECTURER)
    assert out_of_range.status_code == 200
    assert out_of_range.json()["data"]["limit"] == 10
