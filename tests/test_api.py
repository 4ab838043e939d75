import pytest
from fastapi.testclient import TestClient

from app.api.deps import create_access_token
from app.main import app

SESSION = "2025/2026"
TERM = "First Term"
ROSTER = [{"id": "p1", "name": "Ada", "gender": "female"}, {"id": "p2", "name": "Tunde", "gender": "male"}]


def _auth(uid, role, name=""):
    return {"Authorization": f"Bearer {create_access_token(uid, role, name)}"}


ADMIN = _auth("admin1", "admin", "Head Teacher")
TEACHER = _auth("t1", "teacher", "Mrs Ade")
PUPIL = _auth("p1", "pupil")


@pytest.fixture
def client():
    # A fresh in-memory store per test.
    with TestClient(app) as c:
        yield c


def test_health(client):
    r = client.get("/health")
    assert r.status_code == 200
    assert r.json()["status"] == "ok"


def test_requires_token(client):
    assert client.get("/api/classes/ordered").status_code == 401
    r = client.get("/api/classes/ordered", headers={"Authorization": "Bearer not-a-token"})
    assert r.status_code == 401


def test_pupil_cannot_mark_attendance(client):
    r = client.post(
        "/api/attendance/mark",
        json={"class_id": "C1", "date": "2025-09-15", "term": TERM, "session": SESSION, "attendance": {}, "roster": []},
        headers=PUPIL,
    )
    assert r.status_code == 403


def test_mark_attendance_and_grid(client):
    r = client.post(
        "/api/attendance/mark",
        json={
            "class_id": "C1",
            "date": "2025-09-15",
            "term": TERM,
            "session": SESSION,
            "attendance": {"p1": "present", "p2": "absent"},
            "roster": ROSTER,
        },
        headers=TEACHER,
    )
    assert r.status_code == 200, r.text
    assert r.json()["success"] is True
    assert r.json()["data"]["counts"]["boy_absent"] == 1

    r = client.get(
        "/api/attendance/grid",
        params={"class_id": "C1", "term": TERM, "session": SESSION, "start": "2025-09-15", "end": "2025-09-19"},
        headers=TEACHER,
    )
    assert r.json()["dates"] == ["2025-09-15"]

    r = client.post(
        "/api/attendance/weekly-summary",
        json={"class_id": "C1", "term": TERM, "session": SESSION, "week_of": "2025-09-17", "roster": ROSTER},
        headers=TEACHER,
    )
    summary = r.json()
    assert summary["total_days_marked"] == 1
    assert summary["pupil_weekly_stats"]["p1"]["percentage"] == 100


def test_mark_invalid_status_is_rejected(client):
    r = client.post(
        "/api/attendance/mark",
        json={
            "class_id": "C1",
            "date": "2025-09-15",
            "term": TERM,
            "session": SESSION,
            "attendance": {"p1": "late"},
            "roster": ROSTER,
        },
        headers=TEACHER,
    )
    assert r.status_code == 422


def test_cannot_mark_a_holiday(client):
    r = client.post(
        "/api/calendar/entries",
        json={"date": "2025-10-01", "type": "public_holiday", "session": SESSION, "term": TERM},
        headers=ADMIN,
    )
    assert r.status_code == 200, r.text
    r = client.post(
        "/api/attendance/mark",
        json={
            "class_id": "C1",
            "date": "2025-10-01",
            "term": TERM,
            "session": SESSION,
            "attendance": {"p1": "present"},
            "roster": ROSTER,
        },
        headers=TEACHER,
    )
    assert r.status_code == 400


def test_correcting_a_missing_day_is_404(client):
    r = client.patch(
        "/api/attendance/status",
        json={
            "class_id": "C1",
            "date": "2025-09-16",
            "term": TERM,
            "session": SESSION,
            "pupil_id": "p1",
            "status": "absent",
            "roster": ROSTER,
        },
        headers=TEACHER,
    )
    assert r.status_code == 404
    assert r.json()["detail"]["code"] == "not-found"


def test_result_workflow(client):
    scope = {"class_id": "C1", "term": TERM, "subject": "English", "session": SESSION}
    r = client.put(
        "/api/results/drafts",
        json={**scope, "scores": {"p1": {"ca_score": 30, "exam_score": 55}}},
        headers=TEACHER,
    )
    assert r.status_code == 200, r.text

    r = client.post("/api/results/submissions", json={**scope, "class_name": "Primary 1"}, headers=TEACHER)
    assert r.status_code == 200
    submission_id = r.json()["data"]["submission_id"]

    r = client.post("/api/results/submissions", json=scope, headers=TEACHER)
    assert r.status_code == 409

    pending = client.get("/api/results/submissions/pending", headers=ADMIN).json()
    assert [s["id"] for s in pending] == [submission_id]
    assert pending[0]["teacher_name"] == "Mrs Ade"

    assert client.post(f"/api/results/submissions/{submission_id}/approve", headers=TEACHER).status_code == 403
    r = client.post(f"/api/results/submissions/{submission_id}/approve", headers=ADMIN)
    assert r.status_code == 200, r.text

    status = client.get("/api/results/locks", params=scope, headers=TEACHER).json()
    assert status["locked"] is True

    r = client.put(
        "/api/results/drafts",
        json={**scope, "scores": {"p1": {"ca_score": 40, "exam_score": 55}}},
        headers=TEACHER,
    )
    assert r.status_code == 403

    published = client.get("/api/results/published", headers=PUPIL).json()
    assert [(p["subject"], p["total"]) for p in published] == [("English", 85)]
    assert client.get("/api/results/published", params={"pupil_id": "p2"}, headers=PUPIL).status_code == 403

    r = client.post("/api/results/locks/unlock", json={**scope, "reason": "Typo in CA"}, headers=ADMIN)
    assert r.status_code == 200
    assert client.get("/api/results/locks", params=scope, headers=TEACHER).json()["locked"] is False


def test_reject_submission(client):
    scope = {"class_id": "C1", "term": TERM, "subject": "Science", "session": SESSION}
    submission_id = client.post("/api/results/submissions", json=scope, headers=TEACHER).json()["data"]["submission_id"]
    r = client.post(f"/api/results/submissions/{submission_id}/reject", json={"reason": "Incomplete"}, headers=ADMIN)
    assert r.status_code == 200
    submission = client.get(f"/api/results/submissions/{submission_id}", headers=TEACHER).json()
    assert submission["status"] == "rejected"
    assert submission["rejection_reason"] == "Incomplete"


def test_class_progression(client):
    for class_id, name in [("c2", "Primary 2"), ("c1", "Primary 1"), ("c0", "Nursery")]:
        assert client.post("/api/classes/", json={"id": class_id, "name": name}, headers=ADMIN).status_code == 200

    # Startup already created an empty hierarchy, so the new classes are appended.
    ordered = client.get("/api/classes/ordered", headers=TEACHER).json()
    assert [c["name"] for c in ordered] == ["Nursery", "Primary 1", "Primary 2"]

    r = client.put("/api/classes/hierarchy", json={"ordered_class_ids": ["c1", "c2", "c0"]}, headers=ADMIN)
    assert r.status_code == 200
    assert client.get("/api/classes/next", params={"name": "Primary 2"}, headers=TEACHER).json()["next"] == "Nursery"
    assert client.get("/api/classes/terminal", params={"name": "Nursery"}, headers=TEACHER).json()["terminal"] is True
    assert client.get("/api/classes/level", params={"name": "Primary 1"}, headers=TEACHER).json()["level"] == 1

    r = client.post("/api/classes/hierarchy/initialize", headers=ADMIN)
    assert r.json()["data"]["already_exists"] is True
