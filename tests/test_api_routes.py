import re
from datetime import datetime, timedelta

import pytest

import storage_helpers
from assignment_models import AssignmentResult
from models import Accommodation, Event
from tests.conftest import login_as


class FakeS3:
    def __init__(self):
        self.calls = []

    def generate_presigned_url(self, operation, Params, ExpiresIn):
        self.calls.append((operation, Params, ExpiresIn))
        return f"https://s3.test/{operation}/{Params['Key']}?expires={ExpiresIn}"

    def delete_object(self, Bucket, Key):
        self.calls.append(("delete_object", {"Bucket": Bucket, "Key": Key}, None))


@pytest.fixture
def fake_s3(app, monkeypatch):
    app.config["S3_BUCKET_NAME"] = "portal-test"
    s3 = FakeS3()
    monkeypatch.setattr(storage_helpers.boto3, "client", lambda *args, **kwargs: s3)
    return s3


# ===== EVENTS =====

def test_event_crud(client, db):
    login_as(client, "admin")

    created = client.post("/api/events", json={
        "title": "Knife skills practical", "startDate": "2026-05-04T09:00:00",
        "endDate": "2026-05-04T12:00:00", "color": "practical", "location": ["Kitchen 2"],
    })
    assert created.status_code == 201
    event_id = created.get_json()["data"]["id"]

    client.post("/api/events", json={"title": "Orientation", "startDate": "2026-02-01T08:00:00"})
    listing = client.get("/api/events").get_json()["data"]
    assert [e["title"] for e in listing] == ["Orientation", "Knife skills practical"]
    assert listing[0]["color"] == "other"

    updated = client.put(f"/api/events?id={event_id}", json={"title": "Knife skills (moved)"})
    assert updated.status_code == 200
    assert updated.get_json()["data"]["title"] == "Knife skills (moved)"

    assert client.delete(f"/api/events?id={event_id}").status_code == 200
    assert client.delete(f"/api/events?id={event_id}").status_code == 404
    assert db.query(Event).count() == 1


def test_event_validation(client):
    login_as(client, "admin")

    assert client.post("/api/events", json={"title": "No date"}).status_code == 400
    response = client.post("/api/events", json={"title": "Bad colour", "startDate": "2026-02-01", "color": "pink"})
    assert response.status_code == 400
    assert "color must be one of" in response.get_json()["error"]
    assert client.put("/api/events?id=abc", json={}).status_code == 400


def test_event_mutations_need_permission(client):
    login_as(client, "lecturer")

    assert client.get("/api/events").status_code == 200
    response = client.post("/api/events", json={"title": "Nope", "startDate": "2026-02-01T08:00:00"})
    assert response.status_code == 403


# ===== ACCOMMODATIONS =====

def test_accommodation_crud(client, db):
    login_as(client, "admin")

    created = client.post("/api/accommodations", json={
        "roomNumber": "B12", "address": "1 College Road", "costPerBed": "1500.50",
        "numberOfOccupants": 2, "roomType": "double",
    })
    assert created.status_code == 201
    room = created.get_json()["data"]
    assert room["costPerBed"] == 1500.5

    fetched = client.get(f"/api/accommodations/{room['id']}")
    assert fetched.get_json()["data"]["roomNumber"] == "B12"

    updated = client.put(f"/api/accommodations/{room['id']}", json={"occupants": [1, 2]})
    assert updated.get_json()["data"]["occupants"] == [1, 2]

    deleted = client.delete(f"/api/accommodations/{room['id']}")
    assert deleted.status_code == 204
    assert deleted.data == b""
    assert db.query(Accommodation).count() == 0

    assert client.get(f"/api/accommodations/{room['id']}").status_code == 404
    assert client.get("/api/accommodations/xyz").status_code == 400


# ===== INTAKE GROUPS =====

def test_intake_group_update_requires_title(client, seed):
    login_as(client, "admin")
    url = f"/api/intake-groups/{seed['group_id']}"

    assert client.put(url, json={"title": "  "}).status_code == 400

    response = client.put(url, json={"title": "Intake 2026 B"})
    assert response.status_code == 200
    data = client.get(url).get_json()["data"]
    assert data["title"] == "Intake 2026 B"
    assert {s["admissionNumber"] for s in data["students"]} == {"S001", "S002"}


def test_intake_group_with_students_cannot_be_deleted(client, seed):
    login_as(client, "admin")

    assert client.delete(f"/api/intake-groups/{seed['group_id']}").status_code == 400

    empty = client.post("/api/intake-groups", json={"title": "Empty group"}).get_json()["data"]
    assert client.delete(f"/api/intake-groups/{empty['id']}").status_code == 200
    assert client.get(f"/api/intake-groups/{empty['id']}").status_code == 404


# ===== STORAGE =====

def test_upload_returns_presigned_url_and_suffixed_path(client, fake_s3):
    login_as(client, "student1")

    response = client.post("/api/uploads", json={
        "fileName": "id document.pdf", "contentType": "application/pdf", "folder": "documents",
    })

    body = response.get_json()
    assert response.status_code == 200
    assert body["success"] is True
    assert re.fullmatch(r"documents/id document-[0-9a-f]{4}\.pdf", body["filePath"])
    operation, params, expires = fake_s3.calls[0]
    assert operation == "put_object"
    assert params["Bucket"] == "portal-test"
    assert params["ContentType"] == "application/pdf"
    assert expires == 600
    assert body["presignedUrl"].startswith("https://s3.test/put_object/")


def test_upload_requires_name_and_type(client, fake_s3):
    login_as(client, "student1")
    assert client.post("/api/uploads", json={"fileName": "x.pdf"}).status_code == 400
    assert fake_s3.calls == []


def test_material_download(client, fake_s3):
    login_as(client, "student1")

    response = client.post("/api/materials/download", json={"fileKey": "materials/notes-ab12.pdf",
                                                             "fileName": "notes.pdf"})
    assert response.status_code == 200
    assert "signedUrl" in response.get_json()
    operation, params, expires = fake_s3.calls[0]
    assert operation == "get_object"
    assert params["ResponseContentDisposition"] == 'attachment; filename="notes.pdf"'
    assert expires == 300

    assert client.post("/api/materials/download", json={"fileKey": "k"}).status_code == 400


def test_upload_delete_needs_permission(client, fake_s3):
    login_as(client, "student1")
    assert client.delete("/api/uploads", json={"fileKey": "materials/a.pdf"}).status_code == 403

    login_as(client, "lecturer")
    assert client.delete("/api/uploads", json={"fileKey": "materials/a.pdf"}).status_code == 200
    assert fake_s3.calls[-1][0] == "delete_object"


# ===== ASSIGNMENT API =====

def test_assignment_flow_over_http(app, seed, db):
    lecturer = app.test_client()
    student = app.test_client()
    login_as(lecturer, "lecturer")
    login_as(student, "student1")

    created = lecturer.post("/api/assignments", json={
        "title": "Knife Safety",
        "type": "test",
        "duration": 20,
        "availableFrom": (datetime.utcnow() - timedelta(hours=1)).isoformat(),
        "intakeGroups": [seed["group_id"]],
        "questions": [
            {"text": "Cut away from yourself", "type": "true-false", "mark": 40, "correctAnswer": "true"},
            {"text": "Why keep knives sharp?", "type": "long-answer", "mark": 60},
        ],
    })
    assert created.status_code == 201
    assignment_id = created.get_json()["data"]["id"]
    password = created.get_json()["data"]["testPassword"]

    check = student.post(f"/api/assignments/{assignment_id}/validate-password", json={"password": password})
    assert check.get_json()["valid"] is True
    assert student.post("/api/assignments/abc/validate-password", json={"password": password}).status_code == 400

    started = student.post(f"/api/assignments/{assignment_id}/start", json={"password": password})
    assert started.status_code == 201
    attempt = started.get_json()
    assert "correctAnswer" not in attempt["questions"][0]

    assert lecturer.post(f"/api/assignments/{assignment_id}/start", json={"password": password}).status_code == 403

    questions = [q["id"] for q in attempt["questions"]]
    submitted = student.post(f"/api/results/{attempt['resultId']}/submit", json={"answers": [
        {"questionId": questions[0], "answer": "true"},
        {"questionId": questions[1], "answer": "A blunt knife slips."},
    ]})
    assert submitted.status_code == 200
    assert submitted.get_json()["data"]["scores"] == {str(questions[0]): 40}

    marking = lecturer.get(f"/api/results/{attempt['resultId']}").get_json()["data"]
    assert marking["questions"][0]["proposedScore"] == 40
    assert marking["questions"][1]["studentAnswer"] == "A blunt knife slips."

    scored = lecturer.post(f"/api/results/{attempt['resultId']}/score", json={
        "scores": {str(questions[0]): 40, str(questions[1]): 35}, "expectedVersion": 0,
    })
    assert scored.status_code == 200
    assert scored.get_json()["data"]["percentageScore"] == 75

    conflict = lecturer.post(f"/api/results/{attempt['resultId']}/score", json={
        "scores": {str(questions[0]): 40}, "expectedVersion": 0,
    })
    assert conflict.status_code == 409

    counts = lecturer.get(f"/api/intake-groups/{seed['group_id']}/pending-count").get_json()["data"]
    assert counts["marked"] == 1
    assert counts["pending"] == 0

    db.expire_all()
    result = db.query(AssignmentResult).one()
    assert result.overall_outcome == "Competent"
    assert result.test_score == 75


def test_malformed_submission_is_a_client_error(app, seed, db, make_assignment):
    assignment = make_assignment()
    student = app.test_client()
    login_as(student, "student1")
    attempt = student.post(f"/api/assignments/{assignment.id}/start", json={"password": "ABCD1234"}).get_json()
    question_id = attempt["questions"][0]["id"]
    url = f"/api/results/{attempt['resultId']}/submit"

    bad_time = student.post(url, json={"answers": [{"questionId": question_id, "answer": "Foam", "timeSpent": "12s"}]})
    assert bad_time.status_code == 400
    assert "whole number of seconds" in bad_time.get_json()["error"]

    bad_item = student.post(url, json={"answers": ["Foam"]})
    assert bad_item.status_code == 400
    assert bad_item.get_json() == {"success": False, "error": "Answer 1 must be an object"}

    assert student.post(url, json=["Foam"]).status_code == 400

    db.expire_all()
    assert db.get(AssignmentResult, attempt["resultId"]).status.value == "IN_PROGRESS"
    accepted = student.post(url, json={"answers": [{"questionId": question_id, "answer": "Foam", "timeSpent": 12}]})
    assert accepted.status_code == 200


def test_update_assignment_over_http(client, make_assignment):
    assignment = make_assignment()
    login_as(client, "lecturer")
    url = f"/api/assignments/{assignment.id}"

    updated = client.put(url, json={"title": "Workplace Safety 2", "duration": 40})
    assert updated.status_code == 200
    body = updated.get_json()["data"]
    assert (body["title"], body["duration"], len(body["questions"])) == ("Workplace Safety 2", 40, 5)
    assert client.get(url).get_json()["data"]["title"] == "Workplace Safety 2"

    assert client.put(url, json={"type": "exam"}).status_code == 400
    assert client.put(url, json=["not", "an", "object"]).status_code == 400
    assert client.put("/api/assignments/abc", json={}).status_code == 400
    assert client.put("/api/assignments/999", json={"title": "Ghost"}).status_code == 404


def test_delete_assignment_over_http(app, seed, make_assignment):
    spare = make_assignment()
    taken = make_assignment()
    lecturer = app.test_client()
    admin = app.test_client()
    login_as(lecturer, "lecturer")
    login_as(admin, "admin")

    assert lecturer.delete(f"/api/assignments/{spare.id}").status_code == 403

    student = app.test_client()
    login_as(student, "student1")
    student.post(f"/api/assignments/{taken.id}/start", json={"password": "ABCD1234"})
    refused = admin.delete(f"/api/assignments/{taken.id}")
    assert refused.status_code == 400
    assert refused.get_json()["error"].startswith("Cannot delete")

    deleted = admin.delete(f"/api/assignments/{spare.id}")
    assert deleted.status_code == 200
    assert deleted.get_json() == {"success": True, "message": "Assignment deleted"}
    assert admin.get(f"/api/assignments/{spare.id}").status_code == 404
    assert admin.delete(f"/api/assignments/{spare.id}").status_code == 404


def test_regenerate_password_over_http(client):
    login_as(client, "lecturer")
    assert client.post("/api/assignments/999/password").status_code == 404
    assert client.post("/api/assignments/zzz/password").status_code == 400
