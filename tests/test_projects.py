from uuid import uuid4

import pytest
from fastapi.testclient import TestClient

from marketplace.main import app
from marketplace.services import performance as performance_service

from conftest import auth_headers, make_project, make_user, stored_project

client = TestClient(app)


@pytest.fixture
def parties(fake_ops):
    return make_user(fake_ops, role="client"), make_user(fake_ops, role="student")


def _project_payload(student, **overrides):
    payload = {
        "project_name": "Inventory dashboard",
        "service_category": "Web Development",
        "project_description": "Dashboard for tracking stock levels across two shops.",
        "requirements": "React + FastAPI, hosted.",
        "quoted_price": 4000,
        "completion_time": 10,
        "communication_preference": "email",
        "assigned_to": str(student.user_id),
    }
    payload.update(overrides)
    return payload


def test_create_project_success(fake_ops, parties):
    client_user, student = parties
    response = client.post("/projects/", json=_project_payload(student, urgency="urgent"),
                           headers=auth_headers(client_user))
    assert response.status_code == 201
    data = response.json()
    assert data["status"] == "submitted"
    assert data["service_category"] == "web-development"
    assert data["priority"] == "high"
    assert data["assigned_by"] == str(client_user.user_id)
    assert data["contact_details"]["email_address"] == client_user.email
    assert data["expected_completion_date"] is not None
    assert data["status_history"][0]["reason"] == "Initial project submission"

    performance = performance_service.get(fake_ops, student.user_id)
    assert performance.projects.total_assigned == 1
    assert performance.projects.assigned[0].priority == "high"


def test_student_cannot_create_project(fake_ops, parties):
    _, student = parties
    other_student = make_user(fake_ops, role="student")
    response = client.post("/projects/", json=_project_payload(other_student), headers=auth_headers(student))
    assert response.status_code == 403


def test_create_project_requires_valid_student(fake_ops, parties):
    client_user, _ = parties
    another_client = make_user(fake_ops, role="client")
    for target in (another_client, make_user(fake_ops, role="student", is_active=False)):
        response = client.post("/projects/", json=_project_payload(target), headers=auth_headers(client_user))
        assert response.status_code == 400
        assert response.json()["detail"] == "Invalid student assignment"


@pytest.mark.parametrize("preference, contact, detail", [
    ("phone", {}, "Phone number is required for selected communication preference"),
    ("whatsapp", {"email_address": "a@b.com"}, "Phone number is required for selected communication preference"),
    ("meeting", {}, "Meeting link is required for online meeting preference"),
])
def test_create_project_contact_rules(fake_ops, parties, preference, contact, detail):
    client_user, student = parties
    payload = _project_payload(student, communication_preference=preference, contact_details=contact)
    response = client.post("/projects/", json=payload, headers=auth_headers(client_user))
    assert response.status_code == 400
    assert response.json()["detail"] == detail


def test_create_project_keeps_only_relevant_contact_details(fake_ops, parties):
    client_user, student = parties
    payload = _project_payload(
        student,
        communication_preference="phone",
        contact_details={"phone_number": "9876543210", "meeting_link": "https://meet.example.com/x"},
    )
    response = client.post("/projects/", json=payload, headers=auth_headers(client_user))
    assert response.status_code == 201
    assert response.json()["contact_details"] == {
        "phone_number": "9876543210", "email_address": None, "meeting_link": None,
    }


def test_create_project_invalid_category(fake_ops, parties):
    client_user, student = parties
    response = client.post("/projects/", json=_project_payload(student, service_category="plumbing"),
                           headers=auth_headers(client_user))
    assert response.status_code == 422


def test_create_project_rejects_critical_urgency(fake_ops, parties):
    client_user, student = parties
    response = client.post("/projects/", json=_project_payload(student, urgency="critical"),
                           headers=auth_headers(client_user))
    assert response.status_code == 422


def test_list_search_and_stats(fake_ops, parties):
    client_user, student = parties
    make_project(fake_ops, client_user, student, status="completed", project_name="Resume refresh",
                 service_category="resume-services", quoted_price=800)
    make_project(fake_ops, client_user, student, status="in_progress", project_name="Shop website", quoted_price=5000)
    make_project(fake_ops, client_user, student, status="submitted", is_active=False)

    listed = client.get("/projects/?sort_by=quoted_price&sort_order=asc", headers=auth_headers(client_user))
    assert listed.status_code == 200
    assert [p["quoted_price"] for p in listed.json()["projects"]] == [800, 5000]

    searched = client.get("/projects/search?q=shop", headers=auth_headers(client_user))
    assert [p["project_name"] for p in searched.json()["projects"]] == ["Shop website"]

    by_category = client.get("/projects/search?category=resume-services&max_price=1000",
                             headers=auth_headers(client_user))
    assert by_category.json()["pagination"]["total_items"] == 1

    client_stats = client.get("/projects/stats", headers=auth_headers(client_user)).json()
    assert client_stats["total_projects"] == 2
    assert client_stats["total_spent"] == 800
    assert client_stats["total_earnings"] is None

    student_stats = client.get("/projects/stats", headers=auth_headers(student)).json()
    assert student_stats["total_earnings"] == 800


def test_list_pagination(fake_ops, parties):
    client_user, student = parties
    for _ in range(3):
        make_project(fake_ops, client_user, student)
    response = client.get("/projects/?page=2&limit=2", headers=auth_headers(client_user))
    pagination = response.json()["pagination"]
    assert len(response.json()["projects"]) == 1
    assert pagination == {
        "current_page": 2, "total_pages": 2, "total_items": 3, "has_next_page": False, "has_prev_page": True,
    }


def test_get_project_access(fake_ops, parties):
    client_user, student = parties
    project = make_project(fake_ops, client_user, student)
    assert client.get(f"/projects/{project.project_id}", headers=auth_headers(student)).status_code == 200

    outsider = make_user(fake_ops, role="client")
    assert client.get(f"/projects/{project.project_id}", headers=auth_headers(outsider)).status_code == 403

    missing = client.get(f"/projects/{uuid4()}", headers=auth_headers(client_user))
    assert missing.status_code == 404
    assert missing.json()["detail"] == "Project not found"


def test_update_status_syncs_performance(fake_ops, parties):
    client_user, student = parties
    project = make_project(fake_ops, client_user, student, status="accepted")
    performance_service.record_assigned_project(fake_ops, project)

    response = client.put(f"/projects/{project.project_id}/status",
                          json={"status": "completed", "reason": "Delivered"},
                          headers=auth_headers(client_user))
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "completed"
    assert data["actual_completion_date"] is not None
    assert data["progress"]["percentage"] == 100
    assert data["status_history"][-1]["reason"] == "Delivered"

    entry = performance_service.get(fake_ops, student.user_id).projects.assigned[0]
    assert entry.status == "completed"
    assert entry.completed_date is not None


def test_update_status_rejects_unknown_status(fake_ops, parties):
    client_user, student = parties
    project = make_project(fake_ops, client_user, student)
    response = client.put(f"/projects/{project.project_id}/status", json={"status": "done"},
                          headers=auth_headers(client_user))
    assert response.status_code == 400
    assert response.json()["detail"] == "Invalid status value"


def test_progress_update(fake_ops, parties):
    client_user, student = parties
    project = make_project(fake_ops, client_user, student, status="in_progress")
    response = client.post(f"/projects/{project.project_id}/progress",
                           json={"message": "Wireframes done", "percentage": 140},
                           headers=auth_headers(student))
    assert response.status_code == 200
    assert response.json()["progress"]["percentage"] == 100
    assert response.json()["progress"]["updates"][0]["message"] == "Wireframes done"


def test_communications_flow(fake_ops, parties):
    client_user, student = parties
    project = make_project(fake_ops, client_user, student)

    sent = client.post(f"/projects/{project.project_id}/communications",
                       json={"message": "Can we add a blog page?", "message_type": "clarification"},
                       headers=auth_headers(client_user))
    assert sent.status_code == 201
    assert sent.json()["receiver"] == str(student.user_id)
    communication_id = sent.json()["communication_id"]

    by_sender = client.patch(f"/projects/{project.project_id}/communications/{communication_id}/read",
                             headers=auth_headers(client_user))
    assert by_sender.status_code == 403

    by_receiver = client.patch(f"/projects/{project.project_id}/communications/{communication_id}/read",
                               headers=auth_headers(student))
    assert by_receiver.status_code == 200
    assert by_receiver.json()["is_read"] is True

    listed = client.get(f"/projects/{project.project_id}/communications", headers=auth_headers(student))
    assert [c["is_read"] for c in listed.json()] == [True]


def test_communications_rejected(fake_ops, parties):
    client_user, student = parties
    project = make_project(fake_ops, client_user, student)

    bad_type = client.post(f"/projects/{project.project_id}/communications",
                           json={"message": "hello", "message_type": "shouting"},
                           headers=auth_headers(client_user))
    assert bad_type.status_code == 400

    too_long = client.post(f"/projects/{project.project_id}/communications",
                           json={"message": "x" * 1001}, headers=auth_headers(client_user))
    assert too_long.status_code == 400

    cancelled = make_project(fake_ops, client_user, student, status="cancelled")
    closed = client.post(f"/projects/{cancelled.project_id}/communications",
                         json={"message": "hello"}, headers=auth_headers(client_user))
    assert closed.status_code == 400
    assert closed.json()["detail"] == "Communication is disabled for cancelled projects"


def test_objection_and_resolution(fake_ops, parties):
    client_user, student = parties
    project = make_project(fake_ops, client_user, student, status="submitted")

    objection = client.post(f"/projects/{project.project_id}/objection",
                            json={"reason": "Budget", "message": "The price is too low for the scope"},
                            headers=auth_headers(student))
    assert objection.status_code == 200
    assert objection.json()["status"] == "pending"
    assert objection.json()["objection_details"]["objection_by"] == str(student.user_id)

    not_client = client.patch(f"/projects/{project.project_id}/objection/resolve",
                              json={"resolution_message": "Raised the budget"},
                              headers=auth_headers(student))
    assert not_client.status_code == 403

    resolved = client.patch(
        f"/projects/{project.project_id}/objection/resolve",
        json={"resolution_message": "Raised the budget", "updated_project_data": {"quoted_price": 6000}},
        headers=auth_headers(client_user),
    )
    assert resolved.status_code == 200
    data = resolved.json()
    assert data["status"] == "submitted"
    assert data["quoted_price"] == 6000
    assert data["objection_details"]["resolved"] is True
    assert [h["reason"] for h in data["status_history"][-2:]] == [
        "Project updated during objection resolution", "Objection resolved by client",
    ]

    again = client.patch(f"/projects/{project.project_id}/objection/resolve",
                         json={"resolution_message": "Again"}, headers=auth_headers(client_user))
    assert again.status_code == 400
    assert again.json()["detail"] == "No active objection found for this project"


def test_objection_requires_message(fake_ops, parties):
    client_user, student = parties
    project = make_project(fake_ops, client_user, student, status="submitted")
    response = client.post(f"/projects/{project.project_id}/objection",
                           json={"reason": "Budget", "message": "  "}, headers=auth_headers(student))
    assert response.status_code == 400


def test_reject_project(fake_ops, parties):
    client_user, student = parties
    project = make_project(fake_ops, client_user, student, status="submitted")

    missing_custom = client.post(f"/projects/{project.project_id}/reject",
                                 json={"reason": "other", "message": "Not for me"},
                                 headers=auth_headers(student))
    assert missing_custom.status_code == 400

    rejected = client.post(f"/projects/{project.project_id}/reject",
                           json={"reason": "skill_mismatch", "message": "I don't know CAD"},
                           headers=auth_headers(student))
    assert rejected.status_code == 200
    assert rejected.json()["status"] == "cancelled"
    assert rejected.json()["rejection_details"]["is_rejected"] is True

    twice = client.post(f"/projects/{project.project_id}/reject",
                        json={"reason": "skill_mismatch", "message": "Still no"},
                        headers=auth_headers(student))
    assert twice.status_code == 400

    objection = client.post(f"/projects/{project.project_id}/objection",
                            json={"reason": "Late", "message": "Changed my mind"},
                            headers=auth_headers(student))
    assert objection.status_code == 400
    assert objection.json()["detail"] == "Cannot raise objection for a rejected project"


def test_only_assigned_student_rejects(fake_ops, parties):
    client_user, student = parties
    project = make_project(fake_ops, client_user, student, status="submitted")
    response = client.post(f"/projects/{project.project_id}/reject",
                           json={"reason": "skill_mismatch", "message": "Nope"},
                           headers=auth_headers(client_user))
    assert response.status_code == 403


def test_delete_archives_active_projects(fake_ops, parties):
    client_user, student = parties
    active = make_project(fake_ops, client_user, student, status="in_progress")
    finished = make_project(fake_ops, client_user, student, status="completed")

    archived = client.delete(f"/projects/{active.project_id}", headers=auth_headers(client_user))
    assert archived.json()["message"] == "Project archived successfully"
    assert stored_project(fake_ops, active.project_id).archived is True

    deleted = client.delete(f"/projects/{finished.project_id}", headers=auth_headers(client_user))
    assert deleted.json()["message"] == "Project deleted successfully"
    assert stored_project(fake_ops, finished.project_id).is_active is False

    by_student = client.delete(f"/projects/{active.project_id}", headers=auth_headers(student))
    assert by_student.status_code == 403


def test_create_work_record(fake_ops, parties):
    client_user, student = parties
    project = make_project(fake_ops, client_user, student, status="accepted", urgency="urgent")

    by_client = client.post(f"/projects/{project.project_id}/work", headers=auth_headers(client_user))
    assert by_client.status_code == 403

    created = client.post(f"/projects/{project.project_id}/work", headers=auth_headers(student))
    assert created.status_code == 201
    data = created.json()
    assert data["project_id"] == str(project.project_id)
    assert data["urgency"] == "urgent"
    assert data["work_updates"][0]["metadata"] == {"old_status": None, "new_status": "approved"}

    duplicate = client.post(f"/projects/{project.project_id}/work", headers=auth_headers(student))
    assert duplicate.status_code == 400
    assert duplicate.json()["detail"] == "Work record already exists for this project"

    fetched = client.get(f"/projects/{project.project_id}/work", headers=auth_headers(client_user))
    assert fetched.status_code == 200
    assert fetched.json()["work_id"] == data["work_id"]


def test_work_requires_accepted_project(fake_ops, parties):
    client_user, student = parties
    project = make_project(fake_ops, client_user, student, status="submitted")
    response = client.post(f"/projects/{project.project_id}/work", headers=auth_headers(student))
    assert response.status_code == 400
    assert response.json()["detail"] == "Project must be accepted before creating a work record"

    missing = client.get(f"/projects/{project.project_id}/work", headers=auth_headers(student))
    assert missing.status_code == 404
