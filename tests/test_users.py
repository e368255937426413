from uuid import uuid4

from fastapi.testclient import TestClient

from marketplace.main import app
from marketplace.models.schemas import StudentPerformance, PerformanceMetrics, ProjectTotals, AssignedProject
from marketplace.services import performance as performance_service

from conftest import auth_headers, make_user

client = TestClient(app)


def test_get_user_profile(fake_ops):
    user = make_user(fake_ops, role="student", college="IIT Delhi")
    response = client.get(f"/users/{user.user_id}")
    assert response.status_code == 200
    assert response.json()["college"] == "IIT Delhi"


def test_get_user_profile_not_found(fake_ops):
    response = client.get(f"/users/{uuid4()}")
    assert response.status_code == 404


def test_update_profile_changes_only_profile_fields(fake_ops):
    user = make_user(fake_ops, role="student")
    response = client.put(
        "/users/me/profile",
        json={"bio": "Final-year CS student", "college": "NIT Trichy", "skills": ["python", "react"]},
        headers=auth_headers(user),
    )
    assert response.status_code == 200
    data = response.json()
    assert data["college"] == "NIT Trichy"
    assert data["role"] == "student"
    # bio and college are two of the seven tracked profile fields
    assert data["profile_completion"] == round(2 / 7 * 100)

    stored = fake_ops.get(collection_name="users", document_id=str(user.user_id))
    assert stored["skills"] == ["python", "react"]


def test_update_profile_ignores_role(fake_ops):
    user = make_user(fake_ops, role="client")
    response = client.put("/users/me/profile", json={"role": "admin"}, headers=auth_headers(user))
    assert response.status_code == 400
    stored = fake_ops.get(collection_name="users", document_id=str(user.user_id))
    assert stored["role"] == "client"


def test_available_students_filters_and_sorts(fake_ops):
    caller = make_user(fake_ops, role="client")
    strong = make_user(fake_ops, role="student", skills=["Python"])
    weak = make_user(fake_ops, role="student", skills=["python"])
    busy = make_user(fake_ops, role="student", skills=["python"])
    make_user(fake_ops, role="student", skills=["python"], is_active=False)

    performance_service.save(fake_ops, StudentPerformance(
        user_id=strong.user_id, performance=PerformanceMetrics(overall_rating=4.8)))
    performance_service.save(fake_ops, StudentPerformance(
        user_id=weak.user_id, performance=PerformanceMetrics(overall_rating=3.1)))
    performance_service.save(fake_ops, StudentPerformance(
        user_id=busy.user_id,
        projects=ProjectTotals(assigned=[AssignedProject(title="Ongoing", status="in_progress")]),
    ))

    response = client.get("/users/students/available?skill=python", headers=auth_headers(caller))
    assert response.status_code == 200
    ids = [entry["user"]["user_id"] for entry in response.json()]
    assert ids == [str(strong.user_id), str(weak.user_id)]


def test_available_students_min_rating(fake_ops):
    caller = make_user(fake_ops, role="client")
    unrated = make_user(fake_ops, role="student")

    response = client.get("/users/students/available?min_rating=1", headers=auth_headers(caller))
    assert response.status_code == 200
    assert str(unrated.user_id) not in [entry["user"]["user_id"] for entry in response.json()]


def test_available_students_search_matches_course_and_skills(fake_ops):
    caller = make_user(fake_ops, role="client")
    designer = make_user(fake_ops, role="student", course="Mechanical Engineering", skills=["SolidWorks"])
    make_user(fake_ops, role="student", course="Commerce", skills=["Excel"])

    by_course = client.get("/users/students/available?search=mechanical", headers=auth_headers(caller))
    assert [entry["user"]["user_id"] for entry in by_course.json()] == [str(designer.user_id)]

    by_skill = client.get("/users/students/available?search=solidworks", headers=auth_headers(caller))
    assert [entry["user"]["user_id"] for entry in by_skill.json()] == [str(designer.user_id)]
