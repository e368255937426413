import copy
from datetime import timedelta
from typing import Any, Dict, List, Optional
from uuid import uuid4

import pytest
from pydantic import BaseModel as PydanticBaseModel

from marketplace.core.security import create_access_token
from marketplace.db.firebase_ops import to_firestore_value
from marketplace.models.schemas import (
    ContactDetails,
    Project,
    StatusHistoryEntry,
    User,
    Work,
    utc_now,
)

ROUTER_MODULES = ("auth", "users", "projects", "works", "admin")


class InMemoryFirestoreOps:
    """
    Stands in for FirestoreBaseModel: same method surface and return
    conventions, with documents kept in dicts the way Firestore would store
    them (UUIDs as strings, created_at/updated_at stamped on write).
    """

    def __init__(self):
        self.collections: Dict[str, Dict[str, Dict[str, Any]]] = {}

    def _collection(self, name: str) -> Dict[str, Dict[str, Any]]:
        return self.collections.setdefault(name, {})

    @staticmethod
    def _matches(doc: Dict[str, Any], field: str, operator: str, value: Any) -> bool:
        actual = doc.get(field)
        value = to_firestore_value(value)
        if operator == "==":
            return actual == value
        if operator == "!=":
            return actual != value
        if operator == "in":
            return actual in value
        if operator == "array_contains":
            return isinstance(actual, list) and value in actual
        if actual is None:
            return False
        if operator == ">=":
            return actual >= value
        if operator == "<=":
            return actual <= value
        if operator == ">":
            return actual > value
        if operator == "<":
            return actual < value
        raise ValueError(f"Unsupported operator {operator}")

    @staticmethod
    def _result(document_id: str, doc: Dict[str, Any], pydantic_model, include_id: bool = True):
        data = copy.deepcopy(doc)
        if include_id:
            data = {"id": document_id, **data}
        if pydantic_model:
            return pydantic_model(**data)
        return data

    def save(self, collection_name: str, data_model: Any, document_id: Optional[str] = None) -> Optional[str]:
        if isinstance(data_model, PydanticBaseModel):
            data = data_model.model_dump(exclude_unset=True)
        else:
            data = dict(data_model)
        data = to_firestore_value(copy.deepcopy(data))

        collection = self._collection(collection_name)
        document_id = document_id or str(uuid4())
        existing = collection.get(document_id)
        now = utc_now()
        data["updated_at"] = now
        if existing is None and data.get("created_at") is None:
            data["created_at"] = now
        collection[document_id] = {**(existing or {}), **data}
        return document_id

    def get(self, collection_name: str, document_id: str, pydantic_model=None):
        doc = self._collection(collection_name).get(str(document_id))
        if doc is None:
            return None
        return self._result(str(document_id), doc, pydantic_model, include_id=False)

    def get_all(self, collection_name: str, limit: Optional[int] = None, pydantic_model=None) -> List[Any]:
        items = list(self._collection(collection_name).items())
        if limit:
            items = items[:limit]
        return [self._result(doc_id, doc, pydantic_model) for doc_id, doc in items]

    def query(self, collection_name: str, field: str, operator: str, value: Any, pydantic_model=None) -> List[Any]:
        return self.query_where(collection_name, [(field, operator, value)], pydantic_model=pydantic_model)

    def query_where(self, collection_name: str, filters, pydantic_model=None) -> List[Any]:
        return [
            self._result(doc_id, doc, pydantic_model)
            for doc_id, doc in self._collection(collection_name).items()
            if all(self._matches(doc, field, operator, value) for field, operator, value in filters)
        ]

    def update(self, collection_name: str, document_id: str, updates: Dict[str, Any]) -> bool:
        doc = self._collection(collection_name).get(str(document_id))
        if doc is None:
            return False
        doc.update(to_firestore_value(copy.deepcopy(updates)))
        doc["updated_at"] = utc_now()
        return True

    def delete(self, collection_name: str, document_id: str) -> bool:
        return self._collection(collection_name).pop(str(document_id), None) is not None


@pytest.fixture
def fake_ops(monkeypatch):
    """In-memory store wired into every router in place of Firestore."""
    ops = InMemoryFirestoreOps()
    for module in ROUTER_MODULES:
        monkeypatch.setattr(f"marketplace.routers.{module}.get_firestore_ops_instance", lambda: ops)
    return ops


def auth_headers(user: User) -> Dict[str, str]:
    token = create_access_token(data={"sub": str(user.user_id)})
    return {"Authorization": f"Bearer {token}"}


def make_user(ops: InMemoryFirestoreOps, role: str = "client", **overrides) -> User:
    suffix = uuid4().hex[:8]
    fields = dict(
        username=f"{role}_{suffix}",
        email=f"{role}_{suffix}@example.com",
        full_name=f"Test {role.title()} {suffix}",
        role=role,
    )
    fields.update(overrides)
    user = User(**fields)
    ops.save(collection_name="users", data_model=user.model_dump(), document_id=str(user.user_id))
    return user


def make_project(ops: InMemoryFirestoreOps, client: User, student: User, status: str = "accepted", **overrides) -> Project:
    fields = dict(
        project_name="Portfolio website",
        service_category="web-development",
        project_description="A responsive portfolio site with a contact form.",
        requirements="React frontend, deployed to a public URL.",
        quoted_price=2500.0,
        completion_time=7,
        communication_preference="email",
        contact_details=ContactDetails(email_address=client.email),
        assigned_to=student.user_id,
        assigned_by=client.user_id,
        status=status,
        expected_completion_date=utc_now() + timedelta(days=7),
        status_history=[StatusHistoryEntry(status="submitted", changed_by=client.user_id,
                                           reason="Initial project submission")],
    )
    fields.update(overrides)
    project = Project(**fields)
    ops.save(collection_name="projects", data_model=project.model_dump(), document_id=str(project.project_id))
    return project


def make_work(ops: InMemoryFirestoreOps, project: Project, **overrides) -> Work:
    fields = dict(
        project_id=project.project_id,
        project_name=project.project_name,
        service_category=project.service_category,
        project_description=project.project_description,
        requirements=project.requirements,
        quoted_price=project.quoted_price,
        completion_time=project.completion_time,
        communication_preference=project.communication_preference,
        contact_details=project.contact_details,
        assigned_to=project.assigned_to,
        assigned_by=project.assigned_by,
    )
    fields.update(overrides)
    work = Work(**fields)
    ops.save(collection_name="works", data_model=work.model_dump(), document_id=str(work.work_id))
    return work


def stored_work(ops: InMemoryFirestoreOps, work_id) -> Work:
    return ops.get(collection_name="works", document_id=str(work_id), pydantic_model=Work)


def stored_project(ops: InMemoryFirestoreOps, project_id) -> Project:
    return ops.get(collection_name="projects", document_id=str(project_id), pydantic_model=Project)
