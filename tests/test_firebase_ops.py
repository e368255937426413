from unittest.mock import MagicMock
from uuid import uuid4

import pytest

from marketplace.db.firebase_ops import FirestoreBaseModel, to_firestore_value
from marketplace.models.schemas import AccessEntry, User


@pytest.fixture
def ops():
    instance = FirestoreBaseModel.__new__(FirestoreBaseModel)
    instance.firebase_manager = None
    instance.db = MagicMock()
    return instance


def _doc(doc_id, data, exists=True):
    doc = MagicMock()
    doc.id = doc_id
    doc.exists = exists
    doc.to_dict.return_value = data
    return doc


def test_to_firestore_value_converts_nested_uuids():
    user_id = uuid4()
    entry = AccessEntry(accessed_by=user_id, action="viewed")
    converted = to_firestore_value({"history": [entry], "owner": user_id, "tags": ("a", "b")})
    assert converted["owner"] == str(user_id)
    assert converted["history"][0]["accessed_by"] == str(user_id)
    assert converted["tags"] == ["a", "b"]


def test_save_with_document_id_merges_and_stamps(ops):
    ops.db.collection.return_value.document.return_value.get.return_value = _doc("u1", None, exists=False)
    user = User(username="sam", email="sam@example.com", full_name="Sam")

    saved_id = ops.save(collection_name="users", data_model=user.model_dump(), document_id="u1")

    assert saved_id == "u1"
    doc_ref = ops.db.collection.return_value.document.return_value
    data, = doc_ref.set.call_args.args
    assert doc_ref.set.call_args.kwargs == {"merge": True}
    assert data["user_id"] == str(user.user_id)
    assert data["created_at"] is not None
    assert data["updated_at"] is not None


def test_save_existing_document_keeps_created_at(ops):
    ops.db.collection.return_value.document.return_value.get.return_value = _doc("u1", {"username": "sam"})
    ops.save(collection_name="users", data_model={"username": "sam2"}, document_id="u1")
    data, = ops.db.collection.return_value.document.return_value.set.call_args.args
    assert "created_at" not in data


def test_save_without_document_id_uses_add(ops):
    new_ref = MagicMock()
    new_ref.id = "generated"
    ops.db.collection.return_value.add.return_value = (None, new_ref)
    assert ops.save(collection_name="users", data_model={"username": "sam"}) == "generated"


def test_save_returns_none_on_error(ops):
    ops.db.collection.return_value.document.return_value.get.return_value = _doc("u1", None, exists=False)
    ops.db.collection.return_value.document.return_value.set.side_effect = RuntimeError("unavailable")
    assert ops.save(collection_name="users", data_model={"username": "sam"}, document_id="u1") is None


def test_get_parses_model(ops):
    user_id = uuid4()
    ops.db.collection.return_value.document.return_value.get.return_value = _doc(
        str(user_id), {"user_id": str(user_id), "username": "sam", "email": "sam@example.com", "full_name": "Sam"}
    )
    user = ops.get(collection_name="users", document_id=str(user_id), pydantic_model=User)
    assert user.user_id == user_id
    ops.db.collection.assert_called_with("users")


def test_get_missing_document(ops):
    ops.db.collection.return_value.document.return_value.get.return_value = _doc("x", None, exists=False)
    assert ops.get(collection_name="users", document_id="x") is None


def test_query_where_chains_filters_and_includes_id(ops):
    student_id = uuid4()
    query_ref = ops.db.collection.return_value
    query_ref.where.return_value = query_ref
    query_ref.stream.return_value = [_doc("w1", {"work_status": "approved"})]

    results = ops.query_where("works", [("assigned_to", "==", student_id), ("is_active", "==", True)])

    assert results == [{"id": "w1", "work_status": "approved"}]
    assert query_ref.where.call_args_list[0].args == ("assigned_to", "==", str(student_id))
    assert query_ref.where.call_count == 2


def test_update_stamps_and_converts(ops):
    owner = uuid4()
    assert ops.update(collection_name="works", document_id="w1", updates={"unlocked_by": owner}) is True
    updates, = ops.db.collection.return_value.document.return_value.update.call_args.args
    assert updates["unlocked_by"] == str(owner)
    assert "updated_at" in updates


def test_update_failure_returns_false(ops):
    ops.db.collection.return_value.document.return_value.update.side_effect = RuntimeError("not found")
    assert ops.update(collection_name="works", document_id="w1", updates={"work_status": "completed"}) is False


def test_operations_without_database(ops):
    ops.db = None
    assert ops.get(collection_name="users", document_id="x") is None
    assert ops.query_where("users", [("role", "==", "student")]) == []
    assert ops.update(collection_name="users", document_id="x", updates={}) is False
    assert ops.delete(collection_name="users", document_id="x") is False
