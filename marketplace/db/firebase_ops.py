import logging
import os
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence, Tuple
from uuid import UUID

import firebase_admin
from firebase_admin import credentials, firestore
from pydantic import BaseModel as PydanticBaseModel # Alias Pydantic's BaseModel

from marketplace.core.config import get_settings

logger = logging.getLogger(__name__)


def to_firestore_value(value: Any) -> Any:
    """Recursively converts values Firestore cannot store (UUIDs, models) into plain types."""
    if isinstance(value, PydanticBaseModel):
        value = value.model_dump()
    if isinstance(value, UUID):
        return str(value)
    if isinstance(value, dict):
        return {key: to_firestore_value(item) for key, item in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [to_firestore_value(item) for item in value]
    return value


class FirebaseManager:
    """
    Firebase Firestore Manager for handling database operations
    """
    _instance = None
    _db = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super(FirebaseManager, cls).__new__(cls)
        return cls._instance

    def __init__(self):
        if self._db is None:
            self.initialize_firebase()

    def initialize_firebase(self):
        """Initialize Firebase Admin SDK"""
        settings = get_settings()
        options = {'projectId': settings.firebase_project_id} if settings.firebase_project_id else None
        try:
            try:
                app = firebase_admin.get_app()
                self._db = firestore.client(app)
                logger.info("Using existing Firebase app")
                return
            except ValueError:
                pass # App doesn't exist, so we need to initialize it

            service_account_path = os.path.abspath(settings.firebase_credentials_path)
            if os.path.exists(service_account_path):
                cred = credentials.Certificate(service_account_path)
                logger.info("Initializing Firebase with service account key from %s", service_account_path)
            else:
                cred = credentials.ApplicationDefault()
                logger.info("Initializing Firebase with application default credentials")
            firebase_admin.initialize_app(cred, options)

            self._db = firestore.client()
            logger.info("Firebase Firestore client initialized")
        except Exception as e:
            logger.error("Error initializing Firebase: %s", e)
            logger.error("Set FIREBASE_CREDENTIALS_PATH or GOOGLE_APPLICATION_CREDENTIALS to a service account key.")

    def get_db(self):
        """Get Firestore database client"""
        if self._db is None:
            logger.warning("Firestore DB client accessed before initialization or initialization failed.")
        return self._db


class FirestoreBaseModel:
    """
    Firestore database operations, adapted for Pydantic.

    Reads return None or [] and writes return None or False on failure;
    errors are logged rather than raised so routers decide the HTTP response.
    """

    def __init__(self):
        self.firebase_manager = FirebaseManager()
        self.db = self.firebase_manager.get_db()

    def _prepare_data_for_firestore(self, data_model: Any) -> Dict[str, Any]:
        """Converts Pydantic model or dict to Firestore-compatible dict."""
        if isinstance(data_model, PydanticBaseModel):
            data = data_model.model_dump(exclude_unset=True)
        elif isinstance(data_model, dict):
            data = data_model.copy()
        else:
            raise ValueError("Data must be a Pydantic model or a dictionary.")
        return to_firestore_value(data)

    @staticmethod
    def _to_result(doc, pydantic_model: Optional[type[PydanticBaseModel]]) -> Any:
        data = {'id': doc.id, **doc.to_dict()}
        if pydantic_model:
            return pydantic_model(**data)
        return data

    def save(self, collection_name: str, data_model: Any, document_id: Optional[str] = None) -> Optional[str]:
        """Save Pydantic model or dictionary to Firestore"""
        if not self.db:
            logger.error("Database not initialized")
            return None

        data = self._prepare_data_for_firestore(data_model)

        now = datetime.now(timezone.utc)
        data['updated_at'] = now
        if not document_id or not self.get(collection_name, document_id):
            if data.get('created_at') is None:
                data['created_at'] = now

        try:
            if document_id:
                doc_ref = self.db.collection(collection_name).document(document_id)
                doc_ref.set(data, merge=True)
                return document_id
            doc_ref = self.db.collection(collection_name).add(data)
            return doc_ref[1].id # add() returns a tuple (timestamp, DocumentReference)
        except Exception as e:
            logger.error("Error saving to Firestore collection '%s': %s", collection_name, e)
            return None

    def get(self, collection_name: str, document_id: str, pydantic_model: Optional[type[PydanticBaseModel]] = None) -> Optional[Any]:
        """Get document from Firestore by ID, optionally parsing into a Pydantic model."""
        if not self.db:
            logger.error("Database not initialized")
            return None

        try:
            doc = self.db.collection(collection_name).document(str(document_id)).get()
            if not doc.exists:
                return None
            data = doc.to_dict()
            if pydantic_model:
                return pydantic_model(**data)
            return data
        except Exception as e:
            logger.error("Error getting document '%s' from Firestore collection '%s': %s", document_id, collection_name, e)
            return None

    def get_all(self, collection_name: str, limit: Optional[int] = None, pydantic_model: Optional[type[PydanticBaseModel]] = None) -> List[Any]:
        """Get all documents from a collection, optionally parsing into Pydantic models."""
        if not self.db:
            logger.error("Database not initialized")
            return []

        try:
            collection_ref = self.db.collection(collection_name)
            if limit:
                docs_stream = collection_ref.limit(limit).stream()
            else:
                docs_stream = collection_ref.stream()
            return [self._to_result(doc, pydantic_model) for doc in docs_stream]
        except Exception as e:
            logger.error("Error getting documents from Firestore collection '%s': %s", collection_name, e)
            return []

    def query(self, collection_name: str, field: str, operator: str, value: Any, pydantic_model: Optional[type[PydanticBaseModel]] = None) -> List[Any]:
        """Query documents by field, optionally parsing into Pydantic models."""
        return self.query_where(collection_name, [(field, operator, value)], pydantic_model=pydantic_model)

    def query_where(self, collection_name: str, filters: Sequence[Tuple[str, str, Any]], pydantic_model: Optional[type[PydanticBaseModel]] = None) -> List[Any]:
        """Query documents matching every (field, operator, value) filter."""
        if not self.db:
            logger.error("Database not initialized")
            return []

        try:
            query_ref = self.db.collection(collection_name)
            for field, operator, value in filters:
                query_ref = query_ref.where(field, operator, to_firestore_value(value))
            return [self._to_result(doc, pydantic_model) for doc in query_ref.stream()]
        except Exception as e:
            logger.error("Error querying Firestore collection '%s': %s", collection_name, e)
            return []

    def update(self, collection_name: str, document_id: str, updates: Dict[str, Any]) -> bool:
        """Update specific fields in a document."""
        if not self.db:
            logger.error("Database not initialized")
            return False

        if not isinstance(updates, dict):
            logger.error("'updates' must be a dictionary.")
            return False

        try:
            updates_copy = to_firestore_value(updates)
            updates_copy['updated_at'] = datetime.now(timezone.utc)

            doc_ref = self.db.collection(collection_name).document(str(document_id))
            doc_ref.update(updates_copy)
            return True
        except Exception as e:
            logger.error("Error updating document '%s' in Firestore collection '%s': %s", document_id, collection_name, e)
            return False

    def delete(self, collection_name: str, document_id: str) -> bool:
        """Delete a document from Firestore."""
        if not self.db:
            logger.error("Database not initialized")
            return False

        try:
            self.db.collection(collection_name).document(str(document_id)).delete()
            return True
        except Exception as e:
            logger.error("Error deleting document '%s' from Firestore collection '%s': %s", document_id, collection_name, e)
            return False


def get_firestore_ops_instance():
    return FirestoreBaseModel()
