import logging
from datetime import timedelta
from fastapi import APIRouter, HTTPException, Depends, Query, status
from uuid import UUID
from typing import List, Optional

from marketplace.models.schemas import (
    Communication,
    CommunicationCreate,
    ContactDetails,
    MESSAGE_TYPES,
    ObjectionCreate,
    ObjectionResolution,
    Project,
    ProjectCreate,
    ProjectList,
    ProjectProgressCreate,
    ProjectRejection,
    ProjectStats,
    ProjectStatusUpdate,
    ProgressNote,
    StatusBucket,
    StatusHistoryEntry,
    User,
    Work,
    utc_now,
)
from marketplace.db.firebase_ops import get_firestore_ops_instance, FirestoreBaseModel
from marketplace.core.config import get_settings
from marketplace.core.dependencies import oauth2_scheme, get_current_user, require_role
from marketplace.services import lifecycle
from marketplace.services import performance as performance_service
from marketplace.services.listing import paginate, sort_documents

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/projects", tags=["Projects"])

PROJECT_SORT_FIELDS = ["created_at", "updated_at", "quoted_price", "project_name", "expected_completion_date", "status"]


def _ensure_party(project: Project, user: User, allow_admin: bool = True) -> None:
    if allow_admin and user.role == "admin":
        return
    if user.user_id not in (project.assigned_to, project.assigned_by):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Access denied")


def _own_projects(firestore_ops: FirestoreBaseModel, user: User) -> List[Project]:
    field = "assigned_to" if user.role == "student" else "assigned_by"
    projects = firestore_ops.query(collection_name="projects", field=field, operator="==", value=user.user_id,
                                   pydantic_model=Project)
    return [p for p in projects if p.is_active]


@router.post("/", response_model=Project, status_code=status.HTTP_201_CREATED)
async def create_project(
    project_in: ProjectCreate,
    token: str = Depends(oauth2_scheme)
):
    firestore_ops: FirestoreBaseModel = get_firestore_ops_instance()
    current_user = get_current_user(firestore_ops, token)
    require_role(current_user, "client", "admin", detail="Only clients can create projects")

    student = firestore_ops.get(collection_name="users", document_id=str(project_in.assigned_to), pydantic_model=User)
    if not student or student.role != "student" or not student.is_active:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid student assignment")

    # Contact details required by the chosen communication preference
    preference = project_in.communication_preference
    given = project_in.contact_details
    contact_details = ContactDetails()
    if preference in ("phone", "whatsapp", "mixed"):
        if not given.phone_number:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST,
                                detail="Phone number is required for selected communication preference")
        contact_details.phone_number = given.phone_number
    if preference in ("email", "mixed"):
        contact_details.email_address = given.email_address or current_user.email
    if preference == "meeting":
        if not given.meeting_link:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST,
                                detail="Meeting link is required for online meeting preference")
        contact_details.meeting_link = given.meeting_link

    start = project_in.estimated_start_date or utc_now()
    project_to_save = Project(
        **project_in.model_dump(exclude={"contact_details"}),
        contact_details=contact_details,
        assigned_by=current_user.user_id,
        status="submitted",
        priority="high" if project_in.urgency == "urgent" else "medium",
        expected_completion_date=start + timedelta(days=project_in.completion_time),
        status_history=[
            StatusHistoryEntry(
                status="submitted",
                changed_by=current_user.user_id,
                reason="Initial project submission",
                notes="Project created and submitted to student",
            )
        ],
    )

    saved_project_id = firestore_ops.save(
        collection_name="projects",
        data_model=project_to_save.model_dump(),
        document_id=str(project_to_save.project_id)
    )
    if not saved_project_id:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Could not create project")

    if not performance_service.record_assigned_project(firestore_ops, project_to_save):
        logger.warning("Project %s saved but not recorded on student %s performance",
                       project_to_save.project_id, project_to_save.assigned_to)

    logger.info("Project %s assigned to student %s", project_to_save.project_id, project_to_save.assigned_to)
    return project_to_save


@router.get("/", response_model=ProjectList)
async def list_my_projects(
    status_filter: Optional[str] = Query(default=None, alias="status"),
    page: int = 1,
    limit: Optional[int] = None,
    sort_by: str = "created_at",
    sort_order: str = "desc",
    token: str = Depends(oauth2_scheme)
):
    firestore_ops: FirestoreBaseModel = get_firestore_ops_instance()
    current_user = get_current_user(firestore_ops, token)

    projects = _own_projects(firestore_ops, current_user)
    if status_filter:
        projects = [p for p in projects if p.status == status_filter]

    projects = sort_documents(projects, sort_by, sort_order, PROJECT_SORT_FIELDS)
    page_items, pagination = paginate(projects, page, limit or get_settings().default_page_size)
    return ProjectList(projects=page_items, pagination=pagination)


@router.get("/search", response_model=ProjectList)
async def search_projects(
    q: Optional[str] = None,
    category: Optional[str] = None,
    status_filter: Optional[str] = Query(default=None, alias="status"),
    min_price: Optional[float] = None,
    max_price: Optional[float] = None,
    page: int = 1,
    limit: Optional[int] = None,
    token: str = Depends(oauth2_scheme)
):
    firestore_ops: FirestoreBaseModel = get_firestore_ops_instance()
    current_user = get_current_user(firestore_ops, token)

    projects = _own_projects(firestore_ops, current_user)
    if q:
        needle = q.lower()
        projects = [
            p for p in projects
            if needle in p.project_name.lower()
            or needle in p.project_description.lower()
            or needle in p.requirements.lower()
        ]
    if category:
        projects = [p for p in projects if p.service_category == category]
    if status_filter:
        projects = [p for p in projects if p.status == status_filter]
    if min_price is not None:
        projects = [p for p in projects if p.quoted_price >= min_price]
    if max_price is not None:
        projects = [p for p in projects if p.quoted_price <= max_price]

    projects = sort_documents(projects, "created_at", "desc", PROJECT_SORT_FIELDS)
    page_items, pagination = paginate(projects, page, limit or get_settings().default_page_size)
    return ProjectList(projects=page_items, pagination=pagination)


@router.get("/stats", response_model=ProjectStats)
async def get_project_stats(token: str = Depends(oauth2_scheme)):
    firestore_ops: FirestoreBaseModel = get_firestore_ops_instance()
    current_user = get_current_user(firestore_ops, token)

    projects = _own_projects(firestore_ops, current_user)
    by_status = {}
    for project in projects:
        bucket = by_status.setdefault(project.status, StatusBucket())
        bucket.count += 1
        bucket.total_value += project.quoted_price

    completed_value = by_status["completed"].total_value if "completed" in by_status else 0
    stats = ProjectStats(by_status=by_status, total_projects=len(projects))
    if current_user.role == "student":
        stats.total_earnings = completed_value
    else:
        stats.total_spent = completed_value
    return stats


@router.get("/{project_id}", response_model=Project)
async def get_project(project_id: UUID, token: str = Depends(oauth2_scheme)):
    firestore_ops: FirestoreBaseModel = get_firestore_ops_instance()
    current_user = get_current_user(firestore_ops, token)

    project = lifecycle.get_project_or_404(firestore_ops, project_id)
    _ensure_party(project, current_user)
    return project


@router.put("/{project_id}/status", response_model=Project)
async def update_project_status(
    project_id: UUID,
    status_in: ProjectStatusUpdate,
    token: str = Depends(oauth2_scheme)
):
    firestore_ops: FirestoreBaseModel = get_firestore_ops_instance()
    current_user = get_current_user(firestore_ops, token)

    lifecycle.validate_project_status(status_in.status)
    project = lifecycle.get_project_or_404(firestore_ops, project_id)
    _ensure_party(project, current_user)

    lifecycle.record_project_status(project, status_in.status, current_user.user_id, status_in.reason, status_in.notes)
    lifecycle.persist_project(firestore_ops, project)

    if not performance_service.sync_project_status(firestore_ops, project.assigned_to, project.project_id, project.status):
        logger.warning("Could not sync performance entry for project %s", project_id)
    return project


@router.post("/{project_id}/progress", response_model=Project)
async def add_progress_update(
    project_id: UUID,
    progress_in: ProjectProgressCreate,
    token: str = Depends(oauth2_scheme)
):
    firestore_ops: FirestoreBaseModel = get_firestore_ops_instance()
    current_user = get_current_user(firestore_ops, token)

    if not progress_in.message.strip():
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Message is required")

    project = lifecycle.get_project_or_404(firestore_ops, project_id)
    _ensure_party(project, current_user, allow_admin=False)

    project.progress.updates.append(ProgressNote(update_by=current_user.user_id, message=progress_in.message))
    if progress_in.percentage is not None:
        project.progress.percentage = min(100, max(0, progress_in.percentage))
    return lifecycle.persist_project(firestore_ops, project)


@router.post("/{project_id}/communications", response_model=Communication, status_code=status.HTTP_201_CREATED)
async def add_communication(
    project_id: UUID,
    message_in: CommunicationCreate,
    token: str = Depends(oauth2_scheme)
):
    firestore_ops: FirestoreBaseModel = get_firestore_ops_instance()
    current_user = get_current_user(firestore_ops, token)

    if not message_in.message.strip():
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Message is required")
    if len(message_in.message) > 1000:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Message cannot exceed 1000 characters")
    if message_in.message_type not in MESSAGE_TYPES:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid message type")

    project = lifecycle.get_project_or_404(firestore_ops, project_id)
    if project.status == "cancelled":
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST,
                            detail="Communication is disabled for cancelled projects")
    _ensure_party(project, current_user, allow_admin=False)

    receiver = project.assigned_by if current_user.user_id == project.assigned_to else project.assigned_to
    communication = Communication(
        sender=current_user.user_id,
        receiver=receiver,
        message=message_in.message.strip(),
        message_type=message_in.message_type,
    )
    project.communications.append(communication)
    lifecycle.persist_project(firestore_ops, project)
    return communication


@router.get("/{project_id}/communications", response_model=List[Communication])
async def list_communications(project_id: UUID, token: str = Depends(oauth2_scheme)):
    firestore_ops: FirestoreBaseModel = get_firestore_ops_instance()
    current_user = get_current_user(firestore_ops, token)

    project = lifecycle.get_project_or_404(firestore_ops, project_id)
    _ensure_party(project, current_user)
    return sorted(project.communications, key=lambda c: c.timestamp)


@router.patch("/{project_id}/communications/{communication_id}/read", response_model=Communication)
async def mark_communication_read(
    project_id: UUID,
    communication_id: UUID,
    token: str = Depends(oauth2_scheme)
):
    firestore_ops: FirestoreBaseModel = get_firestore_ops_instance()
    current_user = get_current_user(firestore_ops, token)

    project = lifecycle.get_project_or_404(firestore_ops, project_id)
    _ensure_party(project, current_user, allow_admin=False)

    communication = next((c for c in project.communications if c.communication_id == communication_id), None)
    if communication is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Communication not found")
    if communication.receiver != current_user.user_id:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN,
                            detail="Only the receiver can mark a message as read")

    communication.is_read = True
    lifecycle.persist_project(firestore_ops, project)
    return communication


@router.post("/{project_id}/objection", response_model=Project)
async def raise_objection(
    project_id: UUID,
    objection_in: ObjectionCreate,
    token: str = Depends(oauth2_scheme)
):
    firestore_ops: FirestoreBaseModel = get_firestore_ops_instance()
    current_user = get_current_user(firestore_ops, token)

    project = lifecycle.get_project_or_404(firestore_ops, project_id)
    lifecycle.raise_objection(project, current_user.user_id, objection_in.reason, objection_in.message)
    return lifecycle.persist_project(firestore_ops, project)


@router.patch("/{project_id}/objection/resolve", response_model=Project)
async def resolve_objection(
    project_id: UUID,
    resolution_in: ObjectionResolution,
    token: str = Depends(oauth2_scheme)
):
    firestore_ops: FirestoreBaseModel = get_firestore_ops_instance()
    current_user = get_current_user(firestore_ops, token)

    project = lifecycle.get_project_or_404(firestore_ops, project_id)
    lifecycle.resolve_objection(project, current_user.user_id, resolution_in.resolution_message,
                                resolution_in.updated_project_data)
    return lifecycle.persist_project(firestore_ops, project)


@router.post("/{project_id}/reject", response_model=Project)
async def reject_project(
    project_id: UUID,
    rejection_in: ProjectRejection,
    token: str = Depends(oauth2_scheme)
):
    firestore_ops: FirestoreBaseModel = get_firestore_ops_instance()
    current_user = get_current_user(firestore_ops, token)

    project = lifecycle.get_project_or_404(firestore_ops, project_id)
    lifecycle.reject_project(project, current_user.user_id, rejection_in.reason, rejection_in.message,
                             rejection_in.custom_reason)
    return lifecycle.persist_project(firestore_ops, project)


@router.delete("/{project_id}")
async def delete_project(project_id: UUID, token: str = Depends(oauth2_scheme)):
    firestore_ops: FirestoreBaseModel = get_firestore_ops_instance()
    current_user = get_current_user(firestore_ops, token)

    project = lifecycle.get_project_or_404(firestore_ops, project_id)
    if current_user.role != "admin" and current_user.user_id != project.assigned_by:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Access denied")

    # Projects with work under way are archived rather than removed
    if project.status in ("in_progress", "accepted"):
        updates = {"archived": True, "archived_date": utc_now()}
        message = "Project archived successfully"
    else:
        updates = {"is_active": False}
        message = "Project deleted successfully"

    if not firestore_ops.update(collection_name="projects", document_id=str(project_id), updates=updates):
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Could not delete project")
    return {"message": message, "project_id": str(project_id)}


@router.post("/{project_id}/work", response_model=Work, status_code=status.HTTP_201_CREATED)
async def create_work_record(project_id: UUID, token: str = Depends(oauth2_scheme)):
    firestore_ops: FirestoreBaseModel = get_firestore_ops_instance()
    current_user = get_current_user(firestore_ops, token)

    project = lifecycle.get_project_or_404(firestore_ops, project_id)
    work = lifecycle.build_work_from_project(project, current_user.user_id)

    if firestore_ops.query(collection_name="works", field="project_id", operator="==", value=project_id):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Work record already exists for this project")

    saved_work_id = firestore_ops.save(collection_name="works", data_model=work.model_dump(), document_id=str(work.work_id))
    if not saved_work_id:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Could not create work record")

    logger.info("Work %s created for project %s", work.work_id, project_id)
    return work


@router.get("/{project_id}/work", response_model=Work)
async def get_project_work(project_id: UUID, token: str = Depends(oauth2_scheme)):
    firestore_ops: FirestoreBaseModel = get_firestore_ops_instance()
    current_user = get_current_user(firestore_ops, token)

    project = lifecycle.get_project_or_404(firestore_ops, project_id)
    _ensure_party(project, current_user)

    works = firestore_ops.query(collection_name="works", field="project_id", operator="==", value=project_id,
                                pydantic_model=Work)
    if not works:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Work record not found for this project")
    return works[0]
