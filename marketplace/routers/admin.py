"""
Admin oversight: user management, project/work status overrides and
student performance records. Every route requires the admin role.
"""

import logging
from datetime import datetime, timezone
from fastapi import APIRouter, HTTPException, Depends, Query, status
from uuid import UUID
from typing import Optional

from marketplace.models.schemas import (
    ACHIEVEMENT_TYPES,
    Achievement,
    AchievementCreate,
    AdminReviewCreate,
    AdminStatusUpdate,
    AdminUserUpdate,
    AssignProjectRequest,
    AssignedProject,
    MetricsUpdate,
    PRIORITIES,
    PROJECT_STATUSES,
    Project,
    ProjectDetail,
    ProjectList,
    RoleUpdate,
    StudentPerformance,
    TerminationRequest,
    USER_ROLES,
    User,
    UserList,
    Work,
    WorkList,
)
from marketplace.db.firebase_ops import get_firestore_ops_instance, FirestoreBaseModel
from marketplace.core.config import get_settings
from marketplace.core.dependencies import oauth2_scheme, get_current_user, require_admin
from marketplace.services import lifecycle
from marketplace.services import performance as performance_service
from marketplace.services.listing import paginate, sort_documents

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin", tags=["Admin"])

USER_SORT_FIELDS = ["registration_date", "username", "email", "last_login_date"]
PROJECT_SORT_FIELDS = ["created_at", "updated_at", "quoted_price", "project_name", "status"]
WORK_SORT_FIELDS = ["created_at", "updated_at", "quoted_price", "project_name", "work_status"]

# Placeholder the profile forms send for a blank field
UNSPECIFIED_PROFILE_FIELDS = ["year", "college", "degree", "course"]


def _admin(firestore_ops: FirestoreBaseModel, token: str) -> User:
    current_user = get_current_user(firestore_ops, token)
    require_admin(current_user)
    return current_user


def _get_user_or_404(firestore_ops: FirestoreBaseModel, user_id: UUID) -> User:
    user = firestore_ops.get(collection_name="users", document_id=str(user_id), pydantic_model=User)
    if not user:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")
    return user


def _get_student_or_404(firestore_ops: FirestoreBaseModel, student_id: UUID) -> User:
    student = _get_user_or_404(firestore_ops, student_id)
    if student.role != "student":
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Student not found")
    return student


def _ensure_unique(firestore_ops: FirestoreBaseModel, field: str, value: str, user_id: UUID):
    for found in firestore_ops.query(collection_name="users", field=field, operator="==", value=value):
        if found.get("user_id") != str(user_id):
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=f"{field.capitalize()} already in use")


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _in_date_range(value: Optional[datetime], date_from: Optional[datetime], date_to: Optional[datetime]) -> bool:
    if value is None:
        return not (date_from or date_to)
    value, date_from, date_to = _as_utc(value), _as_utc(date_from), _as_utc(date_to)
    if date_from and value < date_from:
        return False
    if date_to and value > date_to:
        return False
    return True


def _save_performance(firestore_ops: FirestoreBaseModel, performance: StudentPerformance) -> StudentPerformance:
    if not performance_service.save(firestore_ops, performance):
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Could not save student performance")
    return performance


# --- Users ---

@router.get("/users", response_model=UserList)
async def list_users(
    role: Optional[str] = None,
    status_filter: Optional[str] = Query(default=None, alias="status"),
    search: Optional[str] = None,
    sort_by: str = "registration_date",
    sort_order: str = "desc",
    page: int = 1,
    limit: Optional[int] = None,
    token: str = Depends(oauth2_scheme)
):
    firestore_ops: FirestoreBaseModel = get_firestore_ops_instance()
    _admin(firestore_ops, token)

    users = firestore_ops.get_all(collection_name="users", pydantic_model=User)
    if role and role != "all":
        users = [u for u in users if u.role == role]
    if status_filter in ("active", "inactive"):
        users = [u for u in users if u.is_active == (status_filter == "active")]
    if search:
        needle = search.lower()
        users = [u for u in users if needle in u.username.lower() or needle in u.email.lower()
                 or needle in u.full_name.lower()]

    users = sort_documents(users, sort_by, sort_order, USER_SORT_FIELDS)
    page_items, pagination = paginate(users, page, limit or get_settings().default_page_size)
    return UserList(users=page_items, pagination=pagination)


@router.get("/users/{user_id}", response_model=User)
async def get_user(user_id: UUID, token: str = Depends(oauth2_scheme)):
    firestore_ops: FirestoreBaseModel = get_firestore_ops_instance()
    _admin(firestore_ops, token)
    return _get_user_or_404(firestore_ops, user_id)


@router.put("/users/{user_id}", response_model=User)
async def update_user(user_id: UUID, user_in: AdminUserUpdate, token: str = Depends(oauth2_scheme)):
    """
    Edits a user's account and profile fields. Password, identifiers and
    timestamps are not part of the request body and are left untouched;
    role and activation have their own endpoints.
    """
    firestore_ops: FirestoreBaseModel = get_firestore_ops_instance()
    admin = _admin(firestore_ops, token)

    user = _get_user_or_404(firestore_ops, user_id)
    updates = user_in.model_dump(exclude_unset=True)
    if not updates:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="No user fields provided")

    for field in ("username", "email", "full_name"):
        if field in updates and not (updates[field] or "").strip():
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=f"{field} cannot be empty")
    for field in UNSPECIFIED_PROFILE_FIELDS:
        if updates.get(field) == "Not specified":
            updates[field] = ""

    if "email" in updates:
        updates["email"] = updates["email"].lower()
        _ensure_unique(firestore_ops, "email", updates["email"], user_id)
    if "username" in updates:
        _ensure_unique(firestore_ops, "username", updates["username"], user_id)

    if not firestore_ops.update(collection_name="users", document_id=str(user_id), updates=updates):
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Could not update user")

    logger.info("Admin %s updated user %s: %s", admin.user_id, user_id, ", ".join(sorted(updates)))
    return user.model_copy(update=updates)


@router.patch("/users/{user_id}/toggle-status", response_model=User)
async def toggle_user_status(user_id: UUID, token: str = Depends(oauth2_scheme)):
    firestore_ops: FirestoreBaseModel = get_firestore_ops_instance()
    admin = _admin(firestore_ops, token)

    if user_id == admin.user_id:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Cannot change your own status")

    user = _get_user_or_404(firestore_ops, user_id)
    user.is_active = not user.is_active
    if not firestore_ops.update(collection_name="users", document_id=str(user_id), updates={"is_active": user.is_active}):
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Could not update user status")

    logger.info("Admin %s %s user %s", admin.user_id, "activated" if user.is_active else "deactivated", user_id)
    return user


@router.patch("/users/{user_id}/role", response_model=User)
async def update_user_role(user_id: UUID, role_in: RoleUpdate, token: str = Depends(oauth2_scheme)):
    firestore_ops: FirestoreBaseModel = get_firestore_ops_instance()
    admin = _admin(firestore_ops, token)

    if role_in.role not in USER_ROLES:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid role specified")
    if user_id == admin.user_id:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Cannot change your own role")

    user = _get_user_or_404(firestore_ops, user_id)
    user.role = role_in.role
    if not firestore_ops.update(collection_name="users", document_id=str(user_id), updates={"role": user.role}):
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Could not update user role")
    return user


@router.delete("/users/{user_id}")
async def delete_user(user_id: UUID, token: str = Depends(oauth2_scheme)):
    firestore_ops: FirestoreBaseModel = get_firestore_ops_instance()
    admin = _admin(firestore_ops, token)

    if user_id == admin.user_id:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Cannot delete your own account")

    user = _get_user_or_404(firestore_ops, user_id)
    if not firestore_ops.delete(collection_name="users", document_id=str(user_id)):
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Could not delete user")
    return {"message": "User deleted successfully", "user_id": str(user_id), "username": user.username}


# --- Projects and works ---

@router.get("/projects", response_model=ProjectList)
async def list_all_projects(
    status_filter: Optional[str] = Query(default=None, alias="status"),
    service_category: Optional[str] = None,
    search: Optional[str] = None,
    date_from: Optional[datetime] = None,
    date_to: Optional[datetime] = None,
    sort_by: str = "created_at",
    sort_order: str = "desc",
    page: int = 1,
    limit: Optional[int] = None,
    token: str = Depends(oauth2_scheme)
):
    firestore_ops: FirestoreBaseModel = get_firestore_ops_instance()
    _admin(firestore_ops, token)

    projects = firestore_ops.query(collection_name="projects", field="is_active", operator="==", value=True,
                                   pydantic_model=Project)
    if status_filter:
        projects = [p for p in projects if p.status == status_filter]
    if service_category:
        projects = [p for p in projects if p.service_category == service_category]
    if search:
        needle = search.lower()
        projects = [p for p in projects if needle in p.project_name.lower() or needle in p.project_description.lower()]
    if date_from or date_to:
        projects = [p for p in projects if _in_date_range(p.created_at, date_from, date_to)]

    projects = sort_documents(projects, sort_by, sort_order, PROJECT_SORT_FIELDS)
    page_items, pagination = paginate(projects, page, limit or get_settings().default_page_size)
    return ProjectList(projects=page_items, pagination=pagination)


@router.get("/projects/{project_id}", response_model=ProjectDetail)
async def get_project_details(project_id: UUID, token: str = Depends(oauth2_scheme)):
    firestore_ops: FirestoreBaseModel = get_firestore_ops_instance()
    _admin(firestore_ops, token)

    project = lifecycle.get_project_or_404(firestore_ops, project_id)
    works = firestore_ops.query(collection_name="works", field="project_id", operator="==", value=project_id,
                                pydantic_model=Work)
    return ProjectDetail(project=project, work=works[0] if works else None)


@router.put("/projects/{project_id}/status", response_model=Project)
async def override_project_status(project_id: UUID, status_in: AdminStatusUpdate, token: str = Depends(oauth2_scheme)):
    firestore_ops: FirestoreBaseModel = get_firestore_ops_instance()
    admin = _admin(firestore_ops, token)

    if status_in.status not in PROJECT_STATUSES:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid project status")

    project = lifecycle.get_project_or_404(firestore_ops, project_id)
    lifecycle.record_project_status(project, status_in.status, admin.user_id,
                                    status_in.reason or "Status updated by admin", status_in.notes)
    lifecycle.persist_project(firestore_ops, project)

    if not performance_service.sync_project_status(firestore_ops, project.assigned_to, project.project_id, project.status):
        logger.warning("Could not sync performance entry for project %s", project_id)
    return project


@router.get("/works", response_model=WorkList)
async def list_all_works(
    work_status: Optional[str] = None,
    service_category: Optional[str] = None,
    search: Optional[str] = None,
    date_from: Optional[datetime] = None,
    date_to: Optional[datetime] = None,
    sort_by: str = "created_at",
    sort_order: str = "desc",
    page: int = 1,
    limit: Optional[int] = None,
    token: str = Depends(oauth2_scheme)
):
    firestore_ops: FirestoreBaseModel = get_firestore_ops_instance()
    _admin(firestore_ops, token)

    works = firestore_ops.query(collection_name="works", field="is_active", operator="==", value=True,
                                pydantic_model=Work)
    if work_status:
        works = [w for w in works if w.work_status == work_status]
    if service_category:
        works = [w for w in works if w.service_category == service_category]
    if search:
        needle = search.lower()
        works = [w for w in works if needle in w.project_name.lower() or needle in w.project_description.lower()]
    if date_from or date_to:
        works = [w for w in works if _in_date_range(w.created_at, date_from, date_to)]

    works = sort_documents(works, sort_by, sort_order, WORK_SORT_FIELDS)
    page_items, pagination = paginate(works, page, limit or get_settings().default_page_size)
    return WorkList(works=page_items, pagination=pagination)


@router.get("/works/{work_id}", response_model=Work)
async def get_work_details(work_id: UUID, token: str = Depends(oauth2_scheme)):
    firestore_ops: FirestoreBaseModel = get_firestore_ops_instance()
    _admin(firestore_ops, token)
    return lifecycle.get_work_or_404(firestore_ops, work_id)


@router.put("/works/{work_id}/status", response_model=Work)
async def override_work_status(work_id: UUID, status_in: AdminStatusUpdate, token: str = Depends(oauth2_scheme)):
    firestore_ops: FirestoreBaseModel = get_firestore_ops_instance()
    admin = _admin(firestore_ops, token)

    lifecycle.validate_work_status(status_in.status)
    work = lifecycle.get_work_or_404(firestore_ops, work_id)

    lifecycle.change_work_status(work, status_in.status, admin.user_id, status_in.reason or "Status updated by admin")
    lifecycle.align_delivery_lock(work, admin.user_id)
    if status_in.notes:
        lifecycle.add_work_update(work, "admin_note", status_in.notes, admin.user_id, {"is_admin_update": True})
    return lifecycle.persist_work(firestore_ops, work)


# --- Student performance ---

@router.get("/students/{student_id}/performance", response_model=StudentPerformance)
async def get_student_performance(student_id: UUID, token: str = Depends(oauth2_scheme)):
    firestore_ops: FirestoreBaseModel = get_firestore_ops_instance()
    _admin(firestore_ops, token)

    _get_student_or_404(firestore_ops, student_id)
    return performance_service.recalculate(performance_service.get_or_create(firestore_ops, student_id))


@router.get("/students/{student_id}/work-records", response_model=WorkList)
async def get_student_work_records(
    student_id: UUID,
    work_status: Optional[str] = None,
    sort_by: str = "created_at",
    sort_order: str = "desc",
    page: int = 1,
    limit: Optional[int] = None,
    token: str = Depends(oauth2_scheme)
):
    firestore_ops: FirestoreBaseModel = get_firestore_ops_instance()
    _admin(firestore_ops, token)

    # Terminated students keep their work history after moving back to the client role
    _get_user_or_404(firestore_ops, student_id)
    works = firestore_ops.query_where(
        collection_name="works",
        filters=[("assigned_to", "==", student_id), ("is_active", "==", True)],
        pydantic_model=Work,
    )
    if work_status:
        works = [w for w in works if w.work_status == work_status]

    works = sort_documents(works, sort_by, sort_order, WORK_SORT_FIELDS)
    page_items, pagination = paginate(works, page, limit or get_settings().default_page_size)
    return WorkList(works=page_items, pagination=pagination)


@router.post("/students/{student_id}/terminate", response_model=StudentPerformance)
async def terminate_student(student_id: UUID, termination_in: TerminationRequest, token: str = Depends(oauth2_scheme)):
    firestore_ops: FirestoreBaseModel = get_firestore_ops_instance()
    admin = _admin(firestore_ops, token)

    if not termination_in.reason.strip():
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Termination reason is required")

    # Terminated students may already have been moved back to the client role
    _get_user_or_404(firestore_ops, student_id)
    performance = performance_service.get_or_create(firestore_ops, student_id)
    performance_service.terminate(performance, admin.user_id, termination_in.reason,
                                  termination_in.can_reapply, termination_in.reapply_date)
    _save_performance(firestore_ops, performance)

    if not firestore_ops.update(collection_name="users", document_id=str(student_id), updates={"role": "client"}):
        logger.warning("Student %s terminated but role was not reset", student_id)

    logger.info("Admin %s terminated student %s", admin.user_id, student_id)
    return performance


@router.post("/students/{student_id}/assign-project", response_model=StudentPerformance)
async def assign_project_to_student(student_id: UUID, assignment_in: AssignProjectRequest, token: str = Depends(oauth2_scheme)):
    firestore_ops: FirestoreBaseModel = get_firestore_ops_instance()
    admin = _admin(firestore_ops, token)

    if not assignment_in.title.strip():
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Project title is required")
    if assignment_in.priority not in PRIORITIES:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid project priority")

    _get_student_or_404(firestore_ops, student_id)
    performance = performance_service.get_or_create(firestore_ops, student_id)
    performance.projects.assigned.append(
        AssignedProject(
            title=assignment_in.title.strip(),
            description=(assignment_in.description or "").strip(),
            due_date=assignment_in.due_date,
            priority=assignment_in.priority,
            assigned_by=admin.user_id,
        )
    )
    return _save_performance(firestore_ops, performance)


@router.post("/students/{student_id}/add-review", response_model=StudentPerformance)
async def add_student_review(student_id: UUID, review_in: AdminReviewCreate, token: str = Depends(oauth2_scheme)):
    firestore_ops: FirestoreBaseModel = get_firestore_ops_instance()
    admin = _admin(firestore_ops, token)

    if not 1 <= review_in.rating <= 5:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Rating must be between 1 and 5")
    if not review_in.comment.strip():
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Review comment is required")

    _get_student_or_404(firestore_ops, student_id)
    performance = performance_service.get_or_create(firestore_ops, student_id)
    performance_service.add_review(performance, admin, review_in.rating, review_in.comment, review_in.tags,
                                   review_in.project_related)
    return _save_performance(firestore_ops, performance)


@router.put("/students/{student_id}/performance-metrics", response_model=StudentPerformance)
async def update_performance_metrics(student_id: UUID, metrics_in: MetricsUpdate, token: str = Depends(oauth2_scheme)):
    firestore_ops: FirestoreBaseModel = get_firestore_ops_instance()
    _admin(firestore_ops, token)

    values = metrics_in.model_dump(exclude_none=True)
    for key, value in values.items():
        if not 0 <= value <= 5:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=f"{key} rating must be between 0 and 5")

    _get_student_or_404(firestore_ops, student_id)
    performance = performance_service.get_or_create(firestore_ops, student_id)
    performance_service.update_metrics(performance, values)
    return _save_performance(firestore_ops, performance)


@router.post("/students/{student_id}/achievements", response_model=StudentPerformance)
async def award_achievement(student_id: UUID, achievement_in: AchievementCreate, token: str = Depends(oauth2_scheme)):
    firestore_ops: FirestoreBaseModel = get_firestore_ops_instance()
    _admin(firestore_ops, token)

    if not achievement_in.title.strip():
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Achievement title is required")
    if achievement_in.type not in ACHIEVEMENT_TYPES:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid achievement type")
    if achievement_in.points < 0:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Achievement points cannot be negative")

    _get_student_or_404(firestore_ops, student_id)
    performance = performance_service.get_or_create(firestore_ops, student_id)
    performance_service.award_achievement(performance, Achievement(
        title=achievement_in.title.strip(),
        description=achievement_in.description,
        type=achievement_in.type,
        points=achievement_in.points,
    ))
    return _save_performance(firestore_ops, performance)
