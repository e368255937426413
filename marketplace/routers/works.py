import logging
from fastapi import APIRouter, HTTPException, Depends, Query, status
from uuid import UUID
from typing import Optional

from marketplace.models.schemas import (
    ClientReviewCreate,
    ClientReviewResult,
    CompletionSubmissionCreate,
    Deliverables,
    PaymentDetailsCreate,
    PaymentProofCreate,
    PaymentVerificationDecision,
    PerformanceSummary,
    StatusBucket,
    StudentPaymentConfirmation,
    StudentReviewsResponse,
    User,
    Work,
    WorkList,
    WorkProgressChange,
    WorkStats,
    WorkStatusUpdate,
    WorkUpdateCreate,
)
from marketplace.db.firebase_ops import get_firestore_ops_instance, FirestoreBaseModel
from marketplace.core.config import get_settings
from marketplace.core.dependencies import oauth2_scheme, get_current_user
from marketplace.services import lifecycle
from marketplace.services import performance as performance_service
from marketplace.services.listing import paginate, sort_documents

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/works", tags=["Work Tracking"])

WORK_SORT_FIELDS = ["created_at", "updated_at", "quoted_price", "project_name", "expected_completion_date", "work_status"]


def _ensure_can_view(work: Work, user: User) -> None:
    if not lifecycle.can_view(work, user.user_id, user.role):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Access denied")


def _own_works(firestore_ops: FirestoreBaseModel, user: User):
    field = "assigned_to" if user.role == "student" else "assigned_by"
    works = firestore_ops.query(collection_name="works", field=field, operator="==", value=user.user_id,
                                pydantic_model=Work)
    return [w for w in works if w.is_active]


@router.get("/", response_model=WorkList)
async def list_my_works(
    status_filter: Optional[str] = Query(default=None, alias="status"),
    page: int = 1,
    limit: Optional[int] = None,
    sort_by: str = "created_at",
    sort_order: str = "desc",
    token: str = Depends(oauth2_scheme)
):
    firestore_ops: FirestoreBaseModel = get_firestore_ops_instance()
    current_user = get_current_user(firestore_ops, token)

    works = _own_works(firestore_ops, current_user)
    if status_filter:
        works = [w for w in works if w.work_status == status_filter]

    works = sort_documents(works, sort_by, sort_order, WORK_SORT_FIELDS)
    page_items, pagination = paginate(works, page, limit or get_settings().default_page_size)
    return WorkList(works=page_items, pagination=pagination)


@router.get("/stats", response_model=WorkStats)
async def get_work_stats(token: str = Depends(oauth2_scheme)):
    firestore_ops: FirestoreBaseModel = get_firestore_ops_instance()
    current_user = get_current_user(firestore_ops, token)

    works = _own_works(firestore_ops, current_user)
    by_status = {}
    progress_totals = {}
    for work in works:
        bucket = by_status.setdefault(work.work_status, StatusBucket())
        bucket.count += 1
        bucket.total_value += work.quoted_price
        progress_totals[work.work_status] = progress_totals.get(work.work_status, 0) + work.progress.percentage
    for work_status, bucket in by_status.items():
        bucket.average_progress = round(progress_totals[work_status] / bucket.count, 1)

    total = len(works)
    completed = by_status["completed"].count if "completed" in by_status else 0
    return WorkStats(
        by_status=by_status,
        total_works=total,
        total_value=sum(w.quoted_price for w in works),
        completion_rate=round(completed / total * 100, 1) if total else 0,
    )


@router.get("/{work_id}", response_model=Work)
async def get_work(work_id: UUID, token: str = Depends(oauth2_scheme)):
    firestore_ops: FirestoreBaseModel = get_firestore_ops_instance()
    current_user = get_current_user(firestore_ops, token)

    work = lifecycle.get_work_or_404(firestore_ops, work_id)
    _ensure_can_view(work, current_user)
    return work


@router.put("/{work_id}/status", response_model=Work)
async def update_work_status(
    work_id: UUID,
    status_in: WorkStatusUpdate,
    token: str = Depends(oauth2_scheme)
):
    firestore_ops: FirestoreBaseModel = get_firestore_ops_instance()
    current_user = get_current_user(firestore_ops, token)

    lifecycle.validate_work_status(status_in.status)
    if status_in.project_status:
        lifecycle.validate_project_status(status_in.project_status)
    work = lifecycle.get_work_or_404(firestore_ops, work_id)
    if not lifecycle.can_view(work, current_user.user_id, current_user.role):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN,
                            detail="You don't have permission to update this work record")

    if status_in.progress_update is not None:
        change = status_in.progress_update
        lifecycle.update_work_progress(work, change.percentage, current_user.user_id,
                                       change.description or f"Progress updated to {change.percentage}%")
    if work.work_status != status_in.status:
        lifecycle.change_work_status(work, status_in.status, current_user.user_id, status_in.reason)
    lifecycle.persist_work(firestore_ops, work)

    if status_in.project_status:
        lifecycle.sync_project_status(firestore_ops, work.project_id, status_in.project_status, current_user.user_id,
                                      f"Status updated via work progress to {status_in.project_status}")
    return work


@router.put("/{work_id}/progress", response_model=Work)
async def update_work_progress(
    work_id: UUID,
    progress_in: WorkProgressChange,
    token: str = Depends(oauth2_scheme)
):
    firestore_ops: FirestoreBaseModel = get_firestore_ops_instance()
    current_user = get_current_user(firestore_ops, token)

    if not 0 <= progress_in.percentage <= 100:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST,
                            detail="Progress percentage must be between 0 and 100")

    work = lifecycle.get_work_or_404(firestore_ops, work_id)
    if work.assigned_to != current_user.user_id:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN,
                            detail="Only the assigned student can update progress")

    lifecycle.update_work_progress(work, progress_in.percentage, current_user.user_id, progress_in.description)
    return lifecycle.persist_work(firestore_ops, work)


@router.post("/{work_id}/updates", response_model=Work, status_code=status.HTTP_201_CREATED)
async def add_work_update(
    work_id: UUID,
    update_in: WorkUpdateCreate,
    token: str = Depends(oauth2_scheme)
):
    firestore_ops: FirestoreBaseModel = get_firestore_ops_instance()
    current_user = get_current_user(firestore_ops, token)

    if not update_in.description.strip():
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Update description is required")

    work = lifecycle.get_work_or_404(firestore_ops, work_id)
    if current_user.user_id not in (work.assigned_to, work.assigned_by):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN,
                            detail="You don't have permission to add updates to this work record")

    lifecycle.add_work_update(work, update_in.update_type, update_in.description.strip(), current_user.user_id,
                              update_in.metadata)
    return lifecycle.persist_work(firestore_ops, work)


@router.post("/{work_id}/completion", response_model=Work)
async def submit_work_completion(
    work_id: UUID,
    submission_in: CompletionSubmissionCreate,
    token: str = Depends(oauth2_scheme)
):
    firestore_ops: FirestoreBaseModel = get_firestore_ops_instance()
    current_user = get_current_user(firestore_ops, token)

    work = lifecycle.get_work_or_404(firestore_ops, work_id)
    lifecycle.submit_completion(work, current_user.user_id, submission_in.completion_files,
                                submission_in.project_links, submission_in.submission_notes)
    return lifecycle.persist_work(firestore_ops, work)


@router.post("/{work_id}/payment-details", response_model=Work)
async def submit_student_payment_details(
    work_id: UUID,
    details_in: PaymentDetailsCreate,
    token: str = Depends(oauth2_scheme)
):
    firestore_ops: FirestoreBaseModel = get_firestore_ops_instance()
    current_user = get_current_user(firestore_ops, token)

    work = lifecycle.get_work_or_404(firestore_ops, work_id)
    lifecycle.submit_payment_details(work, current_user.user_id, details_in)
    return lifecycle.persist_work(firestore_ops, work)


@router.post("/{work_id}/payment-proof", response_model=Work)
async def submit_client_payment_proof(
    work_id: UUID,
    proof_in: PaymentProofCreate,
    token: str = Depends(oauth2_scheme)
):
    firestore_ops: FirestoreBaseModel = get_firestore_ops_instance()
    current_user = get_current_user(firestore_ops, token)

    work = lifecycle.get_work_or_404(firestore_ops, work_id)
    lifecycle.submit_payment_proof(work, current_user.user_id, proof_in)
    return lifecycle.persist_work(firestore_ops, work)


@router.put("/{work_id}/verify-payment", response_model=Work)
async def verify_payment_and_unlock(
    work_id: UUID,
    decision_in: PaymentVerificationDecision,
    token: str = Depends(oauth2_scheme)
):
    firestore_ops: FirestoreBaseModel = get_firestore_ops_instance()
    current_user = get_current_user(firestore_ops, token)
    if current_user.role != "admin":
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Only administrators can verify payments")

    work = lifecycle.get_work_or_404(firestore_ops, work_id)
    lifecycle.admin_verify_payment(work, current_user.user_id, decision_in.verification_status,
                                   decision_in.verification_notes)
    lifecycle.persist_work(firestore_ops, work)

    if decision_in.verification_status == "verified":
        lifecycle.sync_project_status(firestore_ops, work.project_id, "completed", current_user.user_id,
                                      "Payment verified by admin")
    return work


@router.put("/{work_id}/student-verify-payment", response_model=Work)
async def student_verify_payment_and_complete(
    work_id: UUID,
    confirmation_in: StudentPaymentConfirmation,
    token: str = Depends(oauth2_scheme)
):
    firestore_ops: FirestoreBaseModel = get_firestore_ops_instance()
    current_user = get_current_user(firestore_ops, token)

    work = lifecycle.get_work_or_404(firestore_ops, work_id)
    lifecycle.student_verify_payment(work, current_user.user_id, confirmation_in.verification_notes)
    lifecycle.persist_work(firestore_ops, work)

    lifecycle.sync_project_status(firestore_ops, work.project_id, "completed", current_user.user_id,
                                  "Work completed and payment verified")
    return work


@router.post("/{work_id}/client-review", response_model=ClientReviewResult)
async def add_client_review(
    work_id: UUID,
    review_in: ClientReviewCreate,
    token: str = Depends(oauth2_scheme)
):
    firestore_ops: FirestoreBaseModel = get_firestore_ops_instance()
    current_user = get_current_user(firestore_ops, token)

    work = lifecycle.get_work_or_404(firestore_ops, work_id)
    categories = {
        "technical_skills": review_in.skills,
        "communication_skills": review_in.communication,
        "punctuality": review_in.timeliness,
        "quality_of_work": review_in.quality,
        "problem_solving": review_in.problem_solving,
        "teamwork": review_in.teamwork,
    }
    lifecycle.record_client_review(work, current_user.user_id, review_in.rating, review_in.review_text, categories)
    lifecycle.persist_work(firestore_ops, work)

    performance, review = performance_service.apply_client_review(
        firestore_ops,
        student_id=work.assigned_to,
        work_id=work.work_id,
        reviewer=current_user,
        rating=review_in.rating,
        comment=review_in.review_text,
        skill_ratings=categories,
    )
    return ClientReviewResult(work=work, review=review, performance=performance_service.summary(performance))


@router.get("/{work_id}/deliverables", response_model=Deliverables)
async def get_secured_deliverables(work_id: UUID, token: str = Depends(oauth2_scheme)):
    firestore_ops: FirestoreBaseModel = get_firestore_ops_instance()
    current_user = get_current_user(firestore_ops, token)

    work = lifecycle.get_work_or_404(firestore_ops, work_id)
    _ensure_can_view(work, current_user)

    if work.delivery_access.is_locked and current_user.role != "admin":
        raise HTTPException(status_code=status.HTTP_423_LOCKED,
                            detail="Deliverables are locked until payment is verified")

    lifecycle.record_delivery_access(work, current_user.user_id, "viewed")
    if not firestore_ops.update(collection_name="works", document_id=str(work.work_id),
                                updates={"delivery_access": work.delivery_access.model_dump()}):
        logger.warning("Could not record deliverables access on work %s", work.work_id)

    submission = work.completion_submission
    return Deliverables(
        work_id=work.work_id,
        completion_files=submission.completion_files,
        project_links=submission.project_links,
        submitted_at=submission.submitted_at,
        submission_notes=submission.submission_notes,
        is_locked=work.delivery_access.is_locked,
    )


@router.get("/{work_id}/student-performance", response_model=PerformanceSummary)
async def get_student_performance(work_id: UUID, token: str = Depends(oauth2_scheme)):
    firestore_ops: FirestoreBaseModel = get_firestore_ops_instance()
    current_user = get_current_user(firestore_ops, token)

    work = lifecycle.get_work_or_404(firestore_ops, work_id)
    _ensure_can_view(work, current_user)
    return performance_service.summary(performance_service.get(firestore_ops, work.assigned_to))


@router.get("/{work_id}/all-student-reviews", response_model=StudentReviewsResponse)
async def get_all_student_reviews(work_id: UUID, token: str = Depends(oauth2_scheme)):
    firestore_ops: FirestoreBaseModel = get_firestore_ops_instance()
    current_user = get_current_user(firestore_ops, token)

    work = lifecycle.get_work_or_404(firestore_ops, work_id)
    _ensure_can_view(work, current_user)

    performance = performance_service.get(firestore_ops, work.assigned_to)
    reviews = sorted(performance.reviews, key=lambda r: r.review_date, reverse=True) if performance else []
    return StudentReviewsResponse(
        student_id=work.assigned_to,
        reviews=reviews,
        performance=performance_service.summary(performance),
    )
