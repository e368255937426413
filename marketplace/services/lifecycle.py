"""
Project and Work lifecycle transitions.

Functions here mutate the given Project/Work model in place and raise
HTTPException when a transition is not allowed; callers persist the result.
The Work record moves through:

    approved -> ... -> completion_submitted -> payment_pending
        -> payment_submitted -> payment_verified | completed -> delivered

Delivery stays locked until a payment is verified, either by the admin or by
the student who received it.
"""

import logging
import re
from datetime import timedelta
from typing import Any, Dict, List, Optional
from uuid import UUID

from fastapi import HTTPException, status

from marketplace.db.firebase_ops import FirestoreBaseModel
from marketplace.models.schemas import (
    AccessEntry,
    COMPLETION_ALLOWED_STATUSES,
    DOCUMENT_SERVICES,
    FileReference,
    LINK_TYPES,
    ObjectionDetails,
    PROJECT_STATUSES,
    PaymentDetailsCreate,
    PaymentProofCreate,
    PaymentVerification,
    Project,
    ProjectFieldsUpdate,
    ProjectLink,
    REJECTION_REASONS,
    RejectionDetails,
    StatusHistoryEntry,
    StudentPaymentDetails,
    VERIFICATION_DECISIONS,
    WORK_STATUSES,
    WORK_UPDATE_TYPES,
    Work,
    WorkUpdate,
    utc_now,
)
from marketplace.services import performance as performance_service

logger = logging.getLogger(__name__)

UPI_PHONE_PATTERN = re.compile(r"^\d{10}$")

# Statuses reached only once payment has been verified
PAID_WORK_STATUSES = ("payment_verified", "completed", "delivered")


def _bad_request(detail: str) -> HTTPException:
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=detail)


def _forbidden(detail: str) -> HTTPException:
    return HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=detail)


def get_project_or_404(firestore_ops: FirestoreBaseModel, project_id: UUID) -> Project:
    project = firestore_ops.get(collection_name="projects", document_id=str(project_id), pydantic_model=Project)
    if not project:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Project not found")
    return project


def get_work_or_404(firestore_ops: FirestoreBaseModel, work_id: UUID) -> Work:
    work = firestore_ops.get(collection_name="works", document_id=str(work_id), pydantic_model=Work)
    if not work:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Work record not found")
    return work


def persist_project(firestore_ops: FirestoreBaseModel, project: Project) -> Project:
    if not firestore_ops.update(collection_name="projects", document_id=str(project.project_id),
                                updates=project.model_dump(exclude={"updated_at"})):
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Could not update project")
    return project


def persist_work(firestore_ops: FirestoreBaseModel, work: Work) -> Work:
    if not firestore_ops.update(collection_name="works", document_id=str(work.work_id),
                                updates=work.model_dump(exclude={"updated_at"})):
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Could not update work record")
    return work


# --- Projects ---

def validate_project_status(new_status: str) -> None:
    if new_status not in PROJECT_STATUSES:
        raise _bad_request("Invalid status value")


def record_project_status(project: Project, new_status: str, changed_by: Optional[UUID],
                          reason: Optional[str] = None, notes: Optional[str] = None) -> Project:
    project.status_history.append(
        StatusHistoryEntry(status=new_status, changed_by=changed_by, reason=reason, notes=notes)
    )
    project.status = new_status
    if new_status == "completed":
        project.actual_completion_date = utc_now()
        project.progress.percentage = 100
    return project


def raise_objection(project: Project, student_id: UUID, reason: str, message: str) -> Project:
    if not reason.strip() or not message.strip():
        raise _bad_request("Objection reason and message are required")
    if project.assigned_to != student_id:
        raise _forbidden("You don't have permission to raise objection for this project")
    if project.rejection_details.is_rejected:
        raise _bad_request("Cannot raise objection for a rejected project")

    project.objection_details = ObjectionDetails(
        has_objection=True,
        objection_reason=reason,
        objection_message=message,
        objection_date=utc_now(),
        objection_by=student_id,
    )
    return record_project_status(project, "pending", student_id, "Student raised objection",
                                 f"Objection: {reason} - {message}")


def resolve_objection(project: Project, client_id: UUID, resolution_message: str,
                      updated_fields: Optional[ProjectFieldsUpdate] = None) -> Project:
    if not resolution_message.strip():
        raise _bad_request("Resolution message is required")
    if project.assigned_by != client_id:
        raise _forbidden("You don't have permission to resolve objection for this project")
    objection = project.objection_details
    if not objection.has_objection or objection.resolved:
        raise _bad_request("No active objection found for this project")

    if updated_fields is not None:
        for field, value in updated_fields.model_dump(exclude_none=True).items():
            setattr(project, field, value)
        project.status_history.append(
            StatusHistoryEntry(
                status=project.status,
                changed_by=client_id,
                reason="Project updated during objection resolution",
                notes="Client updated project details to address student's objection",
            )
        )

    objection.resolved = True
    objection.resolved_date = utc_now()
    objection.resolution_message = resolution_message
    return record_project_status(project, "submitted", client_id, "Objection resolved by client", resolution_message)


def reject_project(project: Project, student_id: UUID, reason: str, message: str,
                   custom_reason: Optional[str] = None) -> Project:
    if not reason or not message.strip():
        raise _bad_request("Rejection reason and message are required")
    if reason not in REJECTION_REASONS:
        raise _bad_request("Invalid rejection reason")
    if reason == "other" and not (custom_reason or "").strip():
        raise _bad_request("Custom rejection reason is required when selecting 'other'")
    if project.assigned_to != student_id:
        raise _forbidden("You don't have permission to reject this project")
    if project.rejection_details.is_rejected:
        raise _bad_request("Project is already rejected")

    project.rejection_details = RejectionDetails(
        is_rejected=True,
        rejection_reason=reason,
        custom_reason=custom_reason,
        rejection_message=message,
        rejected_date=utc_now(),
        rejected_by=student_id,
    )
    detail = f"{reason} - {custom_reason}" if custom_reason else reason
    return record_project_status(project, "cancelled", student_id, "Project rejected by student",
                                 f"Rejection reason: {detail} - {message}")


def sync_project_status(firestore_ops: FirestoreBaseModel, project_id: UUID, new_status: str,
                        changed_by: UUID, reason: str) -> Optional[Project]:
    """
    Moves the project behind a work record to ``new_status`` and mirrors the
    change onto the student's performance record. Failures are logged and do
    not propagate: the work transition has already been persisted.
    """
    project = firestore_ops.get(collection_name="projects", document_id=str(project_id), pydantic_model=Project)
    if project is None:
        logger.warning("Project %s not found while syncing status to %s", project_id, new_status)
        return None
    if project.status == new_status:
        return project

    record_project_status(project, new_status, changed_by, reason)
    updated = firestore_ops.update(
        collection_name="projects",
        document_id=str(project_id),
        updates=project.model_dump(include={"status", "status_history", "actual_completion_date", "progress"}),
    )
    if not updated:
        logger.warning("Could not sync project %s to status %s", project_id, new_status)
        return project

    if not performance_service.sync_project_status(firestore_ops, project.assigned_to, project.project_id, new_status):
        logger.warning("Could not sync performance entry for project %s", project_id)
    return project


# --- Works ---

def validate_work_status(new_status: str) -> None:
    if new_status not in WORK_STATUSES:
        raise _bad_request("Invalid work status")


def add_work_update(work: Work, update_type: str, description: str, updated_by: Optional[UUID],
                    metadata: Optional[Dict[str, Any]] = None) -> WorkUpdate:
    if update_type not in WORK_UPDATE_TYPES:
        raise _bad_request("Invalid update type")
    update = WorkUpdate(update_type=update_type, description=description, updated_by=updated_by, metadata=metadata)
    work.work_updates.append(update)
    return update


def build_work_from_project(project: Project, created_by: UUID) -> Work:
    if project.assigned_to != created_by:
        raise _forbidden("Only the assigned student can create a work record")
    if project.status != "accepted":
        raise _bad_request("Project must be accepted before creating a work record")

    now = utc_now()
    work = Work(
        project_id=project.project_id,
        project_name=project.project_name,
        service_category=project.service_category,
        project_description=project.project_description,
        requirements=project.requirements,
        quoted_price=project.quoted_price,
        completion_time=project.completion_time,
        urgency=project.urgency,
        communication_preference=project.communication_preference,
        contact_details=project.contact_details,
        additional_notes=project.additional_notes,
        assigned_to=project.assigned_to,
        assigned_by=project.assigned_by,
        approved_date=now,
        expected_completion_date=now + timedelta(days=project.completion_time),
    )
    add_work_update(work, "status_change", "Work record created from approved project", created_by,
                    {"old_status": None, "new_status": "approved"})
    return work


def change_work_status(work: Work, new_status: str, updated_by: Optional[UUID], reason: Optional[str] = None) -> Work:
    old_status = work.work_status
    work.work_status = new_status

    now = utc_now()
    if new_status == "in_progress" and not work.started_date:
        work.started_date = now
    elif new_status == "completed" and not work.actual_completion_date:
        work.actual_completion_date = now
    elif new_status == "delivered" and not work.delivered_date:
        work.delivered_date = now

    add_work_update(work, "status_change", reason or f"Status changed from {old_status} to {new_status}",
                    updated_by, {"old_status": old_status, "new_status": new_status})
    logger.info("Work %s moved from %s to %s", work.work_id, old_status, new_status)
    return work


def update_work_progress(work: Work, percentage: int, updated_by: UUID, description: Optional[str] = None) -> Work:
    previous = work.progress.percentage
    work.progress.percentage = min(100, max(0, percentage))
    work.progress.last_updated = utc_now()
    if description:
        add_work_update(work, "progress_update", description, updated_by,
                        {"percentage": work.progress.percentage, "previous_percentage": previous})
    return work


def submit_completion(work: Work, student_id: UUID, files: List[FileReference], links: List[ProjectLink],
                      notes: Optional[str] = None) -> Work:
    if work.assigned_to != student_id:
        raise _forbidden("Only the assigned student can submit work completion")
    if work.work_status not in COMPLETION_ALLOWED_STATUSES:
        raise _bad_request(
            f"Work status '{work.work_status}' does not allow completion submission. "
            f"Allowed: {', '.join(COMPLETION_ALLOWED_STATUSES)}"
        )

    valid_links = [
        link.model_copy(update={"url": link.url.strip()})
        for link in links
        if link.url and link.url.strip() and link.link_type in LINK_TYPES
    ]
    if work.service_category in DOCUMENT_SERVICES:
        if not files:
            raise _bad_request("Completion files are required for document-based services")
    elif not valid_links:
        raise _bad_request("At least one valid project link is required for project-based services")

    submission = work.completion_submission
    submission.completion_files = list(files)
    submission.project_links = valid_links
    submission.submitted_at = utc_now()
    submission.submitted_by = student_id
    submission.submission_notes = notes

    add_work_update(work, "deliverable_submitted", "Work completion submitted", student_id,
                    {"file_count": len(files), "link_count": len(valid_links)})
    return change_work_status(work, "completion_submitted", student_id, "Work completion proof submitted by student")


def submit_payment_details(work: Work, student_id: UUID, details: PaymentDetailsCreate) -> Work:
    if work.assigned_to != student_id:
        raise _forbidden("Only the assigned student can submit payment details")
    if work.work_status != "completion_submitted":
        raise _bad_request("Work completion must be submitted before adding payment details")
    if details.upi_qr_code is None:
        raise _bad_request("UPI QR code image is required")
    if not (details.upi_id or "").strip():
        raise _bad_request("UPI ID is required")
    if not UPI_PHONE_PATTERN.match((details.upi_phone_number or "").strip()):
        raise _bad_request("Valid 10-digit phone number is required")

    work.completion_submission.student_payment_details = StudentPaymentDetails(
        upi_qr_code=details.upi_qr_code,
        upi_id=details.upi_id.strip(),
        upi_phone_number=details.upi_phone_number.strip(),
        payment_instructions=details.payment_instructions,
        submitted_at=utc_now(),
    )

    if work.progress.percentage < 100:
        update_work_progress(work, 100, student_id, "Work completed - payment details submitted")
    return change_work_status(work, "payment_pending", student_id, "Payment details submitted, awaiting client payment")


def submit_payment_proof(work: Work, client_id: UUID, proof: PaymentProofCreate) -> Work:
    if work.assigned_by != client_id:
        raise _forbidden("Only the client can submit payment proof")
    if work.work_status != "payment_pending":
        raise _bad_request("Work is not in payment pending status")
    if proof.payment_proof is None:
        raise _bad_request("Payment proof image is required")
    if not (proof.upi_transaction_id or "").strip() or not (proof.payment_to_name or "").strip() or not proof.payment_amount:
        raise _bad_request("UPI Transaction ID, Payment To Name, and Payment Amount are required")

    now = utc_now()
    work.payment_verification = PaymentVerification(
        payment_proof=proof.payment_proof,
        upi_transaction_id=proof.upi_transaction_id.strip(),
        payment_to_name=proof.payment_to_name.strip(),
        payment_amount=proof.payment_amount,
        payment_date=proof.payment_date or now,
        verification_status="pending",
        submitted_at=now,
        submitted_by=client_id,
    )
    return change_work_status(work, "payment_submitted", client_id, "Payment proof submitted by client")


def unlock_delivery(work: Work, user_id: UUID) -> Work:
    access = work.delivery_access
    access.is_locked = False
    access.unlocked_at = utc_now()
    access.unlocked_by = user_id
    access.access_history.append(AccessEntry(accessed_by=user_id, action="unlocked"))
    return work


def lock_delivery(work: Work, user_id: UUID) -> Work:
    access = work.delivery_access
    access.is_locked = True
    access.access_history.append(AccessEntry(accessed_by=user_id, action="locked"))
    return work


def align_delivery_lock(work: Work, user_id: UUID) -> Work:
    """Locks or unlocks delivery to match a status set outside the payment flow."""
    paid = work.work_status in PAID_WORK_STATUSES
    if paid and work.delivery_access.is_locked:
        unlock_delivery(work, user_id)
    elif not paid and not work.delivery_access.is_locked:
        lock_delivery(work, user_id)
    return work


def record_delivery_access(work: Work, user_id: UUID, action: str = "viewed") -> Work:
    work.delivery_access.access_history.append(AccessEntry(accessed_by=user_id, action=action))
    return work


def admin_verify_payment(work: Work, admin_id: UUID, decision: str, notes: Optional[str] = None) -> Work:
    if work.work_status != "payment_submitted":
        raise _bad_request("Work is not in payment submitted status")
    if decision not in VERIFICATION_DECISIONS:
        raise _bad_request("Invalid verification status")

    verification = work.payment_verification or PaymentVerification()
    verification.verification_status = decision
    verification.verified_at = utc_now()
    verification.verified_by = admin_id
    verification.verification_notes = notes
    work.payment_verification = verification

    if decision == "verified":
        change_work_status(work, "payment_verified", admin_id, f"Payment {decision} by admin")
        unlock_delivery(work, admin_id)
    else:
        change_work_status(work, "payment_pending", admin_id, f"Payment {decision} by admin")
    return work


def student_verify_payment(work: Work, student_id: UUID, notes: Optional[str] = None) -> Work:
    if work.assigned_to != student_id:
        raise _forbidden("Only the assigned student can verify payment")
    if work.work_status != "payment_submitted":
        raise _bad_request("Payment proof must be submitted by client before verification")

    verification = work.payment_verification or PaymentVerification()
    verification.verification_status = "verified"
    verification.verified_at = utc_now()
    verification.verified_by = student_id
    verification.verification_notes = notes or "Payment verified by student"
    work.payment_verification = verification

    change_work_status(work, "completed", student_id, "Payment verified by student - work completed")
    return unlock_delivery(work, student_id)


def record_client_review(work: Work, client_id: UUID, rating: int, review_text: str,
                         categories: Dict[str, Optional[int]]) -> Work:
    if not 1 <= rating <= 5:
        raise _bad_request("Rating must be between 1 and 5")
    if len((review_text or "").strip()) < 5:
        raise _bad_request("Review text must be at least 5 characters long")
    if work.assigned_by != client_id:
        raise _forbidden("You don't have permission to review this work")
    if work.work_status not in ("completed", "payment_verified"):
        raise _bad_request("Work must be completed before adding review")

    change_work_status(work, "delivered", client_id, "Work delivered after client review")
    add_work_update(work, "review_added", f"Client review submitted - {rating} stars", client_id,
                    {"rating": rating, "review_length": len(review_text), "categories": categories})
    return work


def can_view(work: Work, user_id: UUID, role: str) -> bool:
    return role == "admin" or user_id in (work.assigned_to, work.assigned_by)
