"""
Student performance records.

One document per student in the ``student_performance`` collection, keyed by
the student's user_id. Derived fields (project counters, completion rate,
average grade, points and level) are refreshed by ``recalculate`` before every
write.
"""

import logging
from typing import Dict, Optional
from uuid import UUID, uuid4

from marketplace.db.firebase_ops import FirestoreBaseModel
from marketplace.models.schemas import (
    Achievement,
    AssignedProject,
    PerformanceSummary,
    Project,
    SKILL_METRICS,
    StudentPerformance,
    StudentReview,
    TerminationInfo,
    User,
    utc_now,
)

logger = logging.getLogger(__name__)

PERFORMANCE_COLLECTION = "student_performance"

# (minimum points, minimum overall rating, level), checked in order
LEVEL_THRESHOLDS = [
    (1000, 4.5, "Expert"),
    (500, 4.0, "Advanced"),
    (200, 3.0, "Intermediate"),
]


def _mean(values) -> float:
    values = list(values)
    return round(sum(values) / len(values), 1) if values else 0


def recalculate(performance: StudentPerformance) -> StudentPerformance:
    totals = performance.projects
    assigned = totals.assigned
    totals.total_assigned = len(assigned)
    totals.total_completed = sum(1 for p in assigned if p.status == "completed")
    totals.total_in_progress = sum(1 for p in assigned if p.status == "in_progress")
    totals.total_overdue = sum(1 for p in assigned if p.status == "overdue")
    if totals.total_assigned:
        totals.completion_rate = round(totals.total_completed / totals.total_assigned * 100)

    graded = [p.grade for p in assigned if p.status == "completed" and p.grade]
    if graded:
        totals.average_grade = round(sum(graded) / len(graded))

    performance.total_points = sum(a.points for a in performance.achievements)

    rating = performance.performance.overall_rating
    performance.level = "Beginner"
    for min_points, min_rating, level in LEVEL_THRESHOLDS:
        if performance.total_points >= min_points and rating >= min_rating:
            performance.level = level
            break
    return performance


def rating_from_metrics(performance: StudentPerformance) -> float:
    """Mean of the skill ratings that have been set (non-zero)."""
    metrics = performance.performance
    return _mean(v for v in (getattr(metrics, name) for name in SKILL_METRICS) if v > 0)


def get(firestore_ops: FirestoreBaseModel, user_id: UUID) -> Optional[StudentPerformance]:
    return firestore_ops.get(
        collection_name=PERFORMANCE_COLLECTION,
        document_id=str(user_id),
        pydantic_model=StudentPerformance,
    )


def get_or_create(firestore_ops: FirestoreBaseModel, user_id: UUID) -> StudentPerformance:
    return get(firestore_ops, user_id) or StudentPerformance(user_id=user_id)


def save(firestore_ops: FirestoreBaseModel, performance: StudentPerformance) -> bool:
    recalculate(performance)
    saved_id = firestore_ops.save(
        collection_name=PERFORMANCE_COLLECTION,
        data_model=performance.model_dump(exclude={"updated_at"}),
        document_id=str(performance.user_id),
    )
    if not saved_id:
        logger.error("Could not save performance record for student %s", performance.user_id)
        return False
    return True


def summary(performance: Optional[StudentPerformance]) -> PerformanceSummary:
    if performance is None:
        return PerformanceSummary()
    metrics = performance.performance
    return PerformanceSummary(
        overall_rating=metrics.overall_rating,
        total_reviews=len(performance.reviews),
        **{name: getattr(metrics, name) for name in SKILL_METRICS},
    )


def record_assigned_project(firestore_ops: FirestoreBaseModel, project: Project) -> bool:
    """Adds a newly submitted project to the assigned student's record."""
    performance = get_or_create(firestore_ops, project.assigned_to)
    performance.projects.assigned.append(
        AssignedProject(
            project_id=project.project_id,
            title=project.project_name,
            description=project.project_description,
            due_date=project.expected_completion_date,
            priority="high" if project.urgency == "urgent" else "medium",
            assigned_by=project.assigned_by,
        )
    )
    return save(firestore_ops, performance)


def sync_project_status(firestore_ops: FirestoreBaseModel, student_id: UUID, project_id: UUID, project_status: str) -> bool:
    """
    Mirrors a project's in_progress/completed status onto the student's
    assigned-project entry. Other statuses have no counterpart and are ignored.
    """
    if project_status not in ("in_progress", "completed"):
        return True
    performance = get(firestore_ops, student_id)
    if performance is None:
        return True
    entry = next((p for p in performance.projects.assigned if p.project_id == project_id), None)
    if entry is None:
        return True
    entry.status = project_status
    if project_status == "completed" and not entry.completed_date:
        entry.completed_date = utc_now()
    return save(firestore_ops, performance)


def apply_client_review(
    firestore_ops: FirestoreBaseModel,
    student_id: UUID,
    work_id: UUID,
    reviewer: User,
    rating: int,
    comment: str,
    skill_ratings: Dict[str, Optional[int]],
) -> tuple[StudentPerformance, StudentReview]:
    """
    Upserts the client's review for a work (one review per work) and refreshes
    the student's ratings. The overall rating is the mean of all reviews; each
    skill takes the client's score for it or, when omitted, the review rating.
    A failed write is logged and the in-memory record is still returned.
    """
    performance = get_or_create(firestore_ops, student_id)
    review = StudentReview(
        review_id=str(work_id),
        reviewed_by=reviewer.user_id,
        reviewer_name=reviewer.username or "Client",
        reviewer_role="client",
        rating=rating,
        comment=comment.strip(),
        project_related=str(work_id),
        tags=["work-completion", "client-feedback"],
    )

    existing = [i for i, r in enumerate(performance.reviews) if r.review_id == review.review_id]
    if existing:
        performance.reviews[existing[0]] = review
    else:
        performance.reviews.append(review)

    metrics = performance.performance
    metrics.overall_rating = _mean(r.rating for r in performance.reviews)
    for name in SKILL_METRICS:
        setattr(metrics, name, skill_ratings.get(name) or rating)

    if not save(firestore_ops, performance):
        logger.warning("Client review for work %s was not recorded on student %s", work_id, student_id)
    return performance, review


def add_review(performance: StudentPerformance, reviewer: User, rating: int, comment: str, tags, project_related: Optional[str]) -> StudentReview:
    review = StudentReview(
        review_id=str(uuid4()),
        reviewed_by=reviewer.user_id,
        reviewer_name=reviewer.username,
        reviewer_role=reviewer.role,
        rating=rating,
        comment=comment.strip(),
        project_related=project_related,
        tags=list(tags),
    )
    performance.reviews.append(review)
    return review


def update_metrics(performance: StudentPerformance, values: Dict[str, float]) -> StudentPerformance:
    for name, value in values.items():
        setattr(performance.performance, name, value)
    performance.performance.overall_rating = rating_from_metrics(performance)
    return performance


def award_achievement(performance: StudentPerformance, achievement: Achievement) -> StudentPerformance:
    performance.achievements.append(achievement)
    return performance


def terminate(performance: StudentPerformance, admin_id: UUID, reason: str, can_reapply: bool, reapply_date) -> StudentPerformance:
    performance.status = "terminated"
    performance.termination_info = TerminationInfo(
        terminated_by=admin_id,
        reason=reason.strip(),
        can_reapply=can_reapply,
        reapply_date=reapply_date,
    )
    return performance
