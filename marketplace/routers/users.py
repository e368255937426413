from fastapi import APIRouter, HTTPException, Depends
from uuid import UUID
from typing import List, Optional

from marketplace.models.schemas import AvailableStudent, User, UserProfileUpdate
from marketplace.db.firebase_ops import get_firestore_ops_instance, FirestoreBaseModel
from marketplace.core.dependencies import oauth2_scheme, get_current_user
from marketplace.services import performance as performance_service

router = APIRouter(prefix="/users", tags=["Users"])


@router.get("/me", response_model=User)
async def read_own_profile(token: str = Depends(oauth2_scheme)):
    firestore_ops: FirestoreBaseModel = get_firestore_ops_instance()
    return get_current_user(firestore_ops, token)


@router.put("/me/profile", response_model=User)
async def update_user_profile(
    profile_in: UserProfileUpdate,
    token: str = Depends(oauth2_scheme)
):
    firestore_ops: FirestoreBaseModel = get_firestore_ops_instance()
    current_user = get_current_user(firestore_ops, token)

    # Role, email and activation are managed elsewhere; only profile fields change here
    updates = profile_in.model_dump(exclude_unset=True)
    if not updates:
        raise HTTPException(status_code=400, detail="No profile fields provided")

    if not firestore_ops.update(collection_name="users", document_id=str(current_user.user_id), updates=updates):
        raise HTTPException(status_code=500, detail="Could not update profile")

    return current_user.model_copy(update=updates)


@router.get("/students/available", response_model=List[AvailableStudent])
async def list_available_students(
    skill: Optional[str] = None,
    search: Optional[str] = None,
    location: Optional[str] = None,
    min_rating: Optional[float] = None,
    token: str = Depends(oauth2_scheme)
):
    """
    Active students without a project in progress, best rated first.
    The caller is never listed.
    """
    firestore_ops: FirestoreBaseModel = get_firestore_ops_instance()
    current_user = get_current_user(firestore_ops, token)

    students = firestore_ops.query_where(
        collection_name="users",
        filters=[("role", "==", "student"), ("is_active", "==", True)],
        pydantic_model=User,
    )

    results = []
    for student in students:
        if student.user_id == current_user.user_id:
            continue
        if skill and skill.lower() not in [s.lower() for s in student.skills]:
            continue
        if location and location.lower() not in (student.location or "").lower():
            continue
        if search:
            haystack = " ".join(filter(None, [student.username, student.full_name, student.bio, student.college,
                                              student.course, *student.skills])).lower()
            if search.lower() not in haystack:
                continue

        performance = performance_service.get(firestore_ops, student.user_id)
        if performance is not None:
            if performance.status != "active" or performance.projects.total_in_progress >= 1:
                continue
        summary = performance_service.summary(performance)
        if min_rating is not None and summary.overall_rating < min_rating:
            continue

        results.append(AvailableStudent(
            user=student,
            performance=summary,
            level=performance.level if performance else "Beginner",
        ))

    results.sort(key=lambda s: s.performance.overall_rating, reverse=True)
    return results


@router.get("/{user_id}", response_model=User)
async def get_user_profile(user_id: UUID):
    firestore_ops: FirestoreBaseModel = get_firestore_ops_instance()

    user_data = firestore_ops.get(collection_name="users", document_id=str(user_id), pydantic_model=User)
    if not user_data:
        raise HTTPException(status_code=404, detail="User not found")
    return user_data
