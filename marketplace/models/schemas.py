from typing import Optional, List, Dict, Any
from datetime import datetime, timezone
from math import ceil
from pydantic import BaseModel, EmailStr, Field, computed_field, field_validator
from uuid import UUID, uuid4


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


USER_ROLES = ["client", "student", "admin"]

SERVICE_CATEGORIES = [
    "web-development",
    "app-development",
    "resume-services",
    "cad-modeling",
    "ui-ux-design",
    "data-analysis",
    "content-writing",
]

# Display names accepted from forms, mapped to stored category slugs
SERVICE_CATEGORY_NAMES = {
    "Web Development": "web-development",
    "App Development": "app-development",
    "Resume Services": "resume-services",
    "CAD Modeling": "cad-modeling",
    "UI/UX Design": "ui-ux-design",
    "Data Analysis": "data-analysis",
    "Content Writing": "content-writing",
}

# Services delivered as documents rather than as code or hosted links
DOCUMENT_SERVICES = ["resume-services", "content-writing"]

URGENCY_LEVELS = ["normal", "urgent"]
PRIORITIES = ["low", "medium", "high", "critical"]
COMMUNICATION_PREFERENCES = ["email", "phone", "whatsapp", "meeting", "mixed"]
MESSAGE_TYPES = ["general", "objection", "clarification", "approval", "rejection"]

PROJECT_STATUSES = [
    "submitted",
    "accepted",
    "pending",
    "in_progress",
    "completed",
    "cancelled",
    "disputed",
]

REJECTION_REASONS = [
    "budget_too_low",
    "timeline_too_tight",
    "scope_unclear",
    "technical_complexity",
    "resource_unavailable",
    "skill_mismatch",
    "communication_issues",
    "other",
]

WORK_STATUSES = [
    "approved",
    "in_progress",
    "review_pending",
    "revision_requested",
    "completed",
    "awaiting_completion_proof",
    "completion_submitted",
    "payment_pending",
    "payment_submitted",
    "payment_verified",
    "delivered",
    "cancelled",
]

COMPLETION_ALLOWED_STATUSES = [
    "approved",
    "in_progress",
    "review_pending",
    "revision_requested",
    "awaiting_completion_proof",
]

LINK_TYPES = ["github", "live_demo", "documentation", "other"]
VERIFICATION_STATUSES = ["pending", "verified", "disputed", "rejected"]
VERIFICATION_DECISIONS = ["verified", "disputed", "rejected"]
ACCESS_ACTIONS = ["viewed", "downloaded", "unlocked", "locked"]

WORK_UPDATE_TYPES = [
    "status_change",
    "progress_update",
    "milestone_completed",
    "deliverable_submitted",
    "revision_requested",
    "feedback_provided",
    "time_logged",
    "review_added",
    "admin_note",
]

PERFORMANCE_STATUSES = ["active", "inactive", "suspended", "graduated", "terminated"]
ASSIGNED_PROJECT_STATUSES = ["assigned", "in_progress", "completed", "overdue"]
ACHIEVEMENT_TYPES = ["project", "skill", "leadership", "community"]

SKILL_METRICS = [
    "technical_skills",
    "communication_skills",
    "problem_solving",
    "teamwork",
    "punctuality",
    "quality_of_work",
]


# --- Users ---

class UserBase(BaseModel):
    username: str
    email: EmailStr
    phone_number: Optional[str] = None
    full_name: str
    profile_picture_url: Optional[str] = None
    role: str = "client"  # Enum: 'client', 'student', 'admin'


class UserCreate(UserBase):
    password: str = Field(min_length=6)


class ProfileFields(BaseModel):
    bio: Optional[str] = Field(default=None, max_length=500)
    date_of_birth: Optional[datetime] = None
    location: Optional[str] = None
    college: Optional[str] = None
    degree: Optional[str] = None
    course: Optional[str] = None
    year: Optional[str] = None
    skills: List[str] = Field(default_factory=list)
    social_links: Dict[str, str] = Field(default_factory=dict)


class User(UserBase, ProfileFields):
    user_id: UUID = Field(default_factory=uuid4)
    registration_date: datetime = Field(default_factory=utc_now)
    last_login_date: Optional[datetime] = None
    is_active: bool = True

    @computed_field
    @property
    def profile_completion(self) -> int:
        fields = [self.phone_number, self.date_of_birth, self.location, self.college,
                  self.degree, self.course, self.bio]
        filled = sum(1 for value in fields if value)
        return round(filled / len(fields) * 100)


class UserProfileUpdate(BaseModel):
    full_name: Optional[str] = None
    phone_number: Optional[str] = None
    profile_picture_url: Optional[str] = None
    bio: Optional[str] = Field(default=None, max_length=500)
    date_of_birth: Optional[datetime] = None
    location: Optional[str] = None
    college: Optional[str] = None
    degree: Optional[str] = None
    course: Optional[str] = None
    year: Optional[str] = None
    skills: Optional[List[str]] = None
    social_links: Optional[Dict[str, str]] = None


class AdminUserUpdate(UserProfileUpdate):
    username: Optional[str] = None
    email: Optional[EmailStr] = None


# --- Projects ---

class ContactDetails(BaseModel):
    phone_number: Optional[str] = None
    email_address: Optional[str] = None
    meeting_link: Optional[str] = None


class StatusHistoryEntry(BaseModel):
    status: str
    changed_by: Optional[UUID] = None
    changed_at: datetime = Field(default_factory=utc_now)
    reason: Optional[str] = None
    notes: Optional[str] = None


class ProgressNote(BaseModel):
    update_by: UUID
    message: str
    timestamp: datetime = Field(default_factory=utc_now)


class ProjectProgress(BaseModel):
    percentage: int = 0
    updates: List[ProgressNote] = Field(default_factory=list)


class Communication(BaseModel):
    communication_id: UUID = Field(default_factory=uuid4)
    sender: UUID
    receiver: UUID
    message: str = Field(max_length=1000)
    message_type: str = "general"  # Enum: MESSAGE_TYPES
    is_read: bool = False
    timestamp: datetime = Field(default_factory=utc_now)


class ObjectionDetails(BaseModel):
    has_objection: bool = False
    objection_reason: Optional[str] = None
    objection_message: Optional[str] = None
    objection_date: Optional[datetime] = None
    objection_by: Optional[UUID] = None
    resolved: bool = False
    resolved_date: Optional[datetime] = None
    resolution_message: Optional[str] = None


class RejectionDetails(BaseModel):
    is_rejected: bool = False
    rejection_reason: Optional[str] = None
    custom_reason: Optional[str] = None
    rejection_message: Optional[str] = None
    rejected_date: Optional[datetime] = None
    rejected_by: Optional[UUID] = None


class ProjectBase(BaseModel):
    project_name: str = Field(min_length=1)
    service_category: str
    project_description: str = Field(min_length=1, max_length=2000)
    requirements: str = Field(min_length=1, max_length=1500)
    quoted_price: float = Field(ge=0)
    completion_time: int = Field(ge=1)  # days
    urgency: str = "normal"  # Enum: 'normal', 'urgent'
    communication_preference: str = "email"
    contact_details: ContactDetails = Field(default_factory=ContactDetails)
    estimated_start_date: Optional[datetime] = None
    additional_notes: Optional[str] = None
    tags: List[str] = Field(default_factory=list)

    @field_validator("service_category")
    @classmethod
    def normalize_service_category(cls, value: str) -> str:
        value = SERVICE_CATEGORY_NAMES.get(value, value)
        if value not in SERVICE_CATEGORIES:
            raise ValueError(f"Invalid service category. Allowed: {', '.join(SERVICE_CATEGORIES)}")
        return value

    @field_validator("urgency")
    @classmethod
    def check_urgency(cls, value: str) -> str:
        if value not in URGENCY_LEVELS:
            raise ValueError("Urgency must be 'normal' or 'urgent'")
        return value

    @field_validator("communication_preference")
    @classmethod
    def check_communication_preference(cls, value: str) -> str:
        if value not in COMMUNICATION_PREFERENCES:
            raise ValueError(f"Invalid communication preference. Allowed: {', '.join(COMMUNICATION_PREFERENCES)}")
        return value


class ProjectCreate(ProjectBase):
    assigned_to: UUID  # Student the project is offered to


class Project(ProjectBase):
    project_id: UUID = Field(default_factory=uuid4)
    assigned_to: UUID  # Student
    assigned_by: UUID  # Client
    status: str = "submitted"  # Enum: PROJECT_STATUSES
    priority: str = "medium"  # Enum: PRIORITIES
    status_history: List[StatusHistoryEntry] = Field(default_factory=list)
    assigned_date: datetime = Field(default_factory=utc_now)
    expected_completion_date: Optional[datetime] = None
    actual_completion_date: Optional[datetime] = None
    progress: ProjectProgress = Field(default_factory=ProjectProgress)
    communications: List[Communication] = Field(default_factory=list)
    objection_details: ObjectionDetails = Field(default_factory=ObjectionDetails)
    rejection_details: RejectionDetails = Field(default_factory=RejectionDetails)
    is_active: bool = True
    archived: bool = False
    archived_date: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class ProjectStatusUpdate(BaseModel):
    status: str
    reason: Optional[str] = None
    notes: Optional[str] = None


class ProjectProgressCreate(BaseModel):
    message: str
    percentage: Optional[int] = None


class CommunicationCreate(BaseModel):
    message: str
    message_type: str = "general"


class ObjectionCreate(BaseModel):
    reason: str
    message: str


class ProjectFieldsUpdate(BaseModel):
    project_name: Optional[str] = None
    project_description: Optional[str] = Field(default=None, max_length=2000)
    requirements: Optional[str] = Field(default=None, max_length=1500)
    quoted_price: Optional[float] = Field(default=None, ge=0)
    completion_time: Optional[int] = Field(default=None, ge=1)
    additional_notes: Optional[str] = None


class ObjectionResolution(BaseModel):
    resolution_message: str
    updated_project_data: Optional[ProjectFieldsUpdate] = None


class ProjectRejection(BaseModel):
    reason: str  # Enum: REJECTION_REASONS
    message: str
    custom_reason: Optional[str] = None


# --- Works ---

class FileReference(BaseModel):
    """A file already hosted elsewhere; this service stores only its reference."""
    file_name: str
    file_url: str
    file_type: Optional[str] = None
    file_size: Optional[int] = None
    public_id: Optional[str] = None
    uploaded_at: datetime = Field(default_factory=utc_now)


class ProjectLink(BaseModel):
    link_type: str = "other"  # Enum: LINK_TYPES
    url: str = ""
    description: Optional[str] = None
    added_at: datetime = Field(default_factory=utc_now)


class StudentPaymentDetails(BaseModel):
    upi_qr_code: Optional[FileReference] = None
    upi_id: Optional[str] = None
    upi_phone_number: Optional[str] = None
    payment_instructions: Optional[str] = None
    submitted_at: Optional[datetime] = None


class CompletionSubmission(BaseModel):
    completion_files: List[FileReference] = Field(default_factory=list)
    project_links: List[ProjectLink] = Field(default_factory=list)
    student_payment_details: Optional[StudentPaymentDetails] = None
    submitted_at: Optional[datetime] = None
    submitted_by: Optional[UUID] = None
    submission_notes: Optional[str] = None


class PaymentVerification(BaseModel):
    payment_proof: Optional[FileReference] = None
    upi_transaction_id: Optional[str] = None
    payment_to_name: Optional[str] = None
    payment_amount: Optional[float] = None
    payment_date: Optional[datetime] = None
    verification_status: str = "pending"  # Enum: VERIFICATION_STATUSES
    verified_at: Optional[datetime] = None
    verified_by: Optional[UUID] = None
    verification_notes: Optional[str] = None
    submitted_at: Optional[datetime] = None
    submitted_by: Optional[UUID] = None


class AccessEntry(BaseModel):
    accessed_by: UUID
    accessed_at: datetime = Field(default_factory=utc_now)
    action: str  # Enum: ACCESS_ACTIONS


class DeliveryAccess(BaseModel):
    is_locked: bool = True
    unlocked_at: Optional[datetime] = None
    unlocked_by: Optional[UUID] = None
    access_history: List[AccessEntry] = Field(default_factory=list)


class WorkProgress(BaseModel):
    percentage: int = 0
    last_updated: datetime = Field(default_factory=utc_now)


class WorkUpdate(BaseModel):
    update_id: UUID = Field(default_factory=uuid4)
    update_type: str  # Enum: WORK_UPDATE_TYPES
    description: str
    updated_by: Optional[UUID] = None
    metadata: Optional[Dict[str, Any]] = None
    created_at: datetime = Field(default_factory=utc_now)


class Work(BaseModel):
    work_id: UUID = Field(default_factory=uuid4)
    project_id: UUID  # One work record per project

    # Copied from the accepted project
    project_name: str
    service_category: str
    project_description: str
    requirements: str
    quoted_price: float
    completion_time: int
    urgency: str = "normal"
    communication_preference: str = "email"
    contact_details: ContactDetails = Field(default_factory=ContactDetails)
    additional_notes: Optional[str] = None

    assigned_to: UUID  # Student
    assigned_by: UUID  # Client

    work_status: str = "approved"  # Enum: WORK_STATUSES
    progress: WorkProgress = Field(default_factory=WorkProgress)
    completion_submission: CompletionSubmission = Field(default_factory=CompletionSubmission)
    payment_verification: Optional[PaymentVerification] = None
    delivery_access: DeliveryAccess = Field(default_factory=DeliveryAccess)
    work_updates: List[WorkUpdate] = Field(default_factory=list)

    approved_date: datetime = Field(default_factory=utc_now)
    started_date: Optional[datetime] = None
    expected_completion_date: Optional[datetime] = None
    actual_completion_date: Optional[datetime] = None
    delivered_date: Optional[datetime] = None

    is_active: bool = True
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @computed_field
    @property
    def work_duration_days(self) -> Optional[int]:
        if self.started_date and self.actual_completion_date:
            return ceil((self.actual_completion_date - self.started_date).total_seconds() / 86400)
        return None


class WorkProgressChange(BaseModel):
    percentage: int
    description: Optional[str] = None


class WorkStatusUpdate(BaseModel):
    status: str
    reason: Optional[str] = None
    progress_update: Optional[WorkProgressChange] = None
    project_status: Optional[str] = None


class WorkUpdateCreate(BaseModel):
    update_type: str
    description: str
    metadata: Optional[Dict[str, Any]] = None


class CompletionSubmissionCreate(BaseModel):
    completion_files: List[FileReference] = Field(default_factory=list)
    project_links: List[ProjectLink] = Field(default_factory=list)
    submission_notes: Optional[str] = None


class PaymentDetailsCreate(BaseModel):
    upi_qr_code: Optional[FileReference] = None
    upi_id: Optional[str] = None
    upi_phone_number: Optional[str] = None
    payment_instructions: Optional[str] = None


class PaymentProofCreate(BaseModel):
    payment_proof: Optional[FileReference] = None
    upi_transaction_id: Optional[str] = None
    payment_to_name: Optional[str] = None
    payment_amount: Optional[float] = None
    payment_date: Optional[datetime] = None


class PaymentVerificationDecision(BaseModel):
    verification_status: str  # Enum: VERIFICATION_DECISIONS
    verification_notes: Optional[str] = None


class StudentPaymentConfirmation(BaseModel):
    verification_notes: Optional[str] = None


class ClientReviewCreate(BaseModel):
    rating: int
    review_text: str
    skills: Optional[int] = Field(default=None, ge=1, le=5)
    communication: Optional[int] = Field(default=None, ge=1, le=5)
    timeliness: Optional[int] = Field(default=None, ge=1, le=5)
    quality: Optional[int] = Field(default=None, ge=1, le=5)
    problem_solving: Optional[int] = Field(default=None, ge=1, le=5)
    teamwork: Optional[int] = Field(default=None, ge=1, le=5)


class Deliverables(BaseModel):
    work_id: UUID
    completion_files: List[FileReference] = Field(default_factory=list)
    project_links: List[ProjectLink] = Field(default_factory=list)
    submitted_at: Optional[datetime] = None
    submission_notes: Optional[str] = None
    is_locked: bool


# --- Student performance ---

class AssignedProject(BaseModel):
    project_id: Optional[UUID] = None
    title: str
    description: Optional[str] = None
    assigned_date: datetime = Field(default_factory=utc_now)
    due_date: Optional[datetime] = None
    priority: str = "medium"
    status: str = "assigned"  # Enum: ASSIGNED_PROJECT_STATUSES
    assigned_by: Optional[UUID] = None
    completed_date: Optional[datetime] = None
    grade: Optional[float] = None


class ProjectTotals(BaseModel):
    assigned: List[AssignedProject] = Field(default_factory=list)
    total_assigned: int = 0
    total_completed: int = 0
    total_in_progress: int = 0
    total_overdue: int = 0
    completion_rate: int = 0
    average_grade: float = 0


class PerformanceMetrics(BaseModel):
    overall_rating: float = 0
    technical_skills: float = 0
    communication_skills: float = 0
    problem_solving: float = 0
    teamwork: float = 0
    punctuality: float = 0
    quality_of_work: float = 0


class StudentReview(BaseModel):
    review_id: str
    reviewed_by: Optional[UUID] = None
    reviewer_name: Optional[str] = None
    reviewer_role: str = "client"
    rating: float
    comment: str
    project_related: Optional[str] = None
    review_date: datetime = Field(default_factory=utc_now)
    tags: List[str] = Field(default_factory=list)


class TerminationInfo(BaseModel):
    terminated_date: datetime = Field(default_factory=utc_now)
    terminated_by: Optional[UUID] = None
    reason: str
    can_reapply: bool = False
    reapply_date: Optional[datetime] = None


class Achievement(BaseModel):
    achievement_id: UUID = Field(default_factory=uuid4)
    title: str
    description: Optional[str] = None
    earned_date: datetime = Field(default_factory=utc_now)
    type: str = "project"  # Enum: ACHIEVEMENT_TYPES
    points: int = Field(default=0, ge=0)


class StudentPerformance(BaseModel):
    user_id: UUID
    projects: ProjectTotals = Field(default_factory=ProjectTotals)
    performance: PerformanceMetrics = Field(default_factory=PerformanceMetrics)
    reviews: List[StudentReview] = Field(default_factory=list)
    status: str = "active"  # Enum: PERFORMANCE_STATUSES
    termination_info: Optional[TerminationInfo] = None
    achievements: List[Achievement] = Field(default_factory=list)
    total_points: int = 0
    level: str = "Beginner"
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class PerformanceSummary(BaseModel):
    overall_rating: float = 0
    total_reviews: int = 0
    technical_skills: float = 0
    communication_skills: float = 0
    problem_solving: float = 0
    teamwork: float = 0
    punctuality: float = 0
    quality_of_work: float = 0


class StudentReviewsResponse(BaseModel):
    student_id: UUID
    reviews: List[StudentReview]
    performance: PerformanceSummary


class ClientReviewResult(BaseModel):
    work: Work
    review: StudentReview
    performance: PerformanceSummary


class AvailableStudent(BaseModel):
    user: User
    performance: PerformanceSummary
    level: str = "Beginner"


class TerminationRequest(BaseModel):
    reason: str = ""
    can_reapply: bool = False
    reapply_date: Optional[datetime] = None


class AssignProjectRequest(BaseModel):
    title: str = ""
    description: Optional[str] = None
    due_date: Optional[datetime] = None
    priority: str = "medium"


class AdminReviewCreate(BaseModel):
    rating: int
    comment: str = ""
    project_related: Optional[str] = None
    tags: List[str] = Field(default_factory=list)


class AchievementCreate(BaseModel):
    title: str = ""
    description: Optional[str] = None
    type: str = "project"
    points: int = 0


class MetricsUpdate(BaseModel):
    technical_skills: Optional[float] = None
    communication_skills: Optional[float] = None
    problem_solving: Optional[float] = None
    teamwork: Optional[float] = None
    punctuality: Optional[float] = None
    quality_of_work: Optional[float] = None


# --- Admin ---

class RoleUpdate(BaseModel):
    role: str


class AdminStatusUpdate(BaseModel):
    status: str
    reason: Optional[str] = None
    notes: Optional[str] = None


class ProjectDetail(BaseModel):
    project: Project
    work: Optional[Work] = None


# --- Listing ---

class Pagination(BaseModel):
    current_page: int
    total_pages: int
    total_items: int
    has_next_page: bool
    has_prev_page: bool


class ProjectList(BaseModel):
    projects: List[Project]
    pagination: Pagination


class WorkList(BaseModel):
    works: List[Work]
    pagination: Pagination


class UserList(BaseModel):
    users: List[User]
    pagination: Pagination


class StatusBucket(BaseModel):
    count: int = 0
    total_value: float = 0
    average_progress: Optional[float] = None


class WorkStats(BaseModel):
    by_status: Dict[str, StatusBucket]
    total_works: int
    total_value: float
    completion_rate: float


class ProjectStats(BaseModel):
    by_status: Dict[str, StatusBucket]
    total_projects: int
    total_earnings: Optional[float] = None
    total_spent: Optional[float] = None
