# backend/medipublish/schemas/cme.py

from datetime import date, datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


# -----------------------------
# Authoring payloads
# -----------------------------
class CMEQuestion(BaseModel):
    """One multiple-choice question in an activity's question bank."""
    model_config = ConfigDict(populate_by_name=True)

    id: Optional[str] = None
    question: str
    options: List[str]
    correct_answer: int = Field(..., alias="correctAnswer")
    explanation: str = ""
    learning_objective_id: Optional[str] = Field(None, alias="learningObjectiveId")


class FacultyDisclosure(BaseModel):
    name: str
    role: str = "Author/Faculty"
    disclosures: List[str] = Field(default_factory=list)


class ActivityDraft(BaseModel):
    """Incoming payload for a new CME activity (validated by authoring)."""
    model_config = ConfigDict(populate_by_name=True)

    title: str = ""
    description: str = ""
    learning_objectives: List[str] = Field(default_factory=list, alias="learningObjectives")
    target_audience: Optional[str] = Field(None, alias="targetAudience")  # primary specialty
    tags: List[str] = Field(default_factory=list)
    accreditation_statement: Optional[str] = Field(None, alias="accreditationStatement")
    credit_type: str = Field("AMA_PRA_1", alias="creditType")
    credit_hours: Optional[float] = Field(None, alias="creditHours")
    faculty_disclosures: List[FacultyDisclosure] = Field(
        default_factory=list, alias="facultyDisclosures"
    )
    questions: List[CMEQuestion] = Field(default_factory=list)


class ActivityCreated(BaseModel):
    id: int
    status: str
    message: str


# -----------------------------
# Catalog
# -----------------------------
class ActivitySummary(BaseModel):
    id: int
    title: str
    description: Optional[str] = None
    specialty: str
    tags: List[str]
    credit_type: str
    credits: float
    price: float
    passing_score: Optional[int] = None
    attempts_allowed: int
    time_limit: Optional[int] = None  # minutes
    question_count: int
    learning_objectives: List[str]
    creator_id: str
    status: str
    release_date: Optional[datetime] = None
    expiration_date: Optional[datetime] = None
    published_at: Optional[datetime] = None


# -----------------------------
# Grading & completion
# -----------------------------
class CompletionRequest(BaseModel):
    activity_id: int = Field(..., alias="activityId")
    # Loosely typed on purpose: anything that is not a valid option index is graded wrong
    answers: List[Any]
    time_spent: int = Field(0, alias="timeSpent")  # seconds

    model_config = ConfigDict(populate_by_name=True)


class GradingResultOut(BaseModel):
    correct_answers: int
    total_questions: int
    score: int
    passing_score: int
    passed: bool


class CompletionRecordOut(BaseModel):
    id: int
    user_id: str
    activity_id: int
    activity_title: str
    specialty: str
    credit_type: str
    sequence: int
    completed_at: datetime
    score: int
    credits_earned: float
    time_spent: int
    certificate_id: str


class CompletionResponse(BaseModel):
    passed: bool
    score: int
    # None when an already-credited user resubmits; nothing is graded then
    grading: Optional[GradingResultOut] = None
    completion: Optional[CompletionRecordOut] = None
    already_completed: bool = False
    attempts_used: int
    attempts_remaining: int
    message: str


# -----------------------------
# Transcript & requirements
# -----------------------------
class ExpiringCredit(BaseModel):
    activity_id: int
    credits: float
    expiration_date: datetime


class Transcript(BaseModel):
    user_id: str
    total_credits: float = 0.0
    credits_by_specialty: Dict[str, float] = Field(default_factory=dict)
    credits_by_type: Dict[str, float] = Field(default_factory=dict)
    completions: List[CompletionRecordOut] = Field(default_factory=list)
    expiring_credits: List[ExpiringCredit] = Field(default_factory=list)


class CategoryStatus(BaseModel):
    category: str
    required: float
    earned: float
    satisfied: bool


class RequirementCheck(BaseModel):
    specialty: str
    required: float
    earned: float
    satisfied: bool
    deficit: float
    cycle_years: int
    cycle_start: date
    accepted_credit_types: List[str]
    categories: List[CategoryStatus] = Field(default_factory=list)


# -----------------------------
# Export
# -----------------------------
class ExportRequest(BaseModel):
    format: str
    state_board: Optional[str] = Field(None, alias="stateBoard")

    model_config = ConfigDict(populate_by_name=True)


class ExportOut(BaseModel):
    export_id: str
    format: str
    state_board: Optional[str] = None
    content_type: str
    download_url: str
    created_at: datetime
