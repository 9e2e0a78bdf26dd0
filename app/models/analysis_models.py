from datetime import datetime
from datetime import timezone
from enum import Enum
from typing import NamedTuple

from pydantic import AliasChoices
from pydantic import BaseModel
from pydantic import Field
from pydantic import field_validator


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Question(BaseModel):
    """A consultation question with its ordered candidate stances."""

    id: str
    text: str
    stances: list[str] = Field(default_factory=list)


class Project(BaseModel):
    """Read-only project input supplied by the boundary layer."""

    id: str
    name: str
    description: str = ""
    extraction_topic: str = ""
    context: str = ""
    questions: list[Question] = Field(default_factory=list)

    @field_validator("description", "extraction_topic", "context", mode="before")
    @classmethod
    def _empty_text_for_null(cls, v: str | None) -> str:
        return v or ""

    def find_question(self, question_id: str) -> Question | None:
        return next((q for q in self.questions if q.id == question_id), None)


class Comment(BaseModel):
    id: str
    project_id: str
    source_type: str | None = None
    content: str


class StanceBreakdown(BaseModel):
    """Share of comments holding one stance."""

    count: int = Field(default=0, ge=0)
    summary: str = ""


class StanceAnalysis(BaseModel):
    """Stance breakdown for one (project, question) pair."""

    project_id: str
    question_id: str
    question: str
    stance_analysis: dict[str, StanceBreakdown] = Field(
        default_factory=dict,
        validation_alias=AliasChoices("stance_analysis", "stanceAnalysis"),
    )
    analysis: str
    updated_at: datetime = Field(default_factory=utcnow)


class ProjectReport(BaseModel):
    """Project-wide narrative aggregating every question's stance analysis."""

    project_id: str
    project_name: str
    overall_analysis: str
    updated_at: datetime = Field(default_factory=utcnow)


class VisualReport(BaseModel):
    """HTML+CSS rendering of the project narrative."""

    project_id: str
    project_name: str
    overall_analysis: str
    updated_at: datetime = Field(default_factory=utcnow)


class SummaryKind(str, Enum):
    CONCISE = "concise"
    EXTENDED = "extended"

    @property
    def filename(self) -> str:
        return "llms.txt" if self is SummaryKind.CONCISE else "llms-full.txt"


class SummaryDocuments(BaseModel):
    """Machine-readable summaries. Never persisted; a document not requested stays None."""

    project_name: str
    llms_txt: str | None = None
    llms_full_txt: str | None = None

    def get(self, kind: SummaryKind) -> str | None:
        return self.llms_txt if kind is SummaryKind.CONCISE else self.llms_full_txt


class ArtifactKind(str, Enum):
    STANCE = "stance"
    PROJECT_REPORT = "project_report"
    VISUAL_REPORT = "visual_report"


class ArtifactKey(NamedTuple):
    """Unique storage key. Project-level artifacts use an empty question id."""

    kind: ArtifactKind
    project_id: str
    question_id: str = ""
