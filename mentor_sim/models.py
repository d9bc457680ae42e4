"""Domain models for the mentor career simulation."""
from __future__ import annotations

from dataclasses import dataclass, field, fields
from enum import Enum
from typing import Any, Dict, List, Optional


class StudentType(str, Enum):
    """Career stage of a team member."""

    UNDERGRAD = "UNDERGRAD"
    MASTER = "MASTER"
    PHD = "PHD"
    YOUNG_TEACHER = "YOUNG_TEACHER"


class Tier(str, Enum):
    """Grade shared by paper venues and grant awards (A > B > C)."""

    A = "A"
    B = "B"
    C = "C"

    @property
    def rank(self) -> int:
        return {"A": 3, "B": 2, "C": 1}[self.value]

    def downgraded(self) -> "Tier":
        return Tier.B if self is Tier.A else Tier.C


class VenueType(str, Enum):
    CONFERENCE = "conference"
    JOURNAL = "journal"


class PaperStatus(str, Enum):
    """Lifecycle of a project paper."""

    AWAITING_VENUE = "awaitingVenue"
    UNDER_REVIEW = "underReview"
    AWAITING_REVISION = "awaitingRevision"
    ACCEPTED = "accepted"
    REJECTED = "rejected"

    @property
    def is_terminal(self) -> bool:
        return self in (PaperStatus.ACCEPTED, PaperStatus.REJECTED)


class RevisionKind(str, Enum):
    MINOR = "minor"
    MAJOR = "major"


class GrantStatus(str, Enum):
    """Lifecycle of a grant application."""

    REVIEWING = "reviewing"
    ACTIVE = "active"
    REJECTED = "rejected"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (GrantStatus.REJECTED, GrantStatus.COMPLETED, GrantStatus.FAILED)


class GrantStage(str, Enum):
    """Stage tag passed to the narrative generator for grant events."""

    SUBMISSION = "submission"
    REVIEW = "review"
    EXECUTION = "execution"


class DecisionKind(str, Enum):
    PROJECT_VENUE = "projectVenue"
    PROJECT_REVISION = "projectRevision"
    GRANT_REVIEW_EVENT = "grantReviewEvent"
    GRANT_EXECUTION_EVENT = "grantExecutionEvent"
    STUDENT_PAPER_EVENT = "studentPaperEvent"
    QUARTER_EVENT = "quarterEvent"


class RevisionAction(str, Enum):
    REVISE = "revise"
    DOWNGRADE = "downgrade"
    WITHDRAW = "withdraw"


class StudentAction(str, Enum):
    LEAVE = "leave"
    STAY = "stay"


@dataclass(frozen=True)
class QuarterStamp:
    """A (year, quarter) pair ordered by ``(year - 1) * 4 + (quarter - 1)``."""

    year: int
    quarter: int

    def __post_init__(self) -> None:
        if self.quarter not in (1, 2, 3, 4):
            raise ValueError(f"Quarter must be in 1..4, got {self.quarter}")

    @property
    def index(self) -> int:
        return (self.year - 1) * 4 + (self.quarter - 1)

    @classmethod
    def from_index(cls, index: int) -> "QuarterStamp":
        return cls(year=index // 4 + 1, quarter=index % 4 + 1)

    def add_quarters(self, count: int) -> "QuarterStamp":
        return QuarterStamp.from_index(self.index + count)

    def has_reached(self, target: "QuarterStamp") -> bool:
        return self.index >= target.index

    def __str__(self) -> str:
        return f"Y{self.year}Q{self.quarter}"


@dataclass(frozen=True)
class Gauge:
    value: int
    max: int = 100


@dataclass(frozen=True)
class MentorStats:
    """Mentor-level gauges plus unbounded funding and reputation."""

    morale: Gauge
    academia: Gauge
    admin: Gauge
    integrity: Gauge
    funding: int = 0
    reputation: int = 0


GAUGE_FIELDS = ("morale", "academia", "admin", "integrity")


class _SparseDelta:
    """Shared helpers for deltas whose absent fields are ``None``."""

    def present(self) -> Dict[str, int]:
        return {f.name: getattr(self, f.name) for f in fields(self) if getattr(self, f.name) is not None}

    def is_empty(self) -> bool:
        return not self.present()

    def __add__(self, other):
        if other is None:
            return self
        mine = self.present()
        theirs = other.present()
        merged = {key: mine.get(key, 0) + theirs.get(key, 0) for key in {*mine, *theirs}}
        return type(self)(**merged)


@dataclass(frozen=True)
class StatDelta(_SparseDelta):
    funding: Optional[int] = None
    reputation: Optional[int] = None
    morale: Optional[int] = None
    academia: Optional[int] = None
    admin: Optional[int] = None
    integrity: Optional[int] = None


@dataclass(frozen=True)
class StudentDelta(_SparseDelta):
    diligence: Optional[int] = None
    talent: Optional[int] = None
    luck: Optional[int] = None
    stress: Optional[int] = None
    mental_state: Optional[int] = None
    contribution: Optional[int] = None
    pending_papers: Optional[int] = None
    total_papers: Optional[int] = None


@dataclass
class StudentPersona:
    """A team member and the attributes the quarterly simulation drives."""

    id: str
    name: str
    student_type: StudentType = StudentType.MASTER
    year: int = 1
    diligence: int = 50
    talent: int = 50
    luck: int = 50
    stress: int = 0
    mental_state: int = 100
    hidden_luck: int = 50
    contribution: int = 0
    pending_papers: int = 0
    total_papers: int = 0
    traits: List[str] = field(default_factory=list)
    mentor_id: Optional[str] = None
    is_being_mentored: bool = False
    has_whipped_this_quarter: bool = False
    has_comforted_this_quarter: bool = False
    recruited_year: int = 1
    personality: str = ""


@dataclass
class ResearchProject:
    id: str
    title: str
    category: str
    literature: int = 0
    experiment: int = 0
    results: int = 0
    assigned_student_ids: List[str] = field(default_factory=list)
    completed: bool = False


@dataclass
class ProjectPaper:
    """A manuscript spawned by a project or grant."""

    id: str
    project_id: str
    title: str
    lead_student_id: Optional[str] = None
    status: PaperStatus = PaperStatus.AWAITING_VENUE
    venue_type: Optional[VenueType] = None
    venue_tier: Optional[Tier] = None
    revision_round: int = 0
    last_revision_kind: Optional[RevisionKind] = None
    submitted_at: Optional[QuarterStamp] = None
    decision_due: Optional[QuarterStamp] = None
    grant_id: Optional[str] = None


@dataclass
class GrantState:
    """A grant application moving through review, execution and closure."""

    id: str
    type: str
    title: str
    applied_at: QuarterStamp
    review_end: QuarterStamp
    status: GrantStatus = GrantStatus.REVIEWING
    base_score: int = 0
    score_delta: int = 0
    luck: int = 0
    tier: Optional[Tier] = None
    funding_awarded: int = 0
    reputation_awarded: int = 0
    assigned_student_ids: List[str] = field(default_factory=list)
    paper_progress: int = 0
    paper_ids: List[str] = field(default_factory=list)
    active_start: Optional[QuarterStamp] = None
    closure_due: Optional[QuarterStamp] = None
    last_event_at: Optional[QuarterStamp] = None

    @property
    def final_score(self) -> int:
        return self.base_score + self.score_delta + self.luck


@dataclass(frozen=True)
class DecisionEffects:
    stats: Optional[StatDelta] = None
    student: Optional[StudentDelta] = None


@dataclass(frozen=True)
class OptionMeta:
    """Kind-specific option metadata; unused fields stay ``None``."""

    score_delta: Optional[int] = None
    luck_delta: Optional[int] = None
    progress_delta: Optional[int] = None
    venue_type: Optional[VenueType] = None
    venue_tier: Optional[Tier] = None
    review_quarters: Optional[int] = None
    action: Optional[RevisionAction] = None
    student_action: Optional[StudentAction] = None


@dataclass(frozen=True)
class DecisionOption:
    id: str
    label: str
    outcome: str
    hint: Optional[str] = None
    effects: Optional[DecisionEffects] = None
    meta: OptionMeta = field(default_factory=OptionMeta)


@dataclass(frozen=True)
class DecisionContext:
    """Identifies which entity a decision resolves."""

    student_id: Optional[str] = None
    paper_id: Optional[str] = None
    project_id: Optional[str] = None
    grant_id: Optional[str] = None
    revision_kind: Optional[RevisionKind] = None
    category: Optional[str] = None


@dataclass(frozen=True)
class DecisionEvent:
    id: str
    kind: DecisionKind
    title: str
    prompt: str
    options: List[DecisionOption]
    created_at: QuarterStamp
    context: DecisionContext = field(default_factory=DecisionContext)

    def option(self, option_id: str) -> DecisionOption:
        for option in self.options:
            if option.id == option_id:
                return option
        raise ValueError(f"Option {option_id} not found on decision {self.id}")


@dataclass(frozen=True)
class LogEntry:
    stamp: QuarterStamp
    title: str
    detail: str = ""
    level: str = "info"


@dataclass
class SimulationSession:
    """Everything owned by one running career."""

    id: str
    mentor_name: str
    calendar: QuarterStamp
    stats: MentorStats
    students: List[StudentPersona] = field(default_factory=list)
    projects: List[ResearchProject] = field(default_factory=list)
    papers: List[ProjectPaper] = field(default_factory=list)
    grants: List[GrantState] = field(default_factory=list)
    backlog: List[DecisionEvent] = field(default_factory=list)
    log: List[LogEntry] = field(default_factory=list)
    serial: int = 0

    def next_id(self, prefix: str) -> str:
        self.serial += 1
        return f"{prefix}-{self.serial}"

    def student(self, student_id: Optional[str]) -> Optional[StudentPersona]:
        if not student_id:
            return None
        for student in self.students:
            if student.id == student_id:
                return student
        return None

    def paper(self, paper_id: Optional[str]) -> Optional[ProjectPaper]:
        for paper in self.papers:
            if paper.id == paper_id:
                return paper
        return None

    def grant(self, grant_id: Optional[str]) -> Optional[GrantState]:
        for grant in self.grants:
            if grant.id == grant_id:
                return grant
        return None

    def project(self, project_id: Optional[str]) -> Optional[ResearchProject]:
        for project in self.projects:
            if project.id == project_id:
                return project
        return None

    def record(self, title: str, detail: str = "", level: str = "info") -> None:
        self.log.append(LogEntry(stamp=self.calendar, title=title, detail=detail, level=level))


def as_payload(value: Any) -> Any:
    """Convert enums nested in plain containers into their string values."""

    if isinstance(value, Enum):
        return value.value
    if isinstance(value, dict):
        return {key: as_payload(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [as_payload(item) for item in value]
    return value


__all__ = [
    "DecisionContext",
    "DecisionEffects",
    "DecisionEvent",
    "DecisionKind",
    "DecisionOption",
    "GAUGE_FIELDS",
    "Gauge",
    "GrantStage",
    "GrantState",
    "GrantStatus",
    "LogEntry",
    "MentorStats",
    "OptionMeta",
    "PaperStatus",
    "ProjectPaper",
    "QuarterStamp",
    "ResearchProject",
    "RevisionAction",
    "RevisionKind",
    "SimulationSession",
    "StatDelta",
    "StudentAction",
    "StudentDelta",
    "StudentPersona",
    "StudentType",
    "Tier",
    "VenueType",
    "as_payload",
]
