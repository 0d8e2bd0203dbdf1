from __future__ import annotations

from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any


class FileStatus(str, Enum):
    """Lifecycle of a single uploaded statement within a conversion session."""

    PENDING = "pending"
    NEEDS_PASSWORD = "needsPassword"
    READY = "ready"
    PROCESSING = "processing"
    SUCCESS = "success"
    ERROR = "error"


class SessionState(str, Enum):
    """The five states of a conversion session."""

    IDLE = "idle"
    FILES_SELECTED = "filesSelected"
    PROCESSING = "processing"
    SUCCESS = "success"
    ERROR = "error"


@dataclass(frozen=True, slots=True)
class UploadedFile:
    """Raw upload as handed over by the caller (HTTP layer, CLI, tests)."""

    filename: str
    content: bytes = field(repr=False)
    last_modified: int = 0


@dataclass(frozen=True, slots=True)
class FileState:
    """
    Tracked status for one accepted PDF.

    Instances are never mutated; status and password changes produce a new
    record through `dataclasses.replace`.
    """

    id: str
    filename: str
    content: bytes = field(repr=False)
    status: FileStatus = FileStatus.PENDING
    password: str | None = field(default=None, repr=False)
    error_message: str | None = None

    def public_view(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "filename": self.filename,
            "status": self.status.value,
            "has_password": bool(self.password),
            "error_message": self.error_message,
        }


@dataclass(frozen=True, slots=True)
class Transaction:
    """One statement line. At most one of `debit`/`credit` is populated."""

    date: str
    description: str
    debit: float | None
    credit: float | None
    balance: float
    source_file: str

    def to_dict(self, *, include_source: bool = True) -> dict[str, Any]:
        payload = asdict(self)
        if not include_source:
            payload.pop("source_file")
        return payload


@dataclass(slots=True)
class FinancialSummary:
    total_income: float
    total_spending: float
    net_flow: float


@dataclass(slots=True)
class FinancialGoal:
    title: str
    description: str


@dataclass(slots=True)
class FinancialInsights:
    """Advisory, non-authoritative read of the merged transactions."""

    summary: FinancialSummary
    insights: list[str] = field(default_factory=list)
    goal: FinancialGoal | None = None


@dataclass(frozen=True, slots=True)
class GoalInput:
    goal_name: str
    target_amount: float
    years: float


@dataclass(slots=True)
class GoalPlanStep:
    step: int
    action: str
    description: str


@dataclass(slots=True)
class GoalPlan:
    goal_name: str
    monthly_savings_target: float
    suggestions: list[str] = field(default_factory=list)
    plan: list[GoalPlanStep] = field(default_factory=list)
