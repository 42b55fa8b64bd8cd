"""Data models for jobs, pipeline state and analysis results."""
from __future__ import annotations

from dataclasses import asdict, dataclass, field, fields
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from job_applier.errors import InvalidTransition


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="seconds")


class JobStatus(str, Enum):
    """Externally visible (persisted) status of a Job."""

    PENDING = "pending"
    REVIEWING = "reviewing"
    APPLYING = "applying"
    APPLIED = "applied"
    SKIPPED = "skipped"

    @property
    def terminal(self) -> bool:
        return self in (JobStatus.APPLIED, JobStatus.SKIPPED)


TRANSITIONS: dict[JobStatus, frozenset[JobStatus]] = {
    JobStatus.PENDING: frozenset({JobStatus.REVIEWING, JobStatus.SKIPPED}),
    JobStatus.REVIEWING: frozenset({JobStatus.APPLYING, JobStatus.SKIPPED}),
    JobStatus.APPLYING: frozenset({JobStatus.APPLIED, JobStatus.SKIPPED}),
    JobStatus.APPLIED: frozenset(),
    JobStatus.SKIPPED: frozenset(),
}


def can_transition(source: JobStatus, target: JobStatus) -> bool:
    return target in TRANSITIONS[source]


def check_transition(job_id: str, source: JobStatus, target: JobStatus) -> None:
    if not can_transition(source, target):
        raise InvalidTransition(job_id, source.value, target.value)


class Stage(str, Enum):
    """Controller-internal sub-stage; finer than JobStatus.

    extracting_description and analyzing are both persisted as ``pending``.
    """

    PENDING = "pending"
    EXTRACTING_DESCRIPTION = "extracting_description"
    ANALYZING = "analyzing"
    AWAITING_DECISION = "awaiting_decision"
    APPLYING = "applying"
    APPLIED = "applied"
    SKIPPED = "skipped"

    @property
    def visible(self) -> JobStatus:
        return _VISIBLE[self]


_VISIBLE: dict[Stage, JobStatus] = {
    Stage.PENDING: JobStatus.PENDING,
    Stage.EXTRACTING_DESCRIPTION: JobStatus.PENDING,
    Stage.ANALYZING: JobStatus.PENDING,
    Stage.AWAITING_DECISION: JobStatus.REVIEWING,
    Stage.APPLYING: JobStatus.APPLYING,
    Stage.APPLIED: JobStatus.APPLIED,
    Stage.SKIPPED: JobStatus.SKIPPED,
}

STAGE_TRANSITIONS: dict[Stage, frozenset[Stage]] = {
    Stage.PENDING: frozenset({Stage.EXTRACTING_DESCRIPTION}),
    Stage.EXTRACTING_DESCRIPTION: frozenset({Stage.ANALYZING, Stage.SKIPPED}),
    Stage.ANALYZING: frozenset({Stage.AWAITING_DECISION, Stage.SKIPPED}),
    Stage.AWAITING_DECISION: frozenset({Stage.APPLYING, Stage.SKIPPED}),
    Stage.APPLYING: frozenset({Stage.APPLIED, Stage.SKIPPED}),
    Stage.APPLIED: frozenset(),
    Stage.SKIPPED: frozenset(),
}


@dataclass(frozen=True)
class Candidate:
    """A listing as discovered on the target site, before it becomes a Job."""

    id: str
    title: str
    organization: str
    source_url: str

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Candidate":
        return cls(
            id=str(data["id"]),
            title=str(data.get("title", "")),
            organization=str(data.get("organization", "")),
            source_url=str(data.get("source_url", "")),
        )

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class Job:
    id: str
    title: str
    organization: str
    source_url: str
    status: JobStatus = JobStatus.PENDING
    starred: bool = False
    discovered_at: str = field(default_factory=utc_now)
    description: str | None = None
    compatibility_score: int | None = None
    generated_content: str | None = None
    last_error: str | None = None
    decided_at: str | None = None
    submitted_at: str | None = None

    @classmethod
    def from_candidate(cls, candidate: Candidate) -> "Job":
        return cls(
            id=candidate.id,
            title=candidate.title,
            organization=candidate.organization,
            source_url=candidate.source_url,
        )

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Job":
        known = {f.name for f in fields(cls)}
        kwargs = {k: v for k, v in data.items() if k in known}
        kwargs["status"] = JobStatus(kwargs.get("status", JobStatus.PENDING.value))
        return cls(**kwargs)

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["status"] = self.status.value
        return data


@dataclass(frozen=True)
class ApplicationState:
    is_processing: bool = False
    is_paused: bool = False
    current_job_id: str | None = None

    FIELDS = ("is_processing", "is_paused", "current_job_id")

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "ApplicationState":
        data = data or {}
        current = data.get("current_job_id")
        return cls(
            is_processing=bool(data.get("is_processing", False)),
            is_paused=bool(data.get("is_paused", False)),
            current_job_id=str(current) if current else None,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "is_processing": self.is_processing,
            "is_paused": self.is_paused,
            "current_job_id": self.current_job_id,
        }

    def merged(self, partial: dict[str, Any]) -> "ApplicationState":
        """Field-level last-write-wins merge; unknown keys are ignored."""
        data = self.to_dict()
        for key in self.FIELDS:
            if key in partial:
                data[key] = partial[key]
        return ApplicationState.from_dict(data)


@dataclass(frozen=True)
class AnalysisResult:
    compatibility_score: int
    generated_content: str


@dataclass
class Profile:
    keywords: str
    criteria: str
    cv: str
    name: str = ""
