"""Error taxonomy for the pipeline and its collaborators."""
from __future__ import annotations

from enum import Enum


class ApplierError(Exception):
    """Base class for every error raised by this package."""


class ExtractionKind(str, Enum):
    NOT_ON_TARGET_SITE = "not_on_target_site"
    DESCRIPTION_NOT_FOUND = "description_not_found"
    SUBMISSION_UNAVAILABLE = "submission_unavailable"
    SUBMIT_FAILED = "submit_failed"


class ExtractionError(ApplierError):
    """The page environment could not list, read or submit."""

    def __init__(self, kind: ExtractionKind, reason: str = "") -> None:
        self.kind = kind
        self.reason = reason
        super().__init__(f"{kind.value}: {reason}" if reason else kind.value)


class AnalysisKind(str, Enum):
    REQUEST_FAILED = "request_failed"
    MALFORMED_RESPONSE = "malformed_response"


class AnalysisError(ApplierError):
    """The analysis provider failed or answered with something unusable."""

    def __init__(self, kind: AnalysisKind, detail: str = "", status: int | None = None) -> None:
        self.kind = kind
        self.status = status
        self.detail = detail
        msg = kind.value
        if status is not None:
            msg += f" (HTTP {status})"
        if detail:
            msg += f": {detail}"
        super().__init__(msg)


class StateError(ApplierError):
    """Durable storage could not be written."""

    PERSIST_FAILED = "persist_failed"

    def __init__(self, key: str, cause: BaseException | None = None) -> None:
        self.kind = self.PERSIST_FAILED
        self.key = key
        self.cause = cause
        super().__init__(f"{self.PERSIST_FAILED}: {key}: {cause}" if cause else f"{self.PERSIST_FAILED}: {key}")


class InvalidTransition(ApplierError):
    def __init__(self, job_id: str, source: str, target: str) -> None:
        self.job_id = job_id
        self.source = source
        self.target = target
        super().__init__(f"job {job_id}: {source} -> {target} is not allowed")


class ProtocolError(ApplierError):
    """A message failed validation at the bus boundary."""


class DeliveryError(ApplierError):
    """Nobody is attached on the receiving side of the bus."""


class PreflightError(ApplierError):
    """The pipeline cannot start; nothing was mutated."""

    def __init__(self, problems: list[str]) -> None:
        self.problems = list(problems)
        super().__init__("; ".join(self.problems))
