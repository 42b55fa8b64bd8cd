"""Closed, tagged message protocol between the durable and ephemeral contexts.

Messages travel over the bus as plain dicts (``{"type": ..., ...}``) so
that they could cross a process boundary unchanged. ``decode`` is the only
way back into typed messages and rejects anything it does not recognise.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Union

from job_applier.errors import ProtocolError
from job_applier.models import ApplicationState, Candidate, Job


class MessageType(str, Enum):
    GET_STATE = "GET_STATE"
    UPDATE_STATE = "UPDATE_STATE"
    STATE = "STATE"
    ACK = "ACK"
    CONTINUE = "CONTINUE"
    LISTINGS_FOUND = "LISTINGS_FOUND"
    DESCRIPTION_FOUND = "DESCRIPTION_FOUND"
    SUBMIT_RESULT = "SUBMIT_RESULT"
    CLAIM = "CLAIM"
    RELEASE = "RELEASE"


@dataclass(frozen=True)
class GetState:
    type = MessageType.GET_STATE


@dataclass(frozen=True)
class UpdateState:
    partial: dict[str, Any]
    type = MessageType.UPDATE_STATE


@dataclass(frozen=True)
class StateReply:
    state: ApplicationState
    type = MessageType.STATE


@dataclass(frozen=True)
class Ack:
    ack: bool = True
    type = MessageType.ACK


@dataclass(frozen=True)
class Claim:
    """Ask for the pipeline cursor; answered with an Ack telling whether it was granted."""

    owner: str
    type = MessageType.CLAIM


@dataclass(frozen=True)
class Release:
    owner: str
    type = MessageType.RELEASE


@dataclass(frozen=True)
class Continue:
    job: Job
    type = MessageType.CONTINUE


@dataclass(frozen=True)
class ListingsFound:
    candidates: tuple[Candidate, ...] = field(default_factory=tuple)
    type = MessageType.LISTINGS_FOUND


@dataclass(frozen=True)
class DescriptionFound:
    job_id: str
    text: str | None = None
    error: str | None = None
    type = MessageType.DESCRIPTION_FOUND

    @property
    def ok(self) -> bool:
        return self.error is None and bool(self.text)


@dataclass(frozen=True)
class SubmitResult:
    job_id: str
    success: bool
    error: str | None = None
    type = MessageType.SUBMIT_RESULT


Message = Union[
    GetState, UpdateState, StateReply, Ack, Claim, Release,
    Continue, ListingsFound, DescriptionFound, SubmitResult,
]

STATE_FIELD_TYPES: dict[str, tuple[type, ...]] = {
    "is_processing": (bool,),
    "is_paused": (bool,),
    "current_job_id": (str, type(None)),
}


def encode(message: Message) -> dict[str, Any]:
    body: dict[str, Any] = {"type": message.type.value}
    if isinstance(message, UpdateState):
        body["partial"] = dict(message.partial)
    elif isinstance(message, StateReply):
        body["state"] = message.state.to_dict()
    elif isinstance(message, Ack):
        body["ack"] = message.ack
    elif isinstance(message, (Claim, Release)):
        body["owner"] = message.owner
    elif isinstance(message, Continue):
        body["job"] = message.job.to_dict()
    elif isinstance(message, ListingsFound):
        body["candidates"] = [c.to_dict() for c in message.candidates]
    elif isinstance(message, DescriptionFound):
        body["job_id"] = message.job_id
        if message.error is not None:
            body["error"] = message.error
        else:
            body["text"] = message.text
    elif isinstance(message, SubmitResult):
        body.update(job_id=message.job_id, success=message.success)
        if message.error is not None:
            body["error"] = message.error
    return body


def _require(raw: dict[str, Any], key: str, kind: type | tuple[type, ...]) -> Any:
    if key not in raw:
        raise ProtocolError(f"{raw.get('type')}: missing field {key!r}")
    value = raw[key]
    if not isinstance(value, kind):
        raise ProtocolError(f"{raw.get('type')}: field {key!r} has wrong type {type(value).__name__}")
    return value


def decode(raw: Any) -> Message:
    if not isinstance(raw, dict):
        raise ProtocolError(f"message must be a dict, got {type(raw).__name__}")
    try:
        kind = MessageType(raw.get("type"))
    except ValueError:
        raise ProtocolError(f"unknown message type {raw.get('type')!r}") from None

    try:
        if kind is MessageType.GET_STATE:
            return GetState()
        if kind is MessageType.UPDATE_STATE:
            partial = _require(raw, "partial", dict)
            unknown = set(partial) - set(ApplicationState.FIELDS)
            if unknown:
                raise ProtocolError(f"UPDATE_STATE: unknown state field(s) {sorted(unknown)}")
            for key, value in partial.items():
                if not isinstance(value, STATE_FIELD_TYPES[key]):
                    raise ProtocolError(f"UPDATE_STATE: field {key!r} has wrong type {type(value).__name__}")
            return UpdateState(partial=dict(partial))
        if kind is MessageType.STATE:
            return StateReply(state=ApplicationState.from_dict(_require(raw, "state", dict)))
        if kind is MessageType.ACK:
            return Ack(ack=bool(_require(raw, "ack", bool)))
        if kind is MessageType.CLAIM:
            return Claim(owner=_require(raw, "owner", str))
        if kind is MessageType.RELEASE:
            return Release(owner=_require(raw, "owner", str))
        if kind is MessageType.CONTINUE:
            return Continue(job=Job.from_dict(_require(raw, "job", dict)))
        if kind is MessageType.LISTINGS_FOUND:
            items = _require(raw, "candidates", list)
            return ListingsFound(candidates=tuple(Candidate.from_dict(c) for c in items))
        if kind is MessageType.DESCRIPTION_FOUND:
            job_id = _require(raw, "job_id", str)
            if raw.get("error") is not None:
                return DescriptionFound(job_id=job_id, error=str(raw["error"]))
            return DescriptionFound(job_id=job_id, text=_require(raw, "text", str))
        if kind is MessageType.SUBMIT_RESULT:
            job_id = _require(raw, "job_id", str)
            success = _require(raw, "success", bool)
            error = raw.get("error")
            return SubmitResult(job_id=job_id, success=success, error=str(error) if error is not None else None)
    except ProtocolError:
        raise
    except (KeyError, TypeError, ValueError) as exc:
        raise ProtocolError(f"{kind.value}: malformed payload: {exc}") from exc
    raise ProtocolError(f"unhandled message type {kind.value}")
