"""Canonical ApplicationState (durable side) and its read cache (ephemeral side)."""
from __future__ import annotations

import threading
import uuid
from typing import IO, Any

from job_applier.bus import MessageBus
from job_applier.errors import DeliveryError, ProtocolError, StateError
from job_applier.job_store import JobStore
from job_applier.log import get_logger
from job_applier.models import ApplicationState, Job
from job_applier.protocol import Ack, Claim, Continue, GetState, Message, Release, StateReply, UpdateState
from job_applier.storage import STATE_KEY, KeyValueStore

log = get_logger(__name__)


class StateSynchronizer:
    """Single writer of ApplicationState.

    Lives in the durable context. Storage is authoritative: reads reload it
    and every merge is a read-modify-write against it, so several
    synchronizers on one file (one per CLI invocation) see each other's
    changes. A merge that leaves ``is_processing`` set nudges attached
    contexts with ``CONTINUE`` unless this side already granted the cursor
    to one of them.

    The cursor lease is the ``.lease`` sidecar lock of ``storage``. At most
    one owner holds it across every process sharing the file; it is freed
    on ``release`` or when the holding process exits.
    """

    def __init__(self, storage: KeyValueStore, jobs: JobStore | None = None) -> None:
        self.storage = storage
        self.jobs = jobs if jobs is not None else JobStore(storage)
        self.bus: MessageBus | None = None
        self.persist_error: StateError | None = None
        self._lock = threading.RLock()
        self._leases: dict[str, IO[str]] = {}
        self._state = ApplicationState.from_dict(storage.get(STATE_KEY))
        if self._state.is_processing:
            log.info("Restored in-flight state: %s", self._state)

    def bind(self, bus: MessageBus) -> None:
        self.bus = bus
        bus.serve(self.handle)

    def _resolve(self, job_id: str | None) -> Job | None:
        if not job_id:
            return None
        return self.jobs.find(job_id)

    def _persist(self) -> bool:
        try:
            self.storage.set(STATE_KEY, self._state.to_dict())
        except StateError as exc:
            self.persist_error = exc
            log.error("Application state not persisted, keeping in-memory copy: %s", exc)
            return False
        self.persist_error = None
        return True

    def _current(self) -> ApplicationState:
        """Stored state, or the in-memory copy while it holds an unsaved change."""
        with self._lock:
            if self.persist_error is None:
                self._state = ApplicationState.from_dict(self.storage.get(STATE_KEY))
            return self._state

    def get_state(self) -> ApplicationState:
        state = self._current()
        if state.current_job_id and self._resolve(state.current_job_id) is None:
            # dangling weak reference, e.g. after the queue was cleared elsewhere
            return ApplicationState(is_processing=state.is_processing, is_paused=state.is_paused)
        return state

    def update_state(self, partial: dict[str, Any]) -> bool:
        with self._lock:
            unsaved = self._state if self.persist_error is not None else None

            def merge(raw: Any) -> dict[str, Any]:
                base = unsaved if unsaved is not None else ApplicationState.from_dict(raw)
                return base.merged(partial).to_dict()

            try:
                self._state = ApplicationState.from_dict(self.storage.update(STATE_KEY, merge))
            except StateError as exc:
                self._state = self._state.merged(partial)
                self.persist_error = exc
                log.error("Application state not persisted, keeping in-memory copy: %s", exc)
                ok = False
            else:
                self.persist_error = None
                ok = True
            merged = self._state
            driving = bool(self._leases)
        log.debug("State -> %s", merged)
        if merged.is_processing and not driving:
            job = self._resolve(merged.current_job_id)
            if job is not None:
                self.notify_continue(job)
        return ok

    def notify_continue(self, job: Job) -> bool:
        """Best effort: tell attached contexts to keep going with ``job``."""
        if self.bus is None:
            log.info("No bus bound, cannot ask anyone to continue %s", job.id)
            return False
        try:
            self.bus.notify(Continue(job=job))
        except DeliveryError as exc:
            log.info("Continue for %s not delivered (%s); waiting for a context to attach", job.id, exc)
            return False
        return True

    def claim(self, owner: str) -> bool:
        """Grant the pipeline cursor to ``owner`` unless someone else holds it."""
        with self._lock:
            if owner in self._leases:
                return True
            try:
                handle = self.storage.try_lease()
            except StateError as exc:
                log.error("Cursor lease unavailable: %s", exc)
                return False
            if handle is None:
                log.info("Cursor is held by another context; %s refused", owner)
                return False
            self._leases[owner] = handle
        log.debug("Cursor granted to %s", owner)
        return True

    def release(self, owner: str) -> bool:
        with self._lock:
            handle = self._leases.pop(owner, None)
        if handle is None:
            return False
        self.storage.release_lease(handle)
        log.debug("Cursor released by %s", owner)
        return True

    def reset(self) -> bool:
        with self._lock:
            self._state = ApplicationState()
            return self._persist()

    def clear_all(self) -> None:
        """Drop every Job and return ApplicationState to its initial value."""
        self.jobs.clear()
        self.reset()
        log.info("All pipeline data cleared")

    def handle(self, message: Message) -> Message:
        if isinstance(message, GetState):
            return StateReply(state=self.get_state())
        if isinstance(message, UpdateState):
            return Ack(ack=self.update_state(message.partial))
        if isinstance(message, Claim):
            return Ack(ack=self.claim(message.owner))
        if isinstance(message, Release):
            return Ack(ack=self.release(message.owner))
        raise ProtocolError(f"durable context does not accept {message.type.value}")


class StateClient:
    """Ephemeral-side view of ApplicationState; never mutates it locally.

    ``owner`` identifies this client when it claims the pipeline cursor.
    """

    def __init__(self, bus: MessageBus, owner: str | None = None) -> None:
        self.bus = bus
        self.owner = owner or uuid.uuid4().hex
        self.cached = ApplicationState()

    def _ack(self, message: Message) -> bool:
        reply = self.bus.request(message)
        if not isinstance(reply, Ack):
            raise ProtocolError(f"{message.type.value} answered with {reply.type.value}")
        return reply.ack

    def refresh(self) -> ApplicationState:
        reply = self.bus.request(GetState())
        if not isinstance(reply, StateReply):
            raise ProtocolError(f"GET_STATE answered with {reply.type.value}")
        self.cached = reply.state
        return self.cached

    def update(self, **partial: Any) -> ApplicationState:
        if not self._ack(UpdateState(partial=partial)):
            log.warning("State update %s accepted but not persisted", partial)
        return self.refresh()

    def claim(self) -> bool:
        return self._ack(Claim(owner=self.owner))

    def release(self) -> None:
        self._ack(Release(owner=self.owner))
