"""Ordered, persisted collection of Jobs with id-based de-duplication."""
from __future__ import annotations

import threading
from collections import Counter
from dataclasses import replace
from typing import Any, Callable, Iterable, Sequence, TypeVar

from job_applier.errors import StateError
from job_applier.log import get_logger
from job_applier.models import Candidate, Job, JobStatus, check_transition
from job_applier.storage import JOBS_KEY, KeyValueStore

log = get_logger(__name__)

T = TypeVar("T")


def _parse(raw: Any) -> list[Job]:
    jobs: list[Job] = []
    for item in raw or []:
        try:
            jobs.append(Job.from_dict(item))
        except (KeyError, TypeError, ValueError) as exc:
            log.warning("Dropping unreadable job record %r: %s", item, exc)
    return jobs


class JobStore:
    """Job Record Store.

    Storage is authoritative: reads go to disk and every mutation is a
    read-modify-write of the on-disk list under the storage write lock, so
    several stores on one file never overwrite each other's changes. When a
    write fails the error is logged and kept in ``persist_error``; until the
    next successful write the in-memory copy wins and that write reconciles
    the file from it.
    """

    def __init__(self, storage: KeyValueStore) -> None:
        self.storage = storage
        self.persist_error: StateError | None = None
        self._lock = threading.RLock()
        self._jobs: list[Job] = []
        self.reload()

    def reload(self) -> None:
        with self._lock:
            if self.persist_error is None:
                self._jobs = _parse(self.storage.get(JOBS_KEY, []))

    def _snapshot(self) -> list[Job]:
        with self._lock:
            self.reload()
            return list(self._jobs)

    def _write(self, change: Callable[[list[Job]], T]) -> T:
        with self._lock:
            staged: list[list[Job]] = []
            results: list[T] = []

            def apply(raw: Any) -> list[dict[str, Any]]:
                if self.persist_error is not None:
                    jobs = [replace(j) for j in self._jobs]
                else:
                    jobs = _parse(raw)
                results.append(change(jobs))
                staged.append(jobs)
                return [j.to_dict() for j in jobs]

            try:
                self.storage.update(JOBS_KEY, apply)
            except StateError as exc:
                if not staged:
                    jobs = [replace(j) for j in self._jobs]
                    results.append(change(jobs))
                    staged.append(jobs)
                self.persist_error = exc
                log.error("Job queue not persisted, keeping in-memory copy: %s", exc)
            else:
                if self.persist_error is not None:
                    log.info("Job queue persisted again after earlier failure")
                self.persist_error = None
            self._jobs = staged[0]
            return results[0]

    def append_unique(self, candidates: Iterable[Candidate]) -> int:
        """Insert candidates whose id is not yet stored; returns how many were new."""
        batch = list(candidates)
        if not batch:
            return 0

        def add(jobs: list[Job]) -> int:
            seen = {j.id for j in jobs}
            fresh = 0
            for c in batch:
                if not c.id or c.id in seen:
                    continue
                seen.add(c.id)
                jobs.append(Job.from_candidate(c))
                fresh += 1
            return fresh

        inserted = self._write(add)
        if inserted:
            log.info("Queued %d new job(s), %d total", inserted, len(self._jobs))
        return inserted

    def find(self, job_id: str | None) -> Job | None:
        if not job_id:
            return None
        for job in self._snapshot():
            if job.id == job_id:
                return replace(job)
        return None

    def next_pending(self) -> Job | None:
        for job in self._snapshot():
            if job.status is JobStatus.PENDING:
                return replace(job)
        return None

    def update(self, job_id: str, mutator: Callable[[Job], None]) -> Job:
        """Atomic read-modify-write of one Job.

        ``mutator`` edits a copy of the stored record; a status change must
        follow the transition table or the whole mutation is discarded with
        ``InvalidTransition``.
        """

        def apply(jobs: list[Job]) -> Job:
            for index, job in enumerate(jobs):
                if job.id == job_id:
                    break
            else:
                raise KeyError(job_id)
            draft = replace(job)
            mutator(draft)
            draft.status = JobStatus(draft.status)
            if draft.id != job.id:
                raise ValueError("job id is immutable")
            if draft.status is not job.status:
                check_transition(job.id, job.status, draft.status)
                log.info("Job %s: %s -> %s", job.id, job.status.value, draft.status.value)
            jobs[index] = draft
            return replace(draft)

        return self._write(apply)

    def all(self) -> Sequence[Job]:
        """Snapshot of every Job in discovery order; later mutations are not reflected."""
        return tuple(replace(j) for j in self._snapshot())

    def toggle_star(self, job_id: str) -> Job:
        def flip(job: Job) -> None:
            job.starred = not job.starred

        return self.update(job_id, flip)

    def counts(self) -> dict[str, int]:
        tally = Counter(j.status.value for j in self._snapshot())
        return {status.value: tally.get(status.value, 0) for status in JobStatus}

    def clear(self) -> None:
        self._write(lambda jobs: jobs.clear())
        log.info("Job queue cleared")

    def __len__(self) -> int:
        return len(self._snapshot())
