"""
Pipeline controller.

Drives each Job: pending → (extract description → analyze) → reviewing →
applying → applied | skipped. One logical cursor across every context
sharing the state file: a local lock plus a lease granted by the durable
side. A request made while either is held elsewhere is refused, so at most
one Job is ever in flight. Any failure of an external call is terminal for
that Job only.
"""
from __future__ import annotations

import threading
import time
from contextlib import contextmanager
from typing import Callable, Iterator

from job_applier.errors import InvalidTransition, ProtocolError
from job_applier.job_store import JobStore
from job_applier.log import get_logger
from job_applier.models import STAGE_TRANSITIONS, Job, JobStatus, Profile, Stage, utc_now
from job_applier.ports.base import Analyzer, PageExtractor
from job_applier.protocol import Continue, DescriptionFound, ListingsFound, Message, SubmitResult
from job_applier.synchronizer import StateClient

log = get_logger(__name__)


class PipelineController:
    def __init__(
        self,
        jobs: JobStore,
        client: StateClient,
        extractor: PageExtractor,
        analyzer: Analyzer,
        profile: Profile,
        *,
        settle_seconds: float = 1.0,
        sleep: Callable[[float], None] = time.sleep,
        preflight: Callable[[], None] | None = None,
        on_review: Callable[[Job], None] | None = None,
        on_notice: Callable[[str], None] | None = None,
    ) -> None:
        self.jobs = jobs
        self.client = client
        self.extractor = extractor
        self.analyzer = analyzer
        self.profile = profile
        self.settle_seconds = settle_seconds
        self.sleep = sleep
        self.preflight = preflight
        self.on_review = on_review
        self.on_notice = on_notice
        self.stage: Stage | None = None
        self.review_job: Job | None = None
        self.in_flight: str | None = None
        self._cursor = threading.Lock()

    # ------------------------------------------------------------------
    # plumbing
    # ------------------------------------------------------------------

    @contextmanager
    def _single_flight(self) -> Iterator[bool]:
        """Hold the local cursor and the durable lease for the duration of a request."""
        acquired = self._cursor.acquire(blocking=False)
        if not acquired:
            log.warning("Pipeline is busy with %s; request ignored", self.in_flight or "another request")
        else:
            try:
                claimed = self.client.claim()
            except BaseException:
                self._cursor.release()
                raise
            if not claimed:
                self._cursor.release()
                acquired = False
                log.warning("Another context is driving the pipeline; request ignored")
        try:
            yield acquired
        finally:
            if acquired:
                self.in_flight = None
                try:
                    self.client.release()
                finally:
                    self._cursor.release()

    @property
    def busy(self) -> bool:
        return self._cursor.locked()

    def _notice(self, message: str) -> None:
        log.info(message)
        if self.on_notice is not None:
            self.on_notice(message)

    def _enter_stage(self, job_id: str, stage: Stage) -> None:
        if self.stage is not None and stage not in STAGE_TRANSITIONS[self.stage]:
            raise InvalidTransition(job_id, self.stage.value, stage.value)
        self.stage = stage

    def _skip(self, job_id: str, reason: str) -> None:
        def mark(job: Job) -> None:
            job.status = JobStatus.SKIPPED
            job.last_error = reason

        try:
            self.jobs.update(job_id, mark)
        except InvalidTransition as exc:
            log.error("Could not skip %s: %s", job_id, exc)
            return
        self.stage = Stage.SKIPPED
        log.warning("Skipped %s: %s", job_id, reason)

    def _advance(self) -> Job | None:
        """Point the state at the next pending Job, or mark the queue drained."""
        nxt = self.jobs.next_pending()
        if nxt is None:
            self.client.update(is_processing=False, current_job_id=None)
            self.stage = None
            self._notice("All jobs have been processed")
        else:
            self.client.update(current_job_id=nxt.id)
        return nxt

    # ------------------------------------------------------------------
    # scheduling loop
    # ------------------------------------------------------------------

    def _run(self, job: Job | None) -> None:
        """Must be called with the cursor held."""
        while job is not None:
            if self.client.refresh().is_paused:
                log.info("Paused; not starting %s", job.id)
                return
            current = self.jobs.find(job.id)
            if current is None or current.status is not JobStatus.PENDING:
                job = self._advance()
                continue

            self.in_flight = current.id
            self.client.update(is_processing=True, current_job_id=current.id)
            self.stage = Stage.PENDING
            self._notice(f"Processing: {current.title} at {current.organization}")

            if self._prepare(current):
                self._surface(current.id)
                return
            job = self._advance()
            if job is not None:
                self.sleep(self.settle_seconds)

    def _prepare(self, job: Job) -> bool:
        """Extract + analyze. True when the Job reached ``reviewing``."""
        self._enter_stage(job.id, Stage.EXTRACTING_DESCRIPTION)
        try:
            text = self.extractor.extract_description(job)
            found = DescriptionFound(job_id=job.id, text=text)
        except Exception as exc:
            found = DescriptionFound(job_id=job.id, error=str(exc) or exc.__class__.__name__)
        return self._accept_description(found)

    def _accept_description(self, found: DescriptionFound) -> bool:
        if not found.ok:
            self._enter_stage(found.job_id, Stage.SKIPPED)
            self._skip(found.job_id, f"Description extraction failed: {found.error or 'empty description'}")
            return False

        def set_description(job: Job) -> None:
            job.description = found.text

        job = self.jobs.update(found.job_id, set_description)
        self._enter_stage(job.id, Stage.ANALYZING)
        try:
            result = self.analyzer.analyze(job, self.profile)
            score = int(result.compatibility_score)
            if not 0 <= score <= 100:
                raise ValueError(f"score {score} outside 0-100")
            content = result.generated_content
        except Exception as exc:
            self._enter_stage(job.id, Stage.SKIPPED)
            self._skip(job.id, f"Analysis failed: {exc}")
            return False

        def set_review(j: Job) -> None:
            j.compatibility_score = score
            j.generated_content = content
            j.status = JobStatus.REVIEWING

        self.jobs.update(job.id, set_review)
        self._enter_stage(job.id, Stage.AWAITING_DECISION)
        return True

    def _surface(self, job_id: str) -> None:
        """Stop and hand the Job to the user; never auto-advance past a decision."""
        self.client.update(is_processing=False, current_job_id=job_id)
        job = self.jobs.find(job_id)
        self.review_job = job
        self.stage = Stage.AWAITING_DECISION
        if job is None:
            return
        self._notice(f"Review {job.title} at {job.organization} (score {job.compatibility_score})")
        if self.on_review is not None:
            self.on_review(job)

    def _submit(self, job: Job) -> None:
        try:
            self.extractor.submit(job, job.generated_content or "")
            result = SubmitResult(job_id=job.id, success=True)
        except Exception as exc:
            result = SubmitResult(job_id=job.id, success=False, error=str(exc) or exc.__class__.__name__)
        self._accept_submit(result)

    def _accept_submit(self, result: SubmitResult) -> None:
        if not result.success:
            self._enter_stage(result.job_id, Stage.SKIPPED)
            self._skip(result.job_id, result.error or "Application submission failed")
            return

        def mark(job: Job) -> None:
            job.status = JobStatus.APPLIED
            job.submitted_at = utc_now()

        job = self.jobs.update(result.job_id, mark)
        self._enter_stage(job.id, Stage.APPLIED)
        self._notice(f"Applied to {job.title} at {job.organization}")

    def _continue_after(self) -> None:
        nxt = self._advance()
        if nxt is not None:
            self.sleep(self.settle_seconds)
            self._run(nxt)

    # ------------------------------------------------------------------
    # user actions
    # ------------------------------------------------------------------

    def start(self) -> int:
        """Discover listings, queue the new ones and work through the queue.

        Pre-flight problems (profile, wrong site) propagate before any Job or
        state is touched. Returns the number of newly queued Jobs.
        """
        if self.preflight is not None:
            self.preflight()
        with self._single_flight() as ok:
            if not ok:
                return 0
            candidates = self.extractor.discover(self.profile.keywords)
            inserted = self._accept_listings(ListingsFound(candidates=tuple(candidates)))
            self._kick_off()
            return inserted

    def _kick_off(self) -> None:
        self.client.update(is_paused=False)
        waiting = self._pending_decision()
        if waiting is not None:
            # a decision is still open; surface it instead of moving on
            self._surface(waiting.id)
            return
        self._run(self._advance())

    def _pending_decision(self) -> Job | None:
        current = self.jobs.find(self.client.cached.current_job_id)
        if current is not None and current.status is JobStatus.REVIEWING:
            return current
        for job in self.jobs.all():
            if job.status is JobStatus.REVIEWING:
                return job
        return None

    def _accept_listings(self, found: ListingsFound) -> int:
        if not found.candidates:
            self._notice("No jobs found; try different keywords")
            return 0
        inserted = self.jobs.append_unique(found.candidates)
        if inserted:
            self._notice(f"Found {inserted} new job(s)")
        else:
            self._notice("No new jobs; all listings are already queued")
        return inserted

    def pause(self) -> None:
        """Cooperative: observed before the next Job is selected."""
        self.client.update(is_paused=True, is_processing=False)
        self._notice("Processing paused")

    def _decision_target(self) -> Job | None:
        self.client.refresh()
        job = self._pending_decision()
        if job is None:
            log.warning("No job is awaiting a decision")
        return job

    def approve(self) -> Job | None:
        with self._single_flight() as ok:
            if not ok:
                return None
            job = self._decision_target()
            if job is None:
                return None
            self.review_job = None
            self.stage = Stage.AWAITING_DECISION
            self.in_flight = job.id
            self.client.update(is_processing=True, is_paused=False, current_job_id=job.id)

            def mark(j: Job) -> None:
                j.status = JobStatus.APPLYING
                j.decided_at = utc_now()

            job = self.jobs.update(job.id, mark)
            self._enter_stage(job.id, Stage.APPLYING)
            self._notice(f"Applying to {job.title}...")
            self._submit(job)
            decided = self.jobs.find(job.id)
            self._continue_after()
            return decided

    def decline(self) -> Job | None:
        with self._single_flight() as ok:
            if not ok:
                return None
            job = self._decision_target()
            if job is None:
                return None
            self.review_job = None
            self.stage = Stage.AWAITING_DECISION

            def mark(j: Job) -> None:
                j.status = JobStatus.SKIPPED
                j.decided_at = utc_now()

            job = self.jobs.update(job.id, mark)
            self._enter_stage(job.id, Stage.SKIPPED)
            self._notice(f"Skipped {job.title}")
            self.client.update(is_paused=False)
            self._continue_after()
            return job

    def process_specific(self, job_id: str) -> bool:
        job = self.jobs.find(job_id)
        if job is None:
            log.warning("No job with id %s", job_id)
            return False
        if job.status is not JobStatus.PENDING:
            log.warning("Job %s is %s, not pending", job_id, job.status.value)
            return False
        with self._single_flight() as ok:
            if not ok:
                return False
            self.client.update(is_paused=False)
            self._run(job)
            return True

    # ------------------------------------------------------------------
    # resumption and pushed messages
    # ------------------------------------------------------------------

    def resume(self) -> bool:
        """Pick up where the last context left off. True if anything was resumed."""
        self.jobs.reload()
        state = self.client.refresh()
        job = self.jobs.find(state.current_job_id)

        if job is not None and job.status is JobStatus.REVIEWING:
            self.stage = Stage.AWAITING_DECISION
            self._surface(job.id)
            return True
        if not state.is_processing or state.is_paused:
            return False

        with self._single_flight() as ok:
            if not ok:
                return False
            if job is None or job.status.terminal:
                log.info("Resuming from the next pending job")
                self._run(self._advance())
            elif job.status is JobStatus.PENDING:
                log.info("Resuming %s at description extraction", job.id)
                self._run(job)
            elif job.status is JobStatus.APPLYING:
                self._resume_submission(job)
                self._continue_after()
            return True

    def _resume_submission(self, job: Job) -> None:
        self.in_flight = job.id
        self.stage = Stage.APPLYING
        try:
            already = self.extractor.is_submitted(job)
        except Exception as exc:
            log.warning("Could not verify earlier submission of %s: %s", job.id, exc)
            already = False
        if already:
            log.info("Job %s already shows as applied; not resubmitting", job.id)
            self._accept_submit(SubmitResult(job_id=job.id, success=True))
            return
        log.info("Re-attempting submission for %s", job.id)
        self._submit(job)

    def handle(self, message: Message) -> None:
        """Entry point for notifications delivered to this context."""
        if isinstance(message, Continue):
            if self.busy:
                log.debug("Continue for %s ignored; already running", message.job.id)
                return
            self.resume()
            return
        if isinstance(message, ListingsFound):
            with self._single_flight() as ok:
                if ok:
                    self._accept_listings(message)
                    self._kick_off()
            return
        if isinstance(message, DescriptionFound):
            with self._single_flight() as ok:
                if ok and self._expects(message.job_id, JobStatus.PENDING):
                    self.in_flight = message.job_id
                    self.stage = Stage.EXTRACTING_DESCRIPTION
                    if self._accept_description(message):
                        self._surface(message.job_id)
                    else:
                        self._continue_after()
            return
        if isinstance(message, SubmitResult):
            with self._single_flight() as ok:
                if ok and self._expects(message.job_id, JobStatus.APPLYING):
                    self.in_flight = message.job_id
                    self.stage = Stage.APPLYING
                    self._accept_submit(message)
                    self._continue_after()
            return
        raise ProtocolError(f"ephemeral context does not accept {message.type.value}")

    def _expects(self, job_id: str, status: JobStatus) -> bool:
        state = self.client.refresh()
        job = self.jobs.find(job_id)
        if state.current_job_id != job_id or job is None or job.status is not status:
            log.warning("Ignoring stale result for %s", job_id)
            return False
        return True
