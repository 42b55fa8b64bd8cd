import os

os.environ.setdefault("APPLIER_LOG_FILE", "0")

from dataclasses import dataclass, field
from typing import Callable

import pytest

from job_applier.agent import Session, Supervisor
from job_applier.config import Settings
from job_applier.errors import ExtractionError, ExtractionKind
from job_applier.job_store import JobStore
from job_applier.models import AnalysisResult, Candidate, Job, Profile
from job_applier.ports.base import Analyzer, PageExtractor


def cand(job_id: str) -> Candidate:
    return Candidate(
        id=job_id,
        title=f"Role {job_id}",
        organization=f"Org {job_id}",
        source_url=f"https://www.linkedin.com/jobs/view/{job_id}/",
    )


class FakePage(PageExtractor):
    def __init__(self) -> None:
        self.listings: list[list[Candidate]] = []
        self.descriptions: dict[str, str] = {}
        self.submit_errors: dict[str, Exception] = {}
        self.already_applied: set[str] = set()
        self.on_site = True
        self.calls: list[tuple[str, str]] = []
        self.hooks: dict[str, Callable[[Job], None]] = {}

    def _hook(self, op: str, job: Job) -> None:
        if op in self.hooks:
            self.hooks[op](job)

    def discover(self, keywords: str) -> list[Candidate]:
        self.calls.append(("discover", keywords))
        if not self.on_site:
            raise ExtractionError(ExtractionKind.NOT_ON_TARGET_SITE, "https://example.com")
        return self.listings.pop(0) if self.listings else []

    def extract_description(self, job: Job) -> str:
        self.calls.append(("describe", job.id))
        self._hook("describe", job)
        if job.id not in self.descriptions:
            raise ExtractionError(ExtractionKind.DESCRIPTION_NOT_FOUND, job.id)
        return self.descriptions[job.id]

    def submit(self, job: Job, content: str) -> None:
        self.calls.append(("submit", job.id))
        self._hook("submit", job)
        if job.id in self.submit_errors:
            raise self.submit_errors[job.id]

    def is_submitted(self, job: Job) -> bool:
        self.calls.append(("verify", job.id))
        return job.id in self.already_applied

    def ops(self, op: str) -> list[str]:
        return [job_id for name, job_id in self.calls if name == op]


class FakeAnalyzer(Analyzer):
    def __init__(self) -> None:
        self.scores: dict[str, int] = {}
        self.failures: dict[str, Exception] = {}
        self.calls: list[str] = []
        self.hooks: dict[str, Callable[[Job], None]] = {}

    def analyze(self, job: Job, profile: Profile) -> AnalysisResult:
        self.calls.append(job.id)
        if "analyze" in self.hooks:
            self.hooks["analyze"](job)
        if job.id in self.failures:
            raise self.failures[job.id]
        return AnalysisResult(
            compatibility_score=self.scores.get(job.id, 70),
            generated_content=f"Dear {job.organization}, hire me for {job.title}.",
        )


@dataclass
class Harness:
    tmp_path: object
    settings: Settings
    page: FakePage = field(default_factory=FakePage)
    analyzer: FakeAnalyzer = field(default_factory=FakeAnalyzer)
    reviews: list[str] = field(default_factory=list)
    notices: list[str] = field(default_factory=list)
    supervisor: Supervisor | None = None

    def __post_init__(self) -> None:
        self.supervisor = Supervisor(self.settings.state_path)

    def session(self, supervisor: Supervisor | None = None) -> Session:
        return (supervisor or self.supervisor).open_session(
            self.page,
            self.analyzer,
            self.settings,
            sleep=lambda seconds: None,
            on_review=lambda job: self.reviews.append(job.id),
            on_notice=self.notices.append,
        )

    def restart_supervisor(self) -> None:
        """Simulate the durable context being rebuilt from disk."""
        self.supervisor = Supervisor(self.settings.state_path)

    def another_supervisor(self) -> Supervisor:
        """A second durable context on the same state file, as another CLI invocation would build."""
        return Supervisor(self.settings.state_path)

    def jobs(self) -> JobStore:
        return JobStore(self.supervisor.storage)

    def job(self, job_id: str) -> Job:
        job = self.jobs().find(job_id)
        assert job is not None
        return job

    def state(self):
        return self.supervisor.synchronizer.get_state()

    def assert_single_flight(self) -> None:
        state = self.state()
        if state.is_processing:
            job = self.jobs().find(state.current_job_id)
            assert job is not None
            assert not job.status.terminal


@pytest.fixture()
def settings(tmp_path) -> Settings:
    return Settings(
        keywords="backend engineer",
        criteria="remote, python",
        cv="Python developer, 6 years of backend work",
        name="Sam Doe",
        llm_api_key="sk-test",
        state_path=tmp_path / "state.json",
        settle_seconds=0,
    )


@pytest.fixture()
def harness(tmp_path, settings) -> Harness:
    return Harness(tmp_path=tmp_path, settings=settings)
