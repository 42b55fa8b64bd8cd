"""Offline page and analyzer for dry runs without a browser or API key."""
from __future__ import annotations

import re
from datetime import datetime, timezone

from job_applier.errors import ExtractionError, ExtractionKind
from job_applier.log import get_logger
from job_applier.models import AnalysisResult, Candidate, Job, Profile
from job_applier.ports.base import Analyzer, PageExtractor

log = get_logger(__name__)

_WORD_RE = re.compile(r"[a-z0-9+#]{3,}")


def _mock_id(suffix: str) -> str:
    """Date-based ID so mock listings are treated as new each day."""
    return f"mock-{datetime.now(timezone.utc).strftime('%Y-%m-%d')}-{suffix}"


_POSTINGS: list[tuple[str, str, str]] = [
    ("1", "TechCorp", "Kubernetes, cloud, incident response. 5+ years of Python."),
    ("2", "CloudScale SaaS", "SRE, distributed systems, customer-facing escalations."),
    ("3", "Enterprise Platform Inc", ""),
]


class MockPage(PageExtractor):
    """Three canned listings; the third has no readable description."""

    def __init__(self) -> None:
        self.submitted: set[str] = set()

    def discover(self, keywords: str) -> list[Candidate]:
        title = keywords.strip().title() or "Software Engineer"
        log.info("MockPage generating sample listings")
        candidates = []
        for suffix, company, _ in _POSTINGS:
            job_id = _mock_id(suffix)
            candidates.append(
                Candidate(
                    id=job_id,
                    title=title,
                    organization=company,
                    source_url=f"https://example.com/jobs/view/{job_id}",
                )
            )
        return candidates

    def extract_description(self, job: Job) -> str:
        suffix = job.id.rsplit("-", 1)[-1]
        text = next((desc for key, _, desc in _POSTINGS if key == suffix), "")
        if not text:
            raise ExtractionError(ExtractionKind.DESCRIPTION_NOT_FOUND, job.id)
        return text

    def submit(self, job: Job, content: str) -> None:
        self.submitted.add(job.id)
        log.info("MockPage accepted application for %s (%d chars)", job.id, len(content))

    def is_submitted(self, job: Job) -> bool:
        return job.id in self.submitted


def _words(text: str) -> set[str]:
    return set(_WORD_RE.findall((text or "").lower()))


class MockAnalyzer(Analyzer):
    """Word-overlap score and a template cover letter."""

    def analyze(self, job: Job, profile: Profile) -> AnalysisResult:
        wanted = _words(profile.cv) | _words(profile.criteria)
        offered = _words(job.description or "") | _words(job.title)
        score = round(100 * len(wanted & offered) / len(offered)) if offered else 0
        return AnalysisResult(compatibility_score=min(score, 100), generated_content=template_letter(job, profile))


def template_letter(job: Job, profile: Profile) -> str:
    name = profile.name or "Candidate"
    return f"""Dear Hiring Team,

I am writing to apply for the {job.title} position at {job.organization}.

My experience aligns with what you describe, and I would welcome the opportunity to discuss how my background can contribute to your team.

Best regards,
{name}"""
