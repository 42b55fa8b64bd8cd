"""Score a posting and write a cover letter with an OpenAI-compatible chat model."""
from __future__ import annotations

import json
import re
from typing import Any

import openai
from openai import OpenAI

from job_applier.config import DEFAULT_MODEL
from job_applier.errors import AnalysisError, AnalysisKind
from job_applier.log import get_logger
from job_applier.models import AnalysisResult, Job, Profile
from job_applier.ports.base import Analyzer

log = get_logger(__name__)

_FENCE_RE = re.compile(r"^```(?:json)?\s*|\s*```$", re.MULTILINE)


def build_prompt(job: Job, profile: Profile) -> str:
    return f"""You are helping with job applications. Analyze this job posting and answer in JSON.

Job Title: {job.title}
Company: {job.organization}
Job Description: {(job.description or '')[:6000]}

Candidate CV: {profile.cv}
Candidate criteria: {profile.criteria}

Return:
1. matchScore: a number from 0-100 for how well this job fits the candidate's CV and criteria
2. coverLetter: a personalized cover letter for this job (concise, 2-3 paragraphs)
{f'Sign the letter as {profile.name}. ' if profile.name else ''}Do not use placeholders like [Your Name].

Respond with valid JSON only:
{{"matchScore": number, "coverLetter": "string"}}"""


def parse_analysis(text: str) -> AnalysisResult:
    """Turn the model's reply into an AnalysisResult or raise MALFORMED_RESPONSE."""
    cleaned = _FENCE_RE.sub("", (text or "").strip()).strip()
    try:
        data: Any = json.loads(cleaned)
    except json.JSONDecodeError as exc:
        raise AnalysisError(AnalysisKind.MALFORMED_RESPONSE, f"not JSON: {exc.msg}") from exc
    if not isinstance(data, dict):
        raise AnalysisError(AnalysisKind.MALFORMED_RESPONSE, "expected a JSON object")

    raw_score = data.get("matchScore")
    if isinstance(raw_score, bool) or not isinstance(raw_score, (int, float, str)):
        raise AnalysisError(AnalysisKind.MALFORMED_RESPONSE, "matchScore missing")
    try:
        score = round(float(raw_score))
    except (ValueError, OverflowError):
        raise AnalysisError(AnalysisKind.MALFORMED_RESPONSE, f"matchScore {raw_score!r} is not a number") from None
    if not 0 <= score <= 100:
        raise AnalysisError(AnalysisKind.MALFORMED_RESPONSE, f"matchScore {score} outside 0-100")

    letter = data.get("coverLetter")
    if not isinstance(letter, str) or not letter.strip():
        raise AnalysisError(AnalysisKind.MALFORMED_RESPONSE, "coverLetter missing")
    return AnalysisResult(compatibility_score=score, generated_content=letter.strip())


class LLMAnalyzer(Analyzer):
    def __init__(
        self,
        api_key: str,
        *,
        model: str = DEFAULT_MODEL,
        base_url: str | None = None,
        timeout: float = 60.0,
        client: OpenAI | None = None,
    ) -> None:
        self.model = model
        # one attempt per job; a failed analysis skips the job
        self.client = client or OpenAI(api_key=api_key, base_url=base_url or None, timeout=timeout, max_retries=0)

    def analyze(self, job: Job, profile: Profile) -> AnalysisResult:
        try:
            r = self.client.chat.completions.create(
                model=self.model,
                messages=[{"role": "user", "content": build_prompt(job, profile)}],
                max_tokens=1000,
                temperature=0.7,
            )
        except openai.APIStatusError as exc:
            raise AnalysisError(AnalysisKind.REQUEST_FAILED, exc.message, status=exc.status_code) from exc
        except openai.APIError as exc:
            raise AnalysisError(AnalysisKind.REQUEST_FAILED, str(exc)) from exc

        if not r.choices:
            raise AnalysisError(AnalysisKind.MALFORMED_RESPONSE, "no choices in response")
        result = parse_analysis(r.choices[0].message.content or "")
        log.info("Analyzed %s @ %s: score %d", job.title, job.organization, result.compatibility_score)
        return result
