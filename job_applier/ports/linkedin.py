"""
Playwright page adapter for LinkedIn job search.

Lists job cards, reads a posting's description and drives the Easy Apply
modal. Waits are poll-with-timeout on the element we need next; when it
never shows up the matching ExtractionError is raised.
"""
from __future__ import annotations

import re
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Callable, Iterator
from urllib.parse import quote_plus, urljoin

from playwright.sync_api import Error as PlaywrightError
from playwright.sync_api import sync_playwright

from job_applier.config import DATA_DIR
from job_applier.errors import ExtractionError, ExtractionKind
from job_applier.log import get_logger
from job_applier.models import Candidate, Job
from job_applier.polling import wait_for
from job_applier.ports.base import PageExtractor
from job_applier.retry import retry

log = get_logger(__name__)

SITE = "linkedin.com"
BASE_URL = "https://www.linkedin.com"
SEARCH_URL = BASE_URL + "/jobs/search/?keywords={}"

CARD_SELECTORS: list[str] = [
    ".jobs-search-results-list li",
    ".scaffold-layout__list-item",
    ".job-card-container",
    ".jobs-search__results-list li",
    "[data-job-id]",
]
TITLE_SELECTORS: list[str] = [
    ".job-card-list__title a",
    "a[data-control-name*='job']",
    ".job-card-container__link",
    "h3 a",
]
COMPANY_SELECTORS: list[str] = [
    ".artdeco-entity-lockup__subtitle",
    ".job-card-container__primary-description",
    ".job-card-container__company-name",
    "[data-control-name*='company']",
]
LINK_SELECTOR = "a[href*='/jobs/view/']"

DESCRIPTION_SELECTORS: list[str] = [
    "[data-testid='expandable-text-box']",
    ".jobs-description-content__text",
    ".jobs-box__html-content",
    ".jobs-description",
    ".job-details-jobs-unified-top-card__job-description",
    "[data-job-details='jobDescription']",
]
EASY_APPLY_SELECTORS: list[str] = [
    ".jobs-apply-button--top-card",
    "button[aria-label*='Easy Apply']",
    ".jobs-apply-button",
    ".jobs-s-apply button",
]
COVER_LETTER_SELECTORS: list[str] = [
    "textarea[name*='coverLetter']",
    "textarea[id*='coverLetter']",
    "textarea[aria-label*='cover letter' i]",
    ".jobs-easy-apply-form-section__grouping textarea",
]
SUBMIT_SELECTORS: list[str] = [
    "button[aria-label='Submit application']",
    ".jobs-easy-apply-modal button[type='submit']",
    ".artdeco-button--primary[aria-label*='Submit']",
]
APPLIED_SELECTORS: list[str] = [
    ".jobs-s-apply .artdeco-inline-feedback--success",
    ".artdeco-inline-feedback__message:has-text('Applied')",
]

_JOB_ID_RE = re.compile(r"/jobs/view/(\d+)")
_JOB_ID_PARAM_RE = re.compile(r"[?&](?:currentJobId|jobId)=(\d+)")
_MIN_FALLBACK_TEXT = 200


def _text(locator) -> str:
    try:
        if locator.count() == 0:
            return ""
        return (locator.first.inner_text(timeout=2000) or "").strip()
    except PlaywrightError:
        return ""


def _first_visible(page, selectors: list[str]):
    """First visible locator for any selector, or None. Never throws."""
    for sel in selectors:
        try:
            loc = page.locator(sel).first
            if loc.count() > 0 and loc.is_visible():
                return loc
        except PlaywrightError:
            continue
    return None


def job_id_from_url(url: str) -> str | None:
    m = _JOB_ID_RE.search(url or "") or _JOB_ID_PARAM_RE.search(url or "")
    return m.group(1) if m else None


class LinkedInPage(PageExtractor):
    def __init__(self, page, *, timeout: float = 10.0, sleep: Callable[[float], None] = time.sleep) -> None:
        self.page = page
        self.timeout = timeout
        self.sleep = sleep

    def _wait(self, probe):
        return wait_for(probe, timeout=self.timeout, interval=0.5, sleep=self.sleep)

    @retry(max_attempts=3, base_delay=1.5, retryable=(PlaywrightError,))
    def _goto(self, url: str) -> None:
        self.page.goto(url, wait_until="domcontentloaded", timeout=int(self.timeout * 1000) * 2)

    def _require_site(self) -> None:
        if SITE not in (self.page.url or ""):
            raise ExtractionError(ExtractionKind.NOT_ON_TARGET_SITE, self.page.url or "no page")

    def discover(self, keywords: str) -> list[Candidate]:
        self._require_site()
        self._goto(SEARCH_URL.format(quote_plus(keywords)))

        cards = self._wait(lambda: self.page.locator(", ".join(CARD_SELECTORS)).all() or None) or []
        log.info("Found %d job card(s) for %r", len(cards), keywords)

        candidates: list[Candidate] = []
        seen: set[str] = set()
        for card in cards:
            candidate = self._read_card(card)
            if candidate is None or candidate.id in seen:
                continue
            seen.add(candidate.id)
            candidates.append(candidate)
        return candidates

    def _read_card(self, card) -> Candidate | None:
        try:
            title = ""
            for sel in TITLE_SELECTORS:
                title = _text(card.locator(sel))
                if title:
                    break
            link = card.locator(LINK_SELECTOR)
            href = link.first.get_attribute("href") if link.count() else None
            if not title or not href:
                return None
            url = urljoin(BASE_URL, href)
            job_id = job_id_from_url(url) or card.get_attribute("data-job-id")
            if not job_id:
                log.debug("No job id for card %r", title)
                return None
            company = ""
            for sel in COMPANY_SELECTORS:
                company = _text(card.locator(sel))
                if company:
                    break
        except PlaywrightError as exc:
            log.debug("Unreadable job card: %s", exc)
            return None
        return Candidate(
            id=str(job_id),
            title=title.splitlines()[0].strip(),
            organization=company or "Unknown Company",
            source_url=url.split("?")[0],
        )

    def _read_description(self) -> str | None:
        for sel in DESCRIPTION_SELECTORS:
            text = _text(self.page.locator(sel))
            if text:
                return text
        # last resort: any substantial expandable text block
        try:
            for span in self.page.locator("span[tabindex='-1']").all():
                text = (span.inner_text(timeout=1000) or "").strip()
                if len(text) > _MIN_FALLBACK_TEXT:
                    return text
        except PlaywrightError:
            pass
        return None

    def extract_description(self, job: Job) -> str:
        self._goto(job.source_url)
        text = self._wait(self._read_description)
        if not text:
            raise ExtractionError(ExtractionKind.DESCRIPTION_NOT_FOUND, job.id)
        log.debug("Description for %s: %d chars", job.id, len(text))
        return text

    def _open_posting(self, job: Job) -> None:
        if job.id not in (self.page.url or ""):
            self._goto(job.source_url)

    def submit(self, job: Job, content: str) -> None:
        self._open_posting(job)
        easy = self._wait(lambda: _first_visible(self.page, EASY_APPLY_SELECTORS))
        if easy is None:
            raise ExtractionError(ExtractionKind.SUBMISSION_UNAVAILABLE, "Easy Apply button not found")
        try:
            easy.click()
            field = self._wait(lambda: _first_visible(self.page, COVER_LETTER_SELECTORS))
            if field is not None and content:
                field.fill(content[:3000])
            button = self._wait(lambda: _first_visible(self.page, SUBMIT_SELECTORS))
            if button is None or not button.is_enabled():
                raise ExtractionError(ExtractionKind.SUBMIT_FAILED, "Submit button not found or disabled")
            button.click()
        except PlaywrightError as exc:
            raise ExtractionError(ExtractionKind.SUBMIT_FAILED, str(exc).splitlines()[0][:150]) from exc
        log.info("Submitted application for %s", job.id)

    def is_submitted(self, job: Job) -> bool:
        self._open_posting(job)
        return self._wait(lambda: _first_visible(self.page, APPLIED_SELECTORS)) is not None


@contextmanager
def open_linkedin(
    *, headless: bool = False, timeout: float = 10.0, profile_dir: Path | None = None
) -> Iterator[LinkedInPage]:
    """Launch Chromium with a persistent profile so the LinkedIn login survives runs."""
    user_data = profile_dir or (DATA_DIR / "browser-profile")
    user_data.mkdir(parents=True, exist_ok=True)
    with sync_playwright() as p:
        context = p.chromium.launch_persistent_context(
            str(user_data),
            headless=headless,
            viewport={"width": 1280, "height": 900},
        )
        try:
            page = context.pages[0] if context.pages else context.new_page()
            page.set_default_timeout(int(timeout * 1000) * 2)
            if SITE not in (page.url or ""):
                page.goto(BASE_URL + "/jobs/", wait_until="domcontentloaded")
            yield LinkedInPage(page, timeout=timeout)
        finally:
            context.close()
