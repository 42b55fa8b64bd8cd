"""
Wiring for the two execution contexts.

``Supervisor`` is the durable context: it owns storage, the bus and the
canonical ApplicationState. ``Session`` is an ephemeral context: it attaches
to the bus, refreshes its state cache, resumes whatever was in flight, and
may be thrown away at any point.
"""
from __future__ import annotations

import time
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Callable, Iterator

from job_applier.bus import MessageBus
from job_applier.config import Settings, ensure_dirs
from job_applier.controller import PipelineController
from job_applier.job_store import JobStore
from job_applier.log import get_logger
from job_applier.models import Job
from job_applier.ports.base import Analyzer, PageExtractor
from job_applier.protocol import Message
from job_applier.storage import KeyValueStore
from job_applier.synchronizer import StateClient, StateSynchronizer

log = get_logger(__name__)


class Supervisor:
    def __init__(self, state_path: Path, bus: MessageBus | None = None) -> None:
        self.storage = KeyValueStore(state_path)
        self.bus = bus or MessageBus()
        self.synchronizer = StateSynchronizer(self.storage)
        self.synchronizer.bind(self.bus)

    def open_session(
        self,
        extractor: PageExtractor,
        analyzer: Analyzer,
        settings: Settings,
        **kwargs: Any,
    ) -> "Session":
        return Session(self.bus, self.storage, extractor, analyzer, settings, **kwargs)

    def clear_all(self) -> None:
        self.synchronizer.clear_all()


class Session:
    def __init__(
        self,
        bus: MessageBus,
        storage: KeyValueStore,
        extractor: PageExtractor,
        analyzer: Analyzer,
        settings: Settings,
        *,
        need_credential: bool = True,
        sleep: Callable[[float], None] = time.sleep,
        on_review: Callable[[Job], None] | None = None,
        on_notice: Callable[[str], None] | None = None,
    ) -> None:
        self.bus = bus
        self.jobs = JobStore(storage)
        self.client = StateClient(bus)
        self.controller = PipelineController(
            self.jobs,
            self.client,
            extractor,
            analyzer,
            settings.profile,
            settle_seconds=settings.settle_seconds,
            sleep=sleep,
            preflight=lambda: settings.validate(need_credential=need_credential),
            on_review=on_review,
            on_notice=on_notice,
        )
        self._token: int | None = None

    def attach(self, *, resume: bool = True) -> bool:
        """Join the bus, refresh the state cache and resume. True if work resumed."""
        if self._token is None:
            self._token = self.bus.attach(self._on_message)
        state = self.client.refresh()
        log.debug("Attached with state %s", state)
        return self.controller.resume() if resume else False

    def detach(self) -> None:
        if self._token is not None:
            self.bus.detach(self._token)
            self._token = None

    def _on_message(self, message: Message) -> None:
        self.controller.handle(message)

    def __enter__(self) -> "Session":
        self.attach()
        return self

    def __exit__(self, *exc: Any) -> None:
        self.detach()


@contextmanager
def open_ports(settings: Settings, *, mock: bool = False) -> Iterator[tuple[PageExtractor, Analyzer]]:
    """Real browser + LLM ports, or the offline pair when ``mock`` is set."""
    if mock:
        from job_applier.ports.mock import MockAnalyzer, MockPage

        yield MockPage(), MockAnalyzer()
        return

    from job_applier.ports.linkedin import open_linkedin
    from job_applier.ports.llm import LLMAnalyzer

    analyzer = LLMAnalyzer(
        settings.llm_api_key,
        model=settings.llm_model,
        base_url=settings.llm_base_url or None,
    )
    with open_linkedin(headless=settings.headless, timeout=settings.page_timeout) as page:
        yield page, analyzer


def build(settings: Settings) -> Supervisor:
    ensure_dirs(settings)
    return Supervisor(settings.state_path)
