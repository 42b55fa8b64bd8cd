from abc import ABC, abstractmethod

from job_applier.models import AnalysisResult, Candidate, Job, Profile


class PageExtractor(ABC):
    @abstractmethod
    def discover(self, keywords: str) -> list[Candidate]:
        pass

    @abstractmethod
    def extract_description(self, job: Job) -> str:
        pass

    @abstractmethod
    def submit(self, job: Job, content: str) -> None:
        pass

    def is_submitted(self, job: Job) -> bool:
        """Whether the site already shows ``job`` as applied; used before resubmitting."""
        return False


class Analyzer(ABC):
    @abstractmethod
    def analyze(self, job: Job, profile: Profile) -> AnalysisResult:
        pass
