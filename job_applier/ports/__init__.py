from .base import Analyzer, PageExtractor
from .mock import MockAnalyzer, MockPage

__all__ = ["Analyzer", "PageExtractor", "MockAnalyzer", "MockPage"]
