from .analyzer import CorrelationAnalyzer, fuzzy_score
from .matcher import FuzzyMatcher, HttpFuzzyMatcher, NullFuzzyMatcher, build_matcher

__all__ = [
    "CorrelationAnalyzer",
    "fuzzy_score",
    "FuzzyMatcher",
    "HttpFuzzyMatcher",
    "NullFuzzyMatcher",
    "build_matcher",
]
