"""
Call Matcher

音声録音とCSV通話明細を突き合わせるマッチングエンジン
"""

__version__ = "0.1.0"

from callmatch.config import Config, ConfigurationError
from callmatch.matcher import MatchOrchestrator
from callmatch.models import CandidateRecord, MatchOptions, Recording, ScoredMatch
from callmatch.quality import QualityClassifier

__all__ = [
    "Config",
    "ConfigurationError",
    "MatchOrchestrator",
    "CandidateRecord",
    "MatchOptions",
    "Recording",
    "ScoredMatch",
    "QualityClassifier",
]
