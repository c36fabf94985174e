"""Core orchestration: caching, retries, scheduling and aggregation."""

from securechain.core.aggregator import Aggregator
from securechain.core.cache import CacheKey, ResultCache
from securechain.core.normalizer import FindingNormalizer
from securechain.core.pipeline import AnalysisPipeline
from securechain.core.retry import RetryPolicy
from securechain.core.scheduler import TaskScheduler, TaskState

__all__ = [
    "Aggregator",
    "CacheKey",
    "ResultCache",
    "FindingNormalizer",
    "AnalysisPipeline",
    "RetryPolicy",
    "TaskScheduler",
    "TaskState",
]
