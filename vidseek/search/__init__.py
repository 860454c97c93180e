from .clustering import aggregate_scores, group_by_time, summarize_group
from .hybrid_search import HybridSearchEngine

__all__ = [
    "HybridSearchEngine",
    "aggregate_scores",
    "group_by_time",
    "summarize_group",
]
