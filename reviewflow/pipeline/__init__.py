"""Review pipeline stages.

Pure, synchronous stages (segmenter, aggregator, scoring, feedback builders,
report rendering) plus the plugin contracts analyzers implement.
"""

from reviewflow.pipeline.aggregator import AggregationResult, aggregate
from reviewflow.pipeline.ports import AiReviewer, AnalysisContext, SegmentAnalyzer, StaticAnalyzer
from reviewflow.pipeline.scoring import calculate_scores, map_findings_to_dimensions, summarize_scores
from reviewflow.pipeline.segmenter import split

__all__ = [
    "AggregationResult",
    "aggregate",
    "AiReviewer",
    "AnalysisContext",
    "SegmentAnalyzer",
    "StaticAnalyzer",
    "calculate_scores",
    "map_findings_to_dimensions",
    "summarize_scores",
    "split",
]
