"""Workload recording: query text to normalized QueryShapes."""

from tunesense.workload.recorder import BatchResult, WorkloadRecorder
from tunesense.workload.shape_parser import ParsedQuery, normalize, parse_condition, parse_select

__all__ = [
    "BatchResult",
    "ParsedQuery",
    "WorkloadRecorder",
    "normalize",
    "parse_condition",
    "parse_select",
]
