"""
Advisor module - the stages of one advisory run.

Module responsibilities (one concept, one module):
- models.py: Immutable domain models (shapes, statistics, candidates, plans)
- predicates.py: PredicateAnalyzer, selectivity estimation
- candidates.py: CandidateGenerator, single/composite/expression/partial rules
- cost.py: CostModel, benefit vs. maintenance scoring and ranking
- partitioning.py: TableProfile builder and PartitioningAdvisor
- access_control.py: RLS compatibility checks
- report.py: RecommendationReport assembly
"""

from tunesense.advisor.access_control import CompatibilityChecker, CompatibilityReport
from tunesense.advisor.candidates import CandidateGenerator
from tunesense.advisor.cost import CostModel
from tunesense.advisor.partitioning import PartitioningAdvisor, build_profile
from tunesense.advisor.predicates import PredicateAnalyzer, combined_selectivity
from tunesense.advisor.report import (
    Notice,
    Recommendation,
    RecommendationAction,
    RecommendationReport,
    RejectedCandidate,
    assemble_report,
)

__all__ = [
    "CandidateGenerator",
    "CompatibilityChecker",
    "CompatibilityReport",
    "CostModel",
    "Notice",
    "PartitioningAdvisor",
    "PredicateAnalyzer",
    "Recommendation",
    "RecommendationAction",
    "RecommendationReport",
    "RejectedCandidate",
    "assemble_report",
    "build_profile",
    "combined_selectivity",
]
