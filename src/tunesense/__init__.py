"""TuneSense - index and partition advisor for relational workloads."""

__version__ = "0.3.0"
__license__ = "MIT"

# Exception hierarchy (import first so other modules can use it)
from tunesense.exceptions import (
    TuneSenseError,
    MalformedQueryError,
    MissingStatisticsError,
    PolicyConflictError,
    TimedOutError,
    ConfigurationError,
    SnapshotError,
)

from tunesense.advisor.models import (
    AccessPolicy,
    ColumnStatistics,
    HistogramBucket,
    IndexCandidate,
    PartitionPlan,
    QueryShape,
    RawQueryEntry,
    StatisticsSnapshot,
    TableStatistics,
)
from tunesense.advisor.report import (
    Recommendation,
    RecommendationAction,
    RecommendationReport,
)
from tunesense.config import (
    AdvisorConfig,
    get_config,
    reset_config,
)
from tunesense.engine import (
    AdvisoryService,
    BatchAdvisory,
)
from tunesense.history import WorkloadHistory
from tunesense.observability import AdvisorMetrics
from tunesense.providers import (
    PolicyProvider,
    SnapshotCatalog,
    StatisticsProvider,
    WorkloadSource,
)
from tunesense.workload import WorkloadRecorder, normalize

__all__ = [
    # Exception hierarchy
    "TuneSenseError",
    "MalformedQueryError",
    "MissingStatisticsError",
    "PolicyConflictError",
    "TimedOutError",
    "ConfigurationError",
    "SnapshotError",
    # Core
    "AdvisoryService",
    "BatchAdvisory",
    "WorkloadRecorder",
    "normalize",
    # Models
    "AccessPolicy",
    "ColumnStatistics",
    "HistogramBucket",
    "IndexCandidate",
    "PartitionPlan",
    "QueryShape",
    "RawQueryEntry",
    "StatisticsSnapshot",
    "TableStatistics",
    # Report
    "Recommendation",
    "RecommendationAction",
    "RecommendationReport",
    # Providers
    "PolicyProvider",
    "SnapshotCatalog",
    "StatisticsProvider",
    "WorkloadSource",
    # State between runs
    "WorkloadHistory",
    # Configuration
    "AdvisorConfig",
    "get_config",
    "reset_config",
    # Observability
    "AdvisorMetrics",
]
