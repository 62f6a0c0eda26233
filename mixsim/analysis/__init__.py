"""Analysis module: null-model comparisons and error-rate aggregation."""
from .comparison import (
    COMPARISONS,
    ComparisonResult,
    ReplicationOutcome,
    build_templates,
    compare,
)
from .error_rates import (
    NULL_TRUE_IN,
    compute_error_rates,
    error_rate_matrix,
    error_type,
    null_is_true,
)
