from .types import (
    AggregatedBucket,
    BudgetResult,
    Citation,
    ComparisonReport,
    EntityRollup,
    FlowGraph,
    FlowLink,
    FlowNode,
)
from .config import WARDS, TIER_PREFIXES, is_ward, load_settings, save_settings, tier_of
from .errors import (
    BudgetFlowError,
    ConfigError,
    FetchFailure,
    PersistenceFailure,
    QuotaExceeded,
    UnknownEntityError,
    fetch_error_message,
)
from .extract import Decoded, Fallback, extract_budget_response, parse_citations
from .validate import DroppedLink, ValidationReport, filter_links, is_acyclic, validate_graph
from .cache import BudgetCache
from .aggregate import aggregate_budgets, format_japanese_currency, funding_buckets, total_budget
from .pipeline import build_budget_result

__all__ = [
    "AggregatedBucket",
    "BudgetResult",
    "Citation",
    "ComparisonReport",
    "EntityRollup",
    "FlowGraph",
    "FlowLink",
    "FlowNode",
    "WARDS",
    "TIER_PREFIXES",
    "is_ward",
    "load_settings",
    "save_settings",
    "tier_of",
    "BudgetFlowError",
    "ConfigError",
    "FetchFailure",
    "PersistenceFailure",
    "QuotaExceeded",
    "UnknownEntityError",
    "fetch_error_message",
    "Decoded",
    "Fallback",
    "extract_budget_response",
    "parse_citations",
    "DroppedLink",
    "ValidationReport",
    "filter_links",
    "is_acyclic",
    "validate_graph",
    "BudgetCache",
    "aggregate_budgets",
    "format_japanese_currency",
    "funding_buckets",
    "total_budget",
    "build_budget_result",
]
