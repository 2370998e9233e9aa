"""
Request filtering and site shields.

Decides whether outbound requests should be blocked using ABP-style filter
lists, and keeps per-site protection settings and global block counters.
"""

from .engine import Decision, FilterEngine, RefreshReport, create_engine
from .errors import (
    FetchError,
    FilterEngineError,
    InvalidRuleError,
    InvalidStateError,
    NotFoundError,
    ParseError,
)
from .parser import ResourceFlags, Rule, RuleKind, parse_filter_rules
from .shields import SiteShields
from .stats import GlobalStats

__all__ = [
    "Decision",
    "FetchError",
    "FilterEngine",
    "FilterEngineError",
    "GlobalStats",
    "InvalidRuleError",
    "InvalidStateError",
    "NotFoundError",
    "ParseError",
    "RefreshReport",
    "ResourceFlags",
    "Rule",
    "RuleKind",
    "SiteShields",
    "create_engine",
    "parse_filter_rules",
]
