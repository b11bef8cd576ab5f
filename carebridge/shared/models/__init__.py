"""Shared domain models for CareBridge services."""
from .episode import (
    UrgencyLevel,
    InputMethod,
    Symptoms,
    AIAssessment,
    TriageAssessment,
    Episode,
    utc_now,
    parse_timestamp,
    format_timestamp,
    minutes_between,
)

__all__ = [
    "UrgencyLevel",
    "InputMethod",
    "Symptoms",
    "AIAssessment",
    "TriageAssessment",
    "Episode",
    "utc_now",
    "parse_timestamp",
    "format_timestamp",
    "minutes_between",
]
