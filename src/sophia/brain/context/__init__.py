"""Context loading for agent prompts."""

from sophia.brain.context.loader import (
    ActionSnapshot,
    ContextLoader,
    ContextLoadResult,
    ContextMetrics,
    ContextSource,
    LoadedContext,
    PlanSnapshot,
    VitalSnapshot,
    build_context_string,
)
from sophia.brain.context.profiles import (
    DEFAULT_PROFILE,
    PROFILES,
    ContextProfile,
    profile_for,
    resolve_profile,
    vector_results_count,
)

__all__ = [
    "ActionSnapshot",
    "ContextLoader",
    "ContextLoadResult",
    "ContextMetrics",
    "ContextProfile",
    "ContextSource",
    "DEFAULT_PROFILE",
    "LoadedContext",
    "PROFILES",
    "PlanSnapshot",
    "VitalSnapshot",
    "build_context_string",
    "profile_for",
    "resolve_profile",
    "vector_results_count",
]
