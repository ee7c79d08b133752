"""
Domain models — Pydantic types for runtime resolution.

Re-exported here for convenient access:

    from runtimectl.core.models import Engine, ResolutionRecord, RuntimeConfig
"""

from runtimectl.core.models.resolution import (
    SCHEMA_VERSION,
    Capabilities,
    CandidateAttempt,
    ComposeInvocation,
    Engine,
    ResolutionError,
    ResolutionRecord,
    RuntimeConfig,
    SupportLevel,
)

__all__ = [
    "SCHEMA_VERSION",
    "Capabilities",
    "CandidateAttempt",
    "ComposeInvocation",
    "Engine",
    "ResolutionError",
    "ResolutionRecord",
    "RuntimeConfig",
    "SupportLevel",
]
