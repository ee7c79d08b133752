"""Compose providers — one adapter per compose implementation.

Public re-exports for convenient access.
"""

from runtimectl.adapters.compose.base import ComposeProvider, ProviderOptions, VerifyResult
from runtimectl.adapters.compose.providers import cross_engine_provider, native_providers

__all__ = [
    "ComposeProvider",
    "ProviderOptions",
    "VerifyResult",
    "cross_engine_provider",
    "native_providers",
]
