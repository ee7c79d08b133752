"""runtimectl — container engine and compose resolution."""

__version__ = "0.1.0"
