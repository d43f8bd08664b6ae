"""podstudio: job orchestration and consistency layer for GPU media generation."""

__version__ = "0.3.0"
