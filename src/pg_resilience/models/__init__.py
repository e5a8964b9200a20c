"""Base model configuration shared by all public schemas."""

from .base import BaseModelConfig

__all__ = ["BaseModelConfig"]
