"""Database models for generation history and usage accounting."""

from .base import Base
from .generation import GenerationHistory, GenerationStatus
from .usage import UsageCounter, UsageIncrement

__all__ = ["Base", "GenerationHistory", "GenerationStatus", "UsageCounter", "UsageIncrement"]
