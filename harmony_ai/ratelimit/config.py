"""
Rate Limiting Configuration

Per-operation-class token bucket settings, loaded from environment
variables with conservative defaults.
"""

import os
from dataclasses import dataclass
from typing import Optional, Tuple


@dataclass
class RateLimitConfig:
    """Bucket capacity and refill rate for each operation class."""

    enabled: bool = True
    redis_url: Optional[str] = None

    # Bucket capacity (burst) and refill rate (tokens per second)
    ai_bio_capacity: int = 10
    ai_bio_refill_per_sec: float = 10 / 60
    ai_image_capacity: int = 5
    ai_image_refill_per_sec: float = 5 / 60
    ai_prompt_capacity: int = 20
    ai_prompt_refill_per_sec: float = 20 / 60

    # Fallback for operation classes added without their own settings
    default_capacity: int = 5
    default_refill_per_sec: float = 5 / 60

    @classmethod
    def from_env(cls) -> "RateLimitConfig":
        """Load configuration from environment variables."""
        defaults = cls()
        return cls(
            enabled=os.getenv("RATE_LIMIT_ENABLED", "true").lower() == "true",
            redis_url=os.getenv("RATE_LIMIT_REDIS_URL") or os.getenv("REDIS_URL"),

            ai_bio_capacity=int(os.getenv("RATE_LIMIT_AI_BIO_CAPACITY", defaults.ai_bio_capacity)),
            ai_bio_refill_per_sec=float(os.getenv("RATE_LIMIT_AI_BIO_REFILL_PER_SEC", defaults.ai_bio_refill_per_sec)),
            ai_image_capacity=int(os.getenv("RATE_LIMIT_AI_IMAGE_CAPACITY", defaults.ai_image_capacity)),
            ai_image_refill_per_sec=float(os.getenv("RATE_LIMIT_AI_IMAGE_REFILL_PER_SEC", defaults.ai_image_refill_per_sec)),
            ai_prompt_capacity=int(os.getenv("RATE_LIMIT_AI_PROMPT_CAPACITY", defaults.ai_prompt_capacity)),
            ai_prompt_refill_per_sec=float(os.getenv("RATE_LIMIT_AI_PROMPT_REFILL_PER_SEC", defaults.ai_prompt_refill_per_sec)),
        )

    def get_class_limit(self, operation_class: str) -> Tuple[int, float]:
        """(capacity, refill tokens per second) for an operation class such as 'ai-image'."""
        name = str(getattr(operation_class, "value", operation_class)).lower()

        if name == "ai-bio":
            return self.ai_bio_capacity, self.ai_bio_refill_per_sec
        elif name == "ai-image":
            return self.ai_image_capacity, self.ai_image_refill_per_sec
        elif name == "ai-prompt":
            return self.ai_prompt_capacity, self.ai_prompt_refill_per_sec
        else:
            return self.default_capacity, self.default_refill_per_sec

    def validate(self) -> None:
        """Validate configuration values."""
        for name in ("ai-bio", "ai-image", "ai-prompt", "default"):
            capacity, refill = self.get_class_limit(name)
            if capacity <= 0:
                raise ValueError(f"Rate limit capacity for {name} must be positive")
            if refill <= 0:
                raise ValueError(f"Rate limit refill rate for {name} must be positive")
