"""Seedance adapter: artist images and image variations."""

from typing import Optional

import requests

from harmony_ai.errors import ProviderError
from harmony_ai.providers.base import HttpProviderAdapter
from harmony_ai.providers.nano_banana import ImageAdapterMixin
from harmony_ai.schemas.operations import Operation


class SeedanceAdapter(ImageAdapterMixin, HttpProviderAdapter):
    name = "seedance"
    supported_operations = frozenset({Operation.IMAGE, Operation.IMAGE_VARIATIONS})

    def __init__(
        self,
        api_key: Optional[str],
        api_url: str,
        model: str = "midjourney",
        quality: str = "standard",
        max_retries: int = 2,
        session: Optional[requests.Session] = None,
        retry_delay: float = 1.0,
    ):
        super().__init__(api_key, api_url, max_retries=max_retries, session=session, retry_delay=retry_delay)
        self.model = model
        self.quality = quality

    def _render(self, ctx, prompt: str, payload, timeout: float) -> str:
        data = self._post_json(
            ctx,
            f"{self.api_url}/images/generations",
            {
                "prompt": prompt,
                "model": self.model,
                "size": f"{payload.width}x{payload.height}",
                "quality": self.quality,
                "n": 1,
            },
            timeout,
            headers={"Authorization": f"Bearer {self.api_key}"},
        )
        try:
            return data["data"][0]["url"]
        except (KeyError, IndexError, TypeError):
            raise ProviderError(self.name, "no image URL returned")
