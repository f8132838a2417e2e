"""Nano Banana adapter: artist images and image variations."""

import logging
from typing import Any, Dict, Optional

import requests

from harmony_ai.errors import GenerationCancelled, ProviderError
from harmony_ai.providers import templates
from harmony_ai.providers.base import HttpProviderAdapter
from harmony_ai.schemas.operations import Operation

logger = logging.getLogger(__name__)


class ImageAdapterMixin:
    """Variations are N single-image calls with a numbered prompt suffix."""

    def _image(self, ctx, payload, options, timeout) -> Dict[str, Any]:
        prompt = templates.build_image_prompt(payload, options.quality)
        return {"image_url": self._render(ctx, prompt, payload, timeout), "prompt": prompt}

    def _image_variations(self, ctx, payload, options, timeout) -> Dict[str, Any]:
        base_prompt = templates.build_image_prompt(payload, options.quality)
        variations = []
        for prompt in templates.variation_prompts(base_prompt, options.variation_count):
            if ctx.cancelled:
                raise GenerationCancelled("Generation cancelled by caller")
            variations.append({"image_url": self._render(ctx, prompt, payload, timeout), "prompt": prompt})
        return {"variations": variations}

    def handlers(self):
        return {
            Operation.IMAGE: self._image,
            Operation.IMAGE_VARIATIONS: self._image_variations,
        }


class NanoBananaAdapter(ImageAdapterMixin, HttpProviderAdapter):
    name = "nanobanana"
    supported_operations = frozenset({Operation.IMAGE, Operation.IMAGE_VARIATIONS})

    def __init__(
        self,
        api_key: Optional[str],
        api_url: str,
        model: str = "stable-diffusion-xl",
        steps: int = 20,
        cfg_scale: float = 7.0,
        max_retries: int = 2,
        session: Optional[requests.Session] = None,
        retry_delay: float = 1.0,
    ):
        super().__init__(api_key, api_url, max_retries=max_retries, session=session, retry_delay=retry_delay)
        self.model = model
        self.steps = steps
        self.cfg_scale = cfg_scale

    def _render(self, ctx, prompt: str, payload, timeout: float) -> str:
        data = self._post_json(
            ctx,
            f"{self.api_url}/generate-image",
            {
                "prompt": prompt,
                "model": self.model,
                "width": payload.width,
                "height": payload.height,
                "steps": self.steps,
                "cfg_scale": self.cfg_scale,
            },
            timeout,
            headers={"Authorization": f"Bearer {self.api_key}"},
        )
        image_url = data.get("imageUrl") if isinstance(data, dict) else None
        if not image_url:
            raise ProviderError(self.name, "no image URL returned")
        return image_url
