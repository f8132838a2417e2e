"""Google Gemini adapter: artist bios, descriptions and prompt rewrites."""

import logging
from typing import Any, Dict, Optional

import requests

from harmony_ai.errors import ProviderError
from harmony_ai.providers import templates
from harmony_ai.providers.base import HttpProviderAdapter, parse_json_text
from harmony_ai.schemas.operations import Operation

logger = logging.getLogger(__name__)


class GeminiAdapter(HttpProviderAdapter):
    name = "gemini"
    supported_operations = frozenset({Operation.BIO, Operation.DESCRIPTION, Operation.PROMPT_REWRITE})

    def __init__(
        self,
        api_key: Optional[str],
        api_url: str,
        model: str = "gemini-pro",
        max_tokens: int = 1024,
        temperature: float = 0.8,
        max_retries: int = 2,
        session: Optional[requests.Session] = None,
        retry_delay: float = 1.0,
    ):
        super().__init__(api_key, api_url, max_retries=max_retries, session=session, retry_delay=retry_delay)
        self.model = model
        self.max_tokens = max_tokens
        self.temperature = temperature

    def handlers(self):
        return {
            Operation.BIO: self._bio,
            Operation.DESCRIPTION: self._description,
            Operation.PROMPT_REWRITE: self._prompt_rewrite,
        }

    def _generate(self, ctx, prompt: str, timeout: float, json_output: bool = False) -> str:
        generation_config: Dict[str, Any] = {
            "temperature": self.temperature,
            "maxOutputTokens": self.max_tokens,
            "topK": 40,
            "topP": 0.95,
        }
        if json_output:
            generation_config["responseMimeType"] = "application/json"

        data = self._post_json(
            ctx,
            f"{self.api_url}/{self.model}:generateContent",
            {"contents": [{"parts": [{"text": prompt}]}], "generationConfig": generation_config},
            timeout,
            params={"key": self.api_key},
        )
        try:
            return data["candidates"][0]["content"]["parts"][0]["text"]
        except (KeyError, IndexError, TypeError):
            raise ProviderError(self.name, "response has no candidate text")

    def _bio(self, ctx, payload, options, timeout) -> Dict[str, Any]:
        text = self._generate(ctx, templates.build_bio_prompt(payload, options), timeout)
        return {"bio": templates.clean_text(text)}

    def _description(self, ctx, payload, options, timeout) -> Dict[str, Any]:
        text = self._generate(ctx, templates.build_description_prompt(payload), timeout)
        return {"description": templates.clean_text(text), "description_type": payload.description_type}

    def _prompt_rewrite(self, ctx, payload, options, timeout) -> Dict[str, Any]:
        text = self._generate(ctx, templates.build_rewrite_prompt(payload, options), timeout, json_output=True)
        try:
            return templates.rewrite_output(parse_json_text(self.name, text))
        except ValueError as e:
            raise ProviderError(self.name, str(e))
