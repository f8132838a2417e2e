"""OpenAI adapter: prompt rewriting, analysis and variations, plus bio/description text."""

import logging
from typing import Any, Dict, Optional

import openai
from openai import OpenAI

from harmony_ai.errors import ProviderError, ProviderTimeout, ProviderUnavailable
from harmony_ai.providers import templates
from harmony_ai.providers.base import ProviderAdapter, parse_json_text
from harmony_ai.schemas.operations import Operation

logger = logging.getLogger(__name__)


class OpenAIAdapter(ProviderAdapter):
    name = "openai"
    supported_operations = frozenset({
        Operation.PROMPT_REWRITE,
        Operation.PROMPT_ANALYSIS,
        Operation.PROMPT_VARIATIONS,
        Operation.BIO,
        Operation.DESCRIPTION,
    })

    def __init__(
        self,
        api_key: Optional[str],
        model: str = "gpt-4",
        organization: Optional[str] = None,
        max_tokens: int = 1000,
        temperature: float = 0.7,
        max_retries: int = 2,
        client: Optional[OpenAI] = None,
    ):
        """
        Args:
            client: Pre-built SDK client; built from api_key on first use otherwise.
                The SDK's own retry loop handles transient failures.
        """
        self.api_key = api_key
        self.model = model
        self.organization = organization
        self.max_tokens = max_tokens
        self.temperature = temperature
        self.max_retries = max_retries
        self._client = client

    def is_configured(self) -> bool:
        return bool(self.api_key) or self._client is not None

    @property
    def client(self) -> OpenAI:
        if self._client is None:
            self._client = OpenAI(
                api_key=self.api_key,
                organization=self.organization,
                max_retries=self.max_retries,
            )
        return self._client

    def handlers(self):
        return {
            Operation.PROMPT_REWRITE: self._prompt_rewrite,
            Operation.PROMPT_ANALYSIS: self._prompt_analysis,
            Operation.PROMPT_VARIATIONS: self._prompt_variations,
            Operation.BIO: self._bio,
            Operation.DESCRIPTION: self._description,
        }

    def _complete_json(self, prompt: str, timeout: float) -> Dict[str, Any]:
        try:
            response = self.client.chat.completions.create(
                model=self.model,
                messages=[{"role": "user", "content": prompt}],
                max_tokens=self.max_tokens,
                temperature=self.temperature,
                response_format={"type": "json_object"},
                timeout=timeout,
            )
        except openai.APITimeoutError:
            raise ProviderTimeout(self.name, timeout)
        except openai.APIConnectionError as e:
            raise ProviderUnavailable(self.name, f"connection failed: {e}", retryable=True)
        except (openai.RateLimitError, openai.InternalServerError) as e:
            raise ProviderUnavailable(self.name, str(e), retryable=True)
        except openai.APIStatusError as e:
            raise ProviderUnavailable(self.name, f"API error {e.status_code}: {e.message}")
        except openai.OpenAIError as e:
            raise ProviderError(self.name, str(e))

        if not response.choices or not response.choices[0].message.content:
            raise ProviderError(self.name, "empty completion")
        return parse_json_text(self.name, response.choices[0].message.content)

    def _prompt_rewrite(self, ctx, payload, options, timeout) -> Dict[str, Any]:
        data = self._complete_json(templates.build_rewrite_prompt(payload, options), timeout)
        try:
            return templates.rewrite_output(data)
        except ValueError as e:
            raise ProviderError(self.name, str(e))

    def _prompt_analysis(self, ctx, payload, options, timeout) -> Dict[str, Any]:
        data = self._complete_json(templates.build_analysis_prompt(payload, options), timeout)
        try:
            return templates.analysis_output(data)
        except (TypeError, ValueError) as e:
            raise ProviderError(self.name, f"unusable analysis: {e}")

    def _prompt_variations(self, ctx, payload, options, timeout) -> Dict[str, Any]:
        count = options.variation_count
        data = self._complete_json(templates.build_variations_prompt(payload, count), timeout)
        variations = [templates.clean_text(str(v)) for v in data.get("variations", []) if str(v).strip()]
        if len(variations) < count:
            raise ProviderError(self.name, f"expected {count} variations, got {len(variations)}")
        return {"variations": variations[:count]}

    def _bio(self, ctx, payload, options, timeout) -> Dict[str, Any]:
        prompt = templates.build_bio_prompt(payload, options) + '\n\nRespond with JSON: {"bio": "..."}'
        data = self._complete_json(prompt, timeout)
        if not data.get("bio"):
            raise ProviderError(self.name, "response has no bio")
        return {"bio": templates.clean_text(str(data["bio"]))}

    def _description(self, ctx, payload, options, timeout) -> Dict[str, Any]:
        prompt = templates.build_description_prompt(payload) + '\n\nRespond with JSON: {"description": "..."}'
        data = self._complete_json(prompt, timeout)
        if not data.get("description"):
            raise ProviderError(self.name, "response has no description")
        return {
            "description": templates.clean_text(str(data["description"])),
            "description_type": payload.description_type,
        }
