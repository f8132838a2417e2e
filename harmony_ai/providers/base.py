"""
Provider adapter contract.

Every external generation service sits behind ProviderAdapter.invoke().
Adapters translate their own failures into ProviderUnavailable or
ProviderTimeout so the orchestrator's fallback loop treats them alike.
"""

import json
import logging
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, FrozenSet, Optional

import requests

from harmony_ai.context import GenerationContext
from harmony_ai.errors import ProviderError, ProviderTimeout, ProviderUnavailable
from harmony_ai.reliability.retry import call_with_backoff
from harmony_ai.schemas.generation import GenerationOptions
from harmony_ai.schemas.operations import Operation, PayloadModel

logger = logging.getLogger(__name__)


class ProviderAdapter(ABC):
    """Uniform contract for one external generation service."""

    name: str = ""
    supported_operations: FrozenSet[Operation] = frozenset()

    def supports(self, operation: Operation) -> bool:
        return Operation(operation) in self.supported_operations

    def is_configured(self) -> bool:
        """True when credentials are present. Never makes a network call."""
        return True

    def describe(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "operations": sorted(op.value for op in self.supported_operations),
            "configured": self.is_configured(),
        }

    def invoke(
        self,
        ctx: GenerationContext,
        operation: Operation,
        payload: PayloadModel,
        options: GenerationOptions,
        timeout: float,
    ) -> Dict[str, Any]:
        """
        Generate the artifact for one operation.

        Raises:
            ProviderUnavailable: misconfigured, rejected, or unsupported
            ProviderTimeout: no answer within timeout
            ProviderError: anything else the provider got wrong
        """
        operation = Operation(operation)
        if not self.supports(operation):
            raise ProviderUnavailable(self.name, f"does not support {operation.value}")
        if not self.is_configured():
            raise ProviderUnavailable(self.name, "API key not configured")

        handler = self.handlers().get(operation)
        if handler is None:
            raise ProviderUnavailable(self.name, f"does not support {operation.value}")
        return handler(ctx, payload, options, timeout)

    @abstractmethod
    def handlers(self) -> Dict[Operation, Callable[..., Dict[str, Any]]]:
        """Map each supported operation to the method that serves it."""
        pass


def _is_transient(error: Exception) -> bool:
    return isinstance(error, ProviderUnavailable) and error.retryable


class HttpProviderAdapter(ProviderAdapter):
    """Adapter base for JSON-over-HTTP services called with requests."""

    def __init__(self, api_key: Optional[str], api_url: str, max_retries: int = 2,
                 session: Optional[requests.Session] = None, retry_delay: float = 1.0):
        self.api_key = api_key
        self.api_url = api_url.rstrip("/")
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self.session = session or requests.Session()

    def is_configured(self) -> bool:
        return bool(self.api_key)

    def _post_json(
        self,
        ctx: GenerationContext,
        url: str,
        body: Dict[str, Any],
        timeout: float,
        headers: Optional[Dict[str, str]] = None,
        params: Optional[Dict[str, str]] = None,
    ) -> Dict[str, Any]:
        """POST a JSON body, retrying transient failures with exponential backoff."""

        def send() -> Dict[str, Any]:
            try:
                response = self.session.post(url, json=body, headers=headers, params=params, timeout=timeout)
            except requests.Timeout:
                raise ProviderTimeout(self.name, timeout)
            except requests.ConnectionError as e:
                raise ProviderUnavailable(self.name, f"connection failed: {e}", retryable=True)
            except requests.RequestException as e:
                raise ProviderUnavailable(self.name, f"request failed: {e}")

            if response.status_code == 429 or response.status_code >= 500:
                raise ProviderUnavailable(
                    self.name, f"API error {response.status_code}: {response.text[:200]}", retryable=True
                )
            if response.status_code >= 400:
                raise ProviderUnavailable(self.name, f"API error {response.status_code}: {response.text[:200]}")

            try:
                return response.json()
            except ValueError:
                raise ProviderError(self.name, "response was not valid JSON")

        return call_with_backoff(
            send,
            max_attempts=self.max_retries + 1,
            initial_delay=self.retry_delay,
            retry_on=[ProviderUnavailable],
            should_retry=_is_transient,
            should_stop=lambda: ctx.cancelled,
            label=f"{self.name} request",
        )


def parse_json_text(provider: str, text: str) -> Dict[str, Any]:
    """Parse model output that should be a JSON object, tolerating code fences."""
    cleaned = text.strip()
    if cleaned.startswith("```"):
        cleaned = cleaned.strip("`")
        if cleaned.lower().startswith("json"):
            cleaned = cleaned[4:]
    try:
        data = json.loads(cleaned)
    except ValueError:
        raise ProviderError(provider, "model output was not valid JSON")
    if not isinstance(data, dict):
        raise ProviderError(provider, "model output was not a JSON object")
    return data
