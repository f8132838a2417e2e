"""
Provider Registry

Maps provider names to adapters and produces the ordered candidate list
for an operation: caller preferences first, then the operation's default
priority list.
"""

import logging
import threading
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from harmony_ai.providers.base import ProviderAdapter
from harmony_ai.schemas.operations import OPERATION_SPECS, Operation

logger = logging.getLogger(__name__)


class ProviderRegistry:
    """Registry of adapters, resolved once at startup."""

    def __init__(
        self,
        adapters: Iterable[ProviderAdapter] = (),
        priorities: Optional[Dict[Operation, Sequence[str]]] = None,
    ):
        self._adapters: Dict[str, ProviderAdapter] = {}
        self._lock = threading.Lock()
        self.priorities: Dict[Operation, Tuple[str, ...]] = {
            op: tuple(spec.default_providers) for op, spec in OPERATION_SPECS.items()
        }
        if priorities:
            self.priorities.update({Operation(op): tuple(names) for op, names in priorities.items()})

        for adapter in adapters:
            self.register(adapter)

    def register(self, adapter: ProviderAdapter) -> None:
        if not adapter.name:
            raise ValueError("Provider adapter must have a name")
        with self._lock:
            self._adapters[adapter.name] = adapter
        logger.info(f"Registered provider {adapter.name}: {sorted(op.value for op in adapter.supported_operations)}")

    def get(self, name: str) -> Optional[ProviderAdapter]:
        with self._lock:
            return self._adapters.get((name or "").lower())

    def get_all(self) -> List[ProviderAdapter]:
        with self._lock:
            return list(self._adapters.values())

    def candidates(
        self, operation: Operation, preferred: Sequence[str] = ()
    ) -> Tuple[List[ProviderAdapter], List[str]]:
        """
        Ordered, de-duplicated adapters for an operation.

        Returns:
            (adapters, warnings) where warnings name preferred providers that
            were skipped because they are unknown or cannot serve the operation.
        """
        operation = Operation(operation)
        ordered: List[ProviderAdapter] = []
        seen = set()
        warnings: List[str] = []

        for name in preferred:
            adapter = self.get(name)
            if adapter is None:
                warnings.append(f"Unknown provider '{name}' ignored")
                continue
            if not adapter.supports(operation):
                warnings.append(f"Provider '{name}' does not support {operation.value}; ignored")
                continue
            if adapter.name not in seen:
                seen.add(adapter.name)
                ordered.append(adapter)

        for name in self.priorities.get(operation, ()):
            adapter = self.get(name)
            if adapter is None or adapter.name in seen or not adapter.supports(operation):
                continue
            seen.add(adapter.name)
            ordered.append(adapter)

        for warning in warnings:
            logger.warning(warning)
        return ordered, warnings

    def describe(self) -> Dict[str, Dict]:
        return {adapter.name: adapter.describe() for adapter in self.get_all()}
