"""
Generation Orchestrator

Runs one generation request end to end:

1. validate the payload against its operation schema
2. fingerprint the request and consult the result cache
3. coalesce with an identical generation already in flight
4. take a rate-limit token for the user's operation class
5. reserve quota (the reservation is the usage increment; never refunded)
6. try providers in order, each under a bounded timeout, then the local template
7. record the generation in history
8. cache non-degraded output

Cache hits and coalesced results cost nothing. Any real attempt, even
one that ends in degraded output, counts against quota.
"""

import logging
import time
from concurrent.futures import ThreadPoolExecutor, wait
from typing import Any, Callable, Dict, List, Optional, Tuple

from harmony_ai.cache.fingerprint import compute_fingerprint
from harmony_ai.cache.result_cache import ResultCache
from harmony_ai.cache.single_flight import FlightCancelled, SingleFlightGroup
from harmony_ai.context import GenerationContext
from harmony_ai.errors import (
    GenerationCancelled,
    GenerationFailed,
    PersistenceError,
    ProviderError,
    ProviderTimeout,
    ProviderUnavailable,
    RateLimitExceeded,
    ValidationError,
)
from harmony_ai.history.store import HistoryStore
from harmony_ai.models.base import generate_uuid, utcnow
from harmony_ai.models.generation import GenerationStatus
from harmony_ai.observability.tracing import add_span_attributes, get_tracer, trace_span
from harmony_ai.providers.base import ProviderAdapter
from harmony_ai.providers.fallback import FALLBACK_PROVIDER, FallbackSynthesizer
from harmony_ai.providers.registry import ProviderRegistry
from harmony_ai.quota.ledger import QuotaLedger
from harmony_ai.ratelimit.limiter import RateLimiter
from harmony_ai.ratelimit.metrics import MetricsCollector
from harmony_ai.reliability.circuit_breaker import CircuitBreakerRegistry
from harmony_ai.schemas.generation import GenerationRecord, GenerationRequest, GenerationResult, ProviderAttempt
from harmony_ai.schemas.operations import (
    MAX_VARIATIONS,
    OperationSpec,
    PayloadModel,
    get_operation_spec,
    parse_payload,
)

logger = logging.getLogger(__name__)
tracer = get_tracer("harmony_ai.orchestrator")

QUALITY_LEVELS = ("low", "medium", "high")
MAX_TIMEOUT_SEC = 120.0
_WAIT_SLICE_SEC = 0.05


class _ProviderRun:
    """Mutable state of one provider loop, so callers keep the attempts on failure."""

    def __init__(self):
        self.attempts: List[ProviderAttempt] = []
        self.warnings: List[str] = []


class Orchestrator:
    def __init__(
        self,
        registry: ProviderRegistry,
        rate_limiter: RateLimiter,
        quota_ledger: QuotaLedger,
        cache: ResultCache,
        history: HistoryStore,
        fallback: Optional[FallbackSynthesizer] = None,
        breakers: Optional[CircuitBreakerRegistry] = None,
        metrics: Optional[MetricsCollector] = None,
        single_flight: Optional[SingleFlightGroup] = None,
        text_timeout: float = 15.0,
        image_timeout: float = 30.0,
        max_workers: int = 16,
    ):
        self.registry = registry
        self.rate_limiter = rate_limiter
        self.quota_ledger = quota_ledger
        self.cache = cache
        self.history = history
        self.fallback = fallback or FallbackSynthesizer()
        self.breakers = breakers or CircuitBreakerRegistry()
        self.metrics = metrics or MetricsCollector()
        self.single_flight = single_flight or SingleFlightGroup()
        self.text_timeout = text_timeout
        self.image_timeout = image_timeout
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="provider")

    def shutdown(self) -> None:
        self._executor.shutdown(wait=False, cancel_futures=True)

    # Entry point

    def generate(self, ctx: GenerationContext, request: GenerationRequest) -> GenerationResult:
        """
        Produce the artifact for a request, from cache, a provider, or the local template.

        Raises:
            ValidationError, RateLimitExceeded, QuotaExceeded: before any provider call
            GenerationCancelled: ctx.cancel() was called
            GenerationFailed: every provider and the local template failed
        """
        spec = get_operation_spec(request.operation)
        operation = spec.operation.value

        with trace_span(tracer, "generation.generate", {
            "generation.operation": operation,
            "generation.user_id": ctx.user_id,
            "generation.tier": ctx.tier,
        }) as span:
            payload = self._validate(ctx, request, spec)
            fingerprint = self._fingerprint(ctx, request, spec, payload)
            self.metrics.record_request(operation)
            add_span_attributes(span, {"generation.fingerprint": fingerprint})

            cached = self._cached_result(spec, fingerprint)
            if cached is not None:
                add_span_attributes(span, {"generation.from_cache": True})
                return cached

            try:
                result, shared = self.single_flight.do(
                    fingerprint,
                    lambda: self._generate_fresh(ctx, request, spec, payload, fingerprint),
                    is_cancelled=lambda: ctx.cancelled,
                )
            except FlightCancelled:
                raise GenerationCancelled("Generation cancelled by caller")

            if shared:
                self.metrics.record_cache_hit(operation, coalesced=True)
                result = result.model_copy(update={
                    "from_cache": True,
                    "coalesced": True,
                    "generation_id": None,
                    "attempts": [],
                    "warnings": [],
                })

            add_span_attributes(span, {
                "generation.provider": result.provider,
                "generation.from_cache": result.from_cache,
                "generation.degraded": result.degraded,
            })
            return result

    # Steps

    def _validate(self, ctx: GenerationContext, request: GenerationRequest, spec: OperationSpec) -> PayloadModel:
        payload, violations = parse_payload(spec, request.payload)
        options = request.options

        if not request.user_id or not request.user_id.strip():
            violations.append("user_id: is required")
        elif request.user_id != ctx.user_id:
            violations.append("user_id: does not match the authenticated user")
        if spec.supports_variations and not 1 <= options.variation_count <= MAX_VARIATIONS:
            violations.append(f"options.variation_count: must be between 1 and {MAX_VARIATIONS}")
        if options.quality is not None and options.quality not in QUALITY_LEVELS:
            violations.append(f"options.quality: must be one of {', '.join(QUALITY_LEVELS)}")
        if options.timeout_seconds is not None and not 0 < options.timeout_seconds <= MAX_TIMEOUT_SEC:
            violations.append(f"options.timeout_seconds: must be between 0 and {MAX_TIMEOUT_SEC:.0f}")

        if violations:
            raise ValidationError(violations)
        return payload

    @staticmethod
    def _fingerprint(ctx, request: GenerationRequest, spec: OperationSpec, payload: PayloadModel) -> str:
        return compute_fingerprint(
            spec.operation.value,
            payload.model_dump(mode="json", exclude_none=True),
            request.options.content_fields(spec.supports_variations),
            user_id=ctx.user_id if spec.user_scoped else None,
        )

    def _cached_result(self, spec: OperationSpec, fingerprint: str, count: bool = True) -> Optional[GenerationResult]:
        try:
            entry = self.cache.lookup(fingerprint, count=count)
        except Exception as e:
            logger.error(f"Result cache lookup failed, treating as miss: {e}", exc_info=True)
            return None
        if entry is None:
            return None

        if count:
            self.metrics.record_cache_hit(spec.operation.value)
        return GenerationResult(
            operation=spec.operation,
            output=entry.value,
            provider=entry.provider or "cache",
            from_cache=True,
        )

    def _generate_fresh(
        self,
        ctx: GenerationContext,
        request: GenerationRequest,
        spec: OperationSpec,
        payload: PayloadModel,
        fingerprint: str,
    ) -> GenerationResult:
        # A previous leader may have finished between our cache lookup and taking the flight;
        # this request was already counted as a miss
        cached = self._cached_result(spec, fingerprint, count=False)
        if cached is not None:
            return cached

        if ctx.cancelled:
            raise GenerationCancelled("Generation cancelled by caller")

        operation_class = spec.operation_class.value
        decision = self.rate_limiter.try_acquire(ctx.user_id, operation_class)
        if not decision.allowed:
            raise RateLimitExceeded(operation_class, decision.retry_after)

        # The server-issued record id doubles as the quota idempotency key
        record_id = generate_uuid()
        self.quota_ledger.reserve(ctx.user_id, spec.metric_type, ctx.tier, record_id)

        started = time.monotonic()
        run = _ProviderRun()
        saved = self._persist(run.warnings, "create", self.history.save, GenerationRecord(
            id=record_id,
            user_id=ctx.user_id,
            artist_id=request.artist_id,
            operation=spec.operation.value,
            status=GenerationStatus.PENDING,
            fingerprint=fingerprint,
            input_snapshot={
                "payload": payload.model_dump(mode="json", exclude_none=True),
                "options": request.options.model_dump(mode="json", exclude_none=True),
                "preferred_providers": list(request.preferred_providers),
            },
            created_at=utcnow(),
        )) is not None
        if saved:
            saved = self._persist(
                run.warnings, "update", self.history.update, record_id, status=GenerationStatus.PROCESSING
            ) is not None

        try:
            output, provider, degraded = self._run_providers(ctx, request, spec, payload, run)
        except (GenerationCancelled, GenerationFailed) as e:
            if saved:
                self._persist(
                    run.warnings, "update", self.history.update, record_id,
                    status=GenerationStatus.FAILED,
                    attempts=[a.model_dump() for a in run.attempts],
                    error_message="cancelled" if isinstance(e, GenerationCancelled) else e.message,
                    processing_time_ms=int((time.monotonic() - started) * 1000),
                )
            raise

        elapsed_ms = int((time.monotonic() - started) * 1000)
        if saved:
            self._persist(
                run.warnings, "update", self.history.update, record_id,
                status=GenerationStatus.COMPLETED,
                refined_output=output,
                provider_used=provider,
                degraded=degraded,
                attempts=[a.model_dump() for a in run.attempts],
                processing_time_ms=elapsed_ms,
            )

        if not degraded:
            try:
                self.cache.put(fingerprint, output, provider=provider)
            except Exception as e:
                logger.error(f"Result cache write failed for {fingerprint[:12]}: {e}", exc_info=True)
                run.warnings.append("Result cache write failed")

        return GenerationResult(
            operation=spec.operation,
            output=output,
            provider=provider,
            degraded=degraded,
            generation_id=record_id if saved else None,
            attempts=run.attempts,
            warnings=run.warnings,
        )

    def _persist(self, warnings: List[str], action: str, fn: Callable, *args, **kwargs) -> Any:
        """Run a history write; a failure is logged and reported but never loses the output."""
        try:
            return fn(*args, **kwargs)
        except PersistenceError as e:
            logger.error(f"History {action} failed: {e.message}")
            warnings.append(f"History {action} failed: {e.message}")
            return None

    # Provider loop

    def _timeout_for(self, spec: OperationSpec, request: GenerationRequest) -> float:
        if request.options.timeout_seconds:
            timeout = request.options.timeout_seconds
        else:
            timeout = self.image_timeout if spec.timeout_class == "image" else self.text_timeout
        if spec.timeout_class == "image" and spec.supports_variations:
            # One image call per variation
            timeout *= request.options.variation_count
        return timeout

    def _run_providers(
        self,
        ctx: GenerationContext,
        request: GenerationRequest,
        spec: OperationSpec,
        payload: PayloadModel,
        run: _ProviderRun,
    ) -> Tuple[Dict[str, Any], str, bool]:
        operation = spec.operation
        candidates, skipped = self.registry.candidates(operation, request.preferred_providers)
        run.warnings.extend(skipped)
        timeout = self._timeout_for(spec, request)
        previous: Optional[str] = None

        for adapter in candidates:
            if not adapter.is_configured():
                run.attempts.append(ProviderAttempt(
                    provider=adapter.name, outcome="skipped",
                    error_type=ProviderUnavailable.__name__, error="API key not configured",
                ))
                continue

            breaker = self.breakers.get(adapter.name)
            if not breaker.allow_request():
                run.attempts.append(ProviderAttempt(
                    provider=adapter.name, outcome="skipped",
                    error_type=ProviderUnavailable.__name__, error="circuit open",
                ))
                continue

            if previous is not None:
                self.metrics.record_failover(previous, adapter.name)
                logger.info(f"Failing over from {previous} to {adapter.name} for {operation.value}")

            started = time.monotonic()
            try:
                with trace_span(tracer, "generation.provider_attempt", {
                    "provider.name": adapter.name,
                    "generation.operation": operation.value,
                    "provider.timeout_sec": timeout,
                }):
                    output = self._invoke_with_timeout(ctx, adapter, operation, payload, request, timeout)
            except GenerationCancelled:
                run.attempts.append(ProviderAttempt(
                    provider=adapter.name, outcome="cancelled",
                    duration_ms=int((time.monotonic() - started) * 1000),
                ))
                raise
            except Exception as e:
                duration_ms = int((time.monotonic() - started) * 1000)
                if not isinstance(e, ProviderError):
                    logger.error(f"Provider {adapter.name} raised unexpectedly: {e}", exc_info=True)
                breaker.record_failure()
                self.metrics.record_circuit_state(adapter.name, breaker.is_open())
                error_type = type(e).__name__
                run.attempts.append(ProviderAttempt(
                    provider=adapter.name,
                    outcome="timeout" if isinstance(e, ProviderTimeout) else "failed",
                    error_type=error_type,
                    error=str(e),
                    duration_ms=duration_ms,
                ))
                self.metrics.record_provider_failure(adapter.name, error_type)
                logger.warning(f"Provider {adapter.name} failed for {operation.value}: {e}")
                previous = adapter.name
                continue

            duration_ms = int((time.monotonic() - started) * 1000)
            breaker.record_success()
            self.metrics.record_circuit_state(adapter.name, False)
            self.metrics.record_latency(adapter.name, duration_ms)
            run.attempts.append(ProviderAttempt(provider=adapter.name, outcome="success", duration_ms=duration_ms))
            return output, adapter.name, False

        return self._degrade(spec, payload, request, run), FALLBACK_PROVIDER, True

    def _invoke_with_timeout(
        self,
        ctx: GenerationContext,
        adapter: ProviderAdapter,
        operation,
        payload: PayloadModel,
        request: GenerationRequest,
        timeout: float,
    ) -> Dict[str, Any]:
        """
        Run the adapter on the worker pool; stop waiting on timeout or cancellation.

        The adapter sees a per-attempt context that is cancelled when we stop
        waiting, so an abandoned call makes no further retries.
        """
        if ctx.cancelled:
            raise GenerationCancelled("Generation cancelled by caller")

        attempt_ctx = ctx.attempt()
        future = self._executor.submit(adapter.invoke, attempt_ctx, operation, payload, request.options, timeout)
        deadline = time.monotonic() + timeout
        while True:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                attempt_ctx.cancel()
                future.cancel()
                raise ProviderTimeout(adapter.name, timeout)

            done, _ = wait([future], timeout=min(remaining, _WAIT_SLICE_SEC))
            if done:
                return future.result()
            if ctx.cancelled:
                attempt_ctx.cancel()
                future.cancel()
                raise GenerationCancelled("Generation cancelled by caller")

    def _degrade(self, spec: OperationSpec, payload: PayloadModel, request: GenerationRequest, run: _ProviderRun):
        operation = spec.operation.value
        try:
            output = self.fallback.synthesize(spec.operation, payload, request.options)
        except Exception as e:
            logger.error(f"Local template failed for {operation}: {e}", exc_info=True)
            raise GenerationFailed(f"All providers failed for {operation}", {
                "attempts": [a.model_dump() for a in run.attempts],
            })

        logger.warning(f"All providers failed for {operation}; returning degraded template output")
        self.metrics.record_degraded(operation)
        run.attempts.append(ProviderAttempt(provider=FALLBACK_PROVIDER, outcome="success"))
        return output
