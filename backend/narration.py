"""Narration worker — leases pending turns and narrates them.

One cycle (run_once):
  1. Read the LLM settings once; the value is used for the whole cycle.
  2. Return expired leases to PENDING.
  3. Find the oldest claimable turn and try to take its lease. Losing the
     claim to another worker is normal and ends the cycle.
  4. Render the narration prompt and call the providers:
       primary, up to max_retries attempts while failures are RETRYABLE
       fallback, same budget, only if it differs from the primary
     A PERMANENT failure stops immediately. Attempts already recorded on
     the turn by an earlier (crashed) lease holder count against the budget.
     The lease is renewed before each attempt, and each attempt is cut off
     at half the lease lifetime; a failed renewal stops the cycle.
  5. Write DONE or ERROR. Both release the lease.

Every write after the claim is conditional on this worker still owning the
lease, so a worker whose lease expired mid-call cannot overwrite the turn.
The authoritative server_result is never written here.
"""

from __future__ import annotations

import asyncio
import logging
import os
import uuid
from collections.abc import Callable
from datetime import datetime
from typing import Any

from backend import storage
from backend.prompts import build_narration_messages
from backend.storage import LlmConfig
from rpg_turns.llm import (
    CallResult,
    ClaudeProvider,
    GeminiProvider,
    KoboldCppProvider,
    LLMProvider,
    LlmRequest,
    MockProvider,
    OpenAIProvider,
    ProviderRegistry,
    classify_error,
)

logger = logging.getLogger(__name__)

DEFAULT_POLL_SECONDS = 2.0
DEFAULT_LEASE_SECONDS = 60.0


def build_registry(config: LlmConfig) -> ProviderRegistry:
    """All known providers, configured from one settings value."""
    timeout = config.timeout_ms / 1000
    return ProviderRegistry([
        MockProvider(),
        OpenAIProvider(config.openai_api_key, config.openai_model, config.openai_base_url, timeout),
        ClaudeProvider(config.claude_api_key, config.claude_model, timeout=timeout),
        GeminiProvider(config.gemini_api_key, config.gemini_model, timeout=timeout),
        KoboldCppProvider(config.koboldcpp_url, timeout=timeout),
    ])


async def call_with_fallback(
    registry: ProviderRegistry,
    config: LlmConfig,
    request: LlmRequest,
    before_attempt: Callable[[int], bool] | None = None,
    prior_attempts: int = 0,
    attempt_timeout: float | None = None,
) -> CallResult:
    """Call the primary provider, then the fallback, with bounded retries.

    The budget is `max_retries` attempts per provider in the chain, counted
    across claims: `prior_attempts` made by earlier lease holders are spent
    first, primary before fallback.

    `before_attempt(n)` runs before attempt number n. Returning False stops
    the chain with `lease_lost` set and nothing further is called.
    """
    primary = registry.get(config.provider)
    chain: list[LLMProvider] = [primary]
    fallback = registry.get(config.fallback_provider)
    if fallback.name != primary.name:
        chain.append(fallback)

    timeout = attempt_timeout if attempt_timeout is not None else config.timeout_ms / 1000
    budget = config.max_retries * len(chain)
    if prior_attempts >= budget:
        return CallResult(
            success=False,
            error=f"Retry budget exhausted after {prior_attempts} attempts",
            category="RETRYABLE",
            provider_used=chain[-1].name,
            attempts=prior_attempts,
        )

    attempts = prior_attempts
    errors: list[str] = []
    provider = primary
    for index, provider in enumerate(chain):
        while attempts < config.max_retries * (index + 1):
            if before_attempt is not None and not before_attempt(attempts + 1):
                return CallResult(
                    success=False, error="Lease lost", category="RETRYABLE",
                    provider_used=provider.name, attempts=attempts, errors=errors,
                    lease_lost=True,
                )
            attempts += 1
            try:
                response = await asyncio.wait_for(provider.generate(request), timeout=timeout)
            except Exception as e:
                category = classify_error(e)
                message = str(e) or type(e).__name__
                errors.append(f"{provider.name}: {message}")
                logger.warning(
                    "provider %s attempt %d failed (%s): %s",
                    provider.name, attempts, category, message,
                )
                if category == "PERMANENT":
                    return CallResult(
                        success=False, error=message, category=category,
                        provider_used=provider.name, attempts=attempts, errors=errors,
                    )
                continue
            return CallResult(
                success=True, response=response,
                provider_used=provider.name, attempts=attempts, errors=errors,
            )

    return CallResult(
        success=False,
        error=f"All providers failed after {attempts} attempts",
        category="RETRYABLE",
        provider_used=provider.name,
        attempts=attempts,
        errors=errors,
    )


class NarrationWorker:
    """Background narration loop; one instance per process is typical.

    Args:
        worker_id:        Lease owner tag. Defaults to worker_<pid>_<hex>.
        poll_seconds:     Sleep between cycles that found nothing to do.
        lease_seconds:    Lease lifetime; expired leases are reclaimable.
        registry_factory: Builds the provider registry from a settings value.
        now:              Clock, injectable for lease-expiry tests.
    """

    def __init__(
        self,
        worker_id: str | None = None,
        poll_seconds: float = DEFAULT_POLL_SECONDS,
        lease_seconds: float = DEFAULT_LEASE_SECONDS,
        registry_factory: Callable[[LlmConfig], ProviderRegistry] = build_registry,
        now: Callable[[], datetime] = storage.utcnow,
    ) -> None:
        self.worker_id = worker_id or f"worker_{os.getpid()}_{uuid.uuid4().hex[:8]}"
        self.poll_seconds = poll_seconds
        self.lease_seconds = lease_seconds
        self._registry_factory = registry_factory
        self._now = now

    @classmethod
    def from_env(cls) -> NarrationWorker:
        return cls(
            poll_seconds=float(os.getenv("NARRATION_POLL_SECONDS", DEFAULT_POLL_SECONDS)),
            lease_seconds=float(os.getenv("NARRATION_LEASE_SECONDS", DEFAULT_LEASE_SECONDS)),
        )

    async def run_once(self) -> bool:
        """Process at most one turn. Returns True if a turn was claimed."""
        config = storage.get_llm_config()
        now = self._now()

        released = storage.release_expired_leases(now, self.lease_seconds)
        if released:
            logger.warning("released %d expired narration lease(s)", released)

        turn = storage.find_claimable_turn(now, self.lease_seconds)
        if turn is None:
            return False
        if not storage.claim_narration(turn["id"], self.worker_id, now, self.lease_seconds):
            logger.debug("lost claim on turn id=%s", turn["id"])
            return False
        logger.info(
            "claimed narration run=%s turn=%d worker=%s",
            turn["run_id"], turn["turn_no"], self.worker_id,
        )

        try:
            await self._narrate(turn, config)
        except Exception as e:
            logger.exception("narration crashed for turn id=%s", turn["id"])
            current = storage.get_turn_by_id(turn["id"]) or turn
            storage.fail_narration(
                turn["id"], self.worker_id,
                {"message": str(e) or type(e).__name__, "category": "PERMANENT"},
                current["llm_attempts"],
            )
        return True

    async def _narrate(self, turn: dict[str, Any], config: LlmConfig) -> None:
        request = LlmRequest(
            messages=build_narration_messages(turn),
            max_tokens=config.max_tokens,
            temperature=config.temperature,
        )
        registry = self._registry_factory(config)

        # An attempt must end before the lease it renewed can expire.
        attempt_timeout = min(config.timeout_ms / 1000, self.lease_seconds / 2)
        if attempt_timeout < config.timeout_ms / 1000:
            logger.warning("timeout_ms=%d capped to %.1fs by lease_seconds=%s",
                           config.timeout_ms, attempt_timeout, self.lease_seconds)

        def before_attempt(n: int) -> bool:
            return storage.renew_narration_lease(turn["id"], self.worker_id, self._now(), n)

        result = await call_with_fallback(
            registry, config, request,
            before_attempt=before_attempt,
            prior_attempts=turn["llm_attempts"],
            attempt_timeout=attempt_timeout,
        )
        if result.lease_lost:
            logger.warning("lease lost on turn id=%s before attempt %d, stopping",
                           turn["id"], result.attempts + 1)
            return

        if result.success and result.response is not None:
            written = storage.complete_narration(
                turn["id"], self.worker_id,
                output=result.response.text,
                model_used=result.response.model,
                token_stats={
                    "prompt": result.response.prompt_tokens,
                    "completion": result.response.completion_tokens,
                    "latency_ms": result.response.latency_ms,
                    "provider": result.provider_used,
                },
                attempts=result.attempts,
            )
            if written:
                logger.info("narration done run=%s turn=%d provider=%s attempts=%d",
                            turn["run_id"], turn["turn_no"], result.provider_used, result.attempts)
        else:
            written = storage.fail_narration(
                turn["id"], self.worker_id,
                {
                    "message": result.error,
                    "category": result.category,
                    "provider": result.provider_used,
                    "errors": result.errors,
                },
                result.attempts,
            )
            if written:
                logger.error("narration failed run=%s turn=%d: %s",
                             turn["run_id"], turn["turn_no"], result.error)
        if not written:
            logger.warning("lease lost on turn id=%s, result discarded", turn["id"])

    async def run_forever(self) -> None:
        registry = self._registry_factory(storage.get_llm_config())
        logger.info("narration worker %s started (poll=%ss lease=%ss providers=%s)",
                    self.worker_id, self.poll_seconds, self.lease_seconds,
                    ",".join(registry.available()))
        while True:
            try:
                processed = await self.run_once()
            except Exception:
                logger.exception("narration cycle failed")
                processed = False
            if not processed:
                logger.debug("narration worker idle")
                await asyncio.sleep(self.poll_seconds)
