from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Protocol

from compliance_engine.config import Settings

logger = logging.getLogger("compliance_engine.llm")

THROTTLING_MARKERS = ("throttlingexception", "too many requests", "429", "rate exceeded")


class LLMClientError(RuntimeError):
    """Raised when a completion call fails or returns no usable text."""


class CompletionClient(Protocol):
    async def wait_for_slot(self) -> None: ...

    async def complete(self, prompt: str, max_tokens: int) -> str: ...


async def request_completion(client: CompletionClient, prompt: str, max_tokens: int) -> str:
    await client.wait_for_slot()
    return await client.complete(prompt, max_tokens)


class BedrockCompletionClient:
    """Bedrock Converse client shared by every analysis run in the process.

    Calls are spaced at least ``llm_min_interval_ms`` apart and throttling
    errors are retried with exponential backoff. The boto3 call blocks, so it
    runs in a worker thread.
    """

    def __init__(self, settings: Settings, client: Any | None = None) -> None:
        self._settings = settings
        self._client = client or self._create_bedrock_client()
        self._slot_lock = asyncio.Lock()
        self._last_call_started = 0.0

    async def wait_for_slot(self) -> None:
        min_interval = self._settings.llm_min_interval_ms / 1000
        async with self._slot_lock:
            elapsed = time.monotonic() - self._last_call_started
            if elapsed < min_interval:
                await asyncio.sleep(min_interval - elapsed)
            self._last_call_started = time.monotonic()

    async def complete(self, prompt: str, max_tokens: int) -> str:
        model_id = self._settings.bedrock_model_id
        if not model_id:
            raise LLMClientError("Bedrock model ID is not configured.")

        max_retries = max(0, self._settings.llm_max_retries)
        for attempt in range(max_retries + 1):
            started = time.perf_counter()
            try:
                response = await asyncio.to_thread(
                    self._client.converse,
                    modelId=model_id,
                    messages=[{"role": "user", "content": [{"text": prompt}]}],
                    inferenceConfig={
                        "temperature": self._settings.llm_temperature,
                        "maxTokens": max_tokens,
                    },
                )
            except Exception as exc:
                duration_ms = round((time.perf_counter() - started) * 1000, 2)
                if self._is_throttling(exc) and attempt < max_retries:
                    backoff = self._settings.llm_backoff_base_seconds * (2**attempt)
                    logger.warning(
                        "llm_throttled",
                        extra={
                            "event": "llm_throttled",
                            "model_id": model_id,
                            "attempt": attempt + 1,
                            "backoff_seconds": backoff,
                        },
                    )
                    await asyncio.sleep(backoff)
                    continue
                logger.warning(
                    "llm_invoke_failed",
                    extra={
                        "event": "llm_invoke_failed",
                        "model_id": model_id,
                        "duration_ms": duration_ms,
                        "error": str(exc),
                    },
                )
                raise LLMClientError(f"Bedrock invocation failed for model '{model_id}': {exc}") from exc

            text = self._extract_text(response)
            logger.info(
                "llm_invoke_completed",
                extra={
                    "event": "llm_invoke_completed",
                    "model_id": model_id,
                    "duration_ms": round((time.perf_counter() - started) * 1000, 2),
                    "prompt_chars": len(prompt),
                    "response_chars": len(text),
                    "stop_reason": response.get("stopReason"),
                },
            )
            return text

        raise LLMClientError(f"Bedrock invocation for model '{model_id}' exceeded {max_retries} retries.")

    def _create_bedrock_client(self) -> Any:
        try:
            import boto3  # type: ignore
        except ImportError as exc:
            raise LLMClientError("boto3 is required for the Bedrock completion client.") from exc

        return boto3.client("bedrock-runtime", region_name=self._settings.aws_region)

    @staticmethod
    def _is_throttling(exc: Exception) -> bool:
        text = f"{type(exc).__name__} {exc}".lower()
        return any(marker in text for marker in THROTTLING_MARKERS)

    @staticmethod
    def _extract_text(response: Any) -> str:
        outputs = response.get("output", {}).get("message", {}).get("content", [])
        parts: list[str] = []
        for item in outputs:
            text = item.get("text")
            if isinstance(text, str) and text.strip():
                parts.append(text)
        if not parts:
            raise LLMClientError("Bedrock response did not include textual output.")
        return "\n".join(parts).strip()
