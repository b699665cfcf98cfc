"""
Completion client — the external text-completion collaborator.

Talks to an Ollama-compatible ``/api/chat`` endpoint over httpx. One call per
chat turn, no automatic retries: a failure surfaces as UpstreamError and the
student may resend the turn.
"""

import logging
import re
import time
from dataclasses import dataclass

import httpx

from worksy.config import settings
from worksy.middleware.metrics import completion_duration_seconds
from worksy.services.errors import UpstreamError

logger = logging.getLogger(__name__)


@dataclass
class CompletionResult:
    text: str
    model: str
    prompt_tokens: int | None = None
    completion_tokens: int | None = None
    total_tokens: int | None = None

    def __post_init__(self):
        if self.total_tokens is None:
            self.total_tokens = (self.prompt_tokens or 0) + (self.completion_tokens or 0)

    @property
    def usage(self) -> dict:
        return {
            "prompt_tokens": self.prompt_tokens,
            "completion_tokens": self.completion_tokens,
            "total_tokens": self.total_tokens,
        }


class CompletionClient:
    def __init__(
        self,
        base_url: str | None = None,
        *,
        timeout: float | None = None,
        temperature: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = (base_url or settings.ollama_url).rstrip("/")
        self.timeout = timeout if timeout is not None else settings.llm_timeout_s
        self.temperature = temperature if temperature is not None else settings.llm_temperature
        self._transport = transport

    @staticmethod
    def _strip_think_tags(text: str) -> str:
        return re.sub(r"<think>.*?</think>\s*", "", text, flags=re.DOTALL).strip()

    async def complete(
        self,
        *,
        model: str,
        system_prompt: str,
        message: str,
        max_tokens: int,
    ) -> CompletionResult:
        payload = {
            "model": model,
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": message},
            ],
            "stream": False,
            "options": {"temperature": self.temperature, "num_predict": max_tokens},
        }
        timeout = httpx.Timeout(connect=10.0, read=self.timeout, write=10.0, pool=10.0)
        start = time.time()
        try:
            async with httpx.AsyncClient(timeout=timeout, transport=self._transport) as client:
                resp = await client.post(f"{self.base_url}/api/chat", json=payload)
                resp.raise_for_status()
                data = resp.json()
        except httpx.TimeoutException as exc:
            logger.warning("Completion timed out after %.1fs (model %s)", time.time() - start, model)
            raise UpstreamError() from exc
        except (httpx.HTTPError, ValueError) as exc:
            logger.exception("Completion request failed (model %s)", model)
            raise UpstreamError() from exc
        finally:
            completion_duration_seconds.observe(time.time() - start)

        content = (data.get("message") or {}).get("content") or ""
        text = self._strip_think_tags(content) or "No reply."
        return CompletionResult(
            text=text,
            model=data.get("model") or model,
            prompt_tokens=data.get("prompt_eval_count"),
            completion_tokens=data.get("eval_count"),
        )
