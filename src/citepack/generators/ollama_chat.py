"""Chat generation through a local Ollama ``/api/chat`` endpoint."""

from __future__ import annotations

import logging
from typing import Callable, Optional

import httpx

from citepack.errors import GenerationFailed, InferenceHttpError, ModelMissing
from citepack.utils.cancel import CancelToken
from citepack.utils.http import LocalHttpClient

logger = logging.getLogger(__name__)

MIN_NUM_CTX = 1024


def _rejects_format(error: InferenceHttpError) -> bool:
    lower = str(error).lower()
    return "format" in lower and ("invalid" in lower or "unknown" in lower)


class OllamaChat:
    """Streaming or one-shot chat completions.

    With ``json_mode`` the request asks for ``format: "json"``; services
    that reject the option are retried once without it.
    """

    def __init__(
        self,
        base_url: str = "http://localhost:11434",
        timeout: float = 120.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.http = LocalHttpClient(base_url, timeout=timeout, transport=transport)

    def _payload(
        self, model: str, system_prompt: str, user_prompt: str, stream: bool, json_mode: bool, num_ctx: int
    ) -> dict:
        payload = {
            "model": model,
            "stream": stream,
            "options": {"num_ctx": max(MIN_NUM_CTX, int(num_ctx or 0))},
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
        }
        if json_mode:
            payload["format"] = "json"
        return payload

    def _complete(self, payload: dict, on_token: Optional[Callable[[str], None]], token: Optional[CancelToken]) -> str:
        if not payload["stream"]:
            body = self.http.request_json("POST", "/api/chat", body=payload, token=token)
            message = body.get("message") if isinstance(body.get("message"), dict) else {}
            return str(message.get("content") or "")

        parts: list[str] = []

        def on_object(obj: dict) -> bool:
            message = obj.get("message") if isinstance(obj.get("message"), dict) else {}
            delta = str(message.get("content") or "")
            if delta:
                parts.append(delta)
                if on_token is not None:
                    on_token(delta)
            return bool(obj.get("done"))

        self.http.stream_json_lines("/api/chat", payload, on_object, token=token)
        return "".join(parts).strip()

    def chat(
        self,
        model: str,
        system_prompt: str,
        user_prompt: str,
        *,
        stream: bool = False,
        json_mode: bool = False,
        num_ctx: int = 3072,
        on_token: Optional[Callable[[str], None]] = None,
        token: Optional[CancelToken] = None,
    ) -> str:
        model = (model or "").strip()
        if not model:
            raise ModelMissing("Generation model is not configured.")

        payload = self._payload(model, system_prompt, user_prompt, stream, json_mode, num_ctx)
        try:
            return self._complete(payload, on_token, token)
        except InferenceHttpError as e:
            if not (json_mode and _rejects_format(e)):
                raise GenerationFailed(f"Generation failed: {e}") from e
            logger.info(f"Model '{model}' rejected JSON format; retrying without it")

        payload = self._payload(model, system_prompt, user_prompt, stream, False, num_ctx)
        try:
            return self._complete(payload, on_token, token)
        except InferenceHttpError as e:
            raise GenerationFailed(f"Generation failed: {e}") from e
