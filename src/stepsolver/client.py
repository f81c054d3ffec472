"""Model client abstractions."""

from __future__ import annotations

import base64
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Protocol

import requests

from .documents import DocumentHandle
from .errors import APIError, ConfigError

logger = logging.getLogger(__name__)

TRANSIENT_STATUS = {408, 409, 429, 500, 502, 503, 504, 520, 522, 523, 524}


class ChatClient(Protocol):
    """Minimal protocol for chat-completions backends."""

    def generate(
        self,
        *,
        system_prompt: str,
        user_prompt: str,
        temperature: float,
        max_tokens: int,
        image: bytes | None = None,
        document: DocumentHandle | None = None,
    ) -> str:
        ...


def _coerce_text(value: Any) -> str:
    """Normalize provider-specific message content shapes into text."""

    if value is None:
        return ""

    if isinstance(value, str):
        return value

    if isinstance(value, list):
        chunks: list[str] = []
        for item in value:
            if isinstance(item, str):
                chunks.append(item)
                continue
            if isinstance(item, dict):
                text = item.get("text") or item.get("content")
                if isinstance(text, str):
                    chunks.append(text)
        return "\n".join(chunks)

    return str(value)


def sniff_image_mime(image: bytes) -> str:
    """Best-effort MIME type from magic bytes; JPEG when unknown."""

    if image.startswith(b"\x89PNG\r\n\x1a\n"):
        return "image/png"
    if image[:4] == b"RIFF" and image[8:12] == b"WEBP":
        return "image/webp"
    if image[:6] in {b"GIF87a", b"GIF89a"}:
        return "image/gif"
    return "image/jpeg"


def build_user_content(
    user_prompt: str,
    *,
    image: bytes | None = None,
    document: DocumentHandle | None = None,
) -> str | list[dict[str, Any]]:
    if image is None and document is None:
        return user_prompt

    parts: list[dict[str, Any]] = []
    if image is not None:
        encoded = base64.b64encode(image).decode("ascii")
        parts.append(
            {
                "type": "image_url",
                "image_url": {"url": f"data:{sniff_image_mime(image)};base64,{encoded}"},
            }
        )
    if document is not None:
        parts.append({"type": "file", "file": {"file_id": document.file_id}})
    parts.append({"type": "text", "text": user_prompt})
    return parts


@dataclass
class OpenAICompatChatClient:
    """Client for OpenAI-compatible chat completion APIs (OpenAI, Gemini, Groq, vLLM gateways)."""

    base_url: str
    model: str
    api_key: str | None = None
    timeout_sec: int = 180
    extra_body: dict[str, Any] = field(default_factory=dict)
    max_retries: int = 2
    json_mode: bool = True

    def generate(
        self,
        *,
        system_prompt: str,
        user_prompt: str,
        temperature: float,
        max_tokens: int,
        image: bytes | None = None,
        document: DocumentHandle | None = None,
    ) -> str:
        if not self.api_key:
            raise ConfigError("API key is not configured. Set STEPSOLVER_API_KEY (or API_KEY).")

        payload: dict[str, Any] = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": build_user_content(user_prompt, image=image, document=document)},
            ],
            "temperature": temperature,
            "max_tokens": max_tokens,
        }
        if self.json_mode:
            payload["response_format"] = {"type": "json_object"}
        payload.update(self.extra_body)

        headers = {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self.api_key}",
        }

        last_error: Exception | None = None

        for attempt in range(self.max_retries + 1):
            try:
                response = requests.post(
                    f"{self.base_url.rstrip('/')}/chat/completions",
                    json=payload,
                    headers=headers,
                    timeout=self.timeout_sec,
                )
            except requests.Timeout as exc:
                last_error = APIError(f"Model request timed out after {self.timeout_sec}s")
                if attempt < self.max_retries:
                    time.sleep(0.5 * (attempt + 1))
                    continue
                raise last_error from exc
            except requests.RequestException as exc:
                last_error = exc
                if attempt < self.max_retries:
                    time.sleep(0.5 * (attempt + 1))
                    continue
                raise APIError(f"Model request failed after retries: {exc}") from exc

            if response.status_code in TRANSIENT_STATUS:
                last_error = APIError(
                    f"Transient model backend status {response.status_code}: {response.text[:200]}",
                    status_code=response.status_code,
                )
                if attempt < self.max_retries:
                    logger.info("Transient status %s, retrying", response.status_code)
                    time.sleep(0.7 * (attempt + 1))
                    continue
                raise last_error

            if response.status_code in {401, 403}:
                raise ConfigError(
                    f"Model backend rejected the API key ({response.status_code}). Check STEPSOLVER_API_KEY."
                )

            if response.status_code >= 400:
                try:
                    err = response.json().get("error", {})
                except ValueError:
                    err = {}
                if not isinstance(err, dict):
                    err = {"message": str(err)}

                message = str(err.get("message") or response.text[:300])
                # Some backends reject JSON mode; retry once as plain text.
                if attempt < self.max_retries and "response_format" in payload and "response_format" in message:
                    logger.info("Backend rejected response_format, retrying without JSON mode")
                    payload.pop("response_format", None)
                    continue

                raise APIError(
                    f"Model request failed ({response.status_code}): {message}",
                    status_code=response.status_code,
                )

            try:
                data = response.json()
            except ValueError as exc:
                raise APIError(f"Model response was not JSON: {response.text[:200]}") from exc

            choices = data.get("choices") or []
            if not choices:
                last_error = APIError("Model response missing choices")
                if attempt < self.max_retries:
                    time.sleep(0.5 * (attempt + 1))
                    continue
                break

            message = choices[0].get("message") or {}
            content = _coerce_text(message.get("content")).strip()
            if content:
                return content

            # Some hosted backends put long text into `reasoning` when `content` is empty.
            reasoning = _coerce_text(message.get("reasoning")).strip()
            if reasoning:
                return reasoning

            last_error = APIError("Model response had empty content and no fallback fields")
            if attempt < self.max_retries:
                payload["max_tokens"] = max(int(payload.get("max_tokens", max_tokens)), max_tokens * 2)
                time.sleep(0.5 * (attempt + 1))
                continue

        if isinstance(last_error, APIError):
            raise last_error
        raise APIError(str(last_error or "Model generation failed"))
