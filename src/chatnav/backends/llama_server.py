from __future__ import annotations

import json
import logging
import os
import urllib.request
from dataclasses import dataclass
from typing import Any

from chatnav.backends.registry import register_backend

logger = logging.getLogger(__name__)

_SYSTEM_RULES = (
    "You route a navigation assistant's user turns to one of a fixed list of options. "
    "Only choose an option whose ID appears in the list. If the request is unclear, "
    "answer need_more_info. Respond with a single JSON object and nothing else."
)


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _env_bool(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def build_system_rules(model: str | None) -> str:
    model_line = (
        f"The underlying model is {model}."
        if model
        else "The underlying model is unknown."
    )
    return f"{_SYSTEM_RULES} {model_line}"


@dataclass(slots=True)
class LlamaServerBackend:
    """OpenAI-compatible chat completions client for a local llama server."""

    base_url: str = os.getenv("LLAMA_SERVER_BASE_URL", "http://127.0.0.1:8080")
    timeout_s: float = _env_float("LLAMA_SERVER_TIMEOUT_S", 10.0)
    api_key: str | None = os.getenv("LLAMA_SERVER_API_KEY")
    model: str | None = os.getenv("LLAMA_SERVER_MODEL")
    json_mode: bool = True

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    def _build_payload(self, prompt: str, params: dict[str, Any]) -> dict[str, Any]:
        options = dict(params)
        options.pop("mode", None)
        messages = options.pop("messages", None)
        model = options.pop("model", self.model)
        options.setdefault("temperature", 0)
        options.setdefault("top_p", 1)
        options.setdefault("max_tokens", 200)
        options.setdefault("seed", 7)
        if messages is None:
            messages = [
                {"role": "system", "content": build_system_rules(model)},
                {"role": "user", "content": prompt},
            ]
        payload: dict[str, Any] = {"messages": messages}
        if model:
            payload["model"] = model
        if self.json_mode and "response_format" not in options:
            payload["response_format"] = {"type": "json_object"}
        payload.update(options)
        return payload

    @staticmethod
    def _extract_content(data: dict[str, Any]) -> str:
        choices = data.get("choices")
        if not isinstance(choices, list) or not choices:
            return ""
        first = choices[0]
        if isinstance(first, dict):
            message = first.get("message")
            if isinstance(message, dict):
                content = message.get("content")
                if isinstance(content, str):
                    return content
            text = first.get("text")
            if isinstance(text, str):
                return text
        return ""

    def complete(self, prompt: str, params: dict[str, Any] | None = None) -> str:
        params = params or {}
        payload = self._build_payload(prompt, params)
        url = f"{self.base_url.rstrip('/')}/v1/chat/completions"
        if _env_bool("CHATNAV_LOG_ADVISORY_PAYLOAD"):
            logger.info("advisory request to %s:\n%s", url, json.dumps(payload, indent=2))
        data = json.dumps(payload).encode("utf-8")
        request = urllib.request.Request(url, data=data, headers=self._headers(), method="POST")
        with urllib.request.urlopen(request, timeout=self.timeout_s) as response:
            body = response.read().decode("utf-8")
        return self._extract_content(json.loads(body))


register_backend("llama", LlamaServerBackend)
