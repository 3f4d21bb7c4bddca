from __future__ import annotations

import json
import os
import time
from dataclasses import dataclass, field
from typing import Any, Iterable, List, Union

from chatnav.backends.registry import register_backend

ScriptedResponse = Union[str, dict, BaseException]


@dataclass(slots=True)
class FakeBackend:
    """Scripted advisory backend.

    Each call pops the next scripted item. Dicts are returned JSON-encoded,
    exception instances are raised, and an exhausted script yields
    ``default_response``.
    """

    responses: List[ScriptedResponse] = field(default_factory=list)
    mode_responses: dict[str, List[ScriptedResponse]] = field(default_factory=dict)
    calls: List[dict[str, Any]] = field(default_factory=list)
    delay_s: float = 0.0
    default_response: str = ""

    def complete(self, prompt: str, params: dict[str, Any] | None = None) -> str:
        payload = {"prompt": prompt, "params": params or {}}
        self.calls.append(payload)
        if self.delay_s > 0:
            time.sleep(self.delay_s)
        mode = payload["params"].get("mode")
        if mode and self.mode_responses.get(mode):
            return _render(self.mode_responses[mode].pop(0))
        if self.responses:
            return _render(self.responses.pop(0))
        return self.default_response

    def extend_responses(self, responses: Iterable[ScriptedResponse]) -> None:
        self.responses.extend(responses)

    def set_responses(self, responses: Iterable[ScriptedResponse]) -> None:
        self.responses = list(responses)

    def set_mode_responses(self, mode: str, responses: Iterable[ScriptedResponse]) -> None:
        self.mode_responses[mode] = list(responses)


def _render(response: ScriptedResponse) -> str:
    if isinstance(response, BaseException):
        raise response
    if isinstance(response, dict):
        return json.dumps(response)
    return response


def _load_env_json_list(env_value: str) -> list[ScriptedResponse]:
    data = json.loads(env_value)
    if not isinstance(data, list) or not all(isinstance(item, (str, dict)) for item in data):
        raise ValueError("fake responses must be a JSON list of strings or objects")
    return data


def _factory(**kwargs: Any) -> "FakeBackend":
    backend = FakeBackend(**kwargs)
    responses_json = os.getenv("CHATNAV_FAKE_RESPONSES")
    if responses_json:
        backend.responses = _load_env_json_list(responses_json)
    return backend


register_backend("fake", _factory)
