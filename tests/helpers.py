"""helpers.py - shared fakes and builders for the test suite."""

import json
from typing import Any, Dict, List, Sequence

from figmakeys.providers import KeyGenerationProvider
from figmakeys.structures import Completion, TextRecord, TokenUsage


def record(text: str, *path: str, node_id: str = "1:1") -> TextRecord:
    return TextRecord(
        text=text,
        frame_name=path[-1] if path else "Root",
        frame_path=tuple(path),
        node_id=node_id,
    )


def node(node_type: str, name: str, node_id: str, *children: dict, **extra: Any) -> dict:
    payload: Dict[str, Any] = {"id": node_id, "name": name, "type": node_type}
    if children:
        payload["children"] = list(children)
    payload.update(extra)
    return payload


def text(node_id: str, characters: str, **extra: Any) -> dict:
    return node("TEXT", characters, node_id, characters=characters, **extra)


def figma_file(*pages: dict) -> dict:
    return {
        "name": "App",
        "document": node("DOCUMENT", "Document", "0:0", *pages),
    }


class ScriptedProvider(KeyGenerationProvider):
    """Returns prepared JSON answers in order and records every call."""

    def __init__(self, responses: Sequence[Any], usage: TokenUsage | None = None) -> None:
        self.responses: List[Any] = list(responses)
        self.usage = usage or TokenUsage(prompt_tokens=100, completion_tokens=20, total_tokens=120)
        self.calls: List[Dict[str, Any]] = []

    def complete(self, *, system_prompt: str, user_prompt: str, temperature: float) -> Completion:
        self.calls.append(
            {
                "system_prompt": system_prompt,
                "user_prompt": user_prompt,
                "temperature": temperature,
            }
        )
        if not self.responses:
            raise AssertionError("Provider called more often than scripted.")
        answer = self.responses.pop(0)
        if isinstance(answer, Exception):
            raise answer
        content = answer if isinstance(answer, str) else json.dumps(answer, ensure_ascii=False)
        return Completion(
            content=content,
            usage=TokenUsage(
                prompt_tokens=self.usage.prompt_tokens,
                completion_tokens=self.usage.completion_tokens,
                total_tokens=self.usage.total_tokens,
            ),
        )
