"""Helpers for comparing extracted text against an existing localization file."""

from __future__ import annotations

import copy
import json
import pathlib
from typing import Any, Dict, Iterable, List, Mapping, Sequence

from .errors import LocalizationFormatError
from .structures import LocalizationMap, TextRecord

KEY_SEPARATOR = "."


def find_text_in_json(text: str, mapping: Mapping[str, Any]) -> bool:
    """Return True when ``text`` is exactly one of the leaf values of ``mapping``."""

    stack: List[Any] = [mapping]
    while stack:
        current = stack.pop()
        if isinstance(current, str):
            if current == text:
                return True
            continue
        if isinstance(current, Mapping):
            stack.extend(current.values())
    return False


def filter_new_texts(
    records: Sequence[TextRecord],
    mapping: Mapping[str, Any],
) -> List[TextRecord]:
    """Keep the records whose text is not translated yet."""

    return [record for record in records if not find_text_in_json(record.text, mapping)]


def extract_all_keys(mapping: Mapping[str, Any], prefix: str = "") -> List[str]:
    """List every leaf key path, joined with dots."""

    keys: List[str] = []
    for key, value in mapping.items():
        full_key = f"{prefix}{KEY_SEPARATOR}{key}" if prefix else key
        if isinstance(value, Mapping):
            keys.extend(extract_all_keys(value, full_key))
        else:
            keys.append(full_key)
    return keys


def flatten_keys(mapping: Mapping[str, Any], prefix: str = "") -> Dict[str, Any]:
    """Return ``{dotted_path: leaf_value}`` for every leaf of ``mapping``."""

    flat: Dict[str, Any] = {}
    for key, value in mapping.items():
        full_key = f"{prefix}{KEY_SEPARATOR}{key}" if prefix else key
        if isinstance(value, Mapping):
            flat.update(flatten_keys(value, full_key))
        else:
            flat[full_key] = value
    return flat


def get_sample_context(mapping: Mapping[str, Any], max_items: int = 5) -> str:
    """Copy at most ``max_items`` leaves, depth-first, as a style example."""

    sample: Dict[str, Any] = {}
    count = 0

    def add_sample(source: Mapping[str, Any], target: Dict[str, Any]) -> None:
        nonlocal count
        for key, value in source.items():
            if count >= max_items:
                return
            if isinstance(value, str):
                target[key] = value
                count += 1
            elif isinstance(value, Mapping):
                target[key] = {}
                add_sample(value, target[key])

    add_sample(mapping, sample)
    return json.dumps(sample, ensure_ascii=False, indent=2)


def remove_key_paths(
    mapping: Mapping[str, Any],
    paths: Iterable[str],
) -> LocalizationMap:
    """Return a copy of ``mapping`` without the given leaf paths.

    Containers left empty by the removal are dropped as well.
    """

    result: LocalizationMap = copy.deepcopy(dict(mapping))
    for path in paths:
        parts = path.split(KEY_SEPARATOR)
        parents: List[Dict[str, Any]] = []
        node: Any = result
        for part in parts[:-1]:
            if not isinstance(node, dict) or not isinstance(node.get(part), dict):
                node = None
                break
            parents.append(node)
            node = node[part]
        if not isinstance(node, dict) or parts[-1] not in node:
            continue
        del node[parts[-1]]
        for parent, part in zip(reversed(parents), reversed(parts[:-1])):
            if parent[part]:
                break
            del parent[part]
    return result


def merge_localization(
    base: Mapping[str, Any],
    additions: Mapping[str, Any],
) -> LocalizationMap:
    """Deep merge ``additions`` into a copy of ``base``."""

    result: LocalizationMap = dict(base)
    for key, value in additions.items():
        if isinstance(value, Mapping):
            existing = base.get(key)
            result[key] = merge_localization(
                existing if isinstance(existing, Mapping) else {},
                value,
            )
        else:
            result[key] = value
    return result


def validate_localization(payload: Any, *, origin: str = "localization data") -> LocalizationMap:
    """Check that ``payload`` is a JSON object whose leaves are all strings."""

    if not isinstance(payload, dict):
        raise LocalizationFormatError(
            f"Invalid {origin}: expected a JSON object at the root."
        )

    stack: List[tuple[str, Any]] = [("", payload)]
    while stack:
        prefix, current = stack.pop()
        for key, value in current.items():
            path = f"{prefix}{KEY_SEPARATOR}{key}" if prefix else key
            if isinstance(value, dict):
                stack.append((path, value))
            elif not isinstance(value, str):
                raise LocalizationFormatError(
                    f"Invalid {origin}: value at '{path}' must be a string "
                    f"or an object, got {type(value).__name__}."
                )
    return payload


def load_localization(path: pathlib.Path) -> LocalizationMap:
    """Read and validate a localization JSON file."""

    try:
        raw = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise LocalizationFormatError(
            f"Localization file could not be read: {exc}"
        ) from exc
    try:
        payload = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise LocalizationFormatError(
            f"Localization file {path.name} is not valid JSON: {exc}"
        ) from exc
    return validate_localization(payload, origin=f"localization file {path.name}")
