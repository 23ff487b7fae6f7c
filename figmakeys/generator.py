"""Batched i18n key generation with duplicate-safe regeneration."""

from __future__ import annotations

import json
import sys
from typing import Iterable, List, Sequence

from .errors import LocalizationFormatError, ProviderError
from .matching import flatten_keys, merge_localization, remove_key_paths, validate_localization
from .providers import KeyGenerationProvider, strip_code_fence
from .structures import (
    Batch,
    GenerationResult,
    LocalizationMap,
    TextRecord,
    TokenUsage,
)

SYSTEM_PROMPT = (
    "You are a helpful assistant that generates i18n keys for Japanese text. "
    "You always respond with valid JSON only."
)

FIRST_PASS_TEMPERATURE = 0.3
REGENERATION_TEMPERATURE = 0.7
DEFAULT_BATCH_SIZE = 10

FLAT_RULES = """Naming Rules:
- Use SHORT, FLAT keys with format: "screen_type" or "screen_type_detail"
- Keep keys concise (2-3 parts max, separated by underscores)
- Common patterns:
  - "contact_title" - page/form title
  - "contact_email" - email field label
  - "contact_category" - category field label
  - "contact_submit" - submit button
  - "menu_housewife" - menu option
  - "savings_desc" - description text
- Component types: title, label, button, desc, body, placeholder, error, hint
- Avoid redundancy: "contactForm_label_email" -> "contact_email"
- Use the frame path to understand screen context
- Make keys unique - never repeat the same key"""

FLAT_FORMAT = """Generate SHORT, FLAT i18n keys (no nested objects). Each key MUST be unique.{taken}
Return ONLY valid JSON, no explanation or extra text.

Expected format:
{{
  "contact_title": "日本語テキスト",
  "contact_email": "日本語テキスト"
}}"""

GROUPED_RULES = """Naming Rules:
- Group keys by screen: use one top-level key per frame (e.g. "Contact", "Onboarding")
- Derive the top-level key from the frame name, in PascalCase, without the [id] suffix
- Inside each group use short snake_case leaf keys (1-2 parts)
- Component types: title, label, button, desc, body, placeholder, error, hint
- Use the frame path to understand screen context
- Make keys unique - never repeat the same key inside a group"""

GROUPED_FORMAT = """Generate i18n keys grouped by frame (one level of nesting). Each key path MUST be unique.{taken}
Return ONLY valid JSON, no explanation or extra text.

Expected format:
{{
  "Contact": {{
    "title": "日本語テキスト",
    "email": "日本語テキスト"
  }}
}}"""


def format_records(records: Sequence[TextRecord]) -> str:
    """Render records as numbered prompt entries."""

    return "\n\n".join(
        f'{index}. Frame: "{record.frame_name}" (Path: {" > ".join(record.frame_path)})\n'
        f'   Text: "{record.text}"'
        for index, record in enumerate(records, start=1)
    )


def build_prompt(
    records: Sequence[TextRecord],
    context_sample: str,
    *,
    grouped: bool = False,
    taken_keys: Sequence[str] = (),
) -> str:
    """Build the user prompt for one batch.

    ``taken_keys`` is only filled for a regeneration request; first-pass
    prompts never carry the existing key list.
    """

    taken = ""
    if taken_keys:
        taken = (
            "\n\nIMPORTANT: The following keys are already taken. DO NOT USE THESE:\n"
            + ", ".join(taken_keys)
            + "\n\nGenerate DIFFERENT keys that don't conflict with the ones above."
        )

    rules = GROUPED_RULES if grouped else FLAT_RULES
    output_format = (GROUPED_FORMAT if grouped else FLAT_FORMAT).format(taken=taken)

    return (
        "You are generating i18n keys for a Japanese UI based on a Figma file.\n"
        "Follow this key style example from the existing JSON structure:\n\n"
        f"{context_sample}\n\n"
        f"{rules}\n\n"
        "Given the following Japanese texts from Figma:\n\n"
        f"{format_records(records)}\n\n"
        f"{output_format}"
    )


def parse_generated_keys(content: str) -> LocalizationMap:
    """Decode a provider answer into a localization map."""

    try:
        payload = json.loads(strip_code_fence(content))
    except json.JSONDecodeError as exc:
        raise ProviderError("Invalid JSON response from OpenAI") from exc
    try:
        return validate_localization(payload, origin="response from OpenAI")
    except LocalizationFormatError as exc:
        raise ProviderError(str(exc)) from exc


def match_records(
    records: Sequence[TextRecord],
    values: Iterable[object],
) -> List[TextRecord]:
    """Map generated values back to the records whose text they repeat.

    Values that match no record are ignored; each record is returned once,
    in batch order.
    """

    wanted = {value for value in values if isinstance(value, str)}
    matched: List[TextRecord] = []
    seen_texts: set[str] = set()
    for record in records:
        if record.text in wanted and record.text not in seen_texts:
            seen_texts.add(record.text)
            matched.append(record)
    return matched


class BatchBuilder:
    """Splits records into consecutive batches of a fixed size."""

    def __init__(self, size: int) -> None:
        self.size = max(1, size)

    def build(self, records: Sequence[TextRecord]) -> List[Batch]:
        return [
            Batch(batch_id=index, records=list(records[start : start + self.size]))
            for index, start in enumerate(range(0, len(records), self.size), start=1)
        ]


class KeyGenerator:
    """Generates keys batch by batch while keeping them clear of taken keys.

    Batches run strictly in order: the registry of taken key paths is seeded
    with the existing keys and grows with every accepted batch, and each
    collision check needs all earlier acceptances.
    """

    def __init__(
        self,
        provider: KeyGenerationProvider,
        *,
        batch_size: int = DEFAULT_BATCH_SIZE,
        grouped: bool = False,
        verbose: bool = False,
    ) -> None:
        self.provider = provider
        self.batch_size = max(1, batch_size)
        self.grouped = grouped
        self.verbose = verbose

    def generate(
        self,
        records: Sequence[TextRecord],
        context_sample: str,
        existing_keys: Sequence[str] = (),
    ) -> GenerationResult:
        batches = BatchBuilder(self.batch_size).build(records)
        registry: set[str] = set(existing_keys)
        usage = TokenUsage()
        result = GenerationResult(
            generated_keys={},
            token_usage=usage,
            record_count=len(records),
        )

        batch_outputs: List[LocalizationMap] = []
        for batch in batches:
            batch_outputs.append(
                self._process_batch(
                    batch,
                    context_sample=context_sample,
                    registry=registry,
                    result=result,
                    total_batches=len(batches),
                )
            )

        # Later batches replace earlier top-level keys; no deep merge.
        merged: LocalizationMap = {}
        for output in batch_outputs:
            merged.update(output)
        result.generated_keys = merged
        return result

    def _request(
        self,
        prompt: str,
        *,
        temperature: float,
        usage: TokenUsage,
    ) -> LocalizationMap:
        completion = self.provider.complete(
            system_prompt=SYSTEM_PROMPT,
            user_prompt=prompt,
            temperature=temperature,
        )
        usage.add(completion.usage)
        return parse_generated_keys(completion.content)

    def _process_batch(
        self,
        batch: Batch,
        *,
        context_sample: str,
        registry: set[str],
        result: GenerationResult,
        total_batches: int,
    ) -> LocalizationMap:
        prompt = build_prompt(batch.records, context_sample, grouped=self.grouped)
        generated = self._request(
            prompt,
            temperature=FIRST_PASS_TEMPERATURE,
            usage=result.token_usage,
        )
        flat = flatten_keys(generated)
        collisions = [path for path in flat if path in registry]

        if not collisions:
            registry.update(flat)
            if self.verbose:
                print(
                    f"Processed batch {batch.batch_id}/{total_batches} "
                    f"({len(batch.records)} texts, {len(flat)} keys).",
                    file=sys.stderr,
                )
            return generated

        if self.verbose:
            print(
                f"Batch {batch.batch_id}/{total_batches}: {len(collisions)} duplicate "
                f"key(s) detected ({', '.join(collisions)}). Regenerating...",
                file=sys.stderr,
            )

        kept = remove_key_paths(generated, collisions)
        kept_paths = set(flatten_keys(kept))
        retry_records = match_records(batch.records, (flat[path] for path in collisions))
        if not retry_records:
            registry.update(kept_paths)
            return kept

        retry_prompt = build_prompt(
            retry_records,
            context_sample,
            grouped=self.grouped,
            taken_keys=collisions,
        )
        regenerated = self._request(
            retry_prompt,
            temperature=REGENERATION_TEMPERATURE,
            usage=result.token_usage,
        )
        regenerated_paths = list(flatten_keys(regenerated))
        residue = [
            path for path in regenerated_paths if path in registry or path in kept_paths
        ]
        result.regenerated_keys.extend(regenerated_paths)
        result.unresolved_collisions.extend(residue)
        if residue and self.verbose:
            print(
                f"Batch {batch.batch_id}/{total_batches}: regenerated keys still "
                f"collide: {', '.join(residue)}.",
                file=sys.stderr,
            )

        merged = merge_localization(kept, regenerated)
        registry.update(flatten_keys(merged))
        if self.verbose:
            print(
                f"Processed batch {batch.batch_id}/{total_batches} "
                f"({len(batch.records)} texts, {len(regenerated_paths)} regenerated).",
                file=sys.stderr,
            )
        return merged


def generate_keys_in_batches(
    records: Sequence[TextRecord],
    context_sample: str,
    provider: KeyGenerationProvider,
    existing_keys: Sequence[str] = (),
    batch_size: int = DEFAULT_BATCH_SIZE,
    grouped: bool = False,
) -> GenerationResult:
    """Convenience wrapper around :class:`KeyGenerator`."""

    generator = KeyGenerator(provider, batch_size=batch_size, grouped=grouped)
    return generator.generate(records, context_sample, existing_keys)
