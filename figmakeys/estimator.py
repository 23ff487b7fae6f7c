"""Token and cost estimation ahead of key generation.

The figures follow gpt-4o-mini tokenisation of mixed Japanese/English text
closely enough to warn users before an expensive run. They are advisory:
billing always uses the usage reported by the provider.
"""

from __future__ import annotations

import math
from typing import Sequence

from .language import JAPANESE_PATTERN
from .structures import TextRecord, TokenEstimate

JAPANESE_TOKENS_PER_CHAR = 1.5
OTHER_CHARS_PER_TOKEN = 4

SYSTEM_MESSAGE_TOKENS = 38
PROMPT_TEMPLATE_TOKENS = 400
RECORD_NUMBERING_TOKENS = 5
RECORD_STRUCTURE_TOKENS = 15

OUTPUT_WRAPPER_TOKENS = 5
OUTPUT_KEY_TOKENS = 3
OUTPUT_SEPARATOR_TOKENS = 2
OUTPUT_TRAILER_TOKENS = 1

DUPLICATE_RATE = 0.08
RETRY_INSTRUCTION_TOKENS = 50
RETRY_TOKENS_PER_KEY = 1.5
RETRY_TOKENS_PER_RECORD = 25
RETRY_OUTPUT_TOKENS_PER_KEY = 6

INPUT_PRICE_PER_MILLION = 0.15
OUTPUT_PRICE_PER_MILLION = 0.60

SAFE_LIMIT = 5000
WARNING_LIMIT = 15000


def estimate_tokens(text: str) -> int:
    """Approximate the token count of ``text``."""

    japanese_chars = len(JAPANESE_PATTERN.findall(text))
    other_chars = len(text) - japanese_chars
    return math.ceil(japanese_chars * JAPANESE_TOKENS_PER_CHAR) + math.ceil(
        other_chars / OTHER_CHARS_PER_TOKEN
    )


def estimate_batch_tokens(
    records: Sequence[TextRecord],
    context_sample: str,
    existing_keys: Sequence[str] = (),
    batch_size: int = 10,
) -> TokenEstimate:
    """Estimate input and output tokens for a batched generation run.

    Existing keys are not sent with the first prompt of a batch; they only
    matter through the allowance for one regeneration pass.
    """

    batch_size = max(1, batch_size)
    sample_tokens = estimate_tokens(context_sample)
    input_tokens = 0
    output_tokens = 0

    for start in range(0, len(records), batch_size):
        batch = records[start : start + batch_size]
        batch_input = SYSTEM_MESSAGE_TOKENS + sample_tokens + PROMPT_TEMPLATE_TOKENS
        batch_output = OUTPUT_WRAPPER_TOKENS
        for record in batch:
            text_tokens = estimate_tokens(record.text)
            batch_input += RECORD_NUMBERING_TOKENS
            batch_input += estimate_tokens(record.frame_name)
            batch_input += estimate_tokens(" > ".join(record.frame_path))
            batch_input += text_tokens
            batch_input += RECORD_STRUCTURE_TOKENS

            batch_output += (
                OUTPUT_KEY_TOKENS
                + OUTPUT_SEPARATOR_TOKENS
                + text_tokens
                + OUTPUT_TRAILER_TOKENS
            )
        input_tokens += batch_input
        output_tokens += batch_output

    estimated_duplicates = math.ceil(len(records) * DUPLICATE_RATE)
    if estimated_duplicates > 0 and existing_keys:
        input_tokens += (
            SYSTEM_MESSAGE_TOKENS
            + sample_tokens
            + PROMPT_TEMPLATE_TOKENS
            + RETRY_INSTRUCTION_TOKENS
            + math.ceil(estimated_duplicates * RETRY_TOKENS_PER_KEY)
            + estimated_duplicates * RETRY_TOKENS_PER_RECORD
        )
        output_tokens += estimated_duplicates * RETRY_OUTPUT_TOKENS_PER_KEY

    return TokenEstimate(input_tokens=input_tokens, output_tokens=output_tokens)


def estimate_cost(input_tokens: int, output_tokens: int) -> float:
    """Cost in USD at gpt-4o-mini list prices."""

    input_cost = input_tokens / 1_000_000 * INPUT_PRICE_PER_MILLION
    output_cost = output_tokens / 1_000_000 * OUTPUT_PRICE_PER_MILLION
    return input_cost + output_cost


def get_token_warning_level(total_tokens: int) -> tuple[str, str]:
    """Classify a token total as ``safe``, ``warning`` or ``danger``."""

    if total_tokens < SAFE_LIMIT:
        return "safe", "Token usage looks good"
    if total_tokens < WARNING_LIMIT:
        return (
            "warning",
            "Moderate token usage - this will consume some of your OpenAI quota",
        )
    return (
        "danger",
        "High token usage! Consider selecting a smaller page or filtering your Figma design",
    )


def format_cost(value: float | None, decimals: int = 4) -> str:
    """Format a dollar amount, treating missing values as zero."""

    if value is None or math.isnan(value):
        value = 0.0
    return f"${value:.{decimals}f}"
