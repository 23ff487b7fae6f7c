"""Core data structures for figmakeys."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple, Union

ROOT_FRAME = "Root"

LocalizationMap = Dict[str, Union[str, "LocalizationMap"]]


@dataclass(frozen=True)
class TextRecord:
    """A text leaf extracted from the design tree."""

    text: str
    frame_name: str
    frame_path: Tuple[str, ...]
    node_id: str


@dataclass(frozen=True)
class PageInfo:
    """A top-level page (canvas) of a design document."""

    id: str
    name: str


@dataclass
class FilterStats:
    """Number of records removed by each filtering stage."""

    by_content: int = 0
    by_frame_name: int = 0
    by_length: int = 0
    duplicates: int = 0

    @property
    def total(self) -> int:
        return self.by_content + self.by_frame_name + self.by_length + self.duplicates


@dataclass
class FilterResult:
    filtered: List[TextRecord]
    excluded: FilterStats


@dataclass(frozen=True)
class TokenEstimate:
    """Advisory token prediction made before calling the provider."""

    input_tokens: int
    output_tokens: int

    @property
    def total(self) -> int:
        return self.input_tokens + self.output_tokens


@dataclass
class TokenUsage:
    """Actual token consumption reported by the provider."""

    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0

    def add(self, other: "TokenUsage") -> None:
        """Accumulate another usage record into this one."""

        self.prompt_tokens += other.prompt_tokens
        self.completion_tokens += other.completion_tokens
        self.total_tokens += other.total_tokens


@dataclass
class Completion:
    """Raw answer of one provider call."""

    content: str
    usage: TokenUsage = field(default_factory=TokenUsage)


@dataclass
class Batch:
    """A consecutive slice of records sent in one prompt."""

    batch_id: int
    records: List[TextRecord]


@dataclass
class ExtractionSummary:
    """Report of the extraction half of the pipeline."""

    extraction_mode: str
    node_id: Optional[str]
    available_pages: List[PageInfo]
    total_text_nodes: int
    japanese_nodes: int
    filtered_nodes: int
    new_records: List[TextRecord]
    context_sample: str
    existing_keys: List[str]
    token_estimate: TokenEstimate
    estimated_cost: float
    warning_level: str
    warning_message: str
    filter_stats: FilterStats
    filtering_summary: str

    @property
    def new_nodes(self) -> int:
        return len(self.new_records)


@dataclass
class GenerationResult:
    """Merged output of a batched key generation run."""

    generated_keys: LocalizationMap
    token_usage: TokenUsage
    record_count: int
    regenerated_keys: List[str] = field(default_factory=list)
    unresolved_collisions: List[str] = field(default_factory=list)
