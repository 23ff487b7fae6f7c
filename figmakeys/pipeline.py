"""High-level orchestration: extract, filter, estimate and generate keys."""

from __future__ import annotations

import sys
import time
from dataclasses import dataclass, field
from typing import Any, Callable, List, Mapping, Optional

from .documents import extract_all_text, get_available_pages
from .errors import AbortRequested, InvalidFigmaUrlError
from .estimator import estimate_batch_tokens, estimate_cost, get_token_warning_level
from .figma import FigmaClient, extract_file_id, extract_node_id
from .filters import FilterOptions, filter_text_nodes, get_filtering_summary
from .generator import DEFAULT_BATCH_SIZE, KeyGenerator
from .language import detect_language, filter_japanese_text
from .matching import extract_all_keys, filter_new_texts, get_sample_context
from .providers import KeyGenerationProvider, build_provider
from .structures import ROOT_FRAME, ExtractionSummary, FilterStats, GenerationResult
from .usage import UsageStore

SAMPLE_CONTEXT_ITEMS = 5

ConfirmCallback = Callable[[ExtractionSummary], bool]


def extract_candidates(
    document: Mapping[str, Any],
    existing_json: Mapping[str, Any],
    *,
    page_id: str | None = None,
    node_id: str | None = None,
    only_visible: bool = True,
    smart_filters: bool = True,
    batch_size: int = DEFAULT_BATCH_SIZE,
    debug: bool = False,
) -> ExtractionSummary:
    """Run the extraction half of the pipeline on a fetched Figma file.

    Scope priority is node, then page, then the first page; the page list is
    only reported when no node was requested.
    """

    available_pages = [] if node_id else get_available_pages(document)
    all_records = extract_all_text(
        document,
        page_id=None if node_id else page_id,
        node_id=node_id,
        only_visible=only_visible,
        debug=debug,
    )

    japanese_records = filter_japanese_text(all_records)

    filtered_records = japanese_records
    filter_stats = FilterStats()
    if smart_filters:
        filter_result = filter_text_nodes(japanese_records, FilterOptions())
        filtered_records = filter_result.filtered
        filter_stats = filter_result.excluded

    new_records = filter_new_texts(filtered_records, existing_json)
    context_sample = get_sample_context(existing_json, SAMPLE_CONTEXT_ITEMS)
    existing_keys = extract_all_keys(existing_json)
    estimate = estimate_batch_tokens(new_records, context_sample, existing_keys, batch_size)
    level, message = get_token_warning_level(estimate.total)

    if node_id:
        mode = "node"
    elif page_id:
        mode = "page"
    else:
        mode = "first_page"

    return ExtractionSummary(
        extraction_mode=mode,
        node_id=node_id,
        available_pages=available_pages,
        total_text_nodes=len(all_records),
        japanese_nodes=len(japanese_records),
        filtered_nodes=len(filtered_records),
        new_records=new_records,
        context_sample=context_sample,
        existing_keys=existing_keys,
        token_estimate=estimate,
        estimated_cost=estimate_cost(estimate.input_tokens, estimate.output_tokens),
        warning_level=level,
        warning_message=message,
        filter_stats=filter_stats,
        filtering_summary=get_filtering_summary(filter_stats),
    )


@dataclass
class KeygenSummary:
    """Report returned after processing a Figma file."""

    figma_url: str
    file_id: str
    extraction: ExtractionSummary
    generation: Optional[GenerationResult]
    actual_cost: float
    elapsed_seconds: float
    usage_logged: bool = False
    notes: List[str] = field(default_factory=list)


class KeygenRunner:
    """Coordinates fetching, extraction, key generation and usage logging."""

    def __init__(
        self,
        *,
        figma_url: str,
        existing_json: Mapping[str, Any],
        page_id: str | None = None,
        only_visible: bool = True,
        smart_filters: bool = True,
        grouped: bool = False,
        batch_size: int = DEFAULT_BATCH_SIZE,
        estimate_only: bool = False,
        figma_client: FigmaClient | None = None,
        provider: KeyGenerationProvider | None = None,
        provider_name: str | None = None,
        api_key: str | None = None,
        model: str | None = None,
        settings: Any = None,
        usage_store: UsageStore | None = None,
        user_email: str | None = None,
        confirm: ConfirmCallback | None = None,
        verbose: bool = False,
        provider_debug: bool = False,
        extract_debug: bool = False,
    ) -> None:
        self.figma_url = figma_url
        self.existing_json = existing_json
        self.page_id = page_id
        self.only_visible = only_visible
        self.smart_filters = smart_filters
        self.grouped = grouped
        self.batch_size = batch_size
        self.estimate_only = estimate_only
        self.figma_client = figma_client or FigmaClient()
        self.provider = provider
        self.provider_name = provider_name
        self.api_key = api_key
        self.model = model
        self.settings = settings
        self.usage_store = usage_store
        self.user_email = user_email
        self.confirm = confirm
        self.verbose = verbose
        self.provider_debug = provider_debug
        self.extract_debug = extract_debug

    def run(self) -> KeygenSummary:
        start_time = time.time()

        file_id = extract_file_id(self.figma_url)
        if not file_id:
            raise InvalidFigmaUrlError("Invalid Figma URL format")
        node_id = extract_node_id(self.figma_url)

        if self.usage_store is not None and self.user_email:
            self.usage_store.get_or_create_user(self.user_email)

        document = self.figma_client.fetch_file(file_id)
        extraction = extract_candidates(
            document,
            self.existing_json,
            page_id=self.page_id,
            node_id=node_id,
            only_visible=self.only_visible,
            smart_filters=self.smart_filters,
            batch_size=self.batch_size,
            debug=self.extract_debug,
        )
        if self.verbose:
            print(
                f"Extracted {extraction.total_text_nodes} text nodes, "
                f"{extraction.japanese_nodes} Japanese, "
                f"{extraction.filtered_nodes} after filters, "
                f"{extraction.new_nodes} new.",
                file=sys.stderr,
            )
            for record in extraction.new_records:
                location = " > ".join(record.frame_path) or ROOT_FRAME
                print(
                    f"  [{detect_language(record.text)}] {location}: {record.text}",
                    file=sys.stderr,
                )

        summary = KeygenSummary(
            figma_url=self.figma_url,
            file_id=file_id,
            extraction=extraction,
            generation=None,
            actual_cost=0.0,
            elapsed_seconds=0.0,
        )

        if self.estimate_only:
            summary.notes.append("Estimate only: no keys were generated.")
        elif not extraction.new_records:
            summary.notes.append("No new Japanese texts found: nothing to generate.")
        else:
            if self.confirm is not None and not self.confirm(extraction):
                raise AbortRequested("Key generation cancelled at your request.")
            summary.generation = self._generate(extraction)
            usage = summary.generation.token_usage
            summary.actual_cost = estimate_cost(usage.prompt_tokens, usage.completion_tokens)
            summary.usage_logged = self._log_usage(summary)
            if summary.generation.unresolved_collisions:
                summary.notes.append(
                    "Regenerated keys still collide with taken keys: "
                    + ", ".join(summary.generation.unresolved_collisions)
                )

        summary.elapsed_seconds = time.time() - start_time
        return summary

    def _generate(self, extraction: ExtractionSummary) -> GenerationResult:
        provider = self.provider or build_provider(
            self.provider_name,
            api_key=self.api_key,
            model=self.model,
            settings=self.settings,
            debug=self.provider_debug,
        )
        generator = KeyGenerator(
            provider,
            batch_size=self.batch_size,
            grouped=self.grouped,
            verbose=self.verbose,
        )
        return generator.generate(
            extraction.new_records,
            extraction.context_sample,
            extraction.existing_keys,
        )

    def _log_usage(self, summary: KeygenSummary) -> bool:
        """Record token usage; failures never affect the generated keys."""

        if self.usage_store is None or not self.user_email or summary.generation is None:
            return False
        usage = summary.generation.token_usage
        entry = self.usage_store.log_usage(
            user_email=self.user_email,
            figma_url=self.figma_url,
            extracted_texts_count=summary.extraction.new_nodes,
            extracted_texts_sample=[
                item.text for item in summary.extraction.new_records
            ],
            prompt_tokens=usage.prompt_tokens,
            completion_tokens=usage.completion_tokens,
            total_tokens=usage.total_tokens,
            cost=summary.actual_cost,
        )
        return entry is not None
