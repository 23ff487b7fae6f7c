"""Command line interface for figmakeys."""

from __future__ import annotations

import argparse
import json
import pathlib
import sqlite3
import sys
from typing import Any, Iterable, Optional

from .configuration import get_settings
from .errors import (
    DocumentAccessError,
    ErrorCategory,
    FigmakeysError,
    ProviderConfigurationError,
)
from .estimator import format_cost
from .figma import FigmaClient
from .matching import load_localization, merge_localization
from .pipeline import KeygenRunner, KeygenSummary
from .structures import ExtractionSummary
from .usage import UsageStore, summarise_users

# Argument problems and user aborts exit with 2, everything else with 1.
EXIT_CODES = {ErrorCategory.ARGUMENT: 2}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="figmakeys",
        description=(
            "Generate i18n keys for new Japanese texts found in a Figma design."
        ),
    )
    parser.add_argument(
        "figma_url",
        nargs="?",
        help="Figma file URL (a node-id query parameter restricts extraction to that node).",
    )
    parser.add_argument(
        "-j",
        "--existing-json",
        help="Existing Japanese localization file (ja.json).",
    )
    parser.add_argument(
        "-o",
        "--output",
        help="Write the generated keys to this file instead of standard output.",
    )
    parser.add_argument(
        "--merge",
        action="store_true",
        help="Write the existing localization merged with the generated keys.",
    )
    parser.add_argument(
        "--page",
        dest="page_id",
        help="Extract from this page id instead of the first page.",
    )
    parser.add_argument(
        "--include-hidden",
        action="store_true",
        help="Also extract text from hidden layers.",
    )
    parser.add_argument(
        "--no-smart-filters",
        action="store_true",
        help="Keep icons, numbers, decorative layers and duplicates.",
    )
    parser.add_argument(
        "--grouped",
        action="store_true",
        help="Group generated keys by frame instead of producing flat keys.",
    )
    parser.add_argument(
        "-b",
        "--batch-size",
        type=int,
        help="Texts per generation request (default: 10).",
    )
    parser.add_argument(
        "--estimate-only",
        action="store_true",
        help="Report extraction results and the token estimate without generating.",
    )
    parser.add_argument(
        "-p",
        "--provider",
        help="Key generation provider (openai or azure_openai).",
    )
    parser.add_argument(
        "-m",
        "--model",
        help="Model or deployment name (default: gpt-4o-mini).",
    )
    parser.add_argument(
        "--api-key",
        help="OpenAI API key (defaults to OPENAI_API_KEY).",
    )
    parser.add_argument(
        "--figma-token",
        help="Figma access token for private files (defaults to FIGMA_API_TOKEN).",
    )
    parser.add_argument(
        "-u",
        "--user",
        help="Email of the registered user; usage is recorded against it.",
    )
    parser.add_argument(
        "--add-user",
        metavar="EMAIL",
        help="Register a user (requires --user to be an administrator).",
    )
    parser.add_argument(
        "--admin",
        action="store_true",
        help="With --add-user, register the new user as an administrator.",
    )
    parser.add_argument(
        "--remove-user",
        metavar="EMAIL",
        help="Unregister a user (requires --user to be an administrator).",
    )
    parser.add_argument(
        "--list-users",
        action="store_true",
        help="List registered users (requires --user to be an administrator).",
    )
    parser.add_argument(
        "--usage-report",
        action="store_true",
        help="Show recorded usage for --user (all users for administrators).",
    )
    parser.add_argument(
        "-y",
        "--non-interactive",
        action="store_true",
        help="Do not ask for confirmation before calling the model.",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Show detailed progress information.",
    )
    parser.add_argument(
        "--debug-provider",
        action="store_true",
        help="Log complete provider requests and responses for troubleshooting.",
    )
    parser.add_argument(
        "--debug-extract",
        action="store_true",
        help="Trace every node visited while walking the Figma tree.",
    )
    return parser


def confirm_generation(extraction: ExtractionSummary) -> bool:
    """Show the extraction report and ask the user to confirm the estimated cost."""

    print_extraction_report(extraction)
    # Standard output carries the generated JSON, so the dialogue uses stderr.
    while True:
        sys.stderr.write(
            f"Generate keys for {extraction.new_nodes} texts "
            f"(~{extraction.token_estimate.total:,} tokens, "
            f"{format_cost(extraction.estimated_cost)})? [y/n] "
        )
        sys.stderr.flush()
        line = sys.stdin.readline()
        if not line:
            return False
        response = line.strip().lower()
        if response in {"y", "yes"}:
            return True
        if response in {"n", "no"}:
            return False
        print("Please respond with yes or no (y/n).", file=sys.stderr)


def execute_keygen(
    *,
    figma_url: str,
    existing_json_path: str,
    page_id: str | None,
    include_hidden: bool,
    smart_filters: bool,
    grouped: bool,
    batch_size: int,
    estimate_only: bool,
    provider: str | None,
    model: str | None,
    api_key: str | None,
    figma_token: str | None,
    user_email: str | None,
    usage_store: UsageStore | None,
    settings: Any,
    non_interactive: bool,
    verbose: bool,
    provider_debug: bool,
    extract_debug: bool,
) -> tuple[int, KeygenSummary | None, str | None]:
    """Execute a run and return the exit code, summary, and message."""

    try:
        existing_json = load_localization(pathlib.Path(existing_json_path).expanduser())
    except FigmakeysError as exc:
        return 1, None, str(exc)

    runner = KeygenRunner(
        figma_url=figma_url,
        existing_json=existing_json,
        page_id=page_id,
        only_visible=not include_hidden,
        smart_filters=smart_filters,
        grouped=grouped,
        batch_size=batch_size,
        estimate_only=estimate_only,
        figma_client=FigmaClient(token=figma_token),
        provider_name=provider,
        api_key=api_key,
        model=model,
        settings=settings,
        usage_store=usage_store,
        user_email=user_email,
        confirm=None if non_interactive else confirm_generation,
        verbose=verbose,
        provider_debug=provider_debug,
        extract_debug=extract_debug,
    )

    try:
        summary = runner.run()
    except FigmakeysError as exc:
        message = str(exc)
        if isinstance(exc, DocumentAccessError) and not figma_token:
            message += "\nProvide a token with --figma-token or FIGMA_API_TOKEN."
        return EXIT_CODES.get(exc.category, 1), None, message
    except KeyboardInterrupt:
        return 2, None, "Key generation interrupted by user."
    except Exception as exc:  # pragma: no cover - defensive catch
        error_message = (
            f"{exc}\n"
            "An unexpected error occurred. Please rerun with --verbose for more details."
        )
        return 1, None, error_message

    return 0, summary, None


def print_extraction_report(extraction: ExtractionSummary) -> None:
    """Output the extraction statistics and the token estimate."""

    mode_labels = {
        "node": f"node {extraction.node_id}",
        "page": "selected page",
        "first_page": "first page",
    }
    print("\nExtraction complete.", file=sys.stderr)
    print(f"  Scope:           {mode_labels[extraction.extraction_mode]}", file=sys.stderr)
    if extraction.available_pages:
        pages = ", ".join(f"{page.name} ({page.id})" for page in extraction.available_pages)
        print(f"  Pages:           {pages}", file=sys.stderr)
    print(f"  Text nodes:      {extraction.total_text_nodes}", file=sys.stderr)
    print(f"  Japanese texts:  {extraction.japanese_nodes}", file=sys.stderr)
    print(
        f"  After filters:   {extraction.filtered_nodes} ({extraction.filtering_summary})",
        file=sys.stderr,
    )
    print(f"  New texts:       {extraction.new_nodes}", file=sys.stderr)
    estimate = extraction.token_estimate
    print(
        f"  Token estimate:  {estimate.total:,} "
        f"({estimate.input_tokens:,} in / {estimate.output_tokens:,} out, "
        f"~{format_cost(extraction.estimated_cost)})",
        file=sys.stderr,
    )
    print(f"  Token warning:   {extraction.warning_message}", file=sys.stderr)


def print_summary(summary: KeygenSummary) -> None:
    """Output a friendly report once processing completes."""

    generation = summary.generation
    if generation is not None:
        usage = generation.token_usage
        print("\nKey generation complete.", file=sys.stderr)
        print(f"  Texts:           {generation.record_count}", file=sys.stderr)
        print(
            f"  Tokens used:     {usage.total_tokens:,} "
            f"({usage.prompt_tokens:,} prompt / {usage.completion_tokens:,} completion)",
            file=sys.stderr,
        )
        print(f"  Cost:            {format_cost(summary.actual_cost)}", file=sys.stderr)
        if generation.regenerated_keys:
            print(
                f"  Regenerated:     {', '.join(generation.regenerated_keys)}",
                file=sys.stderr,
            )
        if summary.usage_logged:
            print("  Usage recorded.", file=sys.stderr)
    print(f"  Elapsed time:    {summary.elapsed_seconds:.2f} seconds", file=sys.stderr)
    if summary.notes:
        print("  Notes:", file=sys.stderr)
        for note in summary.notes:
            print(f"    - {note}", file=sys.stderr)


def write_output(
    summary: KeygenSummary,
    *,
    output: str | None,
    merge: bool,
    existing_json_path: str,
) -> None:
    """Write generated (or merged) keys to a file or to standard output."""

    if summary.generation is None:
        return
    payload = summary.generation.generated_keys
    if merge:
        existing = load_localization(pathlib.Path(existing_json_path).expanduser())
        payload = merge_localization(existing, payload)
    text = json.dumps(payload, ensure_ascii=False, indent=2) + "\n"
    if output:
        output_path = pathlib.Path(output).expanduser().resolve()
        output_path.parent.mkdir(parents=True, exist_ok=True)
        output_path.write_text(text, encoding="utf-8")
        print(f"  Output file:     {output_path}", file=sys.stderr)
    else:
        sys.stdout.write(text)


def run_user_commands(args: argparse.Namespace, store: UsageStore) -> int:
    """Handle the user management and usage report options."""

    user = store.get_or_create_user(args.user)

    if args.add_user or args.remove_user or args.list_users:
        if not store.is_admin(user.email):
            print("Unauthorized: Admin access required.", file=sys.stderr)
            return 1

    if args.add_user:
        added = store.add_user(args.add_user, "admin" if args.admin else "user")
        print(f"Added {added.email} ({added.role}).")

    if args.remove_user:
        if not store.remove_user(args.remove_user):
            print(f"No registered user {args.remove_user}.", file=sys.stderr)
            return 1
        print(f"Removed {args.remove_user}.")

    if args.list_users:
        for registered in store.list_users():
            print(f"  {registered.email} ({registered.role}, since {registered.created_at})")

    if args.usage_report:
        if store.is_admin(user.email):
            stats = store.get_all_users_stats()
            totals = summarise_users(stats)
            print(
                f"{totals['users']} users, {totals['requests']} requests, "
                f"{totals['tokens']:,} tokens, {format_cost(totals['cost'])}"
            )
            for item in stats:
                print(
                    f"  {item.user_email}: {item.request_count} requests, "
                    f"{item.total_tokens:,} tokens, {format_cost(item.total_cost)}"
                )
            logs = store.get_all_usage_logs()
        else:
            stats_for_user = store.get_user_stats(user.email)
            print(
                f"{stats_for_user.request_count} requests, "
                f"{stats_for_user.total_texts} texts, "
                f"{stats_for_user.total_tokens:,} tokens, "
                f"{format_cost(stats_for_user.total_cost)}"
            )
            logs = store.get_user_usage_logs(user.email)
        for log in logs:
            print(
                f"  [{log.created_at}] {log.user_email} {log.figma_url} "
                f"{log.extracted_texts_count} texts, {log.total_tokens:,} tokens, "
                f"{format_cost(log.cost)}"
            )
    return 0


def main(argv: Optional[Iterable[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(list(argv) if argv is not None else None)

    try:
        settings = get_settings()
    except ProviderConfigurationError as exc:
        print(exc, file=sys.stderr)
        return 1

    provider_debug = bool(args.debug_provider or settings.FIGMAKEYS_PROVIDER_DEBUG)

    usage_store: UsageStore | None = None
    if args.user:
        try:
            usage_store = UsageStore(
                settings.FIGMAKEYS_USAGE_DB,
                admin_email=settings.FIGMAKEYS_ADMIN_EMAIL,
            )
        except sqlite3.Error as exc:
            print(f"Usage database {settings.FIGMAKEYS_USAGE_DB} is unavailable: {exc}", file=sys.stderr)
            return 1

    if args.add_user or args.remove_user or args.list_users or args.usage_report:
        if usage_store is None:
            parser.error("user management and --usage-report require --user")
        try:
            return run_user_commands(args, usage_store)
        except FigmakeysError as exc:
            print(exc, file=sys.stderr)
            return 1
        finally:
            usage_store.close()

    if args.figma_url is None:
        parser.error("the following arguments are required: figma_url")
    if not args.existing_json:
        parser.error("the following arguments are required: -j/--existing-json")

    if args.batch_size is not None:
        batch_size = args.batch_size
    else:
        batch_size = settings.FIGMAKEYS_BATCH_SIZE
    if batch_size < 1:
        parser.error("--batch-size must be at least 1")

    exit_code, summary, message = execute_keygen(
        figma_url=args.figma_url,
        existing_json_path=args.existing_json,
        page_id=args.page_id,
        include_hidden=args.include_hidden,
        smart_filters=not args.no_smart_filters,
        grouped=args.grouped,
        batch_size=batch_size,
        estimate_only=args.estimate_only,
        provider=args.provider,
        model=args.model,
        api_key=args.api_key,
        figma_token=args.figma_token or settings.FIGMA_API_TOKEN,
        user_email=args.user,
        usage_store=usage_store,
        settings=settings,
        non_interactive=args.non_interactive,
        verbose=args.verbose,
        provider_debug=provider_debug,
        extract_debug=args.debug_extract,
    )

    if usage_store is not None:
        usage_store.close()

    if message:
        print(message, file=sys.stderr)
    if summary:
        # Interactive runs already saw the report at the confirmation prompt.
        if args.non_interactive or summary.generation is None:
            print_extraction_report(summary.extraction)
        try:
            write_output(
                summary,
                output=args.output,
                merge=args.merge,
                existing_json_path=args.existing_json,
            )
        except (OSError, FigmakeysError) as exc:
            print(f"Could not write the generated keys: {exc}", file=sys.stderr)
            return 1
        print_summary(summary)
    return exit_code


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
