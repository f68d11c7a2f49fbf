"""CLI for the KB ingestion pipeline and answer router.

Runs the same pipeline as the web app, but without a review dashboard:
candidates are printed as they are generated and saved after an
interactive confirmation (or all at once with ``--auto``).

Usage::

    python -m src.cli ingest manuals/                 # review each candidate
    python -m src.cli ingest faq.pdf --auto           # save every unique one
    python -m src.cli ask "배송은 얼마나 걸리나요?"
    python -m src.cli dedupe --threshold 0.9          # report near-duplicates
    python -m src.cli serve --port 8000

Components are assembled by :func:`src.main.build_components`, imported
lazily so ``--help`` works without API keys configured.
"""

from __future__ import annotations

import argparse
import asyncio
import sys
from pathlib import Path
from typing import Any

import numpy as np

from src.models.ingest import (
    LOCAL_SCHEME,
    CompleteEvent,
    ErrorEvent,
    IngestEvent,
    IngestFile,
    QACandidate,
    QAGeneratedEvent,
)
from src.services.ingestion.text_extractor import guess_mime_type
from src.utils.errors import KBChatbotError

_SUPPORTED_SUFFIXES = frozenset({
    ".pdf", ".txt", ".md", ".csv", ".html", ".htm",
    ".png", ".jpg", ".jpeg", ".gif", ".webp",
})


# ---------------------------------------------------------------------------
# Component loading
# ---------------------------------------------------------------------------


def _load_components(upload_images_during_ingest: bool = False) -> dict[str, Any]:
    from src.main import build_components, config, settings

    return build_components(settings, config, upload_images_during_ingest=upload_images_during_ingest)


def _collect_files(path: Path) -> list[IngestFile]:
    """Read *path* (a file, or every supported file under a directory)."""
    if path.is_file():
        paths = [path]
    else:
        paths = sorted(
            p for p in path.rglob("*")
            if p.is_file() and not p.name.startswith(".") and p.suffix.lower() in _SUPPORTED_SUFFIXES
        )
    return [IngestFile(name=p.name, data=p.read_bytes(), mime_type=guess_mime_type(p.name)) for p in paths]


def _describe(event: IngestEvent) -> str:
    """One human-readable progress line per event."""
    if isinstance(event, ErrorEvent):
        where = f" chunk {event.chunk_index}" if event.chunk_index is not None else ""
        return f"  ! {event.stage.value}{where}: {event.message}"
    if isinstance(event, QAGeneratedEvent):
        dupes = sum(1 for c in event.candidates if c.is_duplicate)
        return f"  chunk {event.chunk_index}: {event.count} candidates ({dupes} duplicates)"
    if isinstance(event, CompleteEvent):
        return (
            f"Done: {event.total_candidates} candidates, "
            f"{event.unique} unique, {event.duplicates} duplicates"
        )
    fields = event.model_dump(exclude={"type", "timestamp"}, by_alias=True)
    details = ", ".join(f"{k}={v}" for k, v in fields.items() if v is not None)
    return f"  {event.type}: {details}"


def _print_candidate(candidate: QACandidate) -> None:
    page = f" p.{candidate.page_number}" if candidate.page_number else ""
    print(f"\n[{candidate.category}] {candidate.file_name}{page}")
    print(f"  Q: {candidate.question}")
    print(f"  A: {candidate.answer}")


async def _confirm(prompt: str) -> str:
    answer = await asyncio.to_thread(input, prompt)
    return answer.strip().lower()


# ---------------------------------------------------------------------------
# Subcommand handlers
# ---------------------------------------------------------------------------


async def _handle_ingest(args: argparse.Namespace, components: dict[str, Any]) -> int:
    """Run the pipeline over a file or directory and save reviewed candidates."""
    files = _collect_files(Path(args.path))
    if not files:
        print(f"No supported files found at {args.path}", file=sys.stderr)
        return 1

    orchestrator = components["job_orchestrator"]
    try:
        orchestrator.validate_files(files)
    except KBChatbotError as exc:
        print(f"Error: {exc.message}", file=sys.stderr)
        return 1

    print(f"Ingesting {len(files)} file(s)")
    candidates: list[QACandidate] = []
    try:
        async for event in components["pipeline"].stream(files):
            print(_describe(event))
            if isinstance(event, QAGeneratedEvent):
                candidates.extend(event.candidates)
    except KBChatbotError as exc:
        print(f"Error: {exc.message}", file=sys.stderr)
        return 1

    unique = [c for c in candidates if not c.is_duplicate]
    if not unique:
        print("\nNothing to save.")
        return 0

    kb_store = components["kb_store"]
    saved = failed = 0
    for candidate in unique:
        if not args.auto:
            _print_candidate(candidate)
            choice = await _confirm("  Save? [y/N/q] ")
            if choice == "q":
                break
            if choice != "y":
                continue

        # Placeholders only resolve inside a running job.
        image_url = candidate.image_url
        if image_url and image_url.startswith(LOCAL_SCHEME):
            image_url = None

        try:
            await kb_store.create_entry(
                question=candidate.question,
                answer=candidate.answer,
                category=candidate.category,
                image_url=image_url,
                created_by="kb-cli",
            )
        except KBChatbotError as exc:
            print(f"  ! save failed: {exc.message}", file=sys.stderr)
            failed += 1
            continue
        saved += 1

    print(f"\nSaved {saved} of {len(unique)} unique candidates.")
    if failed:
        print(f"{failed} candidate(s) could not be saved.", file=sys.stderr)
        return 1
    return 0


async def _handle_ask(args: argparse.Namespace, components: dict[str, Any]) -> int:
    """Route one question exactly as the answer endpoint would."""
    result = await components["answer_router"].answer(args.question)

    print(result.answer)
    print()
    print(f"  Source:     {result.source.value}")
    if result.similarity_score is not None:
        print(f"  Similarity: {result.similarity_score:.3f}")
    if result.matched_kb_id:
        print(f"  KB item:    {result.matched_kb_id}")
    if result.image_url:
        print(f"  Image:      {result.image_url}")
    return 0


def find_similar_pairs(embeddings: list[list[float]], threshold: float) -> list[tuple[int, int, float]]:
    """Return ``(i, j, similarity)`` for every pair at or above *threshold*.

    Pairs are ordered by similarity, highest first; ``i < j``.
    """
    if len(embeddings) < 2:
        return []

    matrix = np.asarray(embeddings, dtype=np.float64)
    norms = np.linalg.norm(matrix, axis=1, keepdims=True)
    norms[norms == 0] = 1.0
    unit = matrix / norms
    similarity = unit @ unit.T

    rows, cols = np.triu_indices(len(embeddings), k=1)
    scores = similarity[rows, cols]
    keep = scores >= threshold
    pairs = [(int(i), int(j), float(s)) for i, j, s in zip(rows[keep], cols[keep], scores[keep])]
    pairs.sort(key=lambda p: p[2], reverse=True)
    return pairs


async def _handle_dedupe(args: argparse.Namespace, components: dict[str, Any]) -> int:
    """Report near-duplicate published entries.  Nothing is deleted."""
    entries = await components["kb_store"].list_published()
    pairs = find_similar_pairs([e.embedding for e in entries], args.threshold)

    print(f"Checked {len(entries)} published entries (threshold {args.threshold:.2f})")
    print("=" * 60)
    for i, j, score in pairs:
        print(f"\n{score:.3f}")
        print(f"  [{entries[i].id}] {entries[i].question}")
        print(f"  [{entries[j].id}] {entries[j].question}")

    print(f"\n{len(pairs)} near-duplicate pair(s) found.")
    return 0


# ---------------------------------------------------------------------------
# Argument parser
# ---------------------------------------------------------------------------


def _build_parser() -> argparse.ArgumentParser:
    """Build the argparse parser for the KB CLI."""
    parser = argparse.ArgumentParser(
        prog="python -m src.cli",
        description="Build and query the support chatbot knowledge base.",
    )
    subparsers = parser.add_subparsers(dest="command", help="KB commands")

    # -- ingest --
    ingest_parser = subparsers.add_parser("ingest", help="Generate Q&A candidates from files")
    ingest_parser.add_argument("path", help="File or directory to ingest")
    ingest_parser.add_argument(
        "--auto",
        action="store_true",
        help="Save every unique candidate without asking",
    )

    # -- ask --
    ask_parser = subparsers.add_parser("ask", help="Answer one customer question")
    ask_parser.add_argument("question", help="The question text")

    # -- dedupe --
    dedupe_parser = subparsers.add_parser("dedupe", help="Report near-duplicate KB entries")
    dedupe_parser.add_argument(
        "--threshold",
        type=float,
        default=0.9,
        help="Cosine similarity at or above which two entries are reported (default: 0.9)",
    )

    # -- serve --
    serve_parser = subparsers.add_parser("serve", help="Run the HTTP API")
    serve_parser.add_argument("--host", default=None, help="Bind address (default: APP_HOST)")
    serve_parser.add_argument("--port", type=int, default=None, help="Port (default: APP_PORT)")

    return parser


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def main(argv: list[str] | None = None) -> None:
    """CLI entry point.

    ``serve`` hands off to uvicorn; every other command builds the shared
    component graph and runs its handler on a fresh event loop.
    """
    parser = _build_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        sys.exit(1)

    if args.command == "serve":
        import uvicorn

        from src.main import settings

        uvicorn.run("src.main:app", host=args.host or settings.app_host, port=args.port or settings.app_port)
        return

    components = _load_components(upload_images_during_ingest=(args.command == "ingest"))

    if args.command == "ingest":
        exit_code = asyncio.run(_handle_ingest(args, components))
    elif args.command == "ask":
        exit_code = asyncio.run(_handle_ask(args, components))
    elif args.command == "dedupe":
        exit_code = asyncio.run(_handle_dedupe(args, components))
    else:
        parser.print_help()
        exit_code = 1

    sys.exit(exit_code)


if __name__ == "__main__":
    main()
