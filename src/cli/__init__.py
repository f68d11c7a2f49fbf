# =============================================================================
# src/cli/__init__.py - CLI Module Overview
# =============================================================================
#
# Command-line access to the same component graph the web app runs.
# Everything lives in kb.py as argparse subcommands:
#
#   1. INGEST  - run the document-to-Q&A pipeline over a file or directory,
#      print progress events, and save confirmed candidates to the KB.
#   2. ASK     - route one question through the answer router.
#   3. DEDUPE  - report near-duplicate published entries (read-only).
#   4. SERVE   - start the HTTP API under uvicorn.
#
# Architecture Notes:
#   - argparse, not Click/Typer.
#   - src.main is imported inside the handlers so `--help` needs no
#     API keys and no ChromaDB directory.
# =============================================================================

"""CLI tools for the KB ingestion pipeline.

- ``python -m src.cli ingest PATH [--auto]``
- ``python -m src.cli ask QUESTION``
- ``python -m src.cli dedupe [--threshold 0.9]``
- ``python -m src.cli serve [--host H] [--port P]``
"""
