# =============================================================================
# src/cli/__init__.py — CLI Module Overview
# =============================================================================
#
# Command-line access to the knowledge engine for operators and developers
# who need to seed, re-index or query a workspace outside the HTTP API.
#
# Architecture Notes:
#   - argparse for argument parsing (not Click/Typer).
#   - src.main is imported lazily inside the command runner so --quiet can
#     reconfigure logging before any logger is cached.
#   - Services are built with the same factory the web app uses
#     (src.main.build_services), so CLI and API share one wiring.
# =============================================================================

"""CLI tools for the knowledge engine.

- ``python -m src.cli.knowledge`` (or ``python -m src.cli``) — load seed
  documents, harvest, re-index, clean up, search and find related docs.
"""
