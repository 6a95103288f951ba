# =============================================================================
# src/cli/__main__.py — Package Entry Point
# =============================================================================
#
# Enables ``python -m src.cli``, which runs the knowledge CLI.
# =============================================================================

"""Allow ``python -m src.cli`` execution."""

from src.cli.knowledge import main

main()
