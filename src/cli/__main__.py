"""Allow ``python -m src.cli`` execution."""

from src.cli.kb import main

main()
