"""Allow `python -m ai_cli`."""

from .cli import main

main()
