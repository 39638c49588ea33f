"""Allow ``python -m mailbridge``."""

from .cli import main

main()
