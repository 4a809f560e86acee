"""
dbset - Module entry point.

Allows running the generator via::

    python -m dbset --schema entities.yaml --output ./src
"""

from __future__ import annotations


def main() -> None:
    """Delegate to ``dbset.cli.cli_main``."""
    from dbset.cli import cli_main
    cli_main()


if __name__ == "__main__":
    main()
