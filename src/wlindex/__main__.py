"""Entry point for `python -m wlindex` and `wlindex` console script."""

import sys

from .cli.commands import run_cli


def main():
    sys.exit(run_cli())


if __name__ == "__main__":
    main()
