from typing import Optional, Sequence

from uptracklib.cli import cli
from uptracklib.cli import check  # noqa: F401


def main(args: Optional[Sequence[str]] = None):
    # pylint: disable=no-value-for-parameter
    cli(args)


if __name__ == "__main__":
    main()
