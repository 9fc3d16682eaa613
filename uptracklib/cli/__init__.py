import asyncio
import sys
from functools import update_wrapper

import click

from uptracklib import __version__, logutil
from uptracklib.constants import DEFAULT_CACHE_SIZE
from uptracklib.runtime import Runtime

pass_runtime = click.make_pass_decorator(Runtime)


def click_coroutine(f):
    """A wrapper to allow to use asyncio with click.
    https://github.com/pallets/click/issues/85
    """

    def wrapper(*args, **kwargs):
        return asyncio.run(f(*args, **kwargs))

    return update_wrapper(wrapper, f)


def print_version(ctx, param, value):
    if not value or ctx.resilient_parsing:
        return
    click.echo('uptrack v{}'.format(__version__))
    click.echo('Python v{}'.format(sys.version))
    ctx.exit()


# ============================================================================
# GLOBAL OPTIONS: parameters for all commands
# ============================================================================
@click.group(context_settings=dict(help_option_names=['-h', '--help']))
@click.option(
    '--version',
    is_flag=True,
    callback=print_version,
    expose_value=False,
    is_eager=True,
    help="Print version information and quit",
)
@click.option(
    "--cache-size",
    type=click.IntRange(min=1),
    default=DEFAULT_CACHE_SIZE,
    show_default=True,
    help="Number of registry responses kept in memory",
)
@click.option("--verbosity", "-v", count=True, help="[MULTIPLE] increase output verbosity")
@click.pass_context
def cli(ctx: click.Context, cache_size: int, verbosity: int):
    # configure logging
    logutil.setup_logging(verbosity)
    ctx.obj = Runtime(cache_size=cache_size)
