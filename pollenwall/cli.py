"""
pollenwall

Set fresh AI generated images ("pollens") from Pollinations as your desktop wallpaper, as
soon as they are done.

This module defines the entry point to the pollenwall CLI. The command resolves the
configuration, then either performs one of the one-shot actions (--clean,
--generate-service) or builds the engine and keeps polling until it is stopped.
"""

from pathlib import Path

import click

from pollenwall.cache import CacheStore
from pollenwall.config import load_config, parse_address
from pollenwall.feed import IpfsFeedClient
from pollenwall.poller import PollenPoller
from pollenwall.service import render_service
from pollenwall.tracker import PollenTracker
from pollenwall.wallpaper_handler import get_wallpaper_applier
from pollenwall.cli_utils.console import (
    confirm_success,
    describe,
    error_console,
    setup_logging,
)
from pollenwall.cli_utils.decorators import catch_errors
from pollenwall.cli_utils.utils import stop_on_signals


@click.command(context_settings={"help_option_names": ["-h", "--help"]})
@click.option(
    "--attach",
    "-a",
    is_flag=True,
    help="Attach to a random processing pollen until its evolution is done.",
)
@click.option(
    "--target",
    "-t",
    metavar="POLLEN_ID",
    help="(--attach only) Attach to this pollen instead of a random one.",
)
@click.option(
    "--address",
    metavar="ADDR",
    help="You may give a custom address to the pollinations ipfs node, e.g. /ip4/127.0.0.1/tcp/5001",
)
@click.option(
    "--clean",
    "-c",
    is_flag=True,
    help='Remove images in the "~/.pollenwall" directory and exit.',
)
@click.option(
    "--home",
    type=click.Path(file_okay=False, path_type=Path),
    help="If pollenwall couldn't determine your home directory, run it with --home <absolute-path-to-your-home-directory>.",
)
@click.option(
    "--cache-dir",
    type=click.Path(file_okay=False, path_type=Path),
    help="Store pollens in this directory instead of ~/.pollenwall.",
)
@click.option(
    "--interval",
    type=click.FloatRange(min=1.0),
    help="Seconds to wait between two polls.  [default: 10]",
)
@click.option(
    "--keep",
    is_flag=True,
    help="Keep previous pollens instead of removing them once a new wallpaper is set.",
)
@click.option(
    "--generate-service",
    "service_args",
    is_flag=False,
    flag_value="",
    default=None,
    metavar="[ARGS]",
    help='Print a service file that starts pollenwall with your session, e.g. --generate-service="--attach".',
)
@click.option(
    "--verbose",
    "verbosity",
    flag_value="verbose",
    help="Print diagnostics as well.",
)
@click.option(
    "--quiet",
    "verbosity",
    flag_value="quiet",
    help="Silence all output printed to the terminal.",
)
@click.version_option(package_name="pollenwall")
@catch_errors
def cli(attach, target, address, clean, home, cache_dir, interval, keep, service_args, verbosity):
    """
    pollenwall

    Waits for new pollens to arrive from Pollinations and sets each finished one as your
    desktop wallpaper. Keep it running.

    Examples:

        $ pollenwall

        $ pollenwall --attach

        $ pollenwall --clean
    """

    setup_logging(verbosity or "normal")

    if target is not None and not attach:
        raise click.UsageError("--target can only be used together with --attach.")

    config = (
        load_config()
        .override(
            home=home,
            cache_dir=cache_dir,
            address=address,
            interval=interval,
            keep_history=True if keep else None,
        )
        .resolve()
    )

    if service_args is not None:
        descriptor = render_service(args=service_args, home=config.home)
        click.echo(descriptor.content, nl=False)
        error_console.print(
            f"Save the above as {descriptor.install_path} then: {descriptor.instructions}",
            style="describe",
            markup=False,
        )
        return

    cache = CacheStore(config.cache_dir)
    if not cache.directory.exists():
        cache.ensure()
        describe(
            f":bee: App folder '{cache.directory}' was not found. 'pollenwall' has created it for you."
        )
    else:
        cache.ensure()

    if clean:
        removed = cache.clean()
        confirm_success(f":broom: Cleaned all pollens! ({removed} removed) :broom:")
        return

    feed = IpfsFeedClient(
        parse_address(config.address),
        listen_window=config.listen_window,
        timeout=config.request_timeout,
    )
    poller = PollenPoller(
        feed=feed,
        cache=cache,
        applier=get_wallpaper_applier(),
        tracker=PollenTracker(stale_cycles=config.stale_cycles),
        attach=attach,
        target=target,
        interval=config.interval,
        max_downloads=config.max_downloads,
        keep_history=config.keep_history,
    )

    try:
        with stop_on_signals(poller):
            poller.run()
    finally:
        feed.close()


def main():
    cli()


if __name__ == "__main__":
    main()
