"""Entry point used by wrapped programs.

A wrapped script splits its work into a slow one-time setup and a fast
per-invocation run, then hands both to wrap():

    from iodaemon import wrap

    def setup(ctx):
        ctx.model = load_model()          # slow, done once by the daemon

    def run(ctx, inv):
        print(ctx.model.predict(inv.args), file=inv.stdout)   # fast

    if __name__ == "__main__":
        wrap(setup=setup, run=run)

    $ script.py start          # run setup, leave a daemon in the background
    $ script.py some args      # served by the daemon (autostarted if needed)
    $ script.py stop           # stop the daemon
"""

from __future__ import annotations

import logging
import sys
from collections.abc import Sequence
from typing import NoReturn

from pydantic import ValidationError

from iodaemon.config import DaemonSettings
from iodaemon.constants import ExitCode
from iodaemon.daemon.client import invoke
from iodaemon.daemon.context import RunCallable, SetupCallable
from iodaemon.logs import setup_logging

logger = logging.getLogger(__name__)

__all__ = ["load_settings", "wrap"]


def load_settings(
    port: int | None = None,
    autostart: bool | None = None,
) -> DaemonSettings:
    """Build settings; explicit values win over IO_DAEMONIZER_* variables.

    Args:
        port: Daemon port, or None to use the environment/default.
        autostart: Autostart flag, or None to use the environment/default.

    Returns:
        Validated settings.
    """
    overrides: dict[str, object] = {}
    if port is not None:
        overrides["port"] = port
    if autostart is not None:
        overrides["autostart"] = autostart
    return DaemonSettings(**overrides)


def wrap(
    setup: SetupCallable,
    run: RunCallable,
    *,
    port: int | None = None,
    autostart: bool | None = None,
    argv: Sequence[str] | None = None,
) -> NoReturn:
    """Run the current process as an iodaemon client and exit.

    Args:
        setup: Called once by the daemon with its ExecutionContext.
        run: Called per invocation with the context and an Invocation.
        port: Daemon port (default: IO_DAEMONIZER_PORT, then 5289).
        autostart: Start the daemon on demand (default: True).
        argv: Arguments to forward (default: sys.argv[1:]).

    Raises:
        SystemExit: Always, with an iodaemon.constants.ExitCode value.
    """
    try:
        settings = load_settings(port=port, autostart=autostart)
    except ValidationError as e:
        sys.stderr.write(f"ERROR: invalid iodaemon configuration:\n{e}\n")
        sys.exit(int(ExitCode.CONFIG_ERROR))

    setup_logging(settings.log_level)

    args = list(sys.argv[1:] if argv is None else argv)
    code = invoke(args, setup=setup, run=run, settings=settings)
    logger.debug(f"Exiting with {code!r}")
    sys.exit(int(code))
