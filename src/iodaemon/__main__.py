"""Demo program: a slow-starting "shout" CLI served by iodaemon.

Usage:
    python -m iodaemon start          # pay the one-second startup once
    python -m iodaemon hello world    # -> HELLO WORLD, instantly
    echo hi | python -m iodaemon -    # "-" shouts stdin instead of argv
    python -m iodaemon stop

The port comes from IO_DAEMONIZER_PORT (default 5289).
"""

import time

from iodaemon import ExecutionContext, Invocation, wrap

STARTUP_SECONDS = 1.0


class App:
    """Stand-in for a program with an expensive startup."""

    def __init__(self) -> None:
        time.sleep(STARTUP_SECONDS)  # simulate slow startup

    def shout(self, message: str) -> str:
        return message.upper()


def setup(ctx: ExecutionContext) -> None:
    ctx.app = App()


def run(ctx: ExecutionContext, inv: Invocation) -> None:
    if inv.args == ["-"]:
        message = inv.stdin.read().rstrip("\n")
    else:
        message = " ".join(inv.args)
    print(ctx.app.shout(message), file=inv.stdout)


def main() -> None:
    wrap(setup=setup, run=run)


if __name__ == "__main__":
    main()
