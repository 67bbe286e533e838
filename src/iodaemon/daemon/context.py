"""State and per-request values handed to the user's callables.

setup(context) runs once and populates an ExecutionContext.
run(context, invocation) runs once per request with the same context and a
fresh Invocation whose streams are scoped to that request's connection.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from types import SimpleNamespace
from typing import TextIO

__all__ = [
    "ExecutionContext",
    "Invocation",
    "SetupCallable",
    "RunCallable",
]


class ExecutionContext(SimpleNamespace):
    """Mutable state built by setup and shared by every run.

    Attributes are free-form; setup assigns whatever it needs:

        def setup(ctx):
            ctx.app = App()

        def run(ctx, inv):
            print(ctx.app.shout(" ".join(inv.args)), file=inv.stdout)
    """


@dataclass(slots=True)
class Invocation:
    """One request as seen by the run callable.

    Attributes:
        args: Argument vector forwarded by the client.
        stdin: Text stream over the forwarded standard input (.buffer for bytes).
        stdout: Write-through text stream back to the client's stdout.
        stderr: Write-through text stream back to the client's stderr.
    """

    args: list[str]
    stdin: TextIO
    stdout: TextIO
    stderr: TextIO


SetupCallable = Callable[[ExecutionContext], object]
RunCallable = Callable[[ExecutionContext, Invocation], object]
