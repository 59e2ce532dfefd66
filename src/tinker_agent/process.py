"""Process runner: the one seam through which external binaries are invoked.

The container engine, git and gh are all driven through a
:class:`ProcessRunner`, so tests can substitute a fake that records argv and
returns synthetic results without touching real binaries.
"""

from __future__ import annotations

import os
import subprocess
from collections.abc import Sequence
from typing import NoReturn, Protocol, runtime_checkable

from tinker_agent.logger import logger


@runtime_checkable
class ProcessRunner(Protocol):
    def run(
        self,
        args: Sequence[str],
        *,
        input: str | None = None,
        timeout: float | None = None,
    ) -> subprocess.CompletedProcess[str]:
        """Run to completion with stdout/stderr captured as text."""
        ...

    def call(self, args: Sequence[str]) -> int:
        """Run to completion with the caller's stdio; return the exit status."""
        ...

    def exec(self, args: Sequence[str]) -> NoReturn:
        """Replace the current process."""
        ...


class SubprocessRunner:
    """Default runner backed by :mod:`subprocess` and :func:`os.execvp`."""

    def run(
        self,
        args: Sequence[str],
        *,
        input: str | None = None,
        timeout: float | None = None,
    ) -> subprocess.CompletedProcess[str]:
        logger.debug("Running command", argv=list(args))
        return subprocess.run(
            list(args),
            input=input,
            capture_output=True,
            text=True,
            timeout=timeout,
        )

    def call(self, args: Sequence[str]) -> int:
        logger.debug("Calling command", argv=list(args))
        return subprocess.call(list(args))

    def exec(self, args: Sequence[str]) -> NoReturn:
        argv = list(args)
        logger.debug("Exec", argv=argv)
        os.execvp(argv[0], argv)


_runner: ProcessRunner | None = None


def get_runner() -> ProcessRunner:
    """Lazy singleton."""
    global _runner  # noqa: PLW0603
    if _runner is None:
        _runner = SubprocessRunner()
    return _runner
