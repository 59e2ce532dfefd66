"""Container engine CLI: the fixed verb set the orchestrator needs.

Only four verbs are used: ``rm -f``, ``run -d``, ``exec`` and a filtered
``ps``. Nothing about container state is cached; every question goes to the
engine.

A missing binary or a timed-out ``rm``/``ps``/``run`` surfaces as
:class:`EngineUnavailable`. ``exec`` is left raw: its callers (user probes,
readiness polling) treat engine errors as an empty answer.
"""

from __future__ import annotations

import subprocess
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from typing import NoReturn, TypeVar

from tinker_agent.errors import EngineUnavailable
from tinker_agent.logger import logger
from tinker_agent.process import ProcessRunner, get_runner
from tinker_agent.settings import Settings, get_settings

_T = TypeVar("_T")


@dataclass
class ContainerEngine:
    cli: str = "docker"
    timeout: float = 120
    runner: ProcessRunner = field(default_factory=get_runner)

    def _guarded(self, verb: str, call: Callable[[], _T]) -> _T:
        try:
            return call()
        except (OSError, subprocess.SubprocessError) as exc:
            logger.error("Container engine call failed", cli=self.cli, verb=verb, err=str(exc))
            raise EngineUnavailable(self.cli, verb, str(exc)) from exc

    def remove(self, name: str) -> None:
        """Force-remove a container (idempotent, no error if absent)."""
        result = self._guarded(
            "rm",
            lambda: self.runner.run([self.cli, "rm", "-f", name], timeout=self.timeout),
        )
        if result.returncode == 0:
            logger.debug("Removed container", container=name)

    def run_detached(self, args: Sequence[str]) -> int:
        """``run -d`` with the caller's stdio so engine errors stay visible."""
        return self._guarded("run", lambda: self.runner.call([self.cli, "run", "-d", *args]))

    def is_running(self, name: str) -> bool:
        result = self._guarded(
            "ps",
            lambda: self.runner.run(
                [self.cli, "ps", "--filter", f"name=^{name}$", "--format", "{{.Names}}"],
                timeout=self.timeout,
            ),
        )
        return name in result.stdout.split()

    def exec(
        self,
        name: str,
        command: Sequence[str],
        *,
        user: str | None = None,
    ) -> subprocess.CompletedProcess[str]:
        user_args = ["-u", user] if user else []
        return self.runner.run(
            [self.cli, "exec", *user_args, name, *command],
            timeout=self.timeout,
        )

    def exec_interactive(self, name: str, command: Sequence[str], *, user: str) -> NoReturn:
        """Take over the terminal with ``exec -it``. Does not return."""
        argv = [self.cli, "exec", "-it", "-u", user, name, *command]
        try:
            self.runner.exec(argv)
        except OSError as exc:
            raise EngineUnavailable(self.cli, "exec", str(exc)) from exc


def get_engine(
    settings: Settings | None = None,
    runner: ProcessRunner | None = None,
) -> ContainerEngine:
    s = (settings or get_settings()).container
    return ContainerEngine(cli=s.cli, timeout=s.timeout, runner=runner or get_runner())
