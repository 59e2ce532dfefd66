"""Tests for agent user discovery, session readiness and attach."""

from __future__ import annotations

import os
import subprocess
from pathlib import Path

import pytest
from conftest import ExecCalled, base_config, completed, make_settings

from tinker_agent.attach import (
    attach,
    discover_user,
    first_probe_hit,
    probe_effective_user,
    probe_host_uid,
    probe_multiplexer,
    probe_supervisor,
    wait_for_session,
)
from tinker_agent.errors import UnknownRole, UserDiscoveryExhausted
from tinker_agent.settings import AttachSettings

CONTAINER = "tinker-autonomous-worker"
HAS_SESSION = ("tmux", "has-session", "-t", "agent")

PS_OUTPUT = """\
USER       PID %CPU %MEM    VSZ   RSS TTY      STAT START   TIME COMMAND
root         1  0.0  0.0   4000  3000 ?        Ss   10:00   0:00 /sbin/init
bridge      42  0.0  0.1  90000  9000 ?        Sl   10:00   0:01 agent-bridge-tmux -s agent
rails       43  0.0  0.1  20000  4000 ?        Ss   10:00   0:00 tmux new-session -d -s agent
"""


class _Recorder:
    def __init__(self) -> None:
        self.sleeps: list[float] = []

    def __call__(self, seconds: float) -> None:
        self.sleeps.append(seconds)


class TestProbes:
    def test_supervisor_owner(self, docker, engine):
        docker.exec_responses[("ps", "aux")] = completed([], stdout=PS_OUTPUT)
        assert probe_supervisor(engine, CONTAINER) == "bridge"

    def test_multiplexer_owner(self, docker, engine):
        docker.exec_responses[("ps", "aux")] = completed([], stdout=PS_OUTPUT)
        assert probe_multiplexer(engine, CONTAINER) == "rails"

    def test_process_probe_no_match(self, docker, engine):
        docker.exec_responses[("ps", "aux")] = completed([], stdout="USER PID\nroot 1 init\n")
        assert probe_supervisor(engine, CONTAINER) is None

    def test_effective_user_rejects_root(self, docker, engine):
        docker.exec_responses[("whoami",)] = completed([], stdout="root\n")
        assert probe_effective_user(engine, CONTAINER) is None

    def test_effective_user(self, docker, engine):
        docker.exec_responses[("whoami",)] = completed([], stdout="dev\n")
        assert probe_effective_user(engine, CONTAINER) == "dev"

    def test_host_uid(self, docker, engine):
        docker.exec_responses[("getent", "passwd", str(os.getuid()))] = completed(
            [], stdout="dev:x:1000:1000::/home/dev:/bin/bash\n"
        )
        assert probe_host_uid(engine, CONTAINER) == "dev"

    def test_failed_exec_is_empty(self, engine):
        assert probe_host_uid(engine, CONTAINER) is None
        assert probe_effective_user(engine, CONTAINER) is None


class TestDiscoverUser:
    def test_first_hit_wins_and_later_probes_not_run(self, engine):
        seen: list[str] = []

        def empty(_engine, _container):
            seen.append("empty")
            return None

        def hit(_engine, _container):
            seen.append("hit")
            return "dev"

        def never(_engine, _container):
            seen.append("never")
            return "other"

        assert first_probe_hit(engine, CONTAINER, [empty, hit, never]) == "dev"
        assert seen == ["empty", "hit"]

    def test_erroring_probe_counts_as_empty(self, engine):
        def broken(_engine, _container):
            raise subprocess.TimeoutExpired(["docker"], 5)

        assert first_probe_hit(engine, CONTAINER, [broken, lambda e, c: "dev"]) == "dev"

    def test_exhausted_raises(self, engine):
        with pytest.raises(UserDiscoveryExhausted):
            first_probe_hit(engine, CONTAINER, [lambda e, c: None, lambda e, c: ""])

    def test_falls_through_to_host_uid(self, docker, engine, settings):
        docker.exec_responses[("ps", "aux")] = completed([], stdout="USER PID\n")
        docker.exec_responses[("whoami",)] = completed([], stdout="root\n")
        docker.exec_responses[("getent", "passwd", str(os.getuid()))] = completed(
            [], stdout="dev:x:1000:1000::/home/dev:/bin/bash\n"
        )
        assert discover_user(engine, CONTAINER, settings=settings) == "dev"

    def test_default_user_when_nothing_answers(self, engine, settings):
        assert discover_user(engine, CONTAINER, settings=settings) == "rails"

    def test_configured_default_user(self, engine, tmp_path: Path):
        s = make_settings(tmp_path, attach=AttachSettings(default_user="agent"))
        assert discover_user(engine, CONTAINER, settings=s) == "agent"


class TestWaitForSession:
    def test_ready_immediately(self, docker, engine):
        docker.exec_responses[HAS_SESSION] = completed([])
        sleep = _Recorder()
        assert wait_for_session(
            engine, CONTAINER, "rails", session="agent", attempts=10, interval=1.0, sleep=sleep
        )
        assert sleep.sleeps == []
        assert docker.calls[-1][:4] == ["docker", "exec", "-u", "rails"]

    def test_gives_up_after_attempts(self, docker, engine):
        sleep = _Recorder()
        ready = wait_for_session(
            engine, CONTAINER, "rails", session="agent", attempts=4, interval=0.5, sleep=sleep
        )
        assert ready is False
        assert len([c for c in docker.calls if c[-3:] == ["has-session", "-t", "agent"]]) == 4
        assert sleep.sleeps == [0.5, 0.5, 0.5]

    def test_becomes_ready(self, docker, engine):
        sleep = _Recorder()

        def ready_on_second_sleep(seconds: float) -> None:
            sleep(seconds)
            if len(sleep.sleeps) == 2:
                docker.exec_responses[HAS_SESSION] = completed([])

        assert wait_for_session(
            engine,
            CONTAINER,
            "rails",
            session="agent",
            attempts=10,
            interval=1.0,
            sleep=ready_on_second_sleep,
        )
        assert sleep.sleeps == [1.0, 1.0]


class TestAttach:
    def test_running_container_attaches_without_launch(self, docker, engine, settings):
        docker.containers[CONTAINER] = []
        docker.exec_responses[("ps", "aux")] = completed([], stdout=PS_OUTPUT)
        docker.exec_responses[HAS_SESSION] = completed([])
        sleep = _Recorder()

        with pytest.raises(ExecCalled) as exc_info:
            attach("worker", base_config(), engine=engine, settings=settings, sleep=sleep)

        assert exc_info.value.argv == [
            "docker",
            "exec",
            "-it",
            "-u",
            "bridge",
            CONTAINER,
            "tmux",
            "attach",
            "-t",
            "agent",
        ]
        assert "run" not in docker.verbs()
        assert sleep.sleeps == []

    def test_auto_starts_and_settles(self, docker, engine, settings):
        docker.exec_responses[HAS_SESSION] = completed([])
        sleep = _Recorder()

        with pytest.raises(ExecCalled) as exc_info:
            attach("worker", base_config(), engine=engine, settings=settings, sleep=sleep)

        assert CONTAINER in docker.containers
        verbs = docker.verbs()
        assert verbs.index("ps") < verbs.index("rm") < verbs.index("run")
        assert sleep.sleeps[0] == 3.0
        # nothing answered the probes
        assert exc_info.value.argv[3:5] == ["-u", "rails"]

    def test_attaches_even_when_session_never_appears(self, docker, engine, tmp_path: Path):
        s = make_settings(tmp_path, attach=AttachSettings(readiness_attempts=3))
        docker.containers[CONTAINER] = []
        sleep = _Recorder()

        with pytest.raises(ExecCalled):
            attach("worker", base_config(), engine=engine, settings=s, sleep=sleep)

        assert sleep.sleeps == [1.0, 1.0]

    def test_unknown_role(self, docker, engine, settings):
        with pytest.raises(UnknownRole):
            attach("janitor", base_config(), engine=engine, settings=settings)
        assert docker.calls == []
