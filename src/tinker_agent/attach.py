"""Session attacher: find the agent's tmux session and take over the terminal.

The tmux server inside the container runs as whichever account the image's
startup script chose, so the user is discovered at attach time by an
ordered list of probes. The first non-empty answer wins; if none answers,
attach proceeds as the configured default user rather than failing.
"""

from __future__ import annotations

import os
import subprocess
import time
from collections.abc import Callable, Mapping, Sequence
from typing import Any, NoReturn

from tinker_agent.agents import get_profile
from tinker_agent.config import resolve_launch_config
from tinker_agent.engine import ContainerEngine, get_engine
from tinker_agent.errors import UserDiscoveryExhausted
from tinker_agent.launcher import ContainerHandle, launch
from tinker_agent.logger import logger
from tinker_agent.settings import Settings, get_settings

Probe = Callable[[ContainerEngine, str], str | None]


# ---------------------------------------------------------------------------
# User probes, in priority order
# ---------------------------------------------------------------------------


def _process_owner(engine: ContainerEngine, container: str, needle: str) -> str | None:
    result = engine.exec(container, ["ps", "aux"])
    if result.returncode != 0:
        return None
    for line in result.stdout.splitlines():
        if needle in line:
            fields = line.split()
            return fields[0] if fields else None
    return None


def probe_supervisor(engine: ContainerEngine, container: str) -> str | None:
    """Owner of the bridge process that supervises the tmux session."""
    return _process_owner(engine, container, "agent-bridge-tmux")


def probe_multiplexer(engine: ContainerEngine, container: str) -> str | None:
    """Owner of the process that created the tmux session."""
    return _process_owner(engine, container, "tmux new-session")


def probe_effective_user(engine: ContainerEngine, container: str) -> str | None:
    """The container's default exec identity, unless it is root."""
    result = engine.exec(container, ["whoami"])
    user = result.stdout.strip() if result.returncode == 0 else ""
    if not user or user == "root":
        return None
    return user


def probe_host_uid(engine: ContainerEngine, container: str) -> str | None:
    """Map the invoking host uid to a container account (images build with USER_ID)."""
    result = engine.exec(container, ["getent", "passwd", str(os.getuid())])
    if result.returncode != 0:
        return None
    return result.stdout.strip().split(":", 1)[0] or None


USER_PROBES: tuple[Probe, ...] = (
    probe_supervisor,
    probe_multiplexer,
    probe_effective_user,
    probe_host_uid,
)


def first_probe_hit(engine: ContainerEngine, container: str, probes: Sequence[Probe]) -> str:
    """Run *probes* in order and return the first non-empty result.

    A probe whose engine call errors counts as empty. Raises
    UserDiscoveryExhausted when nothing answers.
    """
    for probe in probes:
        try:
            user = probe(engine, container)
        except (OSError, subprocess.SubprocessError) as exc:
            logger.debug("User probe failed", probe=probe.__name__, err=str(exc))
            continue
        if user:
            logger.debug("User probe matched", probe=probe.__name__, user=user)
            return user
    raise UserDiscoveryExhausted(f"No probe identified the agent user in {container}")


def discover_user(
    engine: ContainerEngine,
    container: str,
    *,
    probes: Sequence[Probe] = USER_PROBES,
    settings: Settings | None = None,
) -> str:
    try:
        return first_probe_hit(engine, container, probes)
    except UserDiscoveryExhausted:
        default = (settings or get_settings()).attach.default_user
        logger.warning("Could not detect agent user, using default", user=default)
        return default


# ---------------------------------------------------------------------------
# Readiness + attach
# ---------------------------------------------------------------------------


def wait_for_session(
    engine: ContainerEngine,
    container: str,
    user: str,
    *,
    session: str,
    attempts: int,
    interval: float,
    sleep: Callable[[float], None] = time.sleep,
) -> bool:
    """Poll ``tmux has-session`` up to *attempts* times. Best effort."""
    for attempt in range(attempts):
        try:
            result = engine.exec(container, ["tmux", "has-session", "-t", session], user=user)
            if result.returncode == 0:
                return True
        except (OSError, subprocess.SubprocessError) as exc:
            logger.debug("Session check failed", err=str(exc))
        if attempt < attempts - 1:
            sleep(interval)
    return False


def attach(
    role: str,
    config: Mapping[str, Any],
    *,
    engine: ContainerEngine | None = None,
    settings: Settings | None = None,
    sleep: Callable[[float], None] = time.sleep,
) -> NoReturn:
    """Attach the terminal to the role's tmux session, auto-starting if needed."""
    s = settings or get_settings()
    engine = engine or get_engine(s)
    profile = get_profile(role)
    handle = ContainerHandle(
        name=resolve_launch_config(config, profile, s).container_name,
        role=role,
    )

    if not engine.is_running(handle.name):
        logger.warning("Agent is not running, auto-starting", role=role, container=handle.name)
        launch(role, config, engine=engine, settings=s)
        sleep(s.attach.settle_delay)

    handle.user = discover_user(engine, handle.name, settings=s)
    logger.info("Attaching to agent", role=role, container=handle.name, user=handle.user)

    ready = wait_for_session(
        engine,
        handle.name,
        handle.user,
        session=s.attach.session_name,
        attempts=s.attach.readiness_attempts,
        interval=s.attach.readiness_interval,
        sleep=sleep,
    )
    if not ready:
        logger.warning(
            "tmux session not found yet, attaching anyway", session=s.attach.session_name
        )

    engine.exec_interactive(
        handle.name,
        ["tmux", "attach", "-t", s.attach.session_name],
        user=handle.user,
    )
