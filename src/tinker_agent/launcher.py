"""Container launcher: (re)create a role's agent container.

Start is stop-then-start: any container with the same name is force-removed
before the new one is created. Two invocations racing on the same role
leave whichever ``run`` landed last; there is no lock.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from tinker_agent.agents import AgentProfile, get_profile
from tinker_agent.config import LaunchConfig, resolve_launch_config
from tinker_agent.credentials import AppIdentity, AuthStrategy, StaticToken, select_strategy
from tinker_agent.engine import ContainerEngine, get_engine
from tinker_agent.errors import LaunchFailed, TinkerAgentError
from tinker_agent.logger import logger
from tinker_agent.settings import Settings, get_settings

# (path under $HOME, container path) of assistant login state, mounted read-only
HOST_ASSISTANT_MOUNTS: tuple[tuple[str, str], ...] = (
    (".claude.json", "/tmp/cfg/claude.json"),
    (".claude", "/tmp/cfg/claude_dir"),
)


@dataclass
class ContainerHandle:
    name: str
    role: str
    user: str | None = None  # discovered on attach


def _env(key: str, value: str | None) -> list[str]:
    return ["-e", f"{key}={value or ''}"]


def _ro_mount(source: Path | str, target: str) -> list[str]:
    return ["-v", f"{source}:{target}:ro"]


def write_banner(profile: AgentProfile, settings: Settings | None = None) -> Path:
    """Write the role banner to a persistent per-role file for mounting."""
    banner_dir = (settings or get_settings()).container.banner_dir
    path = banner_dir / f"tinker-agent-banner-{profile.role}.txt"
    try:
        banner_dir.mkdir(parents=True, exist_ok=True)
        path.write_text(profile.banner)
    except OSError as exc:
        raise TinkerAgentError(
            f"Could not write the {profile.role} banner to {path}: {exc}",
            remediation="Point TINKER_CONTAINER__BANNER_DIR at a writable directory.",
        ) from exc
    return path


def auth_args(strategy: AuthStrategy, settings: Settings | None = None) -> list[str]:
    match strategy:
        case AppIdentity():
            key_target = (settings or get_settings()).container.private_key_target
            return [
                *_env("GITHUB_APP_CLIENT_ID", strategy.app_id),
                *_env("GITHUB_APP_INSTALLATION_ID", strategy.installation_id),
                *_env("GITHUB_APP_PRIVATE_KEY_PATH", key_target),
                *_ro_mount(strategy.private_key_path, key_target),
            ]
        case StaticToken():
            return _env("GH_TOKEN", strategy.token)


def build_run_args(
    launch: LaunchConfig,
    profile: AgentProfile,
    strategy: AuthStrategy,
    banner_path: Path,
    *,
    home: Path | None = None,
    settings: Settings | None = None,
) -> list[str]:
    """Arguments following ``run -d``. Deterministic for a given filesystem."""
    s = settings or get_settings()
    home = home or Path.home()

    args = [
        "--name",
        launch.container_name,
        "--network",
        s.container.network,
        "--restart",
        s.container.restart_policy,
    ]
    for path in s.container.tmpfs:
        args.extend(["--tmpfs", path])

    for key, value in launch.env.items():
        args.extend(_env(key, value))

    for rel, target in HOST_ASSISTANT_MOUNTS:
        source = home / rel
        if source.exists():
            args.extend(_ro_mount(source, target))
        else:
            logger.debug("Skipping missing host mount", path=str(source))
    args.extend(_ro_mount(banner_path, s.container.banner_target))

    args += [
        *_env("TINKER_VERSION", s.container.tinker_version),
        *_env("SKILLS", ",".join(profile.skills)),
        *_env("AGENT_TYPE", launch.role),
        *_env("PROJECT_ID", launch.project_id),
        *_env("RAILS_WS_URL", launch.rails_ws_url),
        *_env("RAILS_API_URL", launch.rails_api_url),
        *_env("RAILS_API_KEY", launch.rails_api_key),
    ]
    args.extend(auth_args(strategy, s))

    if launch.git_user_name:
        args.extend(_env("GIT_USER_NAME", launch.git_user_name))
    if launch.git_user_email:
        args.extend(_env("GIT_USER_EMAIL", launch.git_user_email))

    args.append(launch.image)
    return args


def launch(
    role: str,
    config: Mapping[str, Any],
    *,
    engine: ContainerEngine | None = None,
    settings: Settings | None = None,
    home: Path | None = None,
) -> ContainerHandle:
    """Replace the role's container with a fresh one.

    Everything that can fail locally (role, auth, banner) is settled before
    the old container is removed. Raises UnknownRole, MissingAuth,
    EngineUnavailable or LaunchFailed. Never retries.
    """
    s = settings or get_settings()
    engine = engine or get_engine(s)
    profile = get_profile(role)
    launch_cfg = resolve_launch_config(config, profile, s)
    strategy = select_strategy(launch_cfg.github)

    name = launch_cfg.container_name
    logger.info(
        "Starting agent",
        role=role,
        container=name,
        image=launch_cfg.image,
        auth="app" if isinstance(strategy, AppIdentity) else "token",
    )
    if launch_cfg.env:
        logger.info(
            "Injecting custom env vars",
            global_count=launch_cfg.global_env_count,
            agent_count=launch_cfg.role_env_count,
        )

    banner_path = write_banner(profile, s)
    args = build_run_args(launch_cfg, profile, strategy, banner_path, home=home, settings=s)
    engine.remove(name)

    returncode = engine.run_detached(args)
    if returncode != 0:
        logger.error("Failed to start agent", role=role, container=name, returncode=returncode)
        raise LaunchFailed(name, returncode)

    logger.info(
        "Agent started in background",
        role=role,
        attach=f"tinker-agent attach {role}",
        logs=f"{engine.cli} logs -f {name}",
        stop=f"{engine.cli} stop {name}",
    )
    return ContainerHandle(name=name, role=role)
