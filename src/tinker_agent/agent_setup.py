"""In-container agent setup (``tinker-agent setup-agent``).

Runs once inside a freshly launched container, before the assistant starts.
It checks that the launcher injected the role environment, registers the
role's MCP server in the project's ``.mcp.json``, pre-accepts the
assistant's permission-bypass prompt and finally wires git the same way
``setup-git`` does.

Installing the MCP server package itself is the image's job.
"""

from __future__ import annotations

import json
import os
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from tinker_agent.agents import Role, get_profile
from tinker_agent.errors import AgentEnvInvalid
from tinker_agent.git_auth import configure_git
from tinker_agent.logger import logger
from tinker_agent.process import ProcessRunner
from tinker_agent.settings import Settings, get_settings

REQUIRED_ENV = ("AGENT_TYPE", "PROJECT_ID", "RAILS_WS_URL")


@dataclass(frozen=True)
class AgentEnv:
    role: Role
    project_id: str
    rails_ws_url: str
    rails_api_url: str | None = None
    rails_api_key: str | None = None

    @property
    def has_mcp_credentials(self) -> bool:
        return bool(self.rails_api_url and self.rails_api_key)


def check_agent_env(environ: Mapping[str, str] | None = None) -> AgentEnv:
    """Validate the launcher-injected environment.

    Raises AgentEnvInvalid naming every missing variable, or UnknownRole
    when ``AGENT_TYPE`` is not a known role.
    """
    env = os.environ if environ is None else environ
    missing = [name for name in REQUIRED_ENV if not env.get(name)]
    if missing:
        raise AgentEnvInvalid(
            f"Missing required environment variables: {', '.join(missing)}",
            remediation="Start the container with 'tinker-agent <role>' so they are injected.",
        )
    profile = get_profile(env["AGENT_TYPE"])
    return AgentEnv(
        role=profile.role,
        project_id=env["PROJECT_ID"],
        rails_ws_url=env["RAILS_WS_URL"],
        rails_api_url=env.get("RAILS_API_URL") or None,
        rails_api_key=env.get("RAILS_API_KEY") or None,
    )


def _load_json_object(path: Path) -> dict[str, Any] | None:
    """Read a JSON object from *path*; None if it is missing or not an object."""
    try:
        data = json.loads(path.read_text())
    except FileNotFoundError:
        return None
    except (OSError, ValueError) as exc:
        logger.warning("Ignoring unreadable JSON file", path=str(path), err=str(exc))
        return None
    if not isinstance(data, dict):
        logger.warning("Ignoring JSON file without a top-level object", path=str(path))
        return None
    return data


def _write_json(path: Path, data: Mapping[str, Any]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(data, indent=2) + "\n")


def mcp_server_entry(agent_env: AgentEnv, settings: Settings | None = None) -> dict[str, Any]:
    s = (settings or get_settings()).setup
    return {
        "command": s.mcp_command,
        "args": [str(s.mcp_script.expanduser())],
        "env": {
            "RAILS_API_URL": agent_env.rails_api_url,
            "RAILS_API_KEY": agent_env.rails_api_key,
        },
    }


def setup_mcp_config(agent_env: AgentEnv, settings: Settings | None = None) -> Path:
    """Merge the role's ``tinker-<role>`` server into the MCP config file.

    Other servers already in the file are kept. Without API credentials the
    role's entry is not written, and an empty config is created only when
    there is nothing to keep.
    """
    s = settings or get_settings()
    path = s.setup.mcp_config_path.expanduser()
    config = _load_json_object(path) or {}
    servers = config.get("mcpServers")
    if not isinstance(servers, dict):
        servers = config["mcpServers"] = {}

    server_name = f"tinker-{agent_env.role}"
    if agent_env.has_mcp_credentials:
        servers[server_name] = mcp_server_entry(agent_env, s)
        _write_json(path, config)
        logger.info("Registered MCP server", server=server_name, path=str(path))
    elif not servers:
        _write_json(path, {"mcpServers": {}})
        logger.info("No RAILS_API_URL/RAILS_API_KEY - MCP tools disabled", path=str(path))
    else:
        logger.info("No MCP credentials, keeping existing MCP config", path=str(path))
    return path


def setup_assistant_config(settings: Settings | None = None) -> bool:
    """Pre-accept the permission-bypass prompt in the assistant's config.

    The file is mounted from the host; when it is absent or unreadable it is
    left alone and False is returned.
    """
    path = (settings or get_settings()).setup.assistant_config_path.expanduser()
    if not path.exists():
        logger.warning("Assistant config not found, skipping", path=str(path))
        return False
    config = _load_json_object(path)
    if config is None:
        logger.warning("Assistant config is not valid JSON, skipping", path=str(path))
        return False
    config["bypassPermissionsModeAccepted"] = True
    try:
        _write_json(path, config)
    except OSError as exc:
        logger.warning("Could not update assistant config", path=str(path), err=str(exc))
        return False
    logger.info("Permission bypass pre-accepted", path=str(path))
    return True


def setup_agent(
    runner: ProcessRunner | None = None,
    environ: Mapping[str, str] | None = None,
    settings: Settings | None = None,
) -> AgentEnv:
    agent_env = check_agent_env(environ)
    logger.info("Setting up agent", role=agent_env.role, project_id=agent_env.project_id)
    setup_mcp_config(agent_env, settings)
    setup_assistant_config(settings)
    configure_git(runner, environ, settings)
    return agent_env
