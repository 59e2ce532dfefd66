"""Project configuration: load, normalize and merge ``tinker.toml``.

The project file lives in the project root (the current directory) and may
be TOML, YAML or JSON; all three produce the same plain mapping. Secrets
live in this file too, so it should be git-ignored.

:func:`load_config` returns a plain, role-agnostic ``dict`` (JSON types
only). :func:`resolve_launch_config` folds one role's overrides into it and
returns the immutable :class:`LaunchConfig` used by the launcher and the
attacher.
"""

from __future__ import annotations

import json
import tomllib
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import BaseModel, ValidationError, field_validator

from tinker_agent.agents import AgentProfile
from tinker_agent.errors import ConfigInvalid, ConfigNotFound
from tinker_agent.logger import logger
from tinker_agent.settings import Settings, get_settings

CONFIG_EXAMPLE = """\
Create tinker.toml in the project root:

  project_id = 1
  rails_ws_url = "wss://tinker.example.com/cable"
  rails_api_url = "https://tinker.example.com/api/v1"

  [github]
  method = "app"                     # or "token" with token = "ghp_..."
  app_client_id = "Iv1.abc123"
  app_installation_id = "12345678"
  app_private_key_path = "~/.config/tinker/app.private-key.pem"

  [git]
  user_name = "Tinker Bot"
  user_email = "bot@example.com"

  # Paste your stripped .env content here:
  dot_env = '''
  STRIPE_KEY=sk_test_...
  OPENAI_KEY=sk-...
  '''

  [agents.worker]
  mcp_api_key = "..."
  env = { RAILS_ENV = "test" }

Then keep it out of git:

  echo 'tinker.toml' >> .gitignore"""


# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------


def _to_env_value(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _coerce_env(value: Any) -> Any:
    if value is None:
        return {}
    if isinstance(value, Mapping):
        return {str(k): _to_env_value(v) for k, v in value.items()}
    return value


def _coerce_scalar(value: Any) -> Any:
    if isinstance(value, int | float) and not isinstance(value, bool):
        return str(value)
    return value


class _StrictModel(BaseModel):
    """Base for config sections. Rejects unknown keys so typos fail loudly."""

    model_config = {"extra": "forbid"}


class GithubSection(_StrictModel):
    method: Literal["token", "app"] | None = None
    token: str | None = None
    app_client_id: str | None = None
    app_installation_id: str | None = None
    app_private_key_path: str | None = None

    @field_validator("app_client_id", "app_installation_id", mode="before")
    @classmethod
    def stringify_ids(cls, v: Any) -> Any:
        return _coerce_scalar(v)


class GitSection(_StrictModel):
    user_name: str | None = None
    user_email: str | None = None


class AgentSection(_StrictModel):
    container_name: str | None = None
    env: dict[str, str] = {}
    mcp_api_key: str | None = None

    @field_validator("env", mode="before")
    @classmethod
    def stringify_env(cls, v: Any) -> Any:
        return _coerce_env(v)


class ProjectConfig(BaseModel):
    model_config = {"extra": "ignore"}

    project_id: str | None = None
    rails_ws_url: str | None = None
    rails_api_url: str | None = None
    github: GithubSection = GithubSection()
    git: GitSection = GitSection()
    env: dict[str, str] = {}
    dot_env: str | None = None
    agents: dict[str, AgentSection] = {}

    @field_validator("project_id", mode="before")
    @classmethod
    def stringify_project_id(cls, v: Any) -> Any:
        return _coerce_scalar(v)

    @field_validator("env", mode="before")
    @classmethod
    def stringify_env(cls, v: Any) -> Any:
        return _coerce_env(v)

    @field_validator("github", "git", mode="before")
    @classmethod
    def empty_section(cls, v: Any) -> Any:
        return {} if v is None else v

    @field_validator("agents", mode="before")
    @classmethod
    def empty_agent_sections(cls, v: Any) -> Any:
        # YAML `agents:` or `worker:` with no body parses as None
        if v is None:
            return {}
        if isinstance(v, Mapping):
            return {role: section or {} for role, section in v.items()}
        return v


# ---------------------------------------------------------------------------
# Loading
# ---------------------------------------------------------------------------


def parse_dot_env(text: str) -> dict[str, str]:
    """Parse a pasted ``.env`` block into a mapping.

    Blank lines and ``#`` comments are skipped, each line is split on the
    first ``=``, and one surrounding quote is stripped from each end of the
    value. Lines without ``=`` are ignored.
    """
    parsed: dict[str, str] = {}
    for raw_line in text.splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, value = line.split("=", 1)
        key = key.strip()
        if not key:
            continue
        value = value.strip()
        if value[:1] in ("'", '"'):
            value = value[1:]
        if value[-1:] in ("'", '"'):
            value = value[:-1]
        parsed[key] = value
    return parsed


def find_config_file(root: Path | None = None, settings: Settings | None = None) -> Path:
    """Return the first config file present in *root*, or raise ConfigNotFound."""
    s = settings or get_settings()
    root = root or Path.cwd()
    for name in s.config_names:
        candidate = root / name
        if candidate.is_file():
            return candidate
    raise ConfigNotFound(
        f"{s.config_names[0]} not found in {root}",
        remediation=CONFIG_EXAMPLE,
    )


def _read_raw(path: Path) -> Any:
    text = path.read_text()
    match path.suffix:
        case ".toml":
            return tomllib.loads(text)
        case ".yaml" | ".yml":
            return yaml.safe_load(text)
        case _:
            return json.loads(text)


def load_config(root: Path | None = None, settings: Settings | None = None) -> dict[str, Any]:
    """Load and normalize the project configuration into a plain dict."""
    path = find_config_file(root, settings)
    logger.info("Loading configuration", path=str(path))

    try:
        raw = _read_raw(path)
    except (OSError, ValueError, yaml.YAMLError) as exc:
        # tomllib.TOMLDecodeError and json.JSONDecodeError are ValueErrors
        raise ConfigInvalid(f"Could not parse {path.name}: {exc}") from exc
    if not isinstance(raw, dict):
        raise ConfigInvalid(
            f"{path.name} must contain a mapping at the top level",
            remediation=CONFIG_EXAMPLE,
        )

    try:
        model = ProjectConfig.model_validate(raw)
    except ValidationError as exc:
        raise ConfigInvalid(f"Invalid {path.name}:\n{exc}") from exc

    config = model.model_dump(mode="json", exclude={"dot_env"})
    if model.dot_env:
        parsed = parse_dot_env(model.dot_env)
        for key, value in parsed.items():
            config["env"].setdefault(key, value)
        logger.info("Parsed dot_env into environment variables", count=len(parsed))
    return config


# ---------------------------------------------------------------------------
# Per-role resolution
# ---------------------------------------------------------------------------


def agent_overrides(config: Mapping[str, Any], role: str) -> dict[str, Any]:
    """Return the ``agents.<role>`` section, or an empty mapping."""
    agents = config.get("agents") or {}
    return dict(agents.get(role) or {})


def merge_env(config: Mapping[str, Any], role: str) -> dict[str, str]:
    """Global env overlaid with the role's env; role keys win on collision."""
    merged: dict[str, str] = dict(config.get("env") or {})
    merged.update(agent_overrides(config, role).get("env") or {})
    return merged


def image_name(config: Mapping[str, Any], settings: Settings | None = None) -> str:
    prefix = (settings or get_settings()).container.image_prefix
    project_id = config.get("project_id")
    return f"{prefix}-{project_id}" if project_id else prefix


@dataclass(frozen=True)
class GithubAuthConfig:
    method: str | None = None
    token: str | None = None
    app_client_id: str | None = None
    app_installation_id: str | None = None
    app_private_key_path: str | None = None


@dataclass(frozen=True)
class LaunchConfig:
    """Fully merged settings for one role and one invocation."""

    role: str
    container_name: str
    image: str
    project_id: str | None = None
    rails_ws_url: str | None = None
    rails_api_url: str | None = None
    rails_api_key: str | None = None
    github: GithubAuthConfig = field(default_factory=GithubAuthConfig)
    git_user_name: str | None = None
    git_user_email: str | None = None
    env: dict[str, str] = field(default_factory=dict)
    global_env_count: int = 0
    role_env_count: int = 0


def resolve_launch_config(
    config: Mapping[str, Any],
    profile: AgentProfile,
    settings: Settings | None = None,
) -> LaunchConfig:
    overrides = agent_overrides(config, profile.role)
    github = config.get("github") or {}
    git = config.get("git") or {}
    return LaunchConfig(
        role=profile.role,
        container_name=overrides.get("container_name") or profile.container_name,
        image=image_name(config, settings),
        project_id=config.get("project_id"),
        rails_ws_url=config.get("rails_ws_url"),
        rails_api_url=config.get("rails_api_url"),
        rails_api_key=overrides.get("mcp_api_key"),
        github=GithubAuthConfig(
            method=github.get("method"),
            token=github.get("token"),
            app_client_id=github.get("app_client_id"),
            app_installation_id=github.get("app_installation_id"),
            app_private_key_path=github.get("app_private_key_path"),
        ),
        git_user_name=git.get("user_name"),
        git_user_email=git.get("user_email"),
        env=merge_env(config, profile.role),
        global_env_count=len(config.get("env") or {}),
        role_env_count=len(overrides.get("env") or {}),
    )
