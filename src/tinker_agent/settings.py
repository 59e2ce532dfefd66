"""Tool settings: Pydantic BaseSettings read from ``TINKER_*`` env vars.

These tune the orchestrator itself (engine CLI, poll bounds, cache paths).
Project settings (project id, GitHub auth, env overrides) live in the
project's ``tinker.toml`` and are handled by :mod:`tinker_agent.config`.

Nested sections use ``__`` as the delimiter, e.g.
``TINKER_ATTACH__SETTLE_DELAY=5`` or ``TINKER_CONTAINER__CLI=podman``.

Usage::

    from tinker_agent.settings import get_settings

    s = get_settings()
    print(s.container.cli)
"""

from __future__ import annotations

import tempfile
from pathlib import Path

from pydantic import BaseModel, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class _StrictModel(BaseModel):
    """Base for settings sections. Rejects unknown keys so typos fail loudly."""

    model_config = {"extra": "forbid"}


class ContainerSettings(_StrictModel):
    cli: str = "docker"
    image_prefix: str = "tinker-sandbox"
    network: str = "host"
    restart_policy: str = "unless-stopped"
    tmpfs: list[str] = ["/rails/tmp", "/rails/log"]
    tinker_version: str = "main"
    banner_dir: Path = Path(tempfile.gettempdir())
    banner_target: str = "/etc/tinker/system-prompt.txt"
    private_key_target: str = "/tmp/github-app-privkey.pem"
    timeout: int = 120  # seconds, for short engine calls (rm, ps, exec probes)


class AttachSettings(_StrictModel):
    session_name: str = "agent"
    settle_delay: float = 3.0  # seconds after auto-start
    readiness_attempts: int = 10
    readiness_interval: float = 1.0  # seconds
    default_user: str = "rails"

    @field_validator("readiness_attempts")
    @classmethod
    def clamp_attempts(cls, v: int) -> int:
        return max(1, v)


class GithubSettings(_StrictModel):
    host: str = "github.com"
    api_url: str = "https://api.github.com"
    token_cache_path: Path = Path("/tmp/github-app-token-cache")
    refresh_margin: int = 300  # seconds; tokens closer to expiry are never used
    http_timeout: float = 10.0  # seconds
    real_gh_path: Path = Path("/usr/bin/gh")
    gh_wrapper_path: Path = Path("/usr/local/bin/gh")  # must precede real_gh_path on PATH

    @field_validator("api_url")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        return v.rstrip("/")


class SetupSettings(_StrictModel):
    """In-container paths touched by ``tinker-agent setup-agent``."""

    mcp_config_path: Path = Path(".mcp.json")  # relative to the project checkout
    mcp_command: str = "node"
    mcp_script: Path = Path("~/tinker-tools/node_modules/tinker-mcp/dist/index.js")
    assistant_config_path: Path = Path("~/.claude.json")


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="TINKER_",
        env_nested_delimiter="__",
        extra="ignore",
    )

    container: ContainerSettings = ContainerSettings()
    attach: AttachSettings = AttachSettings()
    github: GithubSettings = GithubSettings()
    setup: SetupSettings = SetupSettings()
    config_names: list[str] = ["tinker.toml", "tinker.yaml", "tinker.yml", "tinker.json"]


_settings: Settings | None = None


def get_settings() -> Settings:
    """Lazy cached singleton."""
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


def reset_settings() -> None:
    """Clear the cached singleton (for tests)."""
    global _settings
    _settings = None
