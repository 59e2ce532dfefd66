"""GitHub credential provisioning.

Two strategies, picked from the project config:

**Static token**: a personal access token injected verbatim as ``GH_TOKEN``.

**GitHub App**: a signed RS256 assertion is exchanged for a short-lived
installation token. Tokens are cached in a single JSON file shared by every
process using the same app identity; a cached token is only used while it
has more than ``refresh_margin`` seconds left.

The cache is not locked. Writes go through write-temp-then-rename so
readers see either the old or the new file, and any unreadable cache is
treated as a miss; a race costs at most one redundant re-mint.

The git credential helper calls into this module on every fetch and push,
so nothing here reads the project config or talks to the engine.
"""

from __future__ import annotations

import contextlib
import json
import os
import urllib.error
import urllib.request
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Any

import jwt

from tinker_agent.config import GithubAuthConfig
from tinker_agent.errors import CredentialExchangeFailed, MissingAuth
from tinker_agent.logger import logger
from tinker_agent.settings import Settings, get_settings

ASSERTION_BACKDATE = 60  # seconds; tolerates clock skew against GitHub
ASSERTION_LIFETIME = 540  # seconds past now; GitHub rejects exp > 10 minutes

_AUTH_REMEDIATION = """\
Configure [github] in tinker.toml, either:

  [github]
  method = "token"
  token = "ghp_..."

or:

  [github]
  method = "app"
  app_client_id = "Iv1.abc123"
  app_installation_id = "12345678"
  app_private_key_path = "~/.config/tinker/app.private-key.pem\""""


# ---------------------------------------------------------------------------
# Strategies
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class StaticToken:
    token: str


@dataclass(frozen=True)
class AppIdentity:
    app_id: str  # client ID or numeric app ID; used as the JWT issuer
    installation_id: str
    private_key_path: Path

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> AppIdentity | None:
        """Build from ``GITHUB_APP_*`` variables, or None if any is missing."""
        env = os.environ if environ is None else environ
        app_id = env.get("GITHUB_APP_CLIENT_ID") or env.get("GITHUB_APP_ID")
        installation_id = env.get("GITHUB_APP_INSTALLATION_ID")
        key_path = env.get("GITHUB_APP_PRIVATE_KEY_PATH")
        if not (app_id and installation_id and key_path):
            return None
        return cls(app_id, installation_id, Path(key_path))

    def read_private_key(self) -> str:
        try:
            return self.private_key_path.read_text()
        except OSError as exc:
            raise MissingAuth(
                f"GitHub App private key not readable at {self.private_key_path}: {exc}",
                remediation="Check 'app_private_key_path' in tinker.toml",
            ) from exc


AuthStrategy = StaticToken | AppIdentity


def select_strategy(github: GithubAuthConfig) -> AuthStrategy:
    """Pick the auth strategy for a launch, or raise MissingAuth."""
    if github.method == "app":
        missing = [
            name
            for name in ("app_client_id", "app_installation_id", "app_private_key_path")
            if not getattr(github, name)
        ]
        if missing:
            raise MissingAuth(
                f"GitHub App authentication is missing: {', '.join(missing)}",
                remediation=_AUTH_REMEDIATION,
            )
        key_path = Path(github.app_private_key_path or "").expanduser().resolve()
        if not key_path.is_file():
            raise MissingAuth(
                f"GitHub App private key not found at: {key_path}",
                remediation="Check 'app_private_key_path' in tinker.toml",
            )
        return AppIdentity(
            app_id=github.app_client_id or "",
            installation_id=github.app_installation_id or "",
            private_key_path=key_path,
        )
    if github.token:
        return StaticToken(github.token)
    raise MissingAuth("No GitHub authentication configured", remediation=_AUTH_REMEDIATION)


# ---------------------------------------------------------------------------
# Token cache
# ---------------------------------------------------------------------------


def _parse_expiry(value: Any) -> datetime:
    if not isinstance(value, str):
        raise TypeError(f"expires_at must be a string, got {type(value).__name__}")
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


@dataclass(frozen=True)
class CachedToken:
    token: str
    expires_at: datetime

    def is_usable(self, now: datetime, margin: int) -> bool:
        return self.expires_at > now + timedelta(seconds=margin)

    def to_dict(self) -> dict[str, str]:
        return {"token": self.token, "expires_at": self.expires_at.isoformat()}


class TokenCache:
    """Single-file JSON cache of the current installation token."""

    def __init__(self, path: Path) -> None:
        self.path = path

    def read(self) -> CachedToken | None:
        """Return the cached token, or None on any miss (absent, partial, corrupt)."""
        try:
            data = json.loads(self.path.read_text())
            token = data["token"]
            expires_at = _parse_expiry(data["expires_at"])
        except FileNotFoundError:
            return None
        except (OSError, ValueError, KeyError, TypeError) as exc:
            logger.debug("Ignoring unreadable token cache", path=str(self.path), err=str(exc))
            return None
        if not isinstance(token, str) or not token:
            return None
        return CachedToken(token, expires_at)

    def write(self, cached: CachedToken) -> None:
        """Atomically replace the cache file. Failures are logged, not raised."""
        # Per-process temp name so concurrent writers never share a temp file
        tmp = self.path.with_name(f".{self.path.name}.{os.getpid()}.tmp")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd = os.open(tmp, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
            with os.fdopen(fd, "w") as f:
                json.dump(cached.to_dict(), f)
            os.replace(tmp, self.path)
        except OSError as exc:
            logger.warning("Failed to write token cache", path=str(self.path), err=str(exc))
            with contextlib.suppress(OSError):
                tmp.unlink()


# ---------------------------------------------------------------------------
# Minting
# ---------------------------------------------------------------------------


def build_assertion(app_id: str, private_key_pem: str, *, now: datetime | None = None) -> str:
    """Sign the app-level JWT used to request an installation token."""
    issued = int((now or datetime.now(UTC)).timestamp())
    payload = {
        "iat": issued - ASSERTION_BACKDATE,
        "exp": issued + ASSERTION_LIFETIME,
        "iss": app_id,
    }
    try:
        return jwt.encode(payload, private_key_pem, algorithm="RS256")
    except (ValueError, jwt.PyJWTError) as exc:
        raise MissingAuth(f"GitHub App private key is not a valid RSA key: {exc}") from exc


def exchange_installation_token(
    assertion: str,
    installation_id: str,
    *,
    api_url: str,
    timeout: float,
) -> CachedToken:
    """POST the assertion to GitHub and return the installation token. No retry."""
    url = f"{api_url}/app/installations/{installation_id}/access_tokens"
    req = urllib.request.Request(
        url,
        data=b"",
        headers={
            "Authorization": f"Bearer {assertion}",
            "Accept": "application/vnd.github+json",
            "User-Agent": "tinker-agent",
        },
        method="POST",
    )
    try:
        with urllib.request.urlopen(req, timeout=timeout) as resp:
            data = json.loads(resp.read())
    except urllib.error.HTTPError as exc:
        body = exc.read().decode(errors="replace")
        raise CredentialExchangeFailed(
            f"GitHub rejected the token exchange (HTTP {exc.code}): {body[:500]}",
            status=exc.code,
            body=body,
        ) from exc
    except (urllib.error.URLError, OSError) as exc:
        raise CredentialExchangeFailed(f"Could not reach {url}: {exc}") from exc
    except ValueError as exc:
        raise CredentialExchangeFailed(f"GitHub returned invalid JSON: {exc}") from exc

    try:
        return CachedToken(data["token"], _parse_expiry(data["expires_at"]))
    except (KeyError, TypeError, ValueError) as exc:
        raise CredentialExchangeFailed(
            f"Unexpected token response from GitHub: missing or invalid {exc}",
            body=json.dumps(data)[:500],
        ) from exc


class InstallationTokenProvider:
    """Returns a usable installation token, minting only when the cache is stale."""

    def __init__(
        self,
        identity: AppIdentity,
        *,
        settings: Settings | None = None,
        cache: TokenCache | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.identity = identity
        self._settings = (settings or get_settings()).github
        self.cache = cache or TokenCache(self._settings.token_cache_path)
        self._clock = clock or (lambda: datetime.now(UTC))

    def get_token(self) -> str:
        now = self._clock()
        cached = self.cache.read()
        if cached is not None and cached.is_usable(now, self._settings.refresh_margin):
            logger.debug(
                "Using cached installation token", expires_at=cached.expires_at.isoformat()
            )
            return cached.token
        return self.mint(now).token

    def mint(self, now: datetime | None = None) -> CachedToken:
        assertion = build_assertion(
            self.identity.app_id,
            self.identity.read_private_key(),
            now=now or self._clock(),
        )
        fresh = exchange_installation_token(
            assertion,
            self.identity.installation_id,
            api_url=self._settings.api_url,
            timeout=self._settings.http_timeout,
        )
        self.cache.write(fresh)
        logger.info(
            "Minted GitHub installation token",
            installation_id=self.identity.installation_id,
            expires_at=fresh.expires_at.isoformat(),
        )
        return fresh


def resolve_token(
    environ: Mapping[str, str] | None = None,
    *,
    settings: Settings | None = None,
) -> str:
    """Token for in-container callers: app identity first, then ``GH_TOKEN``."""
    env = os.environ if environ is None else environ
    identity = AppIdentity.from_env(env)
    if identity is not None:
        return InstallationTokenProvider(identity, settings=settings).get_token()
    if token := env.get("GH_TOKEN"):
        return token
    raise MissingAuth(
        "No GitHub credentials in the environment",
        remediation="Set GITHUB_APP_CLIENT_ID, GITHUB_APP_INSTALLATION_ID and "
        "GITHUB_APP_PRIVATE_KEY_PATH, or GH_TOKEN",
    )
