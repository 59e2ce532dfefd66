"""In-container git and gh wiring.

Runs inside the agent container (``tinker-agent setup-git``). With a GitHub
App, git is pointed at ``tinker-agent git-credential`` and ``gh`` is wrapped
so both fetch a fresh installation token on every call; with a static token,
``gh`` is logged in once. Either way SSH remotes are rewritten to HTTPS so
the token is what authenticates.
"""

from __future__ import annotations

import os
import shlex
import sys
import tempfile
from collections.abc import Callable, Mapping
from pathlib import Path

from tinker_agent.credentials import AppIdentity, resolve_token
from tinker_agent.logger import logger
from tinker_agent.process import ProcessRunner, get_runner
from tinker_agent.settings import Settings, get_settings

_SELF = f"{shlex.quote(sys.executable)} -m tinker_agent"

GH_WRAPPER_TEMPLATE = """\
#!/bin/sh
# Installed by tinker-agent setup-git: refresh GH_TOKEN before every gh call
GH_TOKEN="$({self} token)" || exit 1
export GH_TOKEN
exec {real_gh} "$@"
"""


# ---------------------------------------------------------------------------
# git credential helper protocol
# ---------------------------------------------------------------------------


def parse_credential_request(text: str) -> dict[str, str]:
    """Parse git's ``key=value`` credential request (terminated by a blank line)."""
    attrs: dict[str, str] = {}
    for line in text.splitlines():
        if not line.strip():
            break
        if "=" in line:
            key, value = line.split("=", 1)
            attrs[key] = value
    return attrs


def credential_response(
    action: str,
    request: Mapping[str, str],
    *,
    token_source: Callable[[], str] = resolve_token,
    settings: Settings | None = None,
) -> str:
    """Answer a git credential helper call.

    Only ``get`` for the configured GitHub host (or an unspecified host)
    produces output; everything else is left to git's other helpers.
    """
    host = (settings or get_settings()).github.host
    if action != "get":
        return ""
    if request.get("host") not in (None, "", host):
        return ""
    token = token_source()
    return f"protocol=https\nhost={host}\nusername=x-access-token\npassword={token}\n"


# ---------------------------------------------------------------------------
# setup-git
# ---------------------------------------------------------------------------


def _git_config(runner: ProcessRunner, key: str, value: str) -> bool:
    result = runner.run(["git", "config", "--global", key, value])
    if result.returncode != 0:
        logger.warning("git config failed", key=key, stderr=result.stderr.strip())
        return False
    return True


def install_gh_wrapper(
    runner: ProcessRunner,
    *,
    real_gh: Path,
    wrapper_path: Path,
) -> bool:
    """Install a ``gh`` shim that exports a fresh token. Uses sudo when needed."""
    if not real_gh.exists():
        logger.warning("gh not found, skipping wrapper", path=str(real_gh))
        return False

    content = GH_WRAPPER_TEMPLATE.format(self=_SELF, real_gh=shlex.quote(str(real_gh)))
    try:
        wrapper_path.write_text(content)
        wrapper_path.chmod(0o755)
    except PermissionError:
        fd, tmp = tempfile.mkstemp(prefix="gh-wrapper-")
        with os.fdopen(fd, "w") as f:
            f.write(content)
        result = runner.run(["sudo", "install", "-m", "0755", tmp, str(wrapper_path)])
        Path(tmp).unlink(missing_ok=True)
        if result.returncode != 0:
            logger.warning("Could not install gh wrapper", stderr=result.stderr.strip())
            return False
    logger.info("Installed gh wrapper with token auto-refresh", path=str(wrapper_path))
    return True


def configure_git(
    runner: ProcessRunner | None = None,
    environ: Mapping[str, str] | None = None,
    settings: Settings | None = None,
) -> None:
    runner = runner or get_runner()
    env = os.environ if environ is None else environ
    gh = (settings or get_settings()).github

    if AppIdentity.from_env(env) is not None:
        logger.info("Configuring GitHub App authentication")
        _git_config(runner, f"credential.https://{gh.host}.helper", f"!{_SELF} git-credential")
        install_gh_wrapper(runner, real_gh=gh.real_gh_path, wrapper_path=gh.gh_wrapper_path)
    elif token := env.get("GH_TOKEN"):
        result = runner.run(["gh", "auth", "login", "--with-token"], input=token)
        if result.returncode == 0:
            logger.info("GitHub token authentication configured")
        else:
            logger.warning("gh auth login failed", stderr=result.stderr.strip())
    else:
        logger.warning("No GH_TOKEN or GitHub App config - GitHub operations may fail")

    if name := env.get("GIT_USER_NAME"):
        _git_config(runner, "user.name", name)
    if email := env.get("GIT_USER_EMAIL"):
        _git_config(runner, "user.email", email)

    # SSH remotes would bypass the token entirely
    _git_config(runner, f"url.https://{gh.host}/.insteadOf", f"git@{gh.host}:")
    logger.info("Git configured to use HTTPS for GitHub", host=gh.host)
