"""Shared test fixtures for tinker-agent."""

from __future__ import annotations

import subprocess
from collections.abc import Callable, Sequence
from pathlib import Path

import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa

from tinker_agent.engine import ContainerEngine
from tinker_agent.settings import (
    AttachSettings,
    ContainerSettings,
    GithubSettings,
    Settings,
    SetupSettings,
    reset_settings,
)

# ---------------------------------------------------------------------------
# Shared helpers (plain functions, importable by test files)
# ---------------------------------------------------------------------------


def make_settings(tmp_path: Path, **overrides) -> Settings:
    """Settings with every filesystem path redirected under *tmp_path*."""
    container = overrides.pop("container", ContainerSettings(banner_dir=tmp_path / "banners"))
    github = overrides.pop("github", GithubSettings(token_cache_path=tmp_path / "token-cache"))
    attach = overrides.pop("attach", AttachSettings())
    setup = overrides.pop(
        "setup",
        SetupSettings(
            mcp_config_path=tmp_path / "project" / ".mcp.json",
            assistant_config_path=tmp_path / "home" / ".claude.json",
        ),
    )
    return Settings(container=container, github=github, attach=attach, setup=setup, **overrides)


def base_config(**overrides) -> dict:
    """A resolved project config (the shape load_config returns)."""
    config = {
        "project_id": "7",
        "rails_ws_url": "wss://tinker.test/cable",
        "rails_api_url": "https://tinker.test/api/v1",
        "github": {
            "method": "token",
            "token": "ghp_static",
            "app_client_id": None,
            "app_installation_id": None,
            "app_private_key_path": None,
        },
        "git": {"user_name": "Tinker Bot", "user_email": "bot@tinker.test"},
        "env": {"SHARED": "global", "ONLY_GLOBAL": "1"},
        "agents": {
            "worker": {
                "container_name": None,
                "env": {"SHARED": "worker"},
                "mcp_api_key": "worker-key",
            }
        },
    }
    config.update(overrides)
    return config


def completed(args: Sequence[str], returncode: int = 0, stdout: str = "", stderr: str = ""):
    return subprocess.CompletedProcess(list(args), returncode, stdout=stdout, stderr=stderr)


class ExecCalled(Exception):
    """Raised by FakeRunner.exec in place of replacing the test process."""

    def __init__(self, argv: list[str]) -> None:
        self.argv = argv
        super().__init__(" ".join(argv))


class FakeRunner:
    """Records argv and answers from a responder instead of running binaries."""

    def __init__(
        self,
        responder: Callable[[list[str]], subprocess.CompletedProcess[str]] | None = None,
        *,
        call_returncode: int = 0,
    ) -> None:
        self.calls: list[list[str]] = []
        self.inputs: list[str | None] = []
        self._responder = responder or (lambda argv: completed(argv))
        self.call_returncode = call_returncode

    def run(self, args, *, input=None, timeout=None):
        argv = list(args)
        self.calls.append(argv)
        self.inputs.append(input)
        return self._responder(argv)

    def call(self, args) -> int:
        self.calls.append(list(args))
        return self.call_returncode

    def exec(self, args):
        argv = list(args)
        self.calls.append(argv)
        raise ExecCalled(argv)


class FakeDocker(FakeRunner):
    """FakeRunner that keeps container state like the engine would.

    ``run -d`` refuses a name that already exists (like docker's conflict
    error), ``rm -f`` deletes, ``ps --filter name=^X$`` lists, and ``exec``
    answers from ``exec_responses`` keyed by the in-container command tuple.
    """

    def __init__(self, **kwargs) -> None:
        super().__init__(responder=self._respond, **kwargs)
        self.containers: dict[str, list[str]] = {}  # name -> run args
        self.exec_responses: dict[tuple[str, ...], subprocess.CompletedProcess[str]] = {}

    def _respond(self, argv: list[str]) -> subprocess.CompletedProcess[str]:
        verb = argv[1]
        if verb == "rm":
            self.containers.pop(argv[-1], None)
            return completed(argv)
        if verb == "ps":
            pattern = argv[argv.index("--filter") + 1].removeprefix("name=^").removesuffix("$")
            names = [n for n in self.containers if n == pattern]
            return completed(argv, stdout="".join(f"{n}\n" for n in names))
        if verb == "exec":
            rest = argv[2:]
            if rest[0] == "-u":
                rest = rest[2:]
            command = tuple(rest[1:])
            return self.exec_responses.get(command, completed(argv, returncode=1))
        return completed(argv)

    def call(self, args) -> int:
        argv = list(args)
        self.calls.append(argv)
        if self.call_returncode != 0:
            return self.call_returncode
        name = argv[argv.index("--name") + 1]
        if name in self.containers:
            return 125
        self.containers[name] = argv
        return 0

    def verbs(self) -> list[str]:
        return [c[1] for c in self.calls]


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def _fresh_settings():
    reset_settings()
    yield
    reset_settings()


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    return make_settings(tmp_path)


@pytest.fixture
def docker() -> FakeDocker:
    return FakeDocker()


@pytest.fixture
def engine(docker: FakeDocker) -> ContainerEngine:
    return ContainerEngine(cli="docker", timeout=5, runner=docker)


@pytest.fixture(scope="session")
def rsa_keypair() -> tuple[str, str]:
    """(private PEM, public PEM) for signing test assertions."""
    key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    private_pem = key.private_bytes(
        serialization.Encoding.PEM,
        serialization.PrivateFormat.PKCS8,
        serialization.NoEncryption(),
    ).decode()
    public_pem = (
        key.public_key()
        .public_bytes(
            serialization.Encoding.PEM,
            serialization.PublicFormat.SubjectPublicKeyInfo,
        )
        .decode()
    )
    return private_pem, public_pem


@pytest.fixture
def private_key_file(tmp_path: Path, rsa_keypair: tuple[str, str]) -> Path:
    path = tmp_path / "app.private-key.pem"
    path.write_text(rsa_keypair[0])
    return path
