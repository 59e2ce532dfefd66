"""Entry point for `python -m tinker_agent` / `tinker-agent`.

Subcommands:
    tinker-agent <role>                 Start (replace) the role's container
    tinker-agent attach <role>          Attach to the role's session, starting it if needed
    tinker-agent roles                  List available roles

Container-side helpers:
    tinker-agent token                  Print a usable GitHub token
    tinker-agent git-credential <op>    git credential helper protocol
    tinker-agent setup-git              Wire git and gh to the credential helper
    tinker-agent setup-agent            Check the role env, write MCP config, then setup-git
"""

from __future__ import annotations

import argparse
import sys

from tinker_agent.agents import AGENT_PROFILES, ROLES
from tinker_agent.errors import TinkerAgentError


def _start(role: str) -> None:
    from tinker_agent.config import load_config
    from tinker_agent.launcher import launch

    launch(role, load_config())


def _attach(role: str) -> None:
    from tinker_agent.attach import attach
    from tinker_agent.config import load_config

    attach(role, load_config())


def _roles() -> None:
    for role in ROLES:
        print(f"{role:<14} {AGENT_PROFILES[role].container_name}")


def _token() -> None:
    from tinker_agent.credentials import resolve_token

    print(resolve_token())


def _git_credential(action: str) -> None:
    from tinker_agent.git_auth import credential_response, parse_credential_request

    request = parse_credential_request(sys.stdin.read())
    sys.stdout.write(credential_response(action, request))


def _setup_git() -> None:
    from tinker_agent.git_auth import configure_git

    configure_git()


def _setup_agent() -> None:
    from tinker_agent.agent_setup import setup_agent

    setup_agent()


def _fail(exc: TinkerAgentError) -> None:
    print(f"Error: {exc}", file=sys.stderr)
    if exc.remediation:
        print("", file=sys.stderr)
        print(exc.remediation, file=sys.stderr)
    sys.exit(1)


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(
        prog="tinker-agent",
        description="Launch and attach to Tinker agent containers",
        epilog=f"roles: {', '.join(ROLES)}",
    )
    parser.add_argument(
        "command",
        nargs="?",
        help="a role, or attach/roles/token/git-credential/setup-git/setup-agent",
    )
    parser.add_argument("args", nargs="*")
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_usage(sys.stderr)
        sys.exit(1)

    try:
        match args.command.lower():
            case "attach":
                if len(args.args) != 1:
                    parser.error("usage: tinker-agent attach <role>")
                _attach(args.args[0].lower())
            case "roles":
                _roles()
            case "token":
                _token()
            case "git-credential":
                if len(args.args) != 1:
                    parser.error("usage: tinker-agent git-credential <get|store|erase>")
                _git_credential(args.args[0])
            case "setup-git":
                _setup_git()
            case "setup-agent":
                _setup_agent()
            case role:
                if args.args:
                    parser.error("usage: tinker-agent <role>")
                _start(role)
    except TinkerAgentError as exc:
        _fail(exc)


if __name__ == "__main__":
    main()
