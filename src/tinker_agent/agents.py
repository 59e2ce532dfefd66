"""Agent role registry.

The role set is closed: adding a role means editing :data:`AGENT_PROFILES`.
Banners are mounted read-only into the container as the assistant's
system prompt; the assistant enforces them, not this tool.
"""

from __future__ import annotations

import textwrap
from dataclasses import dataclass
from typing import Literal, get_args

from tinker_agent.errors import UnknownRole

Role = Literal["planner", "orchestrator", "worker", "reviewer", "researcher"]

ROLES: tuple[Role, ...] = get_args(Role)


@dataclass(frozen=True)
class AgentProfile:
    role: Role
    container_name: str  # default; overridable per project via agents.<role>.container_name
    skills: tuple[str, ...]
    banner: str


def _banner(title: str, mode: str, body: str) -> str:
    return f"TINKER {title}\nMODE: {mode}\n\n{textwrap.dedent(body).strip()}\n"


AGENT_PROFILES: dict[Role, AgentProfile] = {
    "planner": AgentProfile(
        role="planner",
        container_name="tinker-planner",
        skills=("ticket-management", "memory"),
        banner=_banner(
            "PLANNER - ARCHITECT",
            "INTERACTIVE CHAT WITH HUMAN",
            """
            Explore the codebase, clarify requirements with the human, propose a
            breakdown of work and create tickets once the plan is confirmed.

            FORBIDDEN: writing implementation code, making git commits, creating
            tickets without human confirmation.
            """,
        ),
    ),
    "orchestrator": AgentProfile(
        role="orchestrator",
        container_name="tinker-autonomous-orchestrator",
        skills=("orchestrator-workflow", "ticket-management", "memory"),
        banner=_banner(
            "ORCHESTRATOR - COORDINATION",
            "FULLY AUTONOMOUS",
            """
            Monitor the ticket queue and agent availability, assign work to idle
            agents and keep tickets moving through their lifecycle.

            FORBIDDEN: writing code directly.
            """,
        ),
    ),
    "worker": AgentProfile(
        role="worker",
        container_name="tinker-autonomous-worker",
        skills=("git-workflow", "worker-workflow", "memory"),
        banner=_banner(
            "WORKER - IMPLEMENTATION",
            "FULLY AUTONOMOUS",
            """
            Pick up assigned tickets, implement them on a branch, open a pull
            request and update the ticket status as work progresses.
            """,
        ),
    ),
    "reviewer": AgentProfile(
        role="reviewer",
        container_name="tinker-autonomous-reviewer",
        skills=("review-workflow", "memory", "proposal-reviewer"),
        banner=_banner(
            "REVIEWER - CODE REVIEW",
            "FULLY AUTONOMOUS",
            """
            Review pull requests awaiting review, check code quality and tests,
            then pass or fail the audit with actionable feedback.

            FORBIDDEN: pushing fixes to the branches under review.
            """,
        ),
    ),
    "researcher": AgentProfile(
        role="researcher",
        container_name="tinker-autonomous-researcher",
        skills=(
            "researcher-workflow",
            "memory",
            "proposal-execution",
            "memory-consolidation",
            "retrospective",
        ),
        banner=_banner(
            "RESEARCHER - ANALYSIS",
            "FULLY AUTONOMOUS",
            """
            Analyze the codebase and ticket history, record observations in
            memory and file proposals backed by evidence.

            FORBIDDEN: modifying code, tickets or memories directly.
            """,
        ),
    ),
}


def get_profile(role: str) -> AgentProfile:
    """Look up a role, raising :class:`UnknownRole` with the valid set."""
    profile = AGENT_PROFILES.get(role)  # type: ignore[call-overload]
    if profile is None:
        raise UnknownRole(role, list(ROLES))
    return profile
