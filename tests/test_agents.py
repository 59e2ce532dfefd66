"""Tests for the agent role registry."""

from __future__ import annotations

import pytest

from tinker_agent.agents import AGENT_PROFILES, ROLES, get_profile
from tinker_agent.errors import UnknownRole


def test_registry_covers_every_role():
    assert set(AGENT_PROFILES) == set(ROLES)
    assert ROLES == ("planner", "orchestrator", "worker", "reviewer", "researcher")


def test_container_names_are_unique():
    names = [p.container_name for p in AGENT_PROFILES.values()]
    assert len(names) == len(set(names))


@pytest.mark.parametrize("role", ROLES)
def test_profile_shape(role):
    profile = get_profile(role)
    assert profile.role == role
    assert profile.container_name.startswith("tinker-")
    assert "memory" in profile.skills
    assert profile.banner.startswith("TINKER ")
    assert "MODE:" in profile.banner


def test_planner_is_interactive():
    assert "INTERACTIVE" in get_profile("planner").banner
    assert get_profile("planner").container_name == "tinker-planner"


def test_unknown_role():
    with pytest.raises(UnknownRole) as exc_info:
        get_profile("janitor")
    assert exc_info.value.role == "janitor"
    assert exc_info.value.valid == list(ROLES)
    assert exc_info.value.remediation == (
        "Available: planner, orchestrator, worker, reviewer, researcher"
    )
