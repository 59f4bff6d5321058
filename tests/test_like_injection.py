"""Tests for LIKE pattern injection prevention.

Verifies that LIKE metacharacters (%, _, \\) in memory searches and
whiteboard name lookups are matched literally.
"""

import pytest

from helixmem.protocols import NotFoundError
from helixmem.storage import escape_like_pattern
from helixmem.types import HumanActor

# ---------------------------------------------------------------------------
# escape_like_pattern unit tests
# ---------------------------------------------------------------------------


class TestEscapeLikePattern:
    """Unit tests for the escape_like_pattern helper."""

    def test_percent_is_escaped(self):
        assert escape_like_pattern("foo%bar") == "foo\\%bar"

    def test_underscore_is_escaped(self):
        assert escape_like_pattern("foo_bar") == "foo\\_bar"

    def test_backslash_is_escaped_first(self):
        # Backslash must be escaped before % and _ to avoid double-escaping
        assert escape_like_pattern("a\\b") == "a\\\\b"

    def test_all_metacharacters_escaped(self):
        assert escape_like_pattern("100%_done\\") == "100\\%\\_done\\\\"

    def test_plain_string_unchanged(self):
        assert escape_like_pattern("normal-memory") == "normal-memory"


# ---------------------------------------------------------------------------
# Memory search
# ---------------------------------------------------------------------------


class TestMemorySearchLiteral:
    def test_percent_matches_literally(self, helix, agent):
        hit = helix.save_memory(agent.id, "We are 100% committed to the launch")
        helix.save_memory(agent.id, "We are 100 percent sure")
        results = helix.search_memories(agent.id, "100%")
        assert [m.id for m in results] == [hit.id]

    def test_bare_percent_does_not_match_everything(self, helix, agent):
        helix.save_memory(agent.id, "no symbols here")
        assert helix.search_memories(agent.id, "%") == []

    def test_underscore_is_not_a_wildcard(self, helix, agent):
        hit = helix.save_memory(agent.id, "config key max_tokens")
        helix.save_memory(agent.id, "config key maxXtokens")
        assert [m.id for m in helix.search_memories(agent.id, "max_tokens")] == [hit.id]

    def test_backslash_matches_literally(self, helix, agent):
        hit = helix.save_memory(agent.id, "path C:\\Users\\sam")
        helix.save_memory(agent.id, "path C:/Users/sam")
        assert [m.id for m in helix.search_memories(agent.id, "C:\\Users")] == [hit.id]

    def test_case_insensitive(self, helix, agent):
        hit = helix.save_memory(agent.id, "Sam likes Python")
        assert [m.id for m in helix.search_memories(agent.id, "python")] == [hit.id]

    def test_other_agents_memories_excluded(self, helix, account, agent):
        other = helix.create_agent(account.id, "Bea")
        helix.save_memory(other.id, "shared keyword")
        assert helix.search_memories(agent.id, "keyword") == []

    def test_discarded_excluded(self, helix, agent):
        memory = helix.save_memory(agent.id, "gone soon")
        helix.memories.discard(agent.id, memory.id)
        assert helix.search_memories(agent.id, "gone") == []

    def test_type_filter(self, helix, agent):
        helix.save_memory(agent.id, "topic journal")
        core = helix.save_memory(agent.id, "topic core", "core")
        assert [m.id for m in helix.search_memories(agent.id, "topic", memory_type="core")] == [core.id]

    def test_newest_first_and_limit(self, helix, agent, clock):
        first = helix.save_memory(agent.id, "entry one")
        clock.advance(minutes=1)
        second = helix.save_memory(agent.id, "entry two")
        assert [m.id for m in helix.search_memories(agent.id, "entry")] == [second.id, first.id]
        assert len(helix.search_memories(agent.id, "entry", limit=1)) == 1


# ---------------------------------------------------------------------------
# Whiteboard partial-name resolution
# ---------------------------------------------------------------------------


class TestWhiteboardNameLiteral:
    def test_percent_in_reference_is_literal(self, helix, account, user):
        actor = HumanActor(user_id=user.id, name=user.name)
        helix.whiteboards.create(account.id, "Roadmap", "Q3 plans", "", actor)
        with pytest.raises(NotFoundError):
            helix.whiteboards.resolve(account.id, "%")

    def test_underscore_in_name_is_a_gap(self, helix, account, user):
        actor = HumanActor(user_id=user.id, name=user.name)
        board = helix.whiteboards.create(account.id, "Launch Plan", "launch", "", actor)
        assert helix.whiteboards.resolve(account.id, "launch_plan").id == board.id
