"""Tests for RefinementTool actions."""

import pytest

from helixmem.tools.refinement import MAX_MUTATIONS, MAX_SUMMARY_LENGTH, RefinementTool
from helixmem.types import HumanActor


@pytest.fixture
def tool(helix, agent):
    return helix.refinement_tool(helix.tool_context(agent.id), session_id="session-1")


@pytest.fixture
def memories(helix, agent, clock):
    first = helix.save_memory(agent.id, "Sam likes tea")
    clock.advance(minutes=5)
    second = helix.save_memory(agent.id, "Sam likes green tea in the morning")
    clock.advance(minutes=5)
    core = helix.save_memory(agent.id, "I value honesty", "core")
    return first, second, core


class TestDispatch:
    def test_missing_action(self, tool):
        result = tool.execute()
        assert result["type"] == "error"
        assert result["error_code"] == "missing_param"
        assert result["required_param"] == "action"

    def test_invalid_action_lists_allowed(self, tool):
        result = tool.execute("forget_everything")
        assert result["error_code"] == "invalid_action"
        assert result["allowed_actions"] == list(RefinementTool.ACTIONS)

    def test_requires_agent(self, helix):
        tool = helix.refinement_tool(helix.tool_context(None))
        result = tool.execute("search", query="tea")
        assert result["error_code"] == "context"
        assert "allowed_actions" in result


class TestSearch:
    def test_returns_ledger(self, tool, memories):
        first, second, _ = memories
        result = tool.execute("search", query="  tea ")
        assert result["type"] == "search_results"
        assert result["query"] == "tea"
        assert result["count"] == 2
        assert [r["id"] for r in result["results"]] == [second.id, first.id]

    def test_query_required(self, tool):
        result = tool.execute("search", query="   ")
        assert result["required_param"] == "query"


class TestConsolidate:
    def test_merges_and_records_provenance(self, helix, tool, agent, memories):
        first, second, _ = memories
        result = tool.execute(
            "consolidate", ids=[first.id, second.id], content="Sam likes green tea, mornings"
        )

        assert result["type"] == "consolidated"
        assert result["merged_ids"] == [first.id, second.id]
        assert result["merged_count"] == 2
        assert result["memory_type"] == "journal"

        merged = helix.memories.get(result["id"], agent.id)
        assert merged.created_at == first.created_at
        assert helix.memories.get(first.id).discarded_at is not None
        assert helix.memories.get(second.id).discarded_at is not None

        (record,) = helix.storage.get_audit_log(action="memory_refinement_consolidate")
        assert record.data["session_id"] == "session-1"
        assert [m["id"] for m in record.data["merged"]] == [first.id, second.id]
        assert record.actor.kind == "agent"
        assert tool.stats["consolidated"] == 2

    def test_mixed_types_become_core(self, tool, memories):
        first, _, core = memories
        result = tool.execute("consolidate", ids=f"{first.id},{core.id}", content="merged")
        assert result["memory_type"] == "core"

    def test_too_few_ids(self, tool, memories):
        first, _, _ = memories
        result = tool.execute("consolidate", ids=[first.id, f"#{first.id}"], content="x")
        assert result["error_code"] == "too_few_ids"

    def test_constitutional_source_rejected(self, helix, tool, agent, memories):
        first, _, core = memories
        helix.memories.protect(agent.id, core.id)
        result = tool.execute("consolidate", ids=[first.id, core.id], content="merged")
        assert result["error_code"] == "protected"
        assert result["memory_ids"] == [core.id]
        assert helix.memories.get(first.id).kept

    def test_missing_source_rejected(self, helix, tool, memories):
        first, _, _ = memories
        result = tool.execute("consolidate", ids=[first.id, 999], content="merged")
        assert result["error_code"] == "not_found"
        assert "#999" in result["error"]
        assert helix.memories.get(first.id).kept

    def test_bad_id(self, tool):
        result = tool.execute("consolidate", ids=["abc", 1], content="merged")
        assert result["type"] == "error"
        assert result["error_code"] == "invalid"

    def test_content_required(self, tool, memories):
        first, second, _ = memories
        result = tool.execute("consolidate", ids=[first.id, second.id])
        assert result["required_param"] == "content"


class TestUpdateDeleteProtect:
    def test_update(self, helix, tool, memories):
        first, _, _ = memories
        result = tool.execute("update", id=f"#{first.id}", content="Sam enjoys tea")
        assert result == {"type": "updated", "id": first.id, "content": "Sam enjoys tea"}
        (record,) = helix.storage.get_audit_log(action="memory_refinement_update")
        assert record.data["before"] == "Sam likes tea"
        assert record.data["session_id"] == "session-1"

    def test_update_too_long(self, tool, memories):
        first, _, _ = memories
        result = tool.execute("update", id=first.id, content="x" * 10_001)
        assert result["error_code"] == "too_long"

    def test_delete(self, helix, tool, memories):
        first, _, _ = memories
        assert tool.execute("delete", id=first.id) == {"type": "deleted", "id": first.id}
        assert not helix.memories.get(first.id).kept
        assert tool.stats["deleted"] == 1

    def test_delete_constitutional(self, tool, memories):
        _, _, core = memories
        tool.execute("protect", id=core.id)
        result = tool.execute("delete", id=core.id)
        assert result["error_code"] == "protected"

    def test_protect_counts_once(self, tool, memories):
        _, _, core = memories
        tool.execute("protect", id=core.id)
        result = tool.execute("protect", id=core.id)
        assert result["type"] == "protected"
        assert tool.stats["protected"] == 1

    def test_foreign_memory_not_found(self, helix, account, tool):
        other = helix.create_agent(account.id, "Bea")
        theirs = helix.save_memory(other.id, "private")
        result = tool.execute("delete", id=theirs.id)
        assert result["error_code"] == "not_found"


class TestComplete:
    def test_complete_journals_summary(self, helix, tool, agent, memories):
        first, _, _ = memories
        tool.execute("delete", id=first.id)

        result = tool.execute("complete", summary=" Removed a duplicate. ")

        assert result == {
            "type": "refinement_complete",
            "summary": "Removed a duplicate.",
            "stats": {"consolidated": 0, "updated": 0, "deleted": 1, "protected": 0},
        }
        assert tool.completed
        assert helix.get_agent(agent.id).last_refinement_at is not None
        assert helix.search_memories(agent.id, "Refinement session: Removed a duplicate.")
        (record,) = helix.storage.get_audit_log(action="memory_refinement_complete")
        assert record.data["stats"]["deleted"] == 1

    def test_summary_too_long(self, tool):
        result = tool.execute("complete", summary="s" * (MAX_SUMMARY_LENGTH + 1))
        assert result["error_code"] == "too_long"
        assert result["field"] == "summary"
        assert not tool.completed


class TestOperatorActor:
    def test_operator_is_recorded(self, helix, agent, user, memories):
        first, _, _ = memories
        actor = HumanActor(user_id=user.id, name=user.name)
        tool = helix.refinement_tool(helix.tool_context(agent.id, actor=actor))
        tool.execute("delete", id=first.id)
        (record,) = helix.storage.get_audit_log(action="memory_refinement_delete")
        assert record.actor == HumanActor(user_id=user.id)


def _guarded(helix, agent, threshold=None, session_id="guarded"):
    """A session that knows its starting core mass, as the runner opens it."""
    if threshold is not None:
        helix.storage.update_agent_config(agent.id, "refinement_threshold", threshold, None)
    mass = helix.memories.core_token_usage(agent.id)
    return helix.refinement_tool(
        helix.tool_context(agent.id), session_id=session_id, pre_session_mass=mass
    )


class TestMutationCap:
    def test_refuses_changes_after_cap(self, helix, agent, tool):
        notes = [helix.save_memory(agent.id, f"Memory {i}", "core") for i in range(12)]

        for i in range(MAX_MUTATIONS):
            assert tool.execute("update", id=notes[i].id, content=f"Updated {i}")["type"] == "updated"

        result = tool.execute("update", id=notes[10].id, content="One too many")
        assert result["error_code"] == "mutation_cap"
        assert "Hard cap" in result["error"]
        assert helix.memories.get(notes[10].id).content == "Memory 10"

    def test_cap_covers_delete_and_consolidate(self, helix, agent, tool):
        notes = [helix.save_memory(agent.id, f"Memory {i}", "core") for i in range(12)]
        for i in range(MAX_MUTATIONS):
            tool.execute("update", id=notes[i].id, content=f"Updated {i}")

        assert tool.execute("delete", id=notes[10].id)["error_code"] == "mutation_cap"
        merged = tool.execute("consolidate", ids=[notes[10].id, notes[11].id], content="both")
        assert merged["error_code"] == "mutation_cap"
        assert helix.memories.get(notes[10].id).kept

    def test_failed_calls_do_not_count(self, helix, agent, tool):
        note = helix.save_memory(agent.id, "Real memory", "core")
        for _ in range(5):
            assert tool.execute("delete", id=999999)["error_code"] == "not_found"

        assert tool.execute("update", id=note.id, content="Still allowed")["type"] == "updated"
        assert tool.mutations == 1

    def test_search_and_protect_do_not_count(self, helix, agent, tool):
        notes = [helix.save_memory(agent.id, f"Memory {i} " * 5, "core") for i in range(14)]
        for _ in range(5):
            tool.execute("search", query="Memory")
        for i in range(3):
            assert tool.execute("protect", id=notes[i].id)["type"] == "protected"

        for i in range(MAX_MUTATIONS):
            result = tool.execute("update", id=notes[i + 3].id, content=f"Updated {i}")
            assert result["type"] == "updated"

        assert tool.execute("update", id=notes[13].id, content="Over cap")["error_code"] == "mutation_cap"


class TestRetentionFloor:
    def test_breach_rolls_back_and_terminates(self, helix, agent):
        first = helix.save_memory(agent.id, "A" * 400, "core")
        second = helix.save_memory(agent.id, "B" * 400, "core")
        tool = _guarded(helix, agent, threshold=1.0)

        result = tool.execute("delete", id=first.id)

        assert result["type"] == "error"
        assert result["error_code"] == "terminated"
        assert "terminated" in result["error"]
        assert tool.terminated
        assert helix.memories.get(first.id).kept
        for action, params in (
            ("delete", {"id": second.id}),
            ("search", {"query": "anything"}),
            ("complete", {"summary": "Trying to complete"}),
        ):
            assert tool.execute(action, **params)["error_code"] == "terminated"
        assert helix.memories.get(second.id).kept
        assert not tool.completed

    def test_loss_within_threshold_completes(self, helix, agent):
        helix.save_memory(agent.id, "A" * 400, "core")
        helix.save_memory(agent.id, "B" * 400, "core")
        tiny = helix.save_memory(agent.id, "C" * 20, "core")
        tool = _guarded(helix, agent)

        assert tool.execute("delete", id=tiny.id)["type"] == "deleted"
        result = tool.execute("complete", summary="Minor cleanup")

        assert result["type"] == "refinement_complete"
        assert not helix.memories.get(tiny.id).kept

    def test_rollback_restores_updated_content(self, helix, agent):
        original = "Original content here" * 10
        note = helix.save_memory(agent.id, original, "core")
        tool = _guarded(helix, agent, threshold=1.0)

        assert tool.execute("update", id=note.id, content="X")["error_code"] == "terminated"
        assert helix.memories.get(note.id).content == original

    def test_rollback_reverses_consolidation(self, helix, agent):
        first = helix.save_memory(agent.id, "A" * 200, "core")
        second = helix.save_memory(agent.id, "B" * 200, "core")
        tool = _guarded(helix, agent, threshold=1.0)

        result = tool.execute("consolidate", ids=[first.id, second.id], content="AB")

        assert result["error_code"] == "terminated"
        assert helix.memories.get(first.id).kept
        assert helix.memories.get(second.id).kept
        (record,) = helix.storage.get_audit_log(action="memory_refinement_consolidate")
        assert not helix.memories.get(record.subject_id).kept
        assert {m.id for m in helix.memories.core(agent.id)} == {first.id, second.id}

    def test_rollback_reverses_protect(self, helix, agent):
        kept = helix.save_memory(agent.id, "A" * 200, "core")
        dropped = helix.save_memory(agent.id, "B" * 200, "core")
        tool = _guarded(helix, agent, threshold=1.0)

        assert tool.execute("protect", id=kept.id)["type"] == "protected"
        tool.execute("delete", id=dropped.id)

        assert not helix.memories.get(kept.id).constitutional
        assert helix.memories.get(dropped.id).kept

    def test_rollback_is_journaled_and_audited(self, helix, agent):
        note = helix.save_memory(agent.id, "A" * 400, "core")
        tool = _guarded(helix, agent, threshold=1.0, session_id="sid-9")

        tool.execute("delete", id=note.id)

        (record,) = helix.storage.get_audit_log(action="memory_refinement_rollback")
        assert record.data["threshold"] == 1.0
        assert record.data["pre_session_mass"] == 100
        assert record.data["post_session_mass"] == 0
        assert record.data["reverted"]["deletion"] == 1
        assert record.data["session_id"] == "sid-9"

        (journal,) = helix.search_memories(agent.id, "rolled back")
        assert journal.memory_type == "journal"
        assert "100" in journal.content
        assert "1 deletion" in journal.content
        assert "retention threshold" in journal.content
        assert helix.get_agent(agent.id).last_refinement_at is not None

    def test_complete_catches_mass_lost_elsewhere(self, helix, agent):
        helix.save_memory(agent.id, "A" * 400, "core")
        target = helix.save_memory(agent.id, "B" * 400, "core")
        tool = _guarded(helix, agent, threshold=0.99)

        # Discarded outside the tool, so no per-mutation check sees it
        helix.memories.discard(agent.id, target.id)
        result = tool.execute("complete", summary="External deletion happened")

        assert result["type"] == "refinement_rolled_back"
        assert "retention threshold" in result["reason"]
        assert not tool.completed
        assert tool.execute("search", query="A")["error_code"] == "terminated"
        assert helix.storage.get_audit_log(action="memory_refinement_complete") == []

    def test_no_floor_without_pre_session_mass(self, helix, agent, tool):
        note = helix.save_memory(agent.id, "A" * 400, "core")
        helix.storage.update_agent_config(agent.id, "refinement_threshold", 1.0, None)

        assert tool.execute("delete", id=note.id)["type"] == "deleted"
        assert tool.execute("complete", summary="No floor")["type"] == "refinement_complete"

    def test_session_id_on_audit_records(self, helix, agent):
        note = helix.save_memory(agent.id, "Test", "core")
        tool = helix.refinement_tool(
            helix.tool_context(agent.id), session_id="sid-123", pre_session_mass=1000
        )
        helix.storage.update_agent_config(agent.id, "refinement_threshold", 0.0, None)

        tool.execute("update", id=note.id, content="Updated")

        (record,) = helix.storage.get_audit_log(action="memory_refinement_update")
        assert record.data["session_id"] == "sid-123"
