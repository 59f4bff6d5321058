"""Tests for consent-gated refinement sessions."""

import json

import pytest

from conftest import mock_inference, response, tool_call

from helixmem.protocols import GenerationError
from helixmem.refinement import format_memory_ledger, format_status


@pytest.fixture
def runner(helix):
    helix.refinement.core_token_budget = 100
    return helix.refinement


@pytest.fixture
def big_core(helix, agent):
    # 4 x 25 tokens = 100 tokens, exactly the budget
    return [helix.save_memory(agent.id, f"{i}" * 100, "core") for i in range(4)]


class TestFormatting:
    def test_status_within_budget(self):
        assert format_status(2, 40, 100).endswith("- Within budget")

    def test_status_over_budget(self):
        assert "Over budget by: 20 tokens" in format_status(3, 120, 100)

    def test_ledger_flags_constitutional(self, helix, agent):
        memory = helix.save_memory(agent.id, "I value honesty", "core")
        helix.memories.protect(agent.id, memory.id)
        line = format_memory_ledger(helix.memories.core(agent.id))
        assert line == f"- #{memory.id} (2026-03-02, ~3 tokens) [CONSTITUTIONAL]: I value honesty"


class TestNeedsRefinement:
    def test_no_core_memories(self, runner, agent):
        assert not runner.needs_refinement(agent)

    def test_never_refined(self, helix, runner, agent):
        helix.save_memory(agent.id, "Core memory", "core")
        assert runner.needs_refinement(agent)

    def test_journal_does_not_count(self, helix, runner, agent):
        helix.save_memory(agent.id, "x" * 1000)
        assert not runner.needs_refinement(agent)

    def test_waits_out_the_interval(self, helix, runner, agent, clock):
        helix.save_memory(agent.id, "Core memory", "core")
        helix.storage.memory_ops.complete_refinement(agent.id, "done", None)

        clock.advance(days=1)
        assert not runner.needs_refinement(helix.get_agent(agent.id))

        clock.advance(days=6)
        assert runner.needs_refinement(helix.get_agent(agent.id))

    def test_recent_refinement_without_core(self, helix, runner, agent, clock):
        helix.storage.memory_ops.complete_refinement(agent.id, "done", None)
        clock.advance(days=30)
        assert not runner.needs_refinement(helix.get_agent(agent.id))


class TestRefineAgent:
    def test_skipped_without_core(self, helix, runner, agent):
        helix.set_inference(mock_inference())
        assert runner.refine_agent(agent.id).status == "skipped"

    def test_declined(self, helix, runner, agent, big_core):
        inference = mock_inference("NO - my memories are fine.")
        helix.set_inference(inference)

        outcome = runner.refine_agent(agent.id)

        assert outcome.status == "declined"
        inference.converse.assert_not_called()
        prompt = inference.infer.call_args[0][0]
        assert "# Memory Refinement Request" in prompt
        assert "Over budget" not in prompt
        assert inference.infer.call_args[1]["system"] == agent.system_prompt

    def test_yes_must_lead(self, helix, runner, agent, big_core):
        helix.set_inference(mock_inference("I would say yes, maybe"))
        assert runner.refine_agent(agent.id).status == "declined"

    def test_completed_session(self, helix, runner, agent, big_core):
        first, second = big_core[0], big_core[1]
        inference = mock_inference(
            "yes, let's tidy up",
            converse=[
                response(
                    "Merging the first two.",
                    tool_call(
                        "c1", action="consolidate", ids=[first.id, second.id], content="01" * 100
                    ),
                ),
                response("", tool_call("c2", action="complete", summary="Merged two entries.")),
            ],
        )
        helix.set_inference(inference)

        outcome = runner.refine_agent(agent.id)

        assert outcome.status == "completed"
        assert outcome.turns == 2
        assert outcome.stats["consolidated"] == 2
        assert helix.get_agent(agent.id).last_refinement_at is not None

        # Tool results are fed back with their call ids
        messages = inference.converse.call_args_list[1][0][0]
        assert messages[0].role == "user"
        assert "## Your Core Memory Ledger" in messages[0].content
        assert messages[1].role == "assistant"
        assert messages[2].role == "tool"
        assert messages[2].tool_call_id == "c1"
        assert json.loads(messages[2].content)["type"] == "consolidated"

        records = helix.storage.get_audit_log(agent_id=agent.id)
        session_ids = {r.data.get("session_id") for r in records if r.action.startswith("memory_refinement")}
        assert session_ids == {outcome.session_id}

    def test_heavy_loss_is_rolled_back(self, helix, runner, agent, big_core):
        inference = mock_inference(
            "YES",
            converse=[
                response("", tool_call("c1", action="delete", id=big_core[0].id)),
                response("", tool_call("c2", action="complete", summary="never reached")),
            ],
        )
        helix.set_inference(inference)

        outcome = runner.refine_agent(agent.id)

        # Losing 25 of 100 tokens breaks the 90% retention floor
        assert outcome.status == "rolled_back"
        assert inference.converse.call_count == 1
        assert helix.memories.get(big_core[0].id).kept
        assert helix.storage.get_audit_log(action="memory_refinement_rollback")
        assert helix.storage.get_audit_log(action="memory_refinement_complete") == []

    def test_stops_when_model_stops_calling_tools(self, helix, runner, agent, big_core):
        helix.set_inference(mock_inference("YES", converse=[response("Nothing to change.")]))
        outcome = runner.refine_agent(agent.id)
        assert outcome.status == "incomplete"
        assert outcome.turns == 1

    def test_turn_limit(self, helix, runner, agent, big_core):
        runner.max_turns = 3
        calls = [response("", tool_call(f"c{i}", action="search", query="1")) for i in range(5)]
        inference = mock_inference("YES", converse=calls)
        helix.set_inference(inference)
        outcome = runner.refine_agent(agent.id)
        assert outcome.status == "incomplete"
        assert inference.converse.call_count == 3

    def test_unknown_tool_name_reported_back(self, helix, runner, agent, big_core):
        bad = {"id": "x1", "name": "delete_everything", "input": {}}
        inference = mock_inference(
            "YES",
            converse=[
                response("", bad),
                response("", tool_call("c2", action="complete", summary="done")),
            ],
        )
        helix.set_inference(inference)
        assert runner.refine_agent(agent.id).status == "completed"
        tool_message = inference.converse.call_args_list[1][0][0][2]
        assert json.loads(tool_message.content)["error_code"] == "unknown_tool"

    def test_protected_memory_survives_session(self, helix, runner, agent, big_core):
        helix.memories.protect(agent.id, big_core[0].id)
        inference = mock_inference(
            "YES",
            converse=[
                response("", tool_call("c1", action="delete", id=big_core[0].id)),
                response("", tool_call("c2", action="complete", summary="tried")),
            ],
        )
        helix.set_inference(inference)
        runner.refine_agent(agent.id)
        assert helix.memories.get(big_core[0].id).kept

    def test_custom_refinement_prompt(self, helix, runner, agent, big_core):
        helix.storage.update_agent_config(agent.id, "refinement_prompt", "Only merge exact twins.", None)
        inference = mock_inference("YES", converse=[response("done")])
        helix.set_inference(inference)
        runner.refine_agent(agent.id)
        assert "Only merge exact twins." in inference.converse.call_args[0][0][0].content

    def test_no_model(self, runner, agent, big_core):
        with pytest.raises(GenerationError):
            runner.refine_agent(agent.id)


class TestSweep:
    def test_only_due_agents(self, helix, runner, account, agent, big_core):
        helix.create_agent(account.id, "Bea")
        recent = helix.create_agent(account.id, "Cy")
        helix.save_memory(recent.id, "Cy keeps notes", "core")
        helix.storage.memory_ops.complete_refinement(recent.id, "done", None)
        helix.set_inference(mock_inference("NO"))
        outcomes = helix.refine_all()
        assert [(o.agent_id, o.status) for o in outcomes] == [(agent.id, "declined")]

    def test_failure_is_isolated(self, helix, runner, account, agent, big_core):
        other = helix.create_agent(account.id, "Bea")
        helix.save_memory(other.id, "y" * 400, "core")
        inference = mock_inference("NO")
        inference.infer.side_effect = [GenerationError("boom", error_class="server"), "NO"]
        helix.set_inference(inference)

        outcomes = helix.refine_all()

        assert [(o.agent_id, o.status) for o in outcomes] == [
            (agent.id, "failed"),
            (other.id, "declined"),
        ]
        assert outcomes[0].error == "boom"
