"""Tests for SQLiteStorage: schema, records, consolidation claims and audit."""

import sqlite3
import uuid
from concurrent.futures import ThreadPoolExecutor

import pytest

from helixmem.protocols import NotFoundError, ValidationError
from helixmem.storage import ALLOWED_TABLES, SCHEMA_VERSION, validate_table_name
from helixmem.types import AgentActor, HumanActor


@pytest.fixture
def seeded(storage):
    account = storage.create_account("Acme")
    agent = storage.create_agent(account.id, "Ada")
    chat = storage.create_chat(account.id, "Planning", True, [agent.id])
    return account, agent, chat


class TestSchema:
    def test_tables_created(self, storage):
        conn = sqlite3.connect(storage.db_path)
        try:
            names = {r[0] for r in conn.execute("SELECT name FROM sqlite_master WHERE type='table'")}
        finally:
            conn.close()
        assert set(ALLOWED_TABLES) <= names

    def test_schema_version_recorded(self, storage):
        conn = sqlite3.connect(storage.db_path)
        try:
            version = conn.execute("SELECT MAX(version) FROM schema_version").fetchone()[0]
        finally:
            conn.close()
        assert version == SCHEMA_VERSION

    def test_reopen_is_idempotent(self, storage):
        from helixmem.storage import SQLiteStorage

        account = storage.create_account("Acme")
        reopened = SQLiteStorage(storage.db_path)
        assert reopened.get_agent(1) is None
        assert reopened.create_account("Other").id == account.id + 1

    def test_validate_table_name(self):
        assert validate_table_name("memories") == "memories"
        with pytest.raises(ValueError):
            validate_table_name("memories; DROP TABLE agents")


class TestAgents:
    def test_create_and_get(self, storage, seeded):
        account, agent, _ = seeded
        fetched = storage.get_agent(agent.id)
        assert fetched.name == "Ada"
        assert fetched.account_id == account.id
        assert fetched.active
        assert fetched.refinement_threshold is None

    def test_duplicate_name_in_account(self, storage, seeded):
        account, _, _ = seeded
        with pytest.raises(ValidationError) as exc:
            storage.create_agent(account.id, "Ada")
        assert exc.value.code == "taken"

    def test_same_name_in_other_account(self, storage, seeded):
        other = storage.create_account("Other")
        assert storage.create_agent(other.id, "Ada").name == "Ada"

    def test_require_agent(self, storage):
        with pytest.raises(NotFoundError):
            storage.require_agent(404)

    def test_update_config_audited(self, storage, seeded):
        _, agent, _ = seeded
        before, updated = storage.update_agent_config(
            agent.id, "system_prompt", "Be brief.", AgentActor(agent_id=agent.id)
        )
        assert before is None
        assert updated.system_prompt == "Be brief."
        (record,) = storage.get_audit_log(agent_id=agent.id, action="agent_config_update")
        assert record.data == {"field": "system_prompt", "before": None, "after": "Be brief."}
        assert record.actor.kind == "agent"

    def test_rename_onto_existing_name(self, storage, seeded):
        account, agent, _ = seeded
        storage.create_agent(account.id, "Bea")
        with pytest.raises(ValidationError):
            storage.update_agent_config(agent.id, "name", "Bea", None)

    def test_inactive_agents_excluded_from_participants(self, storage, seeded):
        _, agent, chat = seeded
        storage.set_agent_active(agent.id, False)
        assert storage.participant_ids(chat.id) == []
        assert storage.list_agents() == []
        assert [a.id for a in storage.list_agents(active_only=False)] == [agent.id]


class TestMessages:
    def test_ids_are_watermarks(self, storage, seeded):
        _, agent, chat = seeded
        first = storage.append_message(chat.id, "hello there", "Sam")
        second = storage.append_message(chat.id, "hi!", "Ada", agent_id=agent.id)
        assert second.id > first.id
        assert [m.id for m in storage.messages_after(chat.id, first.id)] == [second.id]
        assert [m.id for m in storage.messages_after(chat.id, None, up_to_id=first.id)] == [first.id]

    def test_pending_stats(self, storage, seeded):
        _, _, chat = seeded
        storage.append_message(chat.id, "a" * 40, "Sam")
        last = storage.append_message(chat.id, "b" * 80, "Sam")
        count, tokens, oldest, newest = storage.pending_message_stats(chat.id, None)
        assert (count, tokens, newest) == (2, 30, last.id)
        assert oldest is not None
        assert storage.pending_message_stats(chat.id, last.id)[0] == 0


class TestConsolidationClaims:
    def test_claim_once(self, storage, seeded):
        _, agent, chat = seeded
        assert storage.claim_consolidation(chat.id, agent.id, "t1")
        assert not storage.claim_consolidation(chat.id, agent.id, "t2")
        assert storage.get_consolidation_state(chat.id, agent.id).claim_token == "t1"

    def test_concurrent_claims_have_one_winner(self, storage, seeded):
        _, agent, chat = seeded
        tokens = [uuid.uuid4().hex for _ in range(16)]

        def attempt(token):
            return storage.claim_consolidation(chat.id, agent.id, token)

        with ThreadPoolExecutor(max_workers=8) as pool:
            results = list(pool.map(attempt, tokens))

        assert results.count(True) == 1
        winner = tokens[results.index(True)]
        assert storage.get_consolidation_state(chat.id, agent.id).claim_token == winner

    def test_state_machine(self, storage, seeded):
        _, agent, chat = seeded
        message = storage.append_message(chat.id, "hi", "Sam")
        assert storage.claim_consolidation(chat.id, agent.id, "tok")
        assert not storage.start_consolidation(chat.id, agent.id, "other")
        assert storage.start_consolidation(chat.id, agent.id, "tok")
        assert storage.get_consolidation_state(chat.id, agent.id).status == "running"
        assert storage.complete_consolidation(chat.id, agent.id, "tok", message.id)

        state = storage.get_consolidation_state(chat.id, agent.id)
        assert state.status == "idle"
        assert state.claim_token is None
        assert state.last_consolidated_message_id == message.id
        assert state.last_consolidated_at is not None

    def test_failure_keeps_watermark(self, storage, seeded):
        _, agent, chat = seeded
        first = storage.append_message(chat.id, "one", "Sam")
        storage.claim_consolidation(chat.id, agent.id, "a")
        storage.start_consolidation(chat.id, agent.id, "a")
        storage.complete_consolidation(chat.id, agent.id, "a", first.id)

        storage.append_message(chat.id, "two", "Sam")
        storage.claim_consolidation(chat.id, agent.id, "b")
        storage.start_consolidation(chat.id, agent.id, "b")
        assert storage.fail_consolidation(chat.id, agent.id, "b", "model down")

        state = storage.get_consolidation_state(chat.id, agent.id)
        assert state.status == "idle"
        assert state.last_error == "model down"
        assert state.last_consolidated_message_id == first.id

    def test_stale_claim_can_be_taken_over(self, storage, seeded):
        _, agent, chat = seeded
        storage.claim_consolidation(chat.id, agent.id, "stuck")
        assert not storage.claim_consolidation(chat.id, agent.id, "new", stale_before="2000-01-01")
        assert storage.claim_consolidation(chat.id, agent.id, "new", stale_before="9999-01-01")
        assert not storage.start_consolidation(chat.id, agent.id, "stuck")


class TestAudit:
    def test_log_and_read(self, storage, seeded):
        account, _, _ = seeded
        user = storage.create_user(account.id, "Sam")
        storage.log_audit("custom_event", HumanActor(user_id=user.id), account_id=account.id, data={"k": 1})
        (record,) = storage.get_audit_log(action="custom_event")
        assert record.actor == HumanActor(user_id=user.id)
        assert record.account_id == account.id
        assert record.data == {"k": 1}
