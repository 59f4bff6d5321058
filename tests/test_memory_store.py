"""Tests for MemoryStore: validation, decay, soft delete and the constitutional guard."""

from datetime import timedelta
from unittest.mock import patch

import pytest

from helixmem.protocols import NotFoundError, ProtectedMemoryError, ValidationError
from helixmem.storage import memory_crud
from helixmem.types import MAX_MEMORY_LENGTH, MemoryType, SystemActor


class TestCreate:
    def test_journal_default(self, helix, agent):
        memory = helix.save_memory(agent.id, "  Sam prefers morning standups  ")
        assert memory.memory_type == "journal"
        assert memory.content == "Sam prefers morning standups"
        assert memory.kept
        assert not memory.constitutional
        assert memory.created_at == helix.now()

    def test_core(self, helix, agent):
        memory = helix.save_memory(agent.id, "I value candor", MemoryType.CORE)
        assert memory.is_core

    def test_blank_content_rejected(self, helix, agent):
        with pytest.raises(ValidationError) as exc:
            helix.save_memory(agent.id, "   ")
        assert exc.value.code == "blank"

    def test_none_content_rejected(self, helix, agent):
        with pytest.raises(ValidationError):
            helix.memories.create(agent.id, None)

    def test_too_long_rejected(self, helix, agent):
        with pytest.raises(ValidationError) as exc:
            helix.save_memory(agent.id, "x" * (MAX_MEMORY_LENGTH + 1))
        assert exc.value.code == "too_long"

    def test_max_length_accepted(self, helix, agent):
        memory = helix.save_memory(agent.id, "x" * MAX_MEMORY_LENGTH)
        assert len(memory.content) == MAX_MEMORY_LENGTH

    def test_invalid_type(self, helix, agent):
        with pytest.raises(ValidationError) as exc:
            helix.save_memory(agent.id, "hello", "episodic")
        assert exc.value.code == "invalid_type"
        assert exc.value.allowed == ["core", "journal"]

    def test_unknown_agent(self, helix):
        with pytest.raises(NotFoundError):
            helix.save_memory(999, "hello")

    def test_control_characters_stripped(self, helix, agent):
        memory = helix.save_memory(agent.id, "line\x00one\nline two")
        assert memory.content == "lineone\nline two"

    @pytest.mark.parametrize("content", ["\x01\x02\x03", " \x00\x7f\t"])
    def test_control_only_content_is_blank(self, helix, agent, content):
        with pytest.raises(ValidationError) as exc:
            helix.save_memory(agent.id, content, "core")
        assert exc.value.code == "blank"
        assert helix.memories.list(agent.id) == []


class TestDecay:
    def test_journal_expires_after_window(self, helix, agent, clock):
        memory = helix.save_memory(agent.id, "short-lived")
        clock.advance(days=7)
        assert not helix.memories.is_expired(memory)
        assert [m.id for m in helix.memories.active(agent.id)] == [memory.id]

        clock.advance(microseconds=1)
        assert helix.memories.is_expired(memory)
        assert helix.memories.active(agent.id) == []

    def test_expired_journal_still_listed_and_searchable(self, helix, agent, clock):
        memory = helix.save_memory(agent.id, "old observation")
        clock.advance(days=30)
        assert [m.id for m in helix.memories.list(agent.id)] == [memory.id]
        assert [m.id for m in helix.search_memories(agent.id, "observation")] == [memory.id]

    def test_core_survives_window(self, helix, agent, clock):
        core = helix.save_memory(agent.id, "permanent", MemoryType.CORE)
        clock.advance(days=365)
        assert [m.id for m in helix.memories.active(agent.id)] == [core.id]

    def test_active_journal_excludes_core(self, helix, agent):
        helix.save_memory(agent.id, "core", MemoryType.CORE)
        journal = helix.save_memory(agent.id, "journal")
        assert [m.id for m in helix.memories.active_journal(agent.id)] == [journal.id]

    def test_opacity_fades(self, helix, agent, clock):
        memory = helix.save_memory(agent.id, "fading")
        clock.advance(days=7)
        assert helix.memories.opacity(memory) == pytest.approx(0.2)
        assert helix.memories.age_in_days(memory) == 7


class TestLifecycle:
    def test_discard_and_restore(self, helix, agent):
        memory = helix.save_memory(agent.id, "to discard")
        discarded = helix.memories.discard(agent.id, memory.id)
        assert not discarded.kept
        assert helix.memories.list(agent.id) == []
        assert [m.id for m in helix.memories.list(agent.id, discarded=True)] == [memory.id]

        restored = helix.memories.restore(agent.id, memory.id)
        assert restored.kept
        assert [m.id for m in helix.memories.list(agent.id)] == [memory.id]

    def test_discard_twice_is_not_found(self, helix, agent):
        memory = helix.save_memory(agent.id, "once")
        helix.memories.discard(agent.id, memory.id)
        with pytest.raises(NotFoundError):
            helix.memories.discard(agent.id, memory.id)

    def test_discard_foreign_memory_is_not_found(self, helix, account, agent):
        other = helix.create_agent(account.id, "Bea")
        memory = helix.save_memory(other.id, "Bea's secret")
        with pytest.raises(NotFoundError):
            helix.memories.discard(agent.id, memory.id)
        assert helix.memories.get(memory.id).kept

    def test_constitutional_cannot_be_discarded(self, helix, agent):
        memory = helix.save_memory(agent.id, "I never lie", MemoryType.CORE, constitutional=True)
        with pytest.raises(ProtectedMemoryError) as exc:
            helix.memories.discard(agent.id, memory.id, SystemActor())
        assert exc.value.memory_ids == [memory.id]
        assert helix.memories.get(memory.id).kept

    def test_protect_is_idempotent(self, helix, agent):
        memory = helix.save_memory(agent.id, "keep me", MemoryType.CORE)
        assert helix.memories.protect(agent.id, memory.id).constitutional
        assert helix.memories.protect(agent.id, memory.id).constitutional
        audits = helix.storage.get_audit_log(agent_id=agent.id, action="memory_protect")
        assert len(audits) == 1

    def test_protected_memory_then_discard_fails(self, helix, agent):
        memory = helix.save_memory(agent.id, "now protected")
        helix.memories.protect(agent.id, memory.id)
        with pytest.raises(ProtectedMemoryError):
            helix.memories.discard(agent.id, memory.id)

    def test_discard_loses_race_to_protect(self, helix, agent):
        memory = helix.save_memory(agent.id, "contested", MemoryType.CORE)
        real = memory_crud.mark_discarded

        def protect_first(conn, ids, now):
            conn.execute("UPDATE memories SET constitutional = 1 WHERE id = ?", (memory.id,))
            return real(conn, ids, now)

        with patch.object(memory_crud, "mark_discarded", side_effect=protect_first):
            with pytest.raises(ProtectedMemoryError) as exc:
                helix.memories.discard(agent.id, memory.id)

        assert exc.value.memory_ids == [memory.id]
        assert helix.memories.get(memory.id).kept
        assert helix.storage.get_audit_log(action="memory_discard") == []

    def test_update_loses_race_to_discard(self, helix, agent):
        memory = helix.save_memory(agent.id, "old wording", MemoryType.CORE)
        real = memory_crud.update_content

        def discard_first(conn, memory_id, content):
            memory_crud.mark_discarded(conn, [memory_id], "2026-03-02T12:00:00+00:00")
            return real(conn, memory_id, content)

        with patch.object(memory_crud, "update_content", side_effect=discard_first):
            with pytest.raises(NotFoundError):
                helix.storage.memory_ops.update(agent.id, memory.id, "new wording", None)

        stored = helix.memories.get(memory.id)
        assert stored.kept
        assert stored.content == "old wording"
        assert helix.storage.get_audit_log(action="memory_update") == []

    def test_get_missing(self, helix):
        with pytest.raises(NotFoundError, match="#42"):
            helix.memories.get(42)


class TestContext:
    def test_empty_context(self, helix, agent):
        assert helix.memory_context(agent.id) == ""

    def test_context_sections(self, helix, agent, clock):
        helix.save_memory(agent.id, "I value candor", MemoryType.CORE)
        helix.save_memory(agent.id, "Sam is on holiday next week")
        context = helix.memory_context(agent.id)
        assert "## Your Private Memory" in context
        assert "### Core Memories\n- I value candor" in context
        assert f"- [{clock().date().isoformat()}] Sam is on holiday next week" in context

    def test_expired_journal_not_in_context(self, helix, agent, clock):
        helix.save_memory(agent.id, "stale news")
        clock.advance(days=8)
        assert "stale news" not in helix.memory_context(agent.id)

    def test_core_token_usage(self, helix, agent):
        helix.save_memory(agent.id, "a" * 400, MemoryType.CORE)
        helix.save_memory(agent.id, "b" * 400)
        assert helix.memories.core_token_usage(agent.id) == 100


class TestWindowSetting:
    def test_custom_journal_window(self, tmp_path, clock, safety):
        from helixmem.config import Settings
        from helixmem.core import Helix
        from helixmem.triggers import InlineJobQueue

        settings = Settings(data_dir=tmp_path / "home", journal_window_days=1)
        helix = Helix(
            tmp_path / "short.db",
            settings=settings,
            job_queue=InlineJobQueue(),
            safety=safety,
            clock=clock,
        )
        try:
            account = helix.create_account("Acme")
            agent = helix.create_agent(account.id, "Ada")
            helix.save_memory(agent.id, "brief")
            assert helix.memories.journal_window == timedelta(days=1)
            clock.advance(days=1, seconds=1)
            assert helix.memories.active(agent.id) == []
        finally:
            helix.close()
