"""Tests for journal decay: the expiry boundary and the cosmetic fade."""

from datetime import datetime, timedelta, timezone

from helixmem import decay
from helixmem.types import DEFAULT_JOURNAL_WINDOW, Memory, MemoryType

NOW = datetime(2026, 3, 2, 12, 0, tzinfo=timezone.utc)


def _memory(age: timedelta, memory_type=MemoryType.JOURNAL.value) -> Memory:
    return Memory(id=1, agent_id=1, content="x", memory_type=memory_type, created_at=NOW - age)


class TestExpiry:
    def test_exactly_at_window_is_not_expired(self):
        assert not decay.is_expired(_memory(DEFAULT_JOURNAL_WINDOW), NOW)

    def test_one_microsecond_past_window_is_expired(self):
        memory = _memory(DEFAULT_JOURNAL_WINDOW + timedelta(microseconds=1))
        assert decay.is_expired(memory, NOW)

    def test_core_never_expires(self):
        memory = _memory(timedelta(days=400), MemoryType.CORE.value)
        assert not decay.is_expired(memory, NOW)

    def test_custom_window(self):
        memory = _memory(timedelta(days=2))
        assert decay.is_expired(memory, NOW, timedelta(days=1))
        assert not decay.is_expired(memory, NOW, timedelta(days=3))

    def test_cutoff(self):
        assert decay.expiry_cutoff(NOW) == NOW - timedelta(days=7)


class TestAge:
    def test_whole_days(self):
        assert decay.age_in_days(_memory(timedelta(days=3, hours=23)), NOW) == 3

    def test_future_memory_is_zero_days_old(self):
        assert decay.age_in_days(_memory(-timedelta(hours=5)), NOW) == 0


class TestOpacity:
    def test_fresh_journal_is_opaque(self):
        assert decay.journal_opacity(_memory(timedelta(0)), NOW) == 1.0

    def test_fades_to_minimum_at_window(self):
        assert decay.journal_opacity(_memory(DEFAULT_JOURNAL_WINDOW), NOW) == decay.MIN_OPACITY

    def test_never_below_minimum(self):
        assert decay.journal_opacity(_memory(timedelta(days=30)), NOW) == decay.MIN_OPACITY

    def test_halfway(self):
        opacity = decay.journal_opacity(_memory(DEFAULT_JOURNAL_WINDOW / 2), NOW)
        assert opacity == 0.6

    def test_core_is_always_opaque(self):
        memory = _memory(timedelta(days=30), MemoryType.CORE.value)
        assert decay.journal_opacity(memory, NOW) == 1.0
