"""Tests for koro.memory.store — core files, daily logs and periodic summaries."""

from __future__ import annotations

from datetime import date
from pathlib import Path

import pytest

from koro.errors import MemoryStoreError
from koro.memory import MemoryStore
from koro.memory.store import (
    LAYOUT_DIRS,
    current_month_id,
    current_week_id,
    validate_date,
    validate_month_id,
    validate_week_id,
)


class TestInitialize:
    def test_creates_layout_and_seeds_core(self, tmp_path: Path) -> None:
        store = MemoryStore(tmp_path / "mem")
        created = store.initialize("Juno")
        for sub in LAYOUT_DIRS:
            assert (tmp_path / "mem" / sub).is_dir()
        identity = store.read_core("identity.md")
        assert "I am Juno" in identity
        assert created

    def test_is_idempotent_and_never_overwrites(self, tmp_path: Path) -> None:
        store = MemoryStore(tmp_path / "mem")
        store.initialize()
        store.write_core("user.md", "custom")
        assert store.initialize() == []
        assert store.read_core("user.md") == "custom"


class TestCoreFiles:
    def test_unknown_core_file_rejected(self, memory: MemoryStore) -> None:
        with pytest.raises(MemoryStoreError, match="Invalid core memory file: ../secret"):
            memory.read_core("../secret")

    def test_identity_is_read_only(self, memory: MemoryStore) -> None:
        with pytest.raises(MemoryStoreError, match="Cannot write to core memory file: identity.md"):
            memory.write_core("identity.md", "hijacked")

    def test_write_then_read(self, memory: MemoryStore) -> None:
        memory.write_core("state.md", "# State\nPlanning a trip.\n")
        assert memory.read_core("state.md") == "# State\nPlanning a trip.\n"

    def test_read_core_or_empty(self, tmp_path: Path) -> None:
        assert MemoryStore(tmp_path / "none").read_core_or_empty("user.md") == ""


class TestDailyLogs:
    def test_append_creates_header_once(self, memory: MemoryStore, base_dir: Path) -> None:
        memory.append_log("bought milk", today="2026-01-05")
        memory.append_log("called mom", today="2026-01-05")
        content = (base_dir / "logs" / "daily" / "2026-01-05.md").read_text(encoding="utf-8")
        assert content == "# 2026-01-05\n\n- bought milk\n- called mom\n"

    def test_multiline_entry_collapses_to_one_line(self, memory: MemoryStore) -> None:
        memory.append_log("first\nsecond", today="2026-01-05")
        assert memory.read_daily_log("2026-01-05").endswith("- first second\n")

    def test_read_missing_log(self, memory: MemoryStore) -> None:
        assert memory.read_daily_log("2026-01-06") is None

    def test_search_is_case_insensitive_and_date_ordered(self, memory: MemoryStore) -> None:
        memory.append_log("Dentist at 3pm", today="2026-01-07")
        memory.append_log("booked the dentist", today="2026-01-05")
        memory.append_log("groceries", today="2026-01-06")

        assert memory.search_logs("DENTIST") == [
            "[2026-01-05] - booked the dentist",
            "[2026-01-07] - Dentist at 3pm",
        ]
        assert memory.search_logs("nothing-matches") == []

    def test_search_without_logs_dir(self, tmp_path: Path) -> None:
        assert MemoryStore(tmp_path / "none").search_logs("x") == []

    @pytest.mark.parametrize("bad", ["2026-13-01", "2026-01-32", "../../etc/passwd", "20260105", ""])
    def test_invalid_dates_rejected(self, memory: MemoryStore, bad: str) -> None:
        with pytest.raises(MemoryStoreError):
            memory.read_daily_log(bad)


class TestPeriodicSummaries:
    def test_write_and_read(self, memory: MemoryStore, base_dir: Path) -> None:
        memory.write_periodic_summary("weekly", "2026-W08", "A quiet week.")
        memory.write_periodic_summary("monthly", "2026-02", "February.")
        assert memory.read_periodic_summary("weekly", "2026-W08") == "A quiet week."
        assert (base_dir / "logs" / "monthly" / "2026-02.md").read_text(encoding="utf-8") == "February."

    def test_missing_summary_is_none(self, memory: MemoryStore) -> None:
        assert memory.read_periodic_summary("monthly", "2020-01") is None

    def test_unknown_kind(self, memory: MemoryStore) -> None:
        with pytest.raises(MemoryStoreError, match="Invalid summary period"):
            memory.write_periodic_summary("daily", "2026-02-01", "x")

    def test_ids_validated(self, memory: MemoryStore) -> None:
        with pytest.raises(MemoryStoreError):
            memory.write_periodic_summary("weekly", "2026-W54", "x")
        with pytest.raises(MemoryStoreError):
            memory.write_periodic_summary("monthly", "2026-00", "x")
        with pytest.raises(MemoryStoreError):
            memory.write_periodic_summary("weekly", "../2026-W01", "x")


class TestIdentifiers:
    def test_validators_accept_good_values(self) -> None:
        assert validate_date("2026-02-28") == "2026-02-28"
        assert validate_week_id("2026-W01") == "2026-W01"
        assert validate_week_id("2026-W53") == "2026-W53"
        assert validate_month_id("2026-12") == "2026-12"

    def test_current_period_ids(self) -> None:
        assert current_week_id(date(2026, 1, 1)) == "2026-W01"
        assert current_week_id(date(2026, 2, 18)) == "2026-W08"
        assert current_month_id(date(2026, 2, 18)) == "2026-02"
