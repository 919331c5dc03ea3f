"""
test_workspace_store.py - Workspace persistence and history tests.

Usage: python test_workspace_store.py
       python -m pytest test_workspace_store.py
"""

from __future__ import annotations

import json
import os
import sys
from datetime import datetime, timezone

sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

import pytest

from links import ManualLinkMap
from main import run_reconciliation
from models import MatchSettings, ReconStatus
from workspace_store import ReconRecord, WorkspaceState, WorkspaceStore

NOW = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


def test_missing_file_returns_default(tmp_path) -> None:
    store = WorkspaceStore(str(tmp_path / "workspace.json"))
    state = store.load_workspace()
    assert state.workspace_id == "default"
    assert state.manual_links == {}
    assert state.settings == MatchSettings()
    assert state.history == []


def test_save_and_load_round_trip(tmp_path) -> None:
    store = WorkspaceStore(str(tmp_path / "nested" / "workspace.json"))
    state = WorkspaceState(
        restaurant_name="Main Street",
        company_raw="100\t2024/01/01\tINV1",
        restaurant_raw="100\t2024/01/01\tINV1",
        manual_links={"C-0": "R-0"},
        settings=MatchSettings(match_by_ref=False, strict_date=True),
    )
    saved = store.save_workspace(state)
    assert saved.updated_at is not None

    loaded = store.load_workspace()
    assert loaded.restaurant_name == "Main Street"
    assert loaded.manual_links == {"C-0": "R-0"}
    assert loaded.settings.strict_date is True
    assert loaded.settings.match_by_ref is False
    assert not list(store.path.parent.glob("workspace-*.tmp"))


def test_save_accepts_dict_and_normalizes_links(tmp_path) -> None:
    store = WorkspaceStore(str(tmp_path / "workspace.json"))
    saved = store.save_workspace(
        {
            "workspace_id": "",
            "company_raw": None,
            "manual_links": {"C-0": "R-1", "": "R-2", "C-4": "R-1"},
            "history": [{"id": "1", "status": "bogus"}, "junk"],
        }
    )
    assert saved.workspace_id == "default"
    assert saved.company_raw == ""
    assert saved.manual_links == {"C-4": "R-1"}
    assert len(saved.history) == 1
    assert saved.history[0].status is ReconStatus.DRAFT


def test_corrupt_file_falls_back_to_default(tmp_path) -> None:
    path = tmp_path / "workspace.json"
    path.write_text("{not json", encoding="utf-8")
    state = WorkspaceStore(str(path)).load_workspace()
    assert state == WorkspaceStore.default_workspace()


def test_env_var_sets_path(tmp_path, monkeypatch) -> None:
    target = tmp_path / "from_env.json"
    monkeypatch.setenv("RECON_WORKSPACE_FILE", str(target))
    assert WorkspaceStore().path == target.resolve()


def test_reset_workspace_removes_file(tmp_path) -> None:
    store = WorkspaceStore(str(tmp_path / "workspace.json"))
    store.save_workspace(WorkspaceState(company_raw="x"))
    assert store.path.exists()
    store.reset_workspace()
    assert not store.path.exists()
    store.reset_workspace()


def test_analysis_history_lifecycle() -> None:
    state = WorkspaceState(
        restaurant_name="Main Street",
        company_raw="100\t2024/01/01\tINV1",
        restaurant_raw="90\t2024/01/01\tINV1",
    )
    record = state.start_analysis(NOW)
    assert record.id == str(int(NOW.timestamp() * 1000))
    assert record.status is ReconStatus.DRAFT
    assert record.date == "2024-05-01"
    assert state.history == [record]

    result = run_reconciliation(state.company_raw, state.restaurant_raw, state.links(), state.settings)
    updated = state.record_result(result)
    assert updated is record
    assert record.calculated_variance == pytest.approx(10.0)
    assert record.total_amount == pytest.approx(100.0)
    assert record.status is ReconStatus.DIFF

    # A second analysis of the same reconciliation reuses its history entry.
    state.start_analysis(NOW)
    assert len(state.history) == 1


def test_record_result_without_current_is_noop() -> None:
    state = WorkspaceState()
    assert state.record_result(run_reconciliation("", "")) is None


def test_load_from_history_and_reset_current() -> None:
    state = WorkspaceState(
        history=[
            ReconRecord(
                id="42",
                restaurant_name="Harbor",
                company_raw="5\t2024/01/01\tA",
                restaurant_raw="5\t2024/01/01\tA",
                manual_links={"C-0": "R-0"},
                status="matched",
            )
        ]
    )
    record = state.load_from_history("42")
    assert record.status is ReconStatus.MATCHED
    assert state.current_id == "42"
    assert state.restaurant_name == "Harbor"
    assert state.links().to_dict() == {"C-0": "R-0"}

    with pytest.raises(KeyError):
        state.load_from_history("missing")

    state.reset_current()
    assert state.current_id is None
    assert state.company_raw == ""
    assert state.manual_links == {}
    assert len(state.history) == 1


def test_set_links_stores_plain_dict() -> None:
    state = WorkspaceState()
    links = ManualLinkMap()
    links.link("C-1", "R-2")
    state.set_links(links)
    assert state.manual_links == {"C-1": "R-2"}
    assert json.loads(state.model_dump_json())["manual_links"] == {"C-1": "R-2"}


def test_enum_status_survives_validation() -> None:
    record = ReconRecord(id="1", status=ReconStatus.MATCHED)
    assert record.status is ReconStatus.MATCHED
    assert ReconRecord(id="2", status=ReconStatus.DIFF).status is ReconStatus.DIFF
    assert ReconRecord(id="3", status=" Matched ").status is ReconStatus.MATCHED


def test_save_model_dump_keeps_history_status(tmp_path) -> None:
    store = WorkspaceStore(str(tmp_path / "workspace.json"))
    state = WorkspaceState(company_raw="5\t2024/01/01\tA", restaurant_raw="5\t2024/01/01\tA")
    state.start_analysis(NOW)
    state.record_result(run_reconciliation(state.company_raw, state.restaurant_raw))
    assert state.history[0].status is ReconStatus.MATCHED

    saved = store.save_workspace(state.model_dump())
    assert saved.history[0].status is ReconStatus.MATCHED
    assert store.load_workspace().history[0].status is ReconStatus.MATCHED


if __name__ == "__main__":
    raise SystemExit(pytest.main([__file__, "-v"]))
