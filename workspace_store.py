"""
workspace_store.py - Persisted reconciliation workspace.

Holds the only state that outlives a reconciliation run: the raw text of
both sides, the manual links, the match settings, and the history of past
reconciliations. Stored as one local JSON file with atomic writes.
No auth, no multi-user state, no background workers.
"""

from __future__ import annotations

import json
import os
import tempfile
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from links import ManualLinkMap
from logging_config import get_logger
from models import AggregateResult, MatchSettings, ReconStatus

logger = get_logger(__name__)

DEFAULT_WORKSPACE_FILE = "data/workspace.json"


def _normalize_links(value: Any) -> dict[str, str]:
    return ManualLinkMap.from_dict(value if isinstance(value, dict) else {}).to_dict()


class ReconRecord(BaseModel):
    """One reconciliation in the history list."""

    model_config = ConfigDict(extra="ignore")

    id: str
    restaurant_name: str = ""
    company_raw: str = ""
    restaurant_raw: str = ""
    date: str = ""
    total_amount: float = 0.0
    calculated_variance: float = 0.0
    status: ReconStatus = ReconStatus.DRAFT
    manual_links: dict[str, str] = Field(default_factory=dict)

    @field_validator("manual_links", mode="before")
    @classmethod
    def _normalize_manual_links(cls, value: Any) -> dict[str, str]:
        return _normalize_links(value)

    @field_validator("status", mode="before")
    @classmethod
    def _normalize_status(cls, value: Any) -> str:
        if isinstance(value, ReconStatus):
            return value.value
        text = str(value or "").strip().lower()
        if text in {status.value for status in ReconStatus}:
            return text
        return ReconStatus.DRAFT.value


class WorkspaceState(BaseModel):
    """Persisted state for the default reconciliation workspace."""

    model_config = ConfigDict(extra="ignore")

    workspace_id: str = "default"
    restaurant_name: str = ""
    current_id: Optional[str] = None
    company_raw: str = ""
    restaurant_raw: str = ""
    manual_links: dict[str, str] = Field(default_factory=dict)
    settings: MatchSettings = Field(default_factory=MatchSettings)
    history: list[ReconRecord] = Field(default_factory=list)
    updated_at: Optional[str] = None

    @field_validator("workspace_id", mode="before")
    @classmethod
    def _workspace_id_default(cls, value: Any) -> str:
        text = str(value or "").strip()
        return text or "default"

    @field_validator("company_raw", "restaurant_raw", "restaurant_name", mode="before")
    @classmethod
    def _text_default(cls, value: Any) -> str:
        return "" if value is None else str(value)

    @field_validator("manual_links", mode="before")
    @classmethod
    def _normalize_manual_links(cls, value: Any) -> dict[str, str]:
        return _normalize_links(value)

    @field_validator("history", mode="before")
    @classmethod
    def _drop_unusable_history(cls, value: Any) -> list[Any]:
        source = value if isinstance(value, list) else []
        return [item for item in source if isinstance(item, (dict, ReconRecord))]

    def links(self) -> ManualLinkMap:
        return ManualLinkMap.from_dict(self.manual_links)

    def set_links(self, links: ManualLinkMap) -> None:
        self.manual_links = links.to_dict()

    def find_record(self, record_id: str) -> Optional[ReconRecord]:
        for record in self.history:
            if record.id == record_id:
                return record
        return None

    def start_analysis(self, now: Optional[datetime] = None) -> ReconRecord:
        """Snapshot the current inputs as a draft history entry."""
        now = now or datetime.now(timezone.utc)
        if not self.current_id:
            self.current_id = str(int(now.timestamp() * 1000))

        record = self.find_record(self.current_id)
        if record is None:
            record = ReconRecord(id=self.current_id)
            self.history.insert(0, record)

        record.restaurant_name = self.restaurant_name
        record.company_raw = self.company_raw
        record.restaurant_raw = self.restaurant_raw
        record.manual_links = dict(self.manual_links)
        record.date = now.date().isoformat()
        record.status = ReconStatus.DRAFT
        return record

    def record_result(self, result: AggregateResult) -> Optional[ReconRecord]:
        """Write a run's variance and status into the current history entry."""
        if not self.current_id:
            return None
        record = self.find_record(self.current_id)
        if record is None:
            return None
        record.calculated_variance = result.total_variance
        record.total_amount = result.grand_total_company
        record.status = result.status
        record.manual_links = dict(self.manual_links)
        return record

    def load_from_history(self, record_id: str) -> ReconRecord:
        record = self.find_record(record_id)
        if record is None:
            raise KeyError(record_id)
        self.current_id = record.id
        self.restaurant_name = record.restaurant_name
        self.company_raw = record.company_raw
        self.restaurant_raw = record.restaurant_raw
        self.manual_links = dict(record.manual_links)
        return record

    def reset_current(self) -> None:
        """Start a fresh reconciliation; history is kept."""
        self.current_id = None
        self.restaurant_name = ""
        self.company_raw = ""
        self.restaurant_raw = ""
        self.manual_links = {}


class WorkspaceStore:
    """Disk-backed workspace store using one JSON file and atomic writes."""

    def __init__(self, path: Optional[str] = None) -> None:
        target = path or os.getenv("RECON_WORKSPACE_FILE", DEFAULT_WORKSPACE_FILE)
        self.path = Path(target).resolve()

    @staticmethod
    def default_workspace() -> WorkspaceState:
        return WorkspaceState(workspace_id="default")

    def load_workspace(self) -> WorkspaceState:
        """Load workspace from disk, returning defaults if missing/unreadable."""
        if not self.path.exists():
            return self.default_workspace()

        try:
            raw = json.loads(self.path.read_text(encoding="utf-8"))
            return WorkspaceState.model_validate(raw)
        except Exception as exc:
            logger.warning(
                "workspace_load_warning | path=%s | error_type=%s | error=%s | fallback='default'",
                self.path,
                type(exc).__name__,
                exc,
            )
            return self.default_workspace()

    def save_workspace(self, state: WorkspaceState | dict[str, Any]) -> WorkspaceState:
        """Persist workspace atomically via temp-file + replace."""
        normalized = WorkspaceState.model_validate(state)
        normalized.updated_at = datetime.now(timezone.utc).isoformat()

        self.path.parent.mkdir(parents=True, exist_ok=True)

        payload = normalized.model_dump(mode="json")
        with tempfile.NamedTemporaryFile(
            mode="w",
            encoding="utf-8",
            dir=str(self.path.parent),
            delete=False,
            suffix=".tmp",
            prefix="workspace-",
        ) as tmp_file:
            json.dump(payload, tmp_file, ensure_ascii=False, indent=2)
            tmp_file.flush()
            os.fsync(tmp_file.fileno())
            tmp_path = Path(tmp_file.name)

        os.replace(tmp_path, self.path)
        logger.debug(
            "workspace_saved | path=%s | links=%s | history=%s",
            self.path,
            len(normalized.manual_links),
            len(normalized.history),
        )
        return normalized

    def reset_workspace(self) -> None:
        """Remove persisted workspace file if present."""
        try:
            if self.path.exists():
                self.path.unlink()
        except OSError as exc:
            logger.warning(
                "workspace_reset_warning | path=%s | error_type=%s | error=%s",
                self.path,
                type(exc).__name__,
                exc,
            )
