"""
api.py - FastAPI HTTP layer for the reconciliation engine.

Two kinds of endpoints:
- stateless:  POST /reconcile runs the engine on the posted inputs
- workspace:  the single persisted workspace (raw text, manual links,
              settings, history) with link/unlink, import, analyze, export

No matching logic is implemented here; everything goes through
main.run_reconciliation().
"""

from __future__ import annotations

import io
import os
import tempfile
import threading
from pathlib import Path
from typing import Any, Optional
from urllib.parse import quote

import uvicorn
from dotenv import load_dotenv
from fastapi import Body, FastAPI, File, Form, HTTPException, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import Response
from pydantic import BaseModel, Field, ValidationError

from importer import ColumnMapping, import_file
from logging_config import get_logger, setup_logging_from_env
from main import run_reconciliation
from models import AggregateResult, MatchSettings, Side
from parse import parse_transactions
from report import export_filename, export_workbook
from workspace_store import WorkspaceState, WorkspaceStore

load_dotenv()

logger = get_logger("recon-api")

XLSX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"

app = FastAPI(
    title="Ledger Reconciliation API",
    version="1.0.0",
    docs_url=None,
    redoc_url=None,
    openapi_url=None,
)

# Allows local UI use from file:// or another local host/port.
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)


class ReconcileRequest(BaseModel):
    company_raw: str = ""
    restaurant_raw: str = ""
    manual_links: dict[str, str] = Field(default_factory=dict)
    settings: MatchSettings = Field(default_factory=MatchSettings)


class LinkRequest(BaseModel):
    source_id: str
    target_id: str
    side: Side = Side.COMPANY


workspace_lock = threading.Lock()
workspace_store = WorkspaceStore()
workspace_state = workspace_store.load_workspace()


def _persist_workspace() -> None:
    """Persist the in-memory workspace to the store file."""
    global workspace_state
    workspace_state = workspace_store.save_workspace(workspace_state)


def _reconcile_workspace() -> AggregateResult:
    return run_reconciliation(
        workspace_state.company_raw,
        workspace_state.restaurant_raw,
        workspace_state.manual_links,
        workspace_state.settings,
    )


async def _save_upload(upload: UploadFile, destination: Path) -> None:
    """Save an UploadFile to disk."""
    try:
        with destination.open("wb") as out_file:
            while True:
                chunk = await upload.read(1024 * 1024)
                if not chunk:
                    break
                out_file.write(chunk)
    finally:
        await upload.close()


@app.get("/health")
def health() -> dict[str, str]:
    """Service health check."""
    return {"status": "ok"}


@app.post("/reconcile")
def reconcile(request: ReconcileRequest) -> dict[str, Any]:
    """Run the engine on posted inputs. Nothing is stored."""
    try:
        result = run_reconciliation(
            request.company_raw,
            request.restaurant_raw,
            request.manual_links,
            request.settings,
        )
    except (TypeError, ValueError) as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return result.model_dump(mode="json")


@app.get("/workspace/load")
def workspace_load() -> dict[str, Any]:
    """Load the persisted default workspace."""
    global workspace_state

    with workspace_lock:
        workspace_state = workspace_store.load_workspace()
        return workspace_state.model_dump(mode="json")


@app.post("/workspace/save")
def workspace_save(payload: dict[str, Any] = Body(...)) -> dict[str, Any]:
    """Replace and persist the workspace (single-workspace prototype)."""
    global workspace_state

    try:
        incoming = WorkspaceState.model_validate(payload)
    except (ValueError, ValidationError) as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    with workspace_lock:
        try:
            incoming.workspace_id = "default"
            workspace_state = incoming
            _persist_workspace()
            return workspace_state.model_dump(mode="json")
        except OSError as exc:
            logger.error(
                "workspace_save_error | error_type=%s | error=%s",
                type(exc).__name__,
                exc,
                exc_info=True,
            )
            raise HTTPException(status_code=500, detail="Failed to save workspace.") from exc


@app.post("/workspace/reset")
def workspace_reset() -> dict[str, str]:
    """Reset the persisted workspace, history included."""
    global workspace_state

    with workspace_lock:
        workspace_store.reset_workspace()
        workspace_state = workspace_store.default_workspace()
    return {"status": "reset"}


@app.post("/workspace/new")
def workspace_new() -> dict[str, Any]:
    """Start a new reconciliation; history is kept."""
    with workspace_lock:
        workspace_state.reset_current()
        _persist_workspace()
        return workspace_state.model_dump(mode="json")


@app.post("/workspace/analyze")
def workspace_analyze() -> dict[str, Any]:
    """Reconcile the stored inputs and record the outcome in history."""
    with workspace_lock:
        record = workspace_state.start_analysis()
        result = _reconcile_workspace()
        workspace_state.record_result(result)
        _persist_workspace()
        logger.info(
            "workspace_analyzed | record=%s | status=%s | variance=%.2f",
            record.id,
            result.status.value,
            result.total_variance,
        )
        return {"record_id": record.id, "result": result.model_dump(mode="json")}


@app.get("/links")
def list_links() -> list[dict[str, Any]]:
    """Manual links that resolve against the current raw text."""
    with workspace_lock:
        company = parse_transactions(workspace_state.company_raw, Side.COMPANY)
        restaurant = parse_transactions(workspace_state.restaurant_raw, Side.RESTAURANT)
        pairs = workspace_state.links().resolve_pairs(company, restaurant)
    return [
        {
            "company": company_txn.model_dump(mode="json"),
            "restaurant": restaurant_txn.model_dump(mode="json"),
        }
        for company_txn, restaurant_txn in pairs
    ]


@app.post("/links")
def add_link(request: LinkRequest) -> dict[str, Any]:
    """Link two transactions, starting from either side."""
    with workspace_lock:
        links = workspace_state.links()
        try:
            links.link_from(request.side, request.source_id, request.target_id)
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        workspace_state.set_links(links)
        _persist_workspace()
        return {"manual_links": workspace_state.manual_links}


@app.delete("/links/{company_id}")
def remove_link(company_id: str) -> dict[str, Any]:
    """Remove the manual link keyed by a company transaction id."""
    with workspace_lock:
        links = workspace_state.links()
        if not links.unlink(company_id):
            raise HTTPException(status_code=404, detail=f"Manual link not found: {company_id}")
        workspace_state.set_links(links)
        _persist_workspace()
        return {"manual_links": workspace_state.manual_links}


@app.post("/import/{side}")
async def import_side(
    side: str,
    table: UploadFile = File(...),
    amount_column: Optional[str] = Form(default=None),
    date_column: Optional[str] = Form(default=None),
    reference_column: Optional[str] = Form(default=None),
) -> dict[str, Any]:
    """Import a CSV/XLSX table as one side's raw text."""
    try:
        target_side = Side.from_value(side)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    if not table.filename:
        raise HTTPException(status_code=400, detail="table file is required.")

    mapping: Optional[ColumnMapping] = None
    if amount_column or date_column or reference_column:
        mapping = ColumnMapping(
            amount=amount_column or "",
            date=date_column or "",
            reference=reference_column or "",
        )

    with tempfile.TemporaryDirectory(prefix="recon-import-") as tmp_dir:
        upload_path = Path(tmp_dir) / (Path(table.filename).name or "table.csv")
        try:
            await _save_upload(table, upload_path)
            raw = import_file(upload_path, mapping)
        except (FileNotFoundError, ValueError) as exc:
            raise HTTPException(status_code=400, detail=f"Failed to import table: {exc}") from exc

    with workspace_lock:
        if target_side is Side.COMPANY:
            workspace_state.company_raw = raw
        else:
            workspace_state.restaurant_raw = raw
        _persist_workspace()

    lines = len([line for line in raw.split("\n") if line.strip()])
    logger.info("import_complete | side=%s | lines=%s", target_side.value, lines)
    return {"side": target_side.value, "lines": lines, "raw": raw}


@app.get("/history")
def list_history() -> list[dict[str, Any]]:
    with workspace_lock:
        return [record.model_dump(mode="json") for record in workspace_state.history]


@app.post("/history/{record_id}/load")
def load_history(record_id: str) -> dict[str, Any]:
    """Restore a past reconciliation's inputs into the workspace."""
    with workspace_lock:
        try:
            workspace_state.load_from_history(record_id)
        except KeyError as exc:
            raise HTTPException(status_code=404, detail=f"History record not found: {record_id}") from exc
        _persist_workspace()
        return workspace_state.model_dump(mode="json")


@app.get("/export")
def export() -> Response:
    """Download the current workspace result as a three-sheet workbook."""
    with workspace_lock:
        result = _reconcile_workspace()
        filename = export_filename(workspace_state.restaurant_name)

    buffer = io.BytesIO()
    try:
        export_workbook(result, buffer)
    except (OSError, ValueError) as exc:
        logger.error(
            "export_error | error_type=%s | error=%s",
            type(exc).__name__,
            exc,
            exc_info=True,
        )
        raise HTTPException(status_code=500, detail="Failed to build export workbook.") from exc

    return Response(
        content=buffer.getvalue(),
        media_type=XLSX_MEDIA_TYPE,
        headers={"Content-Disposition": f"attachment; filename*=UTF-8''{quote(filename)}"},
    )


if __name__ == "__main__":
    setup_logging_from_env()
    port = int(os.getenv("PORT", "8000"))
    uvicorn.run("api:app", host="0.0.0.0", port=port, reload=False)
