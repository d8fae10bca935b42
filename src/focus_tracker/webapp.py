"""FastAPI application exposing the timeline, overview and rule management API."""

from __future__ import annotations

import logging
import threading
from pathlib import Path
from typing import Any, Callable, Dict, Optional

from fastapi import APIRouter, FastAPI, HTTPException, Query, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict

from .classification import LabelGroup, RuleError, TimelineSpan, overview, timeline
from .config import TrackerSettings, default_db_path
from .db import database_connection
from .errors import NotFoundError, StoreError, TrackerError
from .models import Rule, Span
from .providers import SnapshotProvider
from .rules import CATEGORIES, PROJECTS, Namespace, delete_label, delete_rule
from .rules import save_label, save_rule, select_labels, select_rules
from .tracker import TrackerDaemon

logger = logging.getLogger(__name__)


class TrackerRunner:
    """Manage the span tracker in a background thread."""

    def __init__(
        self,
        db_path: Path,
        settings: TrackerSettings,
        provider_factory: Optional[Callable[[], SnapshotProvider]] = None,
    ) -> None:
        self._db_path = Path(db_path)
        self._settings = settings
        self._provider_factory = provider_factory
        self._lock = threading.Lock()
        self._thread: Optional[threading.Thread] = None
        self._stop_event: Optional[threading.Event] = None

    def start(self) -> None:
        with self._lock:
            if self._thread and self._thread.is_alive():
                return
            provider = self._provider_factory() if self._provider_factory else None
            try:
                daemon = TrackerDaemon(self._db_path, self._settings, provider)
            except TrackerError:
                logger.exception("Tracker could not start; serving stored data only.")
                return
            stop_event = threading.Event()
            thread = threading.Thread(
                target=daemon.run_until_stopped,
                args=(stop_event,),
                daemon=True,
            )
            self._thread = thread
            self._stop_event = stop_event
            thread.start()
            logger.info("Tracker background thread started.")

    def stop(self) -> None:
        thread: Optional[threading.Thread] = None
        with self._lock:
            if not self._thread or not self._thread.is_alive() or not self._stop_event:
                return
            self._stop_event.set()
            thread = self._thread
            self._thread = None
            self._stop_event = None
        if thread:
            thread.join(timeout=10)
            logger.info("Tracker background thread stopped.")

    def is_running(self) -> bool:
        with self._lock:
            return bool(self._thread and self._thread.is_alive())


class LabelPayload(BaseModel):
    id: Optional[int] = None
    name: str
    color: str = ""

    model_config = ConfigDict(extra="forbid")


class RulePayload(BaseModel):
    """A category rule carries ``category_id``, a project rule ``project_id``."""

    id: Optional[int] = None
    pattern: str
    category_id: Optional[int] = None
    project_id: Optional[int] = None
    is_active: Optional[bool] = None

    model_config = ConfigDict(extra="forbid")


class DeletePayload(BaseModel):
    id: int

    model_config = ConfigDict(extra="forbid")


def create_app(
    *,
    db_path: Optional[Path] = None,
    settings: Optional[TrackerSettings] = None,
    provider_factory: Optional[Callable[[], SnapshotProvider]] = None,
    run_tracker: bool = True,
) -> FastAPI:
    """Instantiate the FastAPI application."""
    resolved_db_path = Path(db_path or default_db_path())
    resolved_settings = settings or TrackerSettings()
    runner = TrackerRunner(resolved_db_path, resolved_settings, provider_factory)

    app = FastAPI(title="Focus Tracker", version="0.1.0")
    app.add_middleware(GZipMiddleware, minimum_size=1000)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.state.db_path = resolved_db_path
    app.state.tracker_runner = runner

    @app.on_event("startup")
    async def _startup() -> None:
        if run_tracker:
            runner.start()

    @app.on_event("shutdown")
    async def _shutdown() -> None:
        runner.stop()

    @app.exception_handler(RequestValidationError)
    async def _invalid_request(request: Request, exc: RequestValidationError) -> JSONResponse:
        logger.error("Invalid request: url=%s errors=%s", request.url, exc.errors())
        return JSONResponse(status_code=400, content={"detail": jsonable_encoder(exc.errors())})

    @app.exception_handler(StoreError)
    async def _store_failure(request: Request, exc: StoreError) -> JSONResponse:
        logger.error("Internal error: url=%s error=%s", request.url, exc)
        return JSONResponse(status_code=500, content={"detail": str(exc)})

    @app.get("/api/status")
    def status(request: Request) -> Dict[str, Any]:
        return {
            "tracker_running": request.app.state.tracker_runner.is_running(),
            "database_path": str(request.app.state.db_path),
            "sample_seconds": resolved_settings.sample_interval.total_seconds(),
            "idle_minutes": resolved_settings.idle_threshold.total_seconds() / 60.0,
            "stale_minutes": resolved_settings.stale_threshold.total_seconds() / 60.0,
        }

    @app.get("/api/timeline")
    def get_timeline(
        request: Request,
        start: int = Query(
            default=0, alias="from", ge=0, description="Epoch seconds, inclusive; 0 means today."
        ),
        end: int = Query(
            default=0, alias="to", ge=0, description="Epoch seconds, exclusive; 0 means tomorrow."
        ),
    ) -> Dict[str, Any]:
        _check_range(start, end)
        with database_connection(request.app.state.db_path) as conn:
            data = timeline(conn, start or None, end or None)
        return {
            "from": data.start,
            "to": data.end,
            "spans": [_timeline_span_payload(item) for item in data.spans],
            "rule_errors": [_rule_error_payload(error) for error in data.rule_errors],
        }

    @app.get("/api/overview")
    def get_overview(
        request: Request,
        start: int = Query(default=0, ge=0, description="Epoch seconds, inclusive; 0 means today."),
        end: int = Query(default=0, ge=0, description="Epoch seconds, exclusive; 0 means tomorrow."),
    ) -> Dict[str, Any]:
        _check_range(start, end)
        with database_connection(request.app.state.db_path) as conn:
            data = overview(conn, start or None, end or None)
        return {
            "start": data.start,
            "end": data.end,
            "total_seconds": data.total_seconds,
            "apps": [
                {
                    "name": app_group.name,
                    "total_seconds": app_group.total_seconds,
                    "spans": [_span_payload(span) for span in app_group.spans],
                }
                for app_group in data.apps
            ],
            "projects": [_label_group_payload(group, "project") for group in data.projects],
            "categories": [
                _label_group_payload(group, "category") for group in data.categories
            ],
            "rule_errors": [_rule_error_payload(error) for error in data.rule_errors],
        }

    app.include_router(_label_router(CATEGORIES, "categories"))
    app.include_router(_label_router(PROJECTS, "projects"))

    return app


def _label_router(ns: Namespace, plural: str) -> APIRouter:
    """CRUD routes for one label namespace and its rules."""
    router = APIRouter(prefix=f"/api/{plural}")
    target_key = ns.target_column

    @router.get("")
    def list_labels(request: Request) -> Dict[str, Any]:
        with database_connection(request.app.state.db_path) as conn:
            labels = select_labels(conn, ns)
            rules = select_rules(conn, ns)
        return {
            plural: [_label_payload(label) for label in labels],
            f"{ns.name}_rules": [_rule_payload(rule, target_key) for rule in rules],
        }

    @router.post("/save")
    def save_label_endpoint(payload: LabelPayload, request: Request) -> Dict[str, Any]:
        label = ns.label_type(id=payload.id or 0, name=payload.name, color=payload.color)
        with database_connection(request.app.state.db_path) as conn:
            try:
                saved = save_label(conn, ns, label)
            except NotFoundError as exc:
                raise HTTPException(status_code=404, detail=str(exc)) from exc
            except ValueError as exc:
                raise HTTPException(status_code=400, detail=str(exc)) from exc
        return _label_payload(saved)

    @router.post("/delete")
    def delete_label_endpoint(payload: DeletePayload, request: Request) -> Dict[str, Any]:
        with database_connection(request.app.state.db_path) as conn:
            try:
                delete_label(conn, ns, payload.id)
            except NotFoundError as exc:
                raise HTTPException(status_code=404, detail=str(exc)) from exc
        return {"id": payload.id}

    @router.post("/rules/save")
    def save_rule_endpoint(payload: RulePayload, request: Request) -> Dict[str, Any]:
        target_id = getattr(payload, target_key)
        if target_id is None:
            raise HTTPException(status_code=400, detail=f"{target_key} is required")
        rule = Rule(
            id=payload.id or 0,
            pattern=payload.pattern,
            target_id=target_id,
            is_active=payload.is_active,
        )
        with database_connection(request.app.state.db_path) as conn:
            try:
                saved = save_rule(conn, ns, rule)
            except NotFoundError as exc:
                raise HTTPException(status_code=404, detail=str(exc)) from exc
            except ValueError as exc:
                raise HTTPException(status_code=400, detail=str(exc)) from exc
        return _rule_payload(saved, target_key)

    @router.post("/rules/delete")
    def delete_rule_endpoint(payload: DeletePayload, request: Request) -> Dict[str, Any]:
        with database_connection(request.app.state.db_path) as conn:
            try:
                delete_rule(conn, ns, payload.id)
            except NotFoundError as exc:
                raise HTTPException(status_code=404, detail=str(exc)) from exc
        return {"id": payload.id}

    return router


def _check_range(start: int, end: int) -> None:
    if start and end and end < start:
        raise HTTPException(status_code=400, detail="end must be on or after start")


def _span_payload(span: Span) -> Dict[str, Any]:
    return {
        "id": span.id,
        "app_name": span.app_name,
        "window_title": span.window_title,
        "start_at": span.start_at,
        "end_at": span.end_at,
        "duration_seconds": span.duration_seconds,
    }


def _label_payload(label: Any) -> Dict[str, Any]:
    return {"id": label.id, "name": label.name, "color": label.color}


def _rule_payload(rule: Rule, target_key: str) -> Dict[str, Any]:
    return {
        "id": rule.id,
        "pattern": rule.pattern,
        target_key: rule.target_id,
        "is_active": rule.is_active,
        "name": rule.target_name,
        "color": rule.target_color,
    }


def _timeline_span_payload(item: TimelineSpan) -> Dict[str, Any]:
    return {
        "span": _span_payload(item.span),
        "categories": [_label_payload(category) for category in item.categories],
        "projects": [_label_payload(project) for project in item.projects],
    }


def _label_group_payload(group: LabelGroup, key: str) -> Dict[str, Any]:
    return {
        key: _label_payload(group.label),
        "total_seconds": group.total_seconds,
        "spans": [_span_payload(span) for span in group.spans],
    }


def _rule_error_payload(error: RuleError) -> Dict[str, Any]:
    return {
        "namespace": error.namespace,
        "rule_id": error.rule_id,
        "pattern": error.pattern,
        "message": error.message,
    }
