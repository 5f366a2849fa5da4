"""FastAPI application serving the teletext archive."""

from __future__ import annotations

import asyncio
import contextvars
import errno
import functools
import logging
import traceback
import uuid
from pathlib import Path
from typing import Any, Callable, Dict, List, Literal, Optional, Tuple, TypeVar

from fastapi import FastAPI, File, Form, HTTPException, Request, UploadFile
from fastapi.exceptions import RequestValidationError
from fastapi.responses import FileResponse, HTMLResponse, JSONResponse, Response, StreamingResponse
from pydantic import BaseModel, Field
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.types import ASGIApp, Message, Receive, Scope, Send

from ..config import AppConfig
from ..logging_utils import append_error_log
from ..processing import PlaywrightRenderBackend, RenderBackend, RenderTimeoutError, ThumbnailCodec
from ..services.cards import CardError, delete_logo, read_card, save_card, static_url
from ..services.events import emit_structured_event
from ..services.grouping import group_folders_by_year, group_pages_by_year
from ..services.inventory import (
    PageRecord,
    find_neighbours,
    find_page,
    list_pages,
    list_subfolders,
    parse_page_stem,
)
from ..services.manager import FileManager, ManagerError
from ..services.paths import ArchivePath, InvalidPathError, resolve_archive_path
from ..services.progress import stream_folder_regeneration
from ..services.scheduler import BatchScheduler
from ..services.thumbnails import ThumbnailStore

T = TypeVar("T")

_TEMPLATE_PATH = Path(__file__).parent / "templates" / "index.html"
_ARCHIVE_TITLE = "Teletext"

CONTENT_SECURITY_POLICY = "; ".join(
    [
        "default-src 'self'",
        "img-src 'self' data:",
        "style-src 'self' 'unsafe-inline'",
        "script-src 'self' 'unsafe-inline'",
        "font-src 'self'",
        "connect-src 'self'",
        "frame-ancestors 'none'",
        "base-uri 'self'",
        "form-action 'self'",
    ]
)
SECURITY_HEADERS: Dict[str, str] = {
    "Content-Security-Policy": CONTENT_SECURITY_POLICY,
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "X-XSS-Protection": "1; mode=block",
}

_REQUEST_ID_VAR: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar(
    "teletext_archive_request_id",
    default=None,
)
_ACTOR_VAR: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar(
    "teletext_archive_actor",
    default=None,
)


def _new_correlation_id() -> str:
    return uuid.uuid4().hex


def _collect_correlation_context() -> Dict[str, str]:
    context: Dict[str, str] = {}
    request_id = _REQUEST_ID_VAR.get()
    if request_id:
        context["request_id"] = str(request_id)
    actor = _ACTOR_VAR.get()
    if actor:
        context["actor"] = str(actor)
    return context


class RequestContextMiddleware:
    """Assign a correlation identifier to each request and expose it via contextvars."""

    def __init__(self, app: ASGIApp) -> None:
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope.get("type") != "http":
            await self.app(scope, receive, send)
            return

        request_id = _new_correlation_id()
        scope_state = scope.get("state")
        if scope_state is None:
            scope_state = {}
            scope["state"] = scope_state
        if isinstance(scope_state, dict):
            scope_state["request_id"] = request_id
        else:
            setattr(scope_state, "request_id", request_id)

        method = scope.get("method")
        actor = f"request:{method.upper()}" if isinstance(method, str) else "request"
        request_token = _REQUEST_ID_VAR.set(request_id)
        actor_token = _ACTOR_VAR.set(actor)
        try:
            await self.app(scope, receive, send)
        finally:
            _ACTOR_VAR.reset(actor_token)
            _REQUEST_ID_VAR.reset(request_token)


class SecurityHeadersMiddleware:
    """Attach the fixed browser hardening headers to every HTTP response."""

    def __init__(self, app: ASGIApp, headers: Optional[Dict[str, str]] = None) -> None:
        self.app = app
        self._headers: List[Tuple[bytes, bytes]] = [
            (name.lower().encode("latin-1"), value.encode("latin-1"))
            for name, value in (headers or SECURITY_HEADERS).items()
        ]

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope.get("type") != "http":
            await self.app(scope, receive, send)
            return

        async def _send(message: Message) -> None:
            if message["type"] == "http.response.start":
                headers = list(message.get("headers", []))
                present = {name.lower() for name, _ in headers}
                headers.extend(item for item in self._headers if item[0] not in present)
                message = {**message, "headers": headers}
            await send(message)

        await self.app(scope, receive, _send)


class ContextualLoggerAdapter(logging.LoggerAdapter):
    """Logger adapter that injects correlation context into records."""

    def process(self, msg: Any, kwargs: Dict[str, Any]) -> tuple[Any, Dict[str, Any]]:  # type: ignore[override]
        extra: Dict[str, Any] = dict(self.extra)
        provided = kwargs.get("extra")
        if isinstance(provided, dict):
            extra.update(provided)
        for key, value in _collect_correlation_context().items():
            extra.setdefault(key, value)
        kwargs["extra"] = extra
        return msg, kwargs


LOGGER = ContextualLoggerAdapter(logging.getLogger(__name__), {})
EVENT_LOGGER = ContextualLoggerAdapter(logging.getLogger("teletext_archive.web.events"), {})


def _log_event(message: str, **context: Any) -> None:
    emit_structured_event(
        "APP_EVENT",
        message,
        context=context,
        correlation=_collect_correlation_context(),
        logger=EVENT_LOGGER,
    )


def _status_for_exception(error: BaseException) -> int:
    """Map filesystem and rendering failures onto HTTP status codes."""

    if isinstance(error, (InvalidPathError, CardError, ManagerError)):
        return 400
    if isinstance(error, RenderTimeoutError):
        return 504
    if isinstance(error, FileNotFoundError):
        return 404
    if isinstance(error, PermissionError):
        return 403
    if isinstance(error, FileExistsError):
        return 409
    if isinstance(error, (NotADirectoryError, IsADirectoryError)):
        return 400
    if isinstance(error, OSError) and error.errno in {errno.EMFILE, errno.ENFILE}:
        return 503
    return 500


def _describe_error(error: BaseException) -> str:
    if isinstance(error, OSError) and error.strerror:
        name = Path(error.filename).name if error.filename else ""
        return f"{error.strerror}: {name}" if name else error.strerror
    return str(error) or type(error).__name__


class CreateFolderPayload(BaseModel):
    name: str = Field(..., min_length=1)


class DeleteEntryPayload(BaseModel):
    name: str = Field(..., min_length=1)
    type: Literal["file", "folder"]


class RenameEntryPayload(BaseModel):
    old_name: str = Field(..., min_length=1)
    new_name: str = Field(..., min_length=1)
    type: Literal["file", "folder"]


class MoveEntryPayload(BaseModel):
    name: str = Field(..., min_length=1)
    target_path: str = ""
    type: Literal["file", "folder"]


def _serialize_page(location: ArchivePath, record: PageRecord) -> Dict[str, Any]:
    return {
        "page": record.page_number,
        "stem": record.stem,
        "year": record.year,
        "has_thumb": record.has_thumbnail,
        "html_url": static_url(location.relative, record.html_name),
        "thumbnail_url": (
            static_url(location.relative, record.thumbnail_name) if record.has_thumbnail else None
        ),
    }


def _require_folder(location: ArchivePath) -> Path:
    folder = location.absolute
    if not folder.is_dir():
        raise FileNotFoundError(f"Folder not found: {location.relative or '/'}")
    return folder


def _build_folder_listing(location: ArchivePath) -> Dict[str, Any]:
    folder = _require_folder(location)
    subfolders = list_subfolders(folder)
    return {
        "folders": subfolders,
        "grouped_folders": [
            {"year": year, "folders": names}
            for year, names in group_folders_by_year(subfolders).items()
        ],
        "folder_cards": {
            name: read_card(folder / name).to_dict(location.join(name)) for name in subfolders
        },
    }


def _build_folder_view(location: ArchivePath) -> Dict[str, Any]:
    view = _build_folder_listing(location)
    records = list_pages(location.absolute)
    card = read_card(location.absolute)
    view.update(
        {
            "folder_name": location.name or _ARCHIVE_TITLE,
            "current_path": location.relative,
            "breadcrumb": location.breadcrumb(),
            "grouped_pages": [
                {"year": year, "pages": [_serialize_page(location, record) for record in items]}
                for year, items in group_pages_by_year(records).items()
            ],
            "pages": [_serialize_page(location, record) for record in records],
            "has_logo": card.has_logo,
            "logo_url": card.logo_url(location.relative),
        }
    )
    return view


def _build_page_view(location: ArchivePath, stem: str) -> Dict[str, Any]:
    folder = _require_folder(location)
    records = list_pages(folder)
    record = find_page(records, stem)
    if record is None:
        raise FileNotFoundError(f"Page {stem} not found")
    content = record.html_path.read_text(encoding="utf-8", errors="replace")
    previous, following = find_neighbours(records, stem)
    card = read_card(folder)
    return {
        "page_number": record.page_number,
        "stem": record.stem,
        "content": content,
        "current_path": location.relative,
        "folder_name": location.name or _ARCHIVE_TITLE,
        "prev_page": previous.stem if previous else None,
        "next_page": following.stem if following else None,
        "page_list": [_serialize_page(location, item) for item in records],
        "breadcrumb": location.breadcrumb(),
        "base_path": static_url(location.relative) + "/",
        "has_logo": card.has_logo,
        "logo_url": card.logo_url(location.relative),
    }


def _build_card_view(location: ArchivePath) -> Dict[str, Any]:
    folder = _require_folder(location)
    card = read_card(folder)
    return {
        "archive_path": location.relative,
        "folder_name": location.name,
        "title": card.display_name,
        "description": card.description,
        "has_logo": card.has_logo,
        "logo_url": card.logo_url(location.relative),
    }


def _count_pages(location: ArchivePath) -> int:
    return len(list_pages(_require_folder(location)))


def create_app(
    config: AppConfig,
    *,
    backend: Optional[RenderBackend] = None,
    store: Optional[ThumbnailStore] = None,
    codec: Optional[ThumbnailCodec] = None,
) -> FastAPI:
    """Return a configured FastAPI application.

    The render backend is owned by the app and closed on shutdown; tests
    inject a fake one.
    """

    settings = config.thumbnails
    app = FastAPI(title="Teletext Archive", description="Browse archived teletext pages")
    app.add_middleware(SecurityHeadersMiddleware)
    app.add_middleware(RequestContextMiddleware)

    render_backend: RenderBackend = backend or PlaywrightRenderBackend(settings)
    thumbnail_store = store or ThumbnailStore()
    thumbnail_codec = codec or ThumbnailCodec(
        settings.size, colors=settings.palette_colors, dither=settings.dither
    )
    scheduler = BatchScheduler(
        render_backend,
        thumbnail_codec,
        thumbnail_store,
        max_concurrent=settings.max_concurrent_renders,
    )
    manager = FileManager(thumbnail_store)
    app.state.config = config
    app.state.render_backend = render_backend
    app.state.thumbnail_store = thumbnail_store
    app.state.scheduler = scheduler
    app.state.file_manager = manager

    index_html = _TEMPLATE_PATH.read_text(encoding="utf-8")

    async def _run_blocking(function: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        """Run filesystem work in the default executor, keeping request context."""

        loop = asyncio.get_running_loop()
        parent_context = contextvars.copy_context()
        call = functools.partial(function, *args, **kwargs)
        return await loop.run_in_executor(None, functools.partial(parent_context.run, call))

    def _resolve(raw: str, *, required: bool = False) -> ArchivePath:
        try:
            return resolve_archive_path(config.archive_root, raw, required=required)
        except InvalidPathError as error:
            LOGGER.warning("Rejected archive path %r: %s", raw, error)
            raise HTTPException(status_code=400, detail="Invalid path") from error

    async def _shutdown() -> None:
        await scheduler.aclose()
        await render_backend.close()
        LOGGER.info("Teletext archive shut down")

    app.add_event_handler("shutdown", _shutdown)

    async def _error_response(
        request: Request,
        status_code: int,
        message: str,
        error: Optional[BaseException] = None,
    ) -> JSONResponse:
        if status_code >= 500:
            entry: Dict[str, Any] = {
                "error": message,
                "status": status_code,
                "request": {
                    "method": request.method,
                    "url": str(request.url),
                    "client": request.client.host if request.client else None,
                    "user_agent": request.headers.get("user-agent"),
                },
            }
            if error is not None:
                entry["type"] = type(error).__name__
                entry["stack"] = "".join(
                    traceback.format_exception(type(error), error, error.__traceback__)
                )
            LOGGER.error("%s %s failed with %s: %s", request.method, request.url.path, status_code, message)
            try:
                await _run_blocking(append_error_log, config.log_root, entry)
            except OSError as log_error:
                LOGGER.error("Could not write error log: %s", log_error)
        return JSONResponse({"error": message, "status": status_code}, status_code=status_code)

    @app.exception_handler(StarletteHTTPException)
    async def _handle_http_exception(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        return await _error_response(request, exc.status_code, str(exc.detail))

    @app.exception_handler(RequestValidationError)
    async def _handle_validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
        problems = "; ".join(
            f"{'.'.join(str(part) for part in item.get('loc', ()))}: {item.get('msg', '')}"
            for item in exc.errors()
        )
        return await _error_response(request, 400, f"Invalid request data ({problems})")

    async def _handle_domain_error(request: Request, exc: Exception) -> JSONResponse:
        status_code = _status_for_exception(exc)
        return await _error_response(request, status_code, _describe_error(exc), exc)

    for error_type in (InvalidPathError, CardError, ManagerError, RenderTimeoutError, OSError):
        app.add_exception_handler(error_type, _handle_domain_error)

    @app.exception_handler(Exception)
    async def _handle_unexpected_error(request: Request, exc: Exception) -> JSONResponse:
        LOGGER.exception("Unhandled error for %s %s", request.method, request.url.path)
        return await _error_response(request, 500, "Internal server error", exc)

    @app.get("/", response_class=HTMLResponse)
    async def index() -> HTMLResponse:
        return HTMLResponse(index_html.replace("__TELETEXT_ARCHIVE_TITLE__", _ARCHIVE_TITLE))

    @app.get("/api/folders")
    async def list_folders() -> Dict[str, Any]:
        location = _resolve("")
        listing = await _run_blocking(_build_folder_listing, location)
        _log_event("Listed archive folders", count=len(listing["folders"]))
        return listing

    @app.get("/api/folder/{archive_path:path}")
    async def folder_view(archive_path: str) -> Dict[str, Any]:
        location = _resolve(archive_path)
        view = await _run_blocking(_build_folder_view, location)
        scheduler.ensure_folder_thumbnails(location.absolute)
        _log_event(
            "Opened folder",
            path=location.relative or "/",
            pages=len(view["pages"]),
            folders=len(view["folders"]),
        )
        return view

    @app.get("/api/page/{stem}")
    @app.get("/api/page/{archive_path:path}/{stem}")
    async def page_view(stem: str, archive_path: str = "") -> Dict[str, Any]:
        if parse_page_stem(stem) is None:
            raise HTTPException(status_code=400, detail="Invalid page number (100-999)")
        location = _resolve(archive_path)
        return await _run_blocking(_build_page_view, location, stem)

    @app.delete("/api/card/{archive_path:path}/logo")
    async def delete_card_logo(archive_path: str) -> Dict[str, Any]:
        location = _resolve(archive_path, required=True)
        folder = _require_folder(location)
        deleted = await _run_blocking(delete_logo, folder)
        for name in deleted:
            thumbnail_store.invalidate(folder / name)
        return {"success": True, "deleted": deleted}

    @app.get("/api/card/{archive_path:path}")
    async def get_card(archive_path: str) -> Dict[str, Any]:
        location = _resolve(archive_path, required=True)
        return await _run_blocking(_build_card_view, location)

    @app.post("/api/card/{archive_path:path}")
    async def update_card(
        archive_path: str,
        title: str = Form(""),
        description: str = Form(""),
        logo: Optional[UploadFile] = File(None),
    ) -> Dict[str, Any]:
        location = _resolve(archive_path, required=True)
        logo_upload: Optional[Tuple[str, bytes]] = None
        if logo is not None and logo.filename:
            content_type = (logo.content_type or "").lower()
            if not content_type.startswith("image/"):
                raise HTTPException(status_code=400, detail="Logo must be an SVG, PNG or JPG image")
            data = await logo.read(manager.max_upload_bytes + 1)
            if len(data) > manager.max_upload_bytes:
                raise HTTPException(status_code=400, detail="Logo exceeds the upload size limit")
            logo_upload = (logo.filename, data)

        final = await _run_blocking(
            save_card,
            location,
            title=title,
            description=description,
            logo=logo_upload,
        )
        if final.absolute != location.absolute:
            thumbnail_store.invalidate_tree(location.absolute)
        _log_event("Saved folder card", path=final.relative, renamed=final.relative != location.relative)
        return {"success": True, "path": final.relative}

    @app.get("/api/manager/{archive_path:path}")
    async def manager_listing(archive_path: str) -> Dict[str, Any]:
        location = _resolve(archive_path)
        return await _run_blocking(manager.list_entries, location)

    @app.post("/api/manager/folders")
    @app.post("/api/manager/{archive_path:path}/folders")
    async def manager_create_folder(payload: CreateFolderPayload, archive_path: str = "") -> Dict[str, Any]:
        location = _resolve(archive_path)
        name = await _run_blocking(manager.create_folder, location, payload.name)
        return {"success": True, "name": name}

    @app.post("/api/manager/delete")
    @app.post("/api/manager/{archive_path:path}/delete")
    async def manager_delete(payload: DeleteEntryPayload, archive_path: str = "") -> Dict[str, Any]:
        location = _resolve(archive_path)
        await _run_blocking(manager.delete_entry, location, payload.name, payload.type)
        return {"success": True}

    @app.post("/api/manager/rename")
    @app.post("/api/manager/{archive_path:path}/rename")
    async def manager_rename(payload: RenameEntryPayload, archive_path: str = "") -> Dict[str, Any]:
        location = _resolve(archive_path)
        name = await _run_blocking(
            manager.rename_entry, location, payload.old_name, payload.new_name, payload.type
        )
        return {"success": True, "name": name}

    @app.post("/api/manager/move")
    @app.post("/api/manager/{archive_path:path}/move")
    async def manager_move(payload: MoveEntryPayload, archive_path: str = "") -> Dict[str, Any]:
        location = _resolve(archive_path)
        destination = _resolve(payload.target_path) if payload.target_path else location
        path = await _run_blocking(
            manager.move_entry, location, payload.name, destination, payload.type
        )
        return {"success": True, "path": path}

    @app.post("/api/manager/upload")
    @app.post("/api/manager/{archive_path:path}/upload")
    async def manager_upload(
        files: List[UploadFile] = File(...),
        archive_path: str = "",
    ) -> Response:
        location = _resolve(archive_path)
        received: List[Tuple[str, bytes]] = []
        for upload in files:
            data = await upload.read(manager.max_upload_bytes + 1)
            received.append((upload.filename or "", data))
        result = await _run_blocking(manager.upload_files, location, received)
        if not result.success:
            return JSONResponse(
                {
                    "error": "Some files could not be uploaded",
                    "status": 400,
                    "errors": result.errors,
                    "saved": result.saved,
                },
                status_code=400,
            )
        return JSONResponse({"success": True, "saved": result.saved})

    async def _regenerate(archive_path: str, progress_every: int) -> Response:
        location = _resolve(archive_path)
        page_count = await _run_blocking(_count_pages, location)
        if page_count == 0:
            return JSONResponse({"success": True, "message": "No pages to process"})
        _log_event(
            "Regenerating thumbnails",
            path=location.relative or "/",
            pages=page_count,
            progress_every=progress_every,
        )
        frames = stream_folder_regeneration(
            scheduler, location.absolute, progress_every=progress_every
        )
        return StreamingResponse(
            frames,
            media_type="text/event-stream",
            headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
        )

    @app.get("/regenerate-thumbnails-stream/{archive_path:path}")
    async def regenerate_thumbnails_stream(archive_path: str) -> Response:
        return await _regenerate(archive_path, 1)

    @app.post("/manager/regenerate-thumbnails-fast/{archive_path:path}")
    async def regenerate_thumbnails_fast(archive_path: str) -> Response:
        return await _regenerate(archive_path, settings.progress_every)

    @app.get("/teletext/{file_path:path}")
    async def serve_archive_file(file_path: str) -> Response:
        try:
            location = resolve_archive_path(config.archive_root, file_path, required=True)
        except InvalidPathError as error:
            raise HTTPException(status_code=404, detail="File not found") from error
        target = location.absolute
        if not target.is_file():
            raise HTTPException(status_code=404, detail="File not found")
        if target.suffix.lower() == ".png":
            data = await _run_blocking(thumbnail_store.read_bytes, target)
            return Response(content=data, media_type="image/png", headers={"Cache-Control": "no-cache"})
        return FileResponse(target)

    return app


__all__ = [
    "ContextualLoggerAdapter",
    "RequestContextMiddleware",
    "SECURITY_HEADERS",
    "SecurityHeadersMiddleware",
    "create_app",
]
