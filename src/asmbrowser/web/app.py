"""FastAPI application backing the asmbrowser web UI."""

from __future__ import annotations

import asyncio
import logging
import os
import subprocess
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, List

from fastapi import APIRouter, FastAPI, HTTPException, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import FileResponse, JSONResponse, Response
from pydantic import BaseModel, ValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

from asmbrowser import __version__
from asmbrowser.config import AppConfig
from asmbrowser.decompiler.engine import DecompilationError, ILSpyDecompiler
from asmbrowser.decompiler.export import export_project
from asmbrowser.index.search import search_types
from asmbrowser.index.store import (
    AssemblyNotFoundError,
    AssemblyStore,
    InvalidFileNameError,
    sanitize_file_name,
)
from asmbrowser.ingestion.multipart import decode_multipart, is_multipart, parse_boundary
from asmbrowser.models import AssemblyRecord, UploadedPayload
from asmbrowser.utils.files import is_assembly_path, list_directory
from asmbrowser.web.frontend import router as frontend_router

LOGGER = logging.getLogger(__name__)

API_PREFIX = "/api"

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "GET, POST, DELETE, OPTIONS",
    "Access-Control-Allow-Headers": "Content-Type",
}

router = APIRouter(prefix=API_PREFIX)


class OpenPathPayload(BaseModel):
    path: str | None = None


def _store(request: Request) -> AssemblyStore:
    return request.app.state.store


def _decompiler(request: Request) -> Any:
    return request.app.state.decompiler


def _resolve_assembly(request: Request, assembly_id: str) -> Path:
    path = _store(request).resolve(assembly_id)
    if path is None:
        raise HTTPException(status_code=404, detail="Assembly not found")
    return path


def _open_in_file_manager(path: Path) -> None:
    if os.name == "posix":  # macOS/Linux
        opener = "open" if sys.platform == "darwin" else "xdg-open"
        subprocess.Popen([opener, str(path)])
    else:
        os.startfile(path)  # type: ignore[attr-defined]


def _store_payloads(store: AssemblyStore, payloads: List[UploadedPayload]) -> List[AssemblyRecord]:
    # Reject the whole request before anything is written.
    for payload in payloads:
        sanitize_file_name(payload.file_name)
    return [store.put(payload.file_name, payload.data) for payload in payloads]


@router.get("/health")
async def health() -> dict[str, Any]:
    return {
        "status": "ok",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "version": __version__,
    }


@router.post("/upload")
async def upload_assemblies(request: Request) -> dict[str, Any]:
    content_type = request.headers.get("content-type")
    if not is_multipart(content_type):
        raise HTTPException(status_code=400, detail="Expected multipart/form-data")

    body = await request.body()
    payloads = decode_multipart(body, parse_boundary(content_type))
    if not payloads:
        raise HTTPException(status_code=400, detail="No files uploaded")

    try:
        records = await asyncio.to_thread(_store_payloads, _store(request), payloads)
    except InvalidFileNameError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return {"files": [record.to_dict() for record in records]}


@router.get("/assemblies")
async def list_assemblies(request: Request) -> dict[str, Any]:
    records = await asyncio.to_thread(_store(request).list)
    return {"assemblies": [record.to_dict() for record in records]}


@router.get("/types")
async def list_types(request: Request, assembly: str | None = None) -> dict[str, Any]:
    if not assembly:
        raise HTTPException(status_code=400, detail="Missing assembly parameter")
    path = _resolve_assembly(request, assembly)

    try:
        types = await asyncio.to_thread(_decompiler(request).list_top_level_types, path)
    except DecompilationError as exc:
        LOGGER.exception("Listing types of %s failed", path.name)
        raise HTTPException(status_code=500, detail=str(exc)) from exc
    return {"types": [type_node.to_dict() for type_node in types]}


@router.get("/decompile")
async def decompile(
    request: Request,
    assembly: str | None = None,
    type_name: str | None = Query(None, alias="type"),
) -> dict[str, str]:
    if not assembly:
        raise HTTPException(status_code=400, detail="Missing assembly parameter")
    path = _resolve_assembly(request, assembly)
    decompiler = _decompiler(request)

    try:
        if type_name:
            code = await asyncio.to_thread(decompiler.decompile_type, path, type_name)
        else:
            code = await asyncio.to_thread(decompiler.decompile_module, path)
    except DecompilationError as exc:
        LOGGER.exception("Decompiling %s (%s) failed", path.name, type_name or "module")
        raise HTTPException(status_code=500, detail=str(exc)) from exc
    return {"code": code}


@router.get("/search")
async def search(request: Request, assembly: str | None = None, q: str | None = None) -> dict[str, Any]:
    if not assembly or not q:
        raise HTTPException(status_code=400, detail="Missing assembly or query parameter")
    path = _resolve_assembly(request, assembly)

    try:
        types = await asyncio.to_thread(_decompiler(request).list_top_level_types, path)
    except DecompilationError as exc:
        LOGGER.exception("Search in %s failed", path.name)
        raise HTTPException(status_code=500, detail=str(exc)) from exc
    return {"results": [result.to_dict() for result in search_types(types, q)]}


@router.delete("/assembly/{assembly_id}")
async def delete_assembly(request: Request, assembly_id: str) -> dict[str, Any]:
    try:
        await asyncio.to_thread(_store(request).delete, assembly_id)
    except AssemblyNotFoundError as exc:
        raise HTTPException(status_code=404, detail="Assembly not found") from exc
    except OSError as exc:
        LOGGER.exception("Unable to delete %s", assembly_id)
        raise HTTPException(status_code=500, detail=str(exc)) from exc
    return {"success": True, "message": f"Deleted {assembly_id}"}


@router.post("/assembly/{assembly_id}/export-project")
async def export_assembly(request: Request, assembly_id: str) -> dict[str, Any]:
    path = _resolve_assembly(request, assembly_id)
    export_dir = _store(request).export_dir(path)

    try:
        result = await asyncio.to_thread(export_project, _decompiler(request), path, export_dir)
    except (DecompilationError, OSError) as exc:
        LOGGER.exception("Export of %s failed", path.name)
        raise HTTPException(status_code=500, detail=str(exc)) from exc
    return {
        "success": True,
        "path": str(result.path),
        "files": len(result.files),
        "skipped": result.skipped,
        "failed": result.failed,
    }


@router.post("/assembly/{assembly_id}/open-folder")
async def open_assembly_folder(request: Request, assembly_id: str) -> dict[str, Any]:
    path = _resolve_assembly(request, assembly_id)
    try:
        _open_in_file_manager(path.parent)
    except OSError as exc:
        LOGGER.error("Unable to open %s: %s", path.parent, exc)
        raise HTTPException(status_code=500, detail=str(exc)) from exc
    return {"success": True}


@router.get("/file/{file_name}")
async def download_file(request: Request, file_name: str) -> FileResponse:
    path = _store(request).file_path(file_name)
    if path is None:
        raise HTTPException(status_code=404, detail="File not found")
    return FileResponse(path, media_type="application/octet-stream", filename=path.name)


@router.get("/fs/list")
async def browse_directory(path: str | None = None) -> dict[str, Any]:
    try:
        listing = await asyncio.to_thread(list_directory, path)
    except FileNotFoundError as exc:
        raise HTTPException(status_code=404, detail="Directory not found") from exc
    except OSError as exc:
        LOGGER.exception("Unable to list %s", path)
        raise HTTPException(status_code=500, detail=str(exc)) from exc
    return listing.to_dict()


@router.post("/fs/open")
async def open_by_path(request: Request, path: str | None = None) -> dict[str, Any]:
    file_path = path
    if not file_path:
        body = await request.body()
        if body.strip():
            try:
                file_path = OpenPathPayload.model_validate_json(body).path
            except ValidationError as exc:
                raise HTTPException(status_code=400, detail="Malformed JSON body") from exc
    if not file_path:
        raise HTTPException(status_code=400, detail="Missing file path")

    source = Path(file_path).expanduser()
    if not source.is_file():
        raise HTTPException(status_code=404, detail="File not found")
    if not is_assembly_path(source):
        raise HTTPException(status_code=400, detail="Only .dll and .exe files are supported")

    try:
        record = await asyncio.to_thread(_store(request).import_file, source)
    except InvalidFileNameError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return {"success": True, "assembly": {**record.to_dict(), "originalPath": str(source)}}


async def _cors_and_errors(request: Request, call_next) -> Response:
    """Answer preflights, attach CORS headers, turn crashes into JSON 500s.

    CORSMiddleware only decorates requests that send an Origin header, while
    these headers and the empty preflight 200 apply to every request.
    """
    if request.method == "OPTIONS":
        response: Response = Response(status_code=200)
    else:
        try:
            response = await call_next(request)
        except Exception as exc:
            LOGGER.exception("Unhandled error for %s %s", request.method, request.url.path)
            response = JSONResponse(status_code=500, content={"error": str(exc) or type(exc).__name__})
    response.headers.update(CORS_HEADERS)
    return response


async def _http_error(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    message = exc.detail if isinstance(exc.detail, str) else str(exc.detail)
    if exc.status_code == 404 and message == "Not Found":
        message = "Not found"
    return JSONResponse(status_code=exc.status_code, content={"error": message}, headers=exc.headers)


async def _validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = exc.errors()
    message = errors[0].get("msg", "Invalid request") if errors else "Invalid request"
    return JSONResponse(status_code=400, content={"error": message})


def create_app(config: AppConfig | None = None, *, decompiler: Any = None) -> FastAPI:
    """Build the web app around one upload directory and one decompiler."""
    config = config or AppConfig()
    upload_dir = config.resolve_upload_dir(Path.cwd())

    application = FastAPI(title="asmbrowser", version=__version__)
    application.state.config = config
    application.state.store = AssemblyStore(upload_dir)
    application.state.decompiler = decompiler or ILSpyDecompiler(
        config.ilspycmd, timeout=config.decompile_timeout
    )

    application.middleware("http")(_cors_and_errors)
    application.add_exception_handler(StarletteHTTPException, _http_error)
    application.add_exception_handler(RequestValidationError, _validation_error)
    application.include_router(router)
    application.include_router(frontend_router)
    return application


app = create_app()
