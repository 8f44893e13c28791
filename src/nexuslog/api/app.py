"""
JSON HTTP API over the nexuslog services.

    POST {prefix}/fetch   {"cid": "..."} -> decrypted bundle
                          {"resolve": true} -> newest CID
    GET  {prefix}/keys    -> naming identities
    POST {prefix}/keys    {"name": "..."} -> new identity
    GET  {prefix}/config  -> effective settings
    POST {prefix}/config  {"store": {...}, ...} -> validated, saved with a backup
    GET  {prefix}/daemon  -> supervised node status
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, Optional, Union

from fastapi import APIRouter, FastAPI, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from nexuslog.core.services import NexusServices
from nexuslog.core.settings import save_settings, settings_path, update_settings
from nexuslog.protocol.enums import ErrorCode
from nexuslog.protocol.errors import NexusError

logger = logging.getLogger(__name__)

_STATUS_BY_CODE = {
    ErrorCode.MALFORMED_ENVELOPE: 422,
    ErrorCode.AUTHENTICATION_FAILURE: 422,
    ErrorCode.INVALID_PLAINTEXT: 422,
    ErrorCode.MALFORMED_BUNDLE: 422,
    ErrorCode.NOT_FOUND: 404,
    ErrorCode.NAME_NOT_PUBLISHED: 404,
    ErrorCode.DUPLICATE_KEY: 409,
    ErrorCode.MALFORMED_RESOLVE_RESULT: 502,
    ErrorCode.NODE_COMMAND_ERROR: 502,
    ErrorCode.PROCESS_SUPERVISION_ERROR: 503,
    ErrorCode.CONFIGURATION_ERROR: 400,
}


class FetchRequest(BaseModel):
    cid: Optional[str] = None
    resolve: bool = False


class KeyCreateRequest(BaseModel):
    name: str


def _error(status: int, message: str, code: Optional[str] = None) -> JSONResponse:
    content = {"success": False, "error": message}
    if code:
        content["code"] = code
    return JSONResponse(content=content, status_code=status)


def create_app(services: NexusServices, config_path: Optional[Union[str, Path]] = None) -> FastAPI:
    settings = services.settings
    config_file = settings_path(config_path)
    saved = settings
    app = FastAPI(title="nexuslog API")
    router = APIRouter()

    @app.exception_handler(NexusError)
    async def nexus_error_handler(_request: Request, exc: NexusError):
        status = _STATUS_BY_CODE.get(exc.code, 500)
        logger.error("API request failed: %s", exc, extra={"source": "api", "code": exc.code.value})
        return _error(status, str(exc), exc.code.value)

    @router.post("/fetch")
    def fetch(body: FetchRequest):
        if body.resolve:
            return {"success": True, "data": services.resolver.resolve()}
        cid = (body.cid or "").strip()
        if not cid:
            return _error(400, "cid or resolve required")

        bundle = services.walker.load(cid)
        return {"success": True, "data": bundle.to_dict()}

    @router.get("/keys")
    def list_keys():
        return {"success": True, "keys": [k.to_dict() for k in services.keys.list()]}

    @router.post("/keys")
    def create_key(body: KeyCreateRequest):
        if not body.name.strip():
            return _error(400, "name required")
        value = services.keys.create(body.name)
        return {"success": True, "key": value}

    @router.get("/config")
    def get_config():
        return {"success": True, "config": settings.model_dump(mode="json")}

    @router.post("/config")
    def update_config(changes: Dict[str, Any]):
        nonlocal saved
        updated = update_settings(saved, changes)
        save_settings(updated, config_file)
        saved = updated
        logger.info("Configuration saved to %s", config_file, extra={"source": "api"})
        # running components keep the settings they were built with
        return {
            "success": True,
            "config": updated.model_dump(mode="json"),
            "restart_required": True,
        }

    @router.get("/daemon")
    def daemon_status():
        return {"success": True, "daemon": services.supervisor.status().to_dict()}

    app.include_router(router, prefix=settings.server.api_prefix)
    return app
