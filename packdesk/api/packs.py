# packdesk/api/packs.py
from __future__ import annotations
import logging
from typing import Any

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_snake

from packdesk.core.errors import InvalidArgumentError, PackCommandError
from packdesk.packs.direct import installPacks, removePacks, updatePacks
from packdesk.packs.service import PackCommandService

logger = logging.getLogger(__name__)
router = APIRouter()

__all__ = ["router", "errorStatus", "errorResponse"]

_STATUS_BY_CODE = {
    "invalid_argument": 400,
    "invalid_state": 409,
    "state_out_of_sync": 409,
    "dependency_error": 409,
    "version_incompatible": 409,
}



class _Body(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_snake,
        populate_by_name=True,
        extra="forbid",
        str_strip_whitespace=True,
    )
    refId: str = Field(min_length=1)
    userId: str = Field(min_length=1)



class ActionRequest(_Body):
    command: str = Field(min_length=1)
    data: dict[str, Any] = Field(default_factory=dict)



class BatchRequest(_Body):
    packs: list[str] = Field(min_length=1)



def errorStatus(err: PackCommandError) -> int:
    return _STATUS_BY_CODE.get(err.code, 400)



def errorResponse(err: PackCommandError) -> JSONResponse:
    return JSONResponse({"ok": False, "error": err.toDict()}, status_code=errorStatus(err))



def _service(request: Request) -> PackCommandService:
    return request.app.state.packService



@router.post("/api/packs/action")
def apiPackAction(body: ActionRequest, request: Request):
    return _service(request).dispatch(body.command, body.data, userId=body.userId, refId=body.refId)



@router.post("/api/packs/install")
def apiPackInstall(body: BatchRequest, request: Request):
    return {"ok": True, **installPacks(_service(request).services, refId=body.refId, userId=body.userId, packNames=body.packs)}



@router.post("/api/packs/update")
def apiPackUpdate(body: BatchRequest, request: Request):
    return {"ok": True, **updatePacks(_service(request).services, refId=body.refId, userId=body.userId, packNames=body.packs)}



@router.post("/api/packs/remove")
def apiPackRemove(body: BatchRequest, request: Request):
    return {"ok": True, **removePacks(_service(request).services, refId=body.refId, userId=body.userId, packNames=body.packs)}



@router.get("/api/operations/{operationId}")
def apiGetOperation(operationId: str, request: Request):
    op = _service(request).getOperation(operationId)
    if op is None:
        return JSONResponse(
            {"ok": False, "error": {"code": "not_found", "message": f"Operation '{operationId}' not found"}},
            status_code=404,
        )
    return {"ok": True, "operation": op}



@router.get("/api/operations")
def apiListOperations(request: Request, user_id: str | None = None, limit: int = 50):
    if not 1 <= limit <= 500:
        raise InvalidArgumentError("limit must be between 1 and 500")
    return {"ok": True, "operations": _service(request).listOperations(userId=user_id, limit=limit)}
