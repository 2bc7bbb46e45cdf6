"""
Store directory REST endpoints.

Thin layer over the DirectoryController: every handler runs one controller
operation and maps its ActionResult to an HTTP response. The controller is
taken from ``app.state.controller``.
"""

from typing import Dict, List, Optional, Union

import structlog
from fastapi import APIRouter, HTTPException, Query, Request
from pydantic import BaseModel

from src.directory.controller import DirectoryController
from src.directory.errors import (
    CallError,
    FormatError,
    GatewayConnectionError,
    NotFoundError,
    ValidationError,
)
from src.directory.models import StoreInput, StoreRecord
from src.directory.notifications import ActionResult
from src.directory.status import format_last_called

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/api/stores", tags=["stores"])


class StoreInputModel(BaseModel):
    """Request body for add/edit."""
    phone_number: Union[int, str]
    store_name: str = ""
    location: str = ""

    def to_input(self) -> StoreInput:
        return StoreInput(
            phone_number=str(self.phone_number),
            location=self.location or "",
            store_name=self.store_name or "",
        )


class StoreResponse(BaseModel):
    id: str
    created_at: str
    created: Optional[str] = None
    phone_number: int
    store_name: str = ""
    location: str = ""
    last_called: str = ""
    last_called_display: str = "Never"
    status: str


class StoreListResponse(BaseModel):
    stores: List[StoreResponse]
    total: int
    shown: int
    pending: int
    by_status: Dict[str, int]


class ActionResponse(BaseModel):
    title: str
    message: str
    stores: List[StoreResponse] = []
    attempted: int = 0
    succeeded: int = 0
    failed: int = 0


def _controller(request: Request) -> DirectoryController:
    return request.app.state.controller


def _store_response(controller: DirectoryController, record: StoreRecord) -> StoreResponse:
    return StoreResponse(
        id=record.id,
        created_at=record.created_at,
        created=record.created,
        phone_number=record.phone_number,
        store_name=record.store_name,
        location=record.location,
        last_called=record.last_called,
        last_called_display=format_last_called(record.last_called),
        status=controller.status_of(record).value,
    )


def _status_code_for(result: ActionResult) -> int:
    error = result.error
    if isinstance(error, NotFoundError):
        return 404
    if isinstance(error, (ValidationError, FormatError)):
        return 400
    if isinstance(error, CallError):
        return 409
    if isinstance(error, GatewayConnectionError):
        return 503
    return 502


def _raise_on_failure(result: ActionResult) -> None:
    if result.ok:
        return
    raise HTTPException(
        status_code=_status_code_for(result),
        detail={"title": result.notification.title, "message": result.message},
    )


def _action_response(controller: DirectoryController, result: ActionResult,
                     records: List[StoreRecord]) -> ActionResponse:
    return ActionResponse(
        title=result.notification.title,
        message=result.message,
        stores=[_store_response(controller, r) for r in records],
        attempted=int(result.details.get("attempted", 0)),
        succeeded=int(result.details.get("succeeded", 0)),
        failed=int(result.details.get("failed", 0)),
    )


@router.get("", response_model=StoreListResponse)
async def list_stores(request: Request, q: Optional[str] = Query(None, description="Search phone, location, store name")):
    controller = _controller(request)
    counts = controller.counts(q or "")
    return StoreListResponse(
        stores=[_store_response(controller, r) for r in controller.search(q or "")],
        total=counts["total"],
        shown=counts["shown"],
        pending=counts["pending"],
        by_status=counts["by_status"],
    )


@router.post("", response_model=StoreResponse, status_code=201)
async def add_store(request: Request, body: StoreInputModel):
    controller = _controller(request)
    result = await controller.add(body.to_input())
    _raise_on_failure(result)
    return _store_response(controller, result.value)


@router.put("/{store_id}", response_model=StoreResponse)
async def edit_store(request: Request, store_id: str, body: StoreInputModel):
    controller = _controller(request)
    result = await controller.edit(store_id, body.to_input())
    _raise_on_failure(result)
    return _store_response(controller, result.value)


@router.delete("/{store_id}")
async def delete_store(request: Request, store_id: str):
    result = await _controller(request).remove(store_id)
    _raise_on_failure(result)
    return {"deleted": store_id, "message": result.message}


@router.post("/reload", response_model=ActionResponse)
async def reload_stores(request: Request):
    controller = _controller(request)
    result = await controller.load_all()
    _raise_on_failure(result)
    return _action_response(controller, result, list(controller.records))


@router.post("/import", response_model=ActionResponse)
async def import_stores(request: Request):
    """Import a CSV document sent as the raw request body."""
    controller = _controller(request)
    result = await controller.import_text(await request.body())
    _raise_on_failure(result)
    return _action_response(controller, result, result.value or [])


@router.post("/call-all", response_model=ActionResponse)
async def call_all_pending(request: Request):
    controller = _controller(request)
    result = await controller.call_all_pending()
    _raise_on_failure(result)
    return _action_response(controller, result, result.value or [])


@router.post("/{store_id}/call", response_model=ActionResponse)
async def call_store(request: Request, store_id: str):
    controller = _controller(request)
    record = controller.get(store_id)
    if record is None:
        raise HTTPException(status_code=404, detail={"title": "Call failed", "message": "Store not found"})
    result = await controller.call_one(record)
    _raise_on_failure(result)
    return _action_response(controller, result, [result.value])
