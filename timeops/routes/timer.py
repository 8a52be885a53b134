
from typing import Optional
from fastapi import APIRouter, Request
from pydantic import BaseModel
from timeops.models import ApiResponse
from timeops.utils.ids import request_id as get_request_id

router = APIRouter(prefix="/timer", tags=["timer"])


class StartBody(BaseModel):
    project_id: int
    todo_id: Optional[int] = None
    description: Optional[str] = None
    is_billable: bool = True


class StopBody(BaseModel):
    description: Optional[str] = None


class DiscardBody(BaseModel):
    confirmed: bool = False


def _respond(request: Request, result: ApiResponse) -> ApiResponse:
    result.requestId = get_request_id(request.headers.get("x-request-id"))
    return result


@router.get("")
async def current(request: Request):
    """Local view of the running timer, ticked to now."""
    timer = request.app.state.engine.timer
    timer.tick()
    data = {**timer.snapshot().model_dump(mode="json"), "notices": timer.drain_notices()}
    return _respond(request, ApiResponse.success(data=data))


@router.post("/start")
async def start(request: Request, body: StartBody):
    timer = request.app.state.engine.timer
    return _respond(request, await timer.start(
        body.project_id, body.todo_id, body.description, body.is_billable
    ))


@router.post("/stop")
async def stop(request: Request, body: Optional[StopBody] = None):
    timer = request.app.state.engine.timer
    return _respond(request, await timer.stop(body.description if body else None))


@router.post("/discard")
async def discard(request: Request, body: Optional[DiscardBody] = None):
    timer = request.app.state.engine.timer
    return _respond(request, await timer.discard(confirmed=bool(body and body.confirmed)))


@router.post("/resync")
async def resync(request: Request):
    timer = request.app.state.engine.timer
    return _respond(request, await timer.resync())
