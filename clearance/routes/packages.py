from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from clearance.engine import StatusTransitionEngine, TransitionResult
from clearance.errors import (
    ClearanceError,
    InvalidTransitionError,
    PackageBusyError,
    PackageNotFoundError,
    PersistenceError,
)

router = APIRouter(prefix="/packages", tags=["packages"])

ERROR_STATUS_CODES: dict[type[ClearanceError], tuple[int, str]] = {
    PackageNotFoundError: (404, "not_found"),
    InvalidTransitionError: (422, "invalid_transition"),
    PackageBusyError: (409, "package_busy"),
    PersistenceError: (503, "persistence_failure"),
}


class StatusChangeBody(BaseModel):
    status: str = Field(..., description="Target package status, e.g. customs-cleared")


class PaymentChangeBody(BaseModel):
    paid: bool = Field(..., description="True marks the package paid, False pending")


def get_engine(request: Request) -> StatusTransitionEngine:
    return request.app.state.engine


def _error_response(e: ClearanceError) -> JSONResponse:
    status_code, error = ERROR_STATUS_CODES.get(type(e), (500, "error"))
    return JSONResponse(status_code=status_code, content={"status": "error", "error": error, "detail": str(e)})


def _result_response(result: TransitionResult) -> JSONResponse:
    return JSONResponse(
        status_code=200,
        content={
            "status": "degraded" if result.degraded else "ok",
            "package": result.package.model_dump(mode="json"),
            "side_effects": [
                {"step": o.step, "state": o.state, "detail": o.detail} for o in result.side_effects
            ],
            "failed_steps": result.failed_steps,
        },
    )


@router.get("/{package_id}")
async def get_package(package_id: str, engine: StatusTransitionEngine = Depends(get_engine)) -> JSONResponse:
    package = await engine.store.get_package(package_id)
    if package is None:
        return _error_response(PackageNotFoundError(package_id))
    return JSONResponse(status_code=200, content=package.model_dump(mode="json"))


@router.get("/{package_id}/activity")
async def get_activity(package_id: str, engine: StatusTransitionEngine = Depends(get_engine)) -> JSONResponse:
    entries = await engine.activity_log.list_for_package(package_id)
    return JSONResponse(status_code=200, content=[e.model_dump(mode="json") for e in entries])


@router.post("/{package_id}/status")
async def change_status(
    package_id: str,
    body: StatusChangeBody,
    engine: StatusTransitionEngine = Depends(get_engine),
) -> JSONResponse:
    """
    Apply a status transition. 200 even when a side effect failed: the status
    change is committed and "degraded" / failed_steps say which step broke.
    """
    try:
        result = await engine.transition(package_id, body.status)
    except ClearanceError as e:
        return _error_response(e)
    return _result_response(result)


@router.post("/{package_id}/payment")
async def change_payment(
    package_id: str,
    body: PaymentChangeBody,
    engine: StatusTransitionEngine = Depends(get_engine),
) -> JSONResponse:
    try:
        result = await engine.set_payment_status(package_id, body.paid)
    except ClearanceError as e:
        return _error_response(e)
    return _result_response(result)
