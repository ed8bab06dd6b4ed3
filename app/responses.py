# app/responses.py
#
# Maps pipeline results onto HTTP status codes.

from typing import List

from fastapi import HTTPException, Response

from app.scheduling.errors import ValidationError
from app.scheduling.pipeline import MutationResult, MutationState
from app.schemas import ConflictChoice, MutationResponse


def _dump(appointment):
    return appointment.model_dump(mode="json") if appointment is not None else None


def raise_for_result(result: MutationResult, tz=None) -> None:
    if result.state == MutationState.rejected:
        if isinstance(result.error, ValidationError):
            raise HTTPException(
                status_code=422,
                detail={"field": result.error.field, "message": result.error.message},
            )
        raise HTTPException(
            status_code=409,
            detail={
                "message": result.message(tz),
                "conflicting": _dump(result.decision.conflicting if result.decision else None),
            },
        )

    if result.state == MutationState.requires_decision:
        raise HTTPException(
            status_code=409,
            detail={
                "message": result.message(tz),
                "appointment": _dump(result.appointment),
                "conflicting": _dump(result.decision.conflicting),
                "displaced": _dump(result.displaced),
                "choices": [c.value for c in ConflictChoice],
            },
        )

    if result.state == MutationState.rolled_back:
        raise HTTPException(status_code=502, detail=result.message(tz))


def to_response(result: MutationResult, tz=None) -> MutationResponse:
    return MutationResponse(
        state=result.state.value,
        appointment=result.appointment,
        displaced=result.displaced,
        late_cancellation=result.late_cancellation,
        message=result.message(tz),
    )


def mutation_response(result: MutationResult, response: Response, tz=None) -> MutationResponse:
    """Raise for failed outcomes; a queued write answers 202."""
    raise_for_result(result, tz)
    if result.state == MutationState.pending_sync:
        response.status_code = 202
    return to_response(result, tz)


def batch_response(results: List[MutationResult], tz=None) -> List[MutationResponse]:
    # one failing occurrence must not hide the ones that went through
    return [to_response(r, tz) for r in results]
