from __future__ import annotations

import os
from typing import Any, Dict, Type, TypeVar

from fastapi import Body, FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ValidationError

from pickforme.agents.preference_matcher import build_context, extract_preferences, update_profile
from pickforme.config import EngineSettings
from pickforme.decision_engine import DecisionEngine
from pickforme.errors import (
    InvalidModificationError,
    InvalidRequestError,
    NoCandidatesError,
    NoSuitableOptionsError,
    PickForMeError,
    SlotUnavailable,
)
from pickforme.planner.itinerary_planner import ItineraryPlanner
from pickforme.schemas import (
    DecisionRequest,
    ItineraryRequest,
    ItineraryResponse,
    ModifyRequest,
    OptimizeRequest,
    PreferenceExtractionRequest,
)
from pickforme.tools.booking import BookingGateway, BookingSubmission, build_booking_request

app = FastAPI(title="PickForMe Decision API")

# Operators can scope this via PICKFORME_ALLOWED_ORIGINS.
raw_origins = os.getenv("PICKFORME_ALLOWED_ORIGINS") or "*"
allowed_origins = [origin.strip() for origin in raw_origins.split(",") if origin.strip()]
if not allowed_origins:
    allowed_origins = ["*"]
app.add_middleware(
    CORSMiddleware,
    allow_origins=allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

settings = EngineSettings.from_env()
engine = DecisionEngine(settings)
planner = ItineraryPlanner(settings, engine=engine)

_STATUS_BY_ERROR: Dict[Type[PickForMeError], int] = {
    NoCandidatesError: 404,
    NoSuitableOptionsError: 409,
    SlotUnavailable: 409,
    InvalidModificationError: 400,
    InvalidRequestError: 422,
}

M = TypeVar("M", bound=BaseModel)


@app.exception_handler(PickForMeError)
async def _pickforme_error(request: Request, exc: PickForMeError) -> JSONResponse:
    status = next((code for cls, code in _STATUS_BY_ERROR.items() if isinstance(exc, cls)), 500)
    return JSONResponse(status_code=status, content={"error": exc.to_dict()})


def _parse(model: Type[M], payload: Dict[str, Any]) -> M:
    try:
        return model.model_validate(payload)
    except ValidationError as exc:
        raise HTTPException(
            status_code=422,
            detail=exc.errors(include_url=False, include_context=False),
        ) from exc


@app.post("/api/decision")
def api_decision(payload: Dict[str, Any] = Body(...)) -> Dict[str, Any]:
    """Pick one venue from the supplied candidates."""
    request = _parse(DecisionRequest, payload)
    decision = engine.select_best(
        request.candidates,
        request.preferences,
        request.location,
        request.context,
    )
    return {"decision": decision.model_dump(mode="json")}


@app.post("/api/itinerary")
def api_itinerary(payload: Dict[str, Any] = Body(...)) -> Dict[str, Any]:
    request = _parse(ItineraryRequest, payload)
    itinerary = planner.generate(request)
    return ItineraryResponse(success=True, itinerary=itinerary).model_dump(mode="json")


@app.post("/api/itinerary/optimize")
def api_optimize(payload: Dict[str, Any] = Body(...)) -> Dict[str, Any]:
    request = _parse(OptimizeRequest, payload)
    result = planner.optimize(request.itinerary, request.request)
    return {"optimization": result.model_dump(mode="json")}


@app.post("/api/itinerary/modify")
def api_modify(payload: Dict[str, Any] = Body(...)) -> Dict[str, Any]:
    request = _parse(ModifyRequest, payload)
    updated = planner.modify(request.itinerary, request.modification)
    return ItineraryResponse(success=True, itinerary=updated).model_dump(mode="json")


@app.post("/api/booking")
async def api_booking(payload: Dict[str, Any] = Body(...)) -> Dict[str, Any]:
    """Hand one placed item to the reservation service; failures come back as a result, not an error."""
    submission = _parse(BookingSubmission, payload)
    request = build_booking_request(
        submission.item,
        submission.date,
        submission.party_size,
        submission.contact,
        special_requests=submission.special_requests,
    )
    gateway = BookingGateway(settings=settings)
    if not gateway.endpoint and request.supports_reservation:
        raise HTTPException(status_code=503, detail="Booking endpoint not configured")
    result = await gateway.book(request)
    return {"booking": result.model_dump(mode="json")}


@app.post("/api/preferences/extract")
def api_extract_preferences(payload: Dict[str, Any] = Body(...)) -> Dict[str, Any]:
    """Merge rule-extracted preferences from the conversation into the running profile."""
    request = _parse(PreferenceExtractionRequest, payload)
    turns = [message.model_dump() for message in request.messages]
    extracted = extract_preferences(turns)
    profile = update_profile(request.profile, turns)

    user_positions = [i for i, turn in enumerate(turns) if turn["role"] == "user"]
    if user_positions:
        last = user_positions[-1]
        history, current = turns[:last], turns[last]["content"]
    else:
        history, current = turns, ""
    context = build_context(history, current, stage=request.stage)
    return {
        "extracted": extracted,
        "profile": profile.model_dump(mode="json"),
        "context": context.model_dump(mode="json"),
    }
