"""Reservation hand-off for placed itinerary items.

The core never books anything itself: it builds a ``BookingRequest`` and a
single ``BookingGateway.book`` call reports back. Failures come back as a
``BookingResult`` carrying an error code and a ``retryable`` hint; retrying is
left to the caller.
"""
from __future__ import annotations

import datetime as dt
import logging
import os
import re
from typing import Any, Dict, List, Literal, Mapping, Optional, Union

import httpx
from pydantic import BaseModel, Field

from pickforme.config import EngineSettings
from pickforme.errors import InvalidRequestError
from pickforme.planner.slots import DAY_MINUTES, alternative_windows, format_hhmm, parse_hhmm
from pickforme.schemas import PlacedItem

logger = logging.getLogger(__name__)
if not logger.handlers:
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter("[%(levelname)s] %(name)s: %(message)s"))
    logger.addHandler(handler)
_level = os.getenv("PICKFORME_LOG_LEVEL", "INFO").upper()
logger.setLevel(getattr(logging, _level, logging.INFO))
logger.propagate = False

_EMAIL = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")

BookingErrorCode = Literal["NO_ONLINE_RESERVATIONS", "TIME_UNAVAILABLE", "BOOKING_FAILED", "NETWORK_ERROR"]


class ContactInfo(BaseModel):
    name: str = ""
    phone: str = ""
    email: str = ""


class BookingRequest(BaseModel):
    candidate_id: str
    venue_name: str
    date: dt.date
    time: str  # "HH:MM"
    duration_minutes: int = Field(..., gt=0)
    party_size: int = Field(..., ge=1, le=20)
    contact: ContactInfo
    special_requests: str = ""
    supports_reservation: bool = True


class BookingResult(BaseModel):
    success: bool
    confirmation_id: Optional[str] = None
    status: Literal["confirmed", "pending", "failed"] = "failed"
    error_code: Optional[BookingErrorCode] = None
    message: str = ""
    retryable: bool = False
    alternative_times: List[str] = Field(default_factory=list)


def build_booking_request(
    item: PlacedItem,
    day: dt.date,
    party_size: int,
    contact: Union[ContactInfo, Mapping[str, Any]],
    *,
    special_requests: str = "",
) -> BookingRequest:
    """Normalize a placed item into a booking request or raise ``InvalidRequestError``."""
    if not isinstance(contact, ContactInfo):
        contact = ContactInfo.model_validate(dict(contact))

    errors: List[str] = []
    if not 1 <= party_size <= 20:
        errors.append("Party size must be between 1 and 20 people")
    if not contact.name.strip():
        errors.append("Contact name is required")
    if not contact.phone.strip():
        errors.append("Contact phone number is required")
    if not contact.email.strip():
        errors.append("Contact email is required")
    elif not _EMAIL.match(contact.email.strip()):
        errors.append("Contact email is not a valid address")
    if errors:
        raise InvalidRequestError(errors)

    return BookingRequest(
        candidate_id=item.candidate.id,
        venue_name=item.candidate.name,
        date=day,
        time=format_hhmm(item.start),
        duration_minutes=max(1, item.end - item.start),
        party_size=party_size,
        contact=contact,
        special_requests=special_requests.strip(),
        supports_reservation=item.candidate.supports_reservation,
    )


def suggest_alternative_times(
    time_str: str,
    duration_minutes: int,
    settings: Optional[EngineSettings] = None,
) -> List[str]:
    """Nearby start times using the same shift policy as the day planner."""
    settings = settings or EngineSettings()
    start = parse_hhmm(time_str)
    windows = alternative_windows(
        (start, start + duration_minutes),
        step=settings.fallback_step_minutes,
        attempts=settings.fallback_attempts,
        bounds=(0, DAY_MINUTES),
    )
    return [format_hhmm(w[0]) for w in windows]


class BookingGateway:
    """Posts booking requests to an external reservation endpoint."""

    def __init__(
        self,
        endpoint: Optional[str] = None,
        *,
        timeout: Optional[float] = None,
        settings: Optional[EngineSettings] = None,
    ) -> None:
        self.settings = settings or EngineSettings()
        self.endpoint = endpoint or self.settings.booking_endpoint
        self.timeout = timeout if timeout is not None else self.settings.booking_timeout

    async def book(self, request: BookingRequest) -> BookingResult:
        if not request.supports_reservation:
            return BookingResult(
                success=False,
                error_code="NO_ONLINE_RESERVATIONS",
                message=f"{request.venue_name} does not take online reservations; call them directly.",
            )
        if not self.endpoint:
            raise RuntimeError("PICKFORME_BOOKING_ENDPOINT environment variable not configured")

        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(self.endpoint, json=request.model_dump(mode="json"))
                response.raise_for_status()
                data: Dict[str, Any] = response.json()
        except httpx.HTTPStatusError as exc:
            return self._failed_response(request, exc.response)
        except httpx.RequestError as exc:
            logger.warning("Booking request for %s failed: %s", request.venue_name, exc)
            return BookingResult(
                success=False,
                error_code="NETWORK_ERROR",
                message="The reservation service could not be reached.",
                retryable=True,
            )

        status = data.get("status") or "confirmed"
        if status not in ("confirmed", "pending"):
            status = "pending"
        logger.info(
            "Booked %s on %s at %s for %d (%s)",
            request.venue_name,
            request.date.isoformat(),
            request.time,
            request.party_size,
            status,
        )
        return BookingResult(
            success=True,
            confirmation_id=data.get("confirmation_id"),
            status=status,
            message=data.get("message") or "",
        )

    def _failed_response(self, request: BookingRequest, response: httpx.Response) -> BookingResult:
        body = _safe_json(response)
        code = body.get("error_code")
        if response.status_code == 409 or code == "TIME_UNAVAILABLE":
            result = BookingResult(
                success=False,
                error_code="TIME_UNAVAILABLE",
                message=body.get("message") or f"{request.time} is no longer available.",
                alternative_times=suggest_alternative_times(
                    request.time, request.duration_minutes, self.settings
                ),
            )
        else:
            result = BookingResult(
                success=False,
                error_code="BOOKING_FAILED",
                message=body.get("message") or f"Reservation service returned {response.status_code}.",
                retryable=response.status_code >= 500,
            )
        logger.warning(
            "Booking for %s rejected with %s (%s)",
            request.venue_name,
            response.status_code,
            result.error_code,
        )
        return result


def _safe_json(response: httpx.Response) -> Dict[str, Any]:
    try:
        data = response.json()
    except ValueError:
        return {}
    return data if isinstance(data, dict) else {}


class BookingSubmission(BaseModel):
    """HTTP payload: one placed itinerary item plus who is booking it."""

    item: PlacedItem
    date: dt.date
    party_size: int = 2
    contact: ContactInfo = Field(default_factory=ContactInfo)
    special_requests: str = ""
