"""Webhook ingest outcome models.

An IngestOutcome is what the orchestrator returns for every handled
request; the HTTP layer renders it as a WebhookResponse with the matching
status code.
"""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from src.gatekeeper.filters.models import FilterInfo, NormalizedEvent


class IngestStatus(str, Enum):
    """Terminal state of one webhook.

    Attributes:
        REJECTED: Failed verification or could not be decoded.
        IGNORED: Authentic, but not an event this integration handles.
        SKIPPED: Authentic and parsed, but an admission rule fired.
        ACCEPTED: Passed every check and was handed downstream.
    """

    REJECTED = "rejected"
    IGNORED = "ignored"
    SKIPPED = "skipped"
    ACCEPTED = "accepted"


# Default HTTP status per outcome; REJECTED becomes 400 for undecodable bodies
HTTP_STATUS = {
    IngestStatus.REJECTED: 401,
    IngestStatus.IGNORED: 200,
    IngestStatus.SKIPPED: 200,
    IngestStatus.ACCEPTED: 202,
}


class WebhookResponse(BaseModel):
    """JSON body returned to the webhook sender."""

    accepted: bool = Field(..., description="Whether the event was handed downstream")
    message: str = Field(..., description="Human-readable outcome")
    filter_info: Optional[FilterInfo] = Field(
        default=None,
        description="Which admission rule skipped the event, if any",
    )


class IngestOutcome(BaseModel):
    """Result of handling one webhook.

    Attributes:
        status: Terminal state.
        integration: Integration the request was addressed to.
        message: Human-readable outcome.
        http_status: Status code for the HTTP response.
        reason: Verification failure reason, for REJECTED.
        filter_info: Skip details, for SKIPPED.
        event: The normalized event, once parsed.
    """

    model_config = ConfigDict(frozen=True)

    status: IngestStatus
    integration: str
    message: str
    http_status: int
    reason: Optional[str] = None
    filter_info: Optional[FilterInfo] = None
    event: Optional[NormalizedEvent] = None

    @property
    def accepted(self) -> bool:
        return self.status == IngestStatus.ACCEPTED

    def to_response(self) -> WebhookResponse:
        return WebhookResponse(
            accepted=self.accepted,
            message=self.message,
            filter_info=self.filter_info,
        )
