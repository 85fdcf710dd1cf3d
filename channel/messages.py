"""
Wire envelopes for the pointstream websocket channel.

Every frame is a JSON text message with a ``type`` tag. Envelopes are
validated with pydantic; the ``type`` field is the discriminator, so an
unknown tag is rejected as a ProtocolError instead of reaching a handler.

Client -> server: metadata, query, save_selection, ping
Server -> client: metadata (bounds), arrow_data, selection_saved, error, pong
"""

from __future__ import annotations

import json
from datetime import datetime
from enum import Enum
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    TypeAdapter,
    ValidationError,
    model_validator,
)

from shared.types import Bounds, Rect

PROTOCOL_VERSION = 1


class MessageType(str, Enum):
    """Types of channel messages."""

    # Client requests
    METADATA = "metadata"
    QUERY = "query"
    SAVE_SELECTION = "save_selection"
    PING = "ping"

    # Server responses
    ARROW_DATA = "arrow_data"
    SELECTION_SAVED = "selection_saved"
    ERROR = "error"
    PONG = "pong"


class ProtocolError(ValueError):
    """Raised for malformed envelopes, unknown tags or unsupported versions."""

    def __init__(self, message: str, request_id: Optional[int] = None):
        super().__init__(message)
        self.request_id = request_id


class Envelope(BaseModel):
    """Fields common to every message."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    version: int = PROTOCOL_VERSION
    request_id: Optional[int] = None

    def to_json(self) -> str:
        """Convert message to JSON string."""
        return self.model_dump_json(by_alias=True, exclude_none=True)


# ============= Client -> Server =============


class RectModel(BaseModel):
    """Data-space rectangle as sent on the wire."""

    x_min: float
    x_max: float
    y_min: float
    y_max: float

    @model_validator(mode="after")
    def _check_order(self) -> "RectModel":
        if not (self.x_min < self.x_max and self.y_min < self.y_max):
            raise ValueError("rect requires x_min < x_max and y_min < y_max")
        return self

    @classmethod
    def from_rect(cls, rect: Rect) -> "RectModel":
        return cls(**rect.to_dict())

    def to_rect(self) -> Rect:
        return Rect(self.x_min, self.x_max, self.y_min, self.y_max)


class SampleQuery(BaseModel):
    """Viewport-bounded random sample, optionally excluding known ids."""

    rect: RectModel
    exclude_ids: Optional[list[int]] = Field(None, description="Ids already cached by the client")
    limit: int = Field(..., gt=0, description="Maximum number of rows to return")


class MetadataRequest(Envelope):
    type: Literal["metadata"] = "metadata"


class QueryRequest(Envelope):
    type: Literal["query"] = "query"
    query: SampleQuery


class SelectionRow(BaseModel):
    """One selected point; only its identity is used by the server."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    id: int = Field(..., validation_alias=AliasChoices("id", "index"))


class SaveSelectionRequest(Envelope):
    type: Literal["save_selection"] = "save_selection"
    data: list[SelectionRow] = Field(default_factory=list)
    name: Optional[str] = None

    @property
    def ids(self) -> list[int]:
        return [row.id for row in self.data]


class PingRequest(Envelope):
    type: Literal["ping"] = "ping"


ClientMessage = Annotated[
    Union[MetadataRequest, QueryRequest, SaveSelectionRequest, PingRequest],
    Field(discriminator="type"),
]


# ============= Server -> Client =============


class MetadataMessage(Envelope):
    type: Literal["metadata"] = "metadata"
    min_x: float
    max_x: float
    min_y: float
    max_y: float
    total_rows: int

    @classmethod
    def from_bounds(cls, bounds: Bounds, request_id: Optional[int] = None) -> "MetadataMessage":
        return cls(request_id=request_id, **bounds.to_dict())

    def to_bounds(self) -> Bounds:
        return Bounds(self.min_x, self.max_x, self.min_y, self.max_y, self.total_rows)


class ArrowDataMessage(Envelope):
    type: Literal["arrow_data"] = "arrow_data"
    data: str = Field(..., description="Base64-encoded Arrow IPC stream")
    rows: int = 0


class SelectionSavedMessage(Envelope):
    type: Literal["selection_saved"] = "selection_saved"
    name: str
    count: int
    next_counter: int = Field(..., alias="nextCounter")


class ErrorMessage(Envelope):
    type: Literal["error"] = "error"
    message: str
    name: Optional[str] = None


class PongMessage(Envelope):
    type: Literal["pong"] = "pong"
    time: str = Field(default_factory=lambda: datetime.now().isoformat())


ServerMessage = Annotated[
    Union[MetadataMessage, ArrowDataMessage, SelectionSavedMessage, ErrorMessage, PongMessage],
    Field(discriminator="type"),
]

_client_adapter: TypeAdapter = TypeAdapter(ClientMessage)
_server_adapter: TypeAdapter = TypeAdapter(ServerMessage)


# ============= Parsing =============


def _load_payload(text: str | bytes) -> dict[str, Any]:
    try:
        payload = json.loads(text)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise ProtocolError(f"Invalid message format: {e}") from e

    if not isinstance(payload, dict):
        raise ProtocolError("Invalid message format: expected a JSON object")
    return payload


def _request_id_of(payload: dict[str, Any]) -> Optional[int]:
    request_id = payload.get("request_id")
    return request_id if isinstance(request_id, int) and not isinstance(request_id, bool) else None


def _check_version(payload: dict[str, Any]) -> None:
    version = payload.get("version", PROTOCOL_VERSION)
    if version != PROTOCOL_VERSION:
        raise ProtocolError(
            f"Unsupported protocol version {version!r} (expected {PROTOCOL_VERSION})",
            request_id=_request_id_of(payload),
        )


def _validate(adapter: TypeAdapter, payload: dict[str, Any]):
    try:
        return adapter.validate_python(payload)
    except ValidationError as e:
        errors = "; ".join(
            f"{'.'.join(str(p) for p in err['loc']) or 'message'}: {err['msg']}"
            for err in e.errors()
        )
        raise ProtocolError(
            f"Invalid {payload.get('type', 'untyped')!s} message: {errors}",
            request_id=_request_id_of(payload),
        ) from e


def parse_client_message(text: str | bytes) -> ClientMessage:
    """Decode and validate a client -> server frame."""
    payload = _load_payload(text)
    _check_version(payload)
    return _validate(_client_adapter, payload)


def parse_server_message(text: str | bytes) -> ServerMessage:
    """Decode and validate a server -> client frame.

    A bare bounds object (no ``type``) is accepted as metadata, as is a
    single-row list of one, which is how tabular results serialize by default.
    """
    try:
        payload = json.loads(text)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise ProtocolError(f"Invalid message format: {e}") from e

    if isinstance(payload, list) and len(payload) == 1 and isinstance(payload[0], dict):
        payload = payload[0]
    if not isinstance(payload, dict):
        raise ProtocolError("Invalid message format: expected a JSON object")

    if "type" not in payload and "min_x" in payload:
        payload = {**payload, "type": MessageType.METADATA.value}

    _check_version(payload)
    return _validate(_server_adapter, payload)
