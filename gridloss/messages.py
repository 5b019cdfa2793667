"""Telemetry records carried on the RTDB bus."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Union

from gridloss.errors import GridLossError


class MessageError(GridLossError):
    """Raised when a bus frame cannot be decoded or encoded."""
    pass


@dataclass
class RtdbMessage:
    """One telemetry point; unknown keys are kept in ``extra`` and re-emitted."""
    id: int
    value: float
    extra: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        data = dict(self.extra)
        data["id"] = self.id
        data["value"] = self.value
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RtdbMessage":
        if not isinstance(data, dict):
            raise MessageError(f"record must be an object, got {type(data).__name__}")
        try:
            point_id = int(data["id"])
            value = float(data["value"])
        except KeyError as e:
            raise MessageError(f"record is missing {e}") from e
        except (TypeError, ValueError) as e:
            raise MessageError(f"invalid record {data!r}: {e}") from e
        if point_id < 0:
            raise MessageError(f"invalid point id {point_id}")
        extra = {k: v for k, v in data.items() if k not in ("id", "value")}
        return cls(id=point_id, value=value, extra=extra)


def parse_rtdb_data(data: Union[bytes, str]) -> List[RtdbMessage]:
    """
    Decode one bus frame.

    A frame is a JSON array of records; a bare object counts as a
    single-record frame.

    Raises:
        MessageError: If the frame is not valid JSON or a record is malformed
    """
    try:
        doc = json.loads(data)
    except (TypeError, ValueError) as e:
        raise MessageError(f"cannot decode frame: {e}") from e

    if isinstance(doc, dict):
        doc = [doc]
    if not isinstance(doc, list):
        raise MessageError(f"frame must be a JSON array, got {type(doc).__name__}")
    return [RtdbMessage.from_dict(item) for item in doc]


def encode_rtdb_data(messages: Iterable[RtdbMessage]) -> bytes:
    try:
        return json.dumps([m.to_dict() for m in messages], allow_nan=False).encode("utf-8")
    except (TypeError, ValueError) as e:
        raise MessageError(f"cannot encode messages: {e}") from e
