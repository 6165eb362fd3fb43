"""Payload codecs used to turn caller objects into the stored payload text."""

from __future__ import annotations

import json
from typing import Any, Protocol, runtime_checkable

from taskq.errors import PayloadEncodeError


@runtime_checkable
class PayloadCodec(Protocol):
    def encode(self, payload: Any) -> str: ...

    def decode(self, raw: str) -> Any: ...


class JsonPayloadCodec:
    """Compact JSON codec; the default agreed between enqueuers and handlers."""

    def encode(self, payload: Any) -> str:
        try:
            return json.dumps(payload, ensure_ascii=False, separators=(",", ":"))
        except (TypeError, ValueError) as error:
            raise PayloadEncodeError(f"Payload is not JSON serializable: {error}") from error

    def decode(self, raw: str) -> Any:
        return json.loads(raw)
