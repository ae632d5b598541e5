import json
from typing import Any, Dict, Optional

from captain.network.protocol import EVENT_NAME_KEYS, Frame


class FrameDecodeError(ValueError):
    """Raised when an inbound frame is not a JSON object with an event name."""


def encode_frame(frame: Frame) -> str:
    """
    Serialize a Frame to the single text message the socket carries.
    """
    event = getattr(frame.event, "value", frame.event)
    return json.dumps({"event": event, "data": frame.data}, separators=(",", ":"))


def decode_frame(raw: Any) -> Frame:
    """
    Parse one inbound text message into a Frame.

    Binary messages, invalid JSON, non-object JSON and objects without an
    event name (under ``event`` or ``@event``) raise FrameDecodeError.
    """
    if not isinstance(raw, str):
        raise FrameDecodeError(f"non-text frame ({type(raw).__name__})")
    try:
        obj = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise FrameDecodeError(f"invalid JSON: {exc}") from exc
    if not isinstance(obj, dict):
        raise FrameDecodeError("frame is not a JSON object")
    event = _event_name(obj)
    if event is None:
        raise FrameDecodeError("frame has no event name")
    data = obj.get("data")
    return Frame(event=event, data=data if isinstance(data, dict) else None)


def _event_name(obj: Dict[str, Any]) -> Optional[str]:
    for key in EVENT_NAME_KEYS:
        value = obj.get(key)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return None
