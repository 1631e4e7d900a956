"""Line-delimited JSON codec for engine requests and replies."""

import dataclasses
import json
from collections.abc import Mapping

from enginemux.errors import DecodeError
from enginemux.errors import EncodeError
from enginemux.errors import MissingIDError

ID_FIELD: str = "id"
_SEPARATORS: tuple[str, str] = (",", ":")


def _as_mapping(request: object) -> Mapping[str, object]:
    """Return the JSON-object view of a request value.

    :param request: Mapping, dataclass instance, or object with ``to_wire()``.
    :returns: Mapping to serialize.
    :raises EncodeError: If the value has no JSON-object form.
    """
    to_wire: object = getattr(request, "to_wire", None)
    if callable(to_wire) is True:
        wire_value: object = to_wire()
        if isinstance(wire_value, Mapping) is False:
            raise EncodeError(f"to_wire() must return a mapping, got {type(wire_value).__name__}")
        return wire_value

    if isinstance(request, Mapping) is True:
        return request

    is_dataclass_instance: bool = dataclasses.is_dataclass(request) and not isinstance(request, type)
    if is_dataclass_instance is True:
        return dataclasses.asdict(request)

    raise EncodeError(f"Request must serialize to a JSON object, got {type(request).__name__}")


def _require_id(value: Mapping[str, object]) -> str | None:
    """Return the ``id`` field when it is a non-empty string.

    :param value: Decoded or to-be-encoded mapping.
    :returns: Identifier, or ``None`` when unusable.
    """
    request_id_obj: object = value.get(ID_FIELD)
    if isinstance(request_id_obj, str) is False or request_id_obj == "":
        return None
    return request_id_obj


def request_id(request: object) -> str:
    """Extract the correlation id from a request without encoding it.

    :param request: Request value.
    :returns: Non-empty request id.
    :raises EncodeError: If the request has no usable ``id``.
    """
    mapping: Mapping[str, object] = _as_mapping(request)
    found: str | None = _require_id(mapping)
    if found is None:
        raise EncodeError("Request must carry a non-empty string 'id' field")
    return found


def encode_request(request: object) -> bytes:
    """Serialize one request to a single JSON line without the newline.

    :param request: Request value.
    :returns: UTF-8 encoded compact JSON.
    :raises EncodeError: If the value is not serializable or lacks an ``id``.
    """
    mapping: Mapping[str, object] = _as_mapping(request)
    if _require_id(mapping) is None:
        raise EncodeError("Request must carry a non-empty string 'id' field")

    try:
        text: str = json.dumps(dict(mapping), separators=_SEPARATORS, ensure_ascii=False, allow_nan=False)
    except (TypeError, ValueError) as exc:
        raise EncodeError(f"Request is not JSON serializable: {exc}") from exc
    return text.encode("utf-8")


def decode_reply(line: bytes | str) -> dict[str, object]:
    """Parse one engine output line into a reply object.

    :param line: Raw line, with or without its trailing newline.
    :returns: Decoded reply mapping.
    :raises DecodeError: If the line is not a JSON object.
    :raises MissingIDError: If the object has no usable ``id``.
    """
    text: str
    if isinstance(line, bytes) is True:
        try:
            text = line.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise DecodeError(f"Reply is not valid UTF-8: {exc}", line.decode("utf-8", errors="replace")) from exc
    else:
        text = line
    text = text.strip()

    try:
        decoded: object = json.loads(text)
    except json.JSONDecodeError as exc:
        raise DecodeError(f"Malformed JSON reply: {exc}", text) from exc

    if isinstance(decoded, dict) is False:
        raise DecodeError(f"Reply must be a JSON object, got {type(decoded).__name__}", text)
    if _require_id(decoded) is None:
        raise MissingIDError("Reply has no usable 'id' field", text)
    return decoded


__all__: list[str] = [
    "ID_FIELD",
    "decode_reply",
    "encode_request",
    "request_id",
]
