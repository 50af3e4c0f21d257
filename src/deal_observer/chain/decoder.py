"""Decoder for raw built-in actor events (Filecoin.GetActorEventsRaw).

A raw event is a flat list of ``{Flags, Key, Codec, Value}`` entries. The
``$type`` entry names the event; every other entry is a field of the event
body. Values are base64 encoded and decoded according to their codec.

This is the only place untrusted chain data is validated: anything that
does not match the claim schema is rejected, never coerced.
"""

from __future__ import annotations

import base64
import binascii
from typing import Any

import cbor2

from deal_observer.errors import MalformedEvent, UnknownEventType
from deal_observer.models.events import BlockEvent, ClaimEvent

CODEC_DAG_CBOR = 0x51  # 81
CODEC_RAW = 0x55  # 85
CID_TAG = 42

EVENT_TYPE_KEY = "$type"
CLAIM_EVENT = "claim"

# Entry key -> (ClaimEvent attribute, expected type)
_CLAIM_FIELDS: dict[str, tuple[str, type]] = {
    "id": ("claim_id", int),
    "provider": ("provider", int),
    "client": ("client", int),
    "piece-cid": ("piece_cid", str),
    "piece-size": ("piece_size", int),
    "term-start": ("term_start", int),
    "term-min": ("term_min", int),
    "term-max": ("term_max", int),
    "sector": ("sector", int),
}


def cid_bytes_to_str(raw: bytes) -> str:
    """Render a binary CIDv1 as its canonical base32 string (``b...``)."""
    if raw[:1] == b"\x00":
        raw = raw[1:]  # identity multibase prefix used in DAG-CBOR links
    if not raw or raw[0] != 0x01:
        raise ValueError("only CIDv1 links are supported")
    return "b" + base64.b32encode(raw).decode("ascii").lower().rstrip("=")


def _tag_hook(decoder: cbor2.CBORDecoder, tag: cbor2.CBORTag) -> Any:
    if tag.tag == CID_TAG:
        if not isinstance(tag.value, bytes):
            raise ValueError("CID tag must wrap a byte string")
        return cid_bytes_to_str(tag.value)
    return tag


def _entry_bytes(value: Any) -> bytes:
    """Entry values arrive as base64 text, or as dag-json ``{"/": {"bytes": ...}}``."""
    if isinstance(value, dict):
        try:
            value = value["/"]["bytes"]
        except (KeyError, TypeError):
            raise MalformedEvent(f"Unsupported entry value shape: {value!r}") from None
    if not isinstance(value, str):
        raise MalformedEvent(f"Entry value must be base64 text, got {type(value).__name__}")
    # dag-json omits padding
    padded = value + "=" * (-len(value) % 4)
    try:
        return base64.b64decode(padded, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise MalformedEvent(f"Entry value is not valid base64: {value!r}") from exc


def decode_entry_value(codec: int, value: Any) -> Any:
    data = _entry_bytes(value)
    if codec == CODEC_DAG_CBOR:
        try:
            return cbor2.loads(data, tag_hook=_tag_hook)
        except Exception as exc:
            raise MalformedEvent(f"Undecodable DAG-CBOR entry value: {exc}") from exc
    if codec == CODEC_RAW:
        return data
    raise MalformedEvent(f"Unsupported entry codec: {codec!r}")


def entries_to_event(entries: list) -> tuple[str, dict[str, Any]]:
    """Group raw entries into ``(event_type, fields)``."""
    event_type: Any = None
    fields: dict[str, Any] = {}
    for entry in entries:
        if not isinstance(entry, dict):
            raise MalformedEvent(f"Event entry must be an object, got {entry!r}")
        key = entry.get("Key")
        codec = entry.get("Codec")
        if not isinstance(key, str) or not _is_int(codec):
            raise MalformedEvent(f"Event entry missing Key/Codec: {entry!r}")
        decoded = decode_entry_value(codec, entry.get("Value"))
        if key == EVENT_TYPE_KEY:
            event_type = decoded
        else:
            fields[key] = decoded
    if not isinstance(event_type, str):
        raise MalformedEvent(f"Event has no usable {EVENT_TYPE_KEY} entry")
    return event_type, fields


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _claim_from_fields(fields: dict[str, Any]) -> ClaimEvent:
    if "id" not in fields:
        raise MalformedEvent("Claim event must have an id")
    kwargs: dict[str, Any] = {}
    for key, (attr, expected) in _CLAIM_FIELDS.items():
        if key not in fields:
            raise MalformedEvent(f"Claim event is missing field {key!r}")
        value = fields[key]
        ok = _is_int(value) if expected is int else isinstance(value, expected)
        if not ok:
            raise MalformedEvent(
                f"Claim field {key!r} must be {expected.__name__}, got {type(value).__name__}"
            )
        if expected is int and value < 0:
            raise MalformedEvent(f"Claim field {key!r} must be non-negative")
        kwargs[attr] = value
    return ClaimEvent(**kwargs)


def decode_block_event(raw: Any) -> BlockEvent:
    """Decode one GetActorEventsRaw element into a typed ``BlockEvent``."""
    if not isinstance(raw, dict):
        raise MalformedEvent(f"Actor event must be an object, got {type(raw).__name__}")
    entries = raw.get("entries")
    height = raw.get("height")
    emitter = raw.get("emitter")
    reverted = raw.get("reverted", False)
    if not isinstance(entries, list):
        raise MalformedEvent("Actor event has no entries list")
    if not _is_int(height):
        raise MalformedEvent(f"Actor event height must be an integer, got {height!r}")
    if not isinstance(emitter, str):
        raise MalformedEvent(f"Actor event emitter must be a string, got {emitter!r}")
    if not isinstance(reverted, bool):
        raise MalformedEvent(f"Actor event reverted flag must be a bool, got {reverted!r}")

    event_type, fields = entries_to_event(entries)
    if event_type != CLAIM_EVENT:
        raise UnknownEventType(event_type)

    return BlockEvent(
        height=height,
        emitter=emitter,
        event=_claim_from_fields(fields),
        reverted=reverted,
    )
