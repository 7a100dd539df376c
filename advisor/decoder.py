"""Frame decoding for observed colonist.io WebSocket traffic.

Binary frames are MessagePack. Exactly one top-level value is decoded per
frame; anything after it is ignored. Malformed input never raises: the
decoder logs the failing offset and a hex preview and returns None.

Map keys are not restricted to strings. Composite keys (arrays, maps) are
frozen into hashable equivalents so they can live in a dict. Extension
types are not used by the game, so their payload is skipped and an
ExtValue marker carrying only the code and payload length is returned.
"""
import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

import msgpack
from msgpack.exceptions import UnpackException

logger = logging.getLogger(__name__)

HEX_PREVIEW_BYTES = 100


@dataclass(frozen=True)
class ExtValue:
    """Marker for an extension-typed value whose payload was skipped."""
    code: int
    length: int


class FrozenMap(tuple):
    """Hashable stand-in for a map that appears as a map key."""
    __slots__ = ()

    def __new__(cls, pairs):
        return super().__new__(cls, tuple(pairs))

    def to_dict(self) -> Dict:
        return dict(self)

    def __repr__(self) -> str:
        return f"FrozenMap({dict(self)!r})"


def _freeze(value: Any) -> Any:
    if isinstance(value, list):
        return tuple(_freeze(v) for v in value)
    if isinstance(value, dict):
        return FrozenMap((k, _freeze(v)) for k, v in value.items())
    return value


def _pairs_to_dict(pairs) -> Dict:
    result = {}
    for key, value in pairs:
        try:
            result[key] = value
        except TypeError:
            result[_freeze(key)] = value
    return result


def _ext_hook(code: int, data: bytes) -> ExtValue:
    return ExtValue(code=code, length=len(data))


def hex_preview(data: bytes, limit: int = HEX_PREVIEW_BYTES) -> str:
    return " ".join(f"{b:02x}" for b in data[:limit])


def decode(data: Any) -> Any:
    """Decode one MessagePack value from a byte buffer.

    Args:
        data: bytes-like object, or a list of byte values as delivered by
            the page-side interceptor.

    Returns:
        The decoded value, or None if the buffer is empty, truncated or
        malformed. A legitimately encoded nil also decodes to None.
    """
    try:
        buf = bytes(data)
    except (TypeError, ValueError) as e:
        logger.warning(f"Cannot decode frame of type {type(data).__name__}: {e}")
        return None

    if not buf:
        logger.debug("Empty binary frame")
        return None

    # No container or string can hold more elements than there are bytes,
    # so bounding the buffer also bounds every declared length.
    unpacker = msgpack.Unpacker(
        raw=False,
        strict_map_key=False,
        object_pairs_hook=_pairs_to_dict,
        ext_hook=_ext_hook,
        max_buffer_size=len(buf),
    )
    try:
        unpacker.feed(buf)
        value = unpacker.unpack()
    except (UnpackException, ValueError, TypeError) as e:
        offset = unpacker.tell()
        logger.error(
            f"MessagePack decode error at offset {offset} ({type(e).__name__}: {e}); "
            f"size={len(buf)} bytes: {hex_preview(buf)}"
        )
        return None

    consumed = unpacker.tell()
    if consumed < len(buf):
        logger.debug(f"{len(buf) - consumed} trailing bytes ignored after decode")
    return value


@dataclass
class WireFrame:
    """One frame as delivered by the transport layer."""
    direction: str           # "incoming" or "outgoing"
    encoding: str            # "binary" or "text"
    raw: Any                 # bytes for binary frames, str for text frames
    byte_size: int = 0

    @classmethod
    def from_dict(cls, record: Dict) -> "WireFrame":
        """Build a frame from an interceptor record.

        Accepts both this package's keys (encoding/raw/byteSize) and the
        page interceptor's keys (type/data/size).
        """
        encoding = record.get("encoding", record.get("type", "text"))
        raw = record.get("raw", record.get("data"))
        if encoding == "binary" and isinstance(raw, list):
            try:
                raw = bytes(raw)
            except (TypeError, ValueError) as e:
                logger.warning(f"Binary record holds non-byte values: {e}")
                raw = None
        size = record.get("byteSize", record.get("size"))
        try:
            size = int(size)
        except (TypeError, ValueError):
            size = len(raw) if isinstance(raw, (bytes, str)) else 0
        return cls(
            direction=record.get("direction", "incoming"),
            encoding=encoding,
            raw=raw,
            byte_size=size,
        )


def decode_frame(frame: WireFrame) -> Optional[Any]:
    """Decode a transport frame into a value tree.

    Binary frames go through the MessagePack decoder, text frames through
    JSON. Returns None when the frame cannot be decoded.
    """
    if frame.encoding == "binary":
        value = decode(frame.raw)
        if value is None:
            logger.debug(f"Dropped undecodable binary frame ({frame.byte_size} bytes)")
        return value

    if frame.encoding == "text":
        try:
            return json.loads(frame.raw)
        except (json.JSONDecodeError, TypeError) as e:
            logger.debug(f"Text frame is not JSON ({e}): {str(frame.raw)[:100]}")
            return None

    logger.warning(f"Unknown frame encoding {frame.encoding!r}")
    return None
