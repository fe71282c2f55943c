"""
Text codec for connection descriptors and ICE candidates.

Descriptors (offer/answer) and candidates are opaque blobs produced by the
transport layer. The same codec serves the relay path and the manual
copy-paste path, so a blob produced by one can be consumed by the other.
"""

import json
from typing import Any

# Generous upper bound: a fully gathered SDP with many candidates stays well below this.
MAX_BLOB_LEN = 64 * 1024


class DecodeError(Exception):
    """Error raised when a descriptor blob cannot be parsed."""


class EncodeError(ValueError):
    """Error raised when a descriptor cannot be turned into a blob decode would accept."""


def encode(descriptor: dict[str, Any]) -> str:
    """
    Encode a descriptor object to JSON text.

    Raises EncodeError if the text would exceed MAX_BLOB_LEN.
    """
    text = json.dumps(descriptor, separators=(",", ":"))
    if len(text) > MAX_BLOB_LEN:
        raise EncodeError(f"blob too large: {len(text)} chars (max {MAX_BLOB_LEN})")
    return text


def decode(text: str) -> dict[str, Any]:
    """
    Decode JSON text to a descriptor object.

    Raises DecodeError if text is oversized, not valid JSON, or not a JSON object.
    """
    if len(text) > MAX_BLOB_LEN:
        raise DecodeError(f"blob too large: {len(text)} chars (max {MAX_BLOB_LEN})")
    try:
        result = json.loads(text.strip())
    except (json.JSONDecodeError, RecursionError) as e:  # fmt: skip
        raise DecodeError(f"failed to decode descriptor: {e}") from e

    if not isinstance(result, dict):
        raise DecodeError(f"expected object, got {type(result).__name__}")

    return result


# Candidates travel through the exact same format.
encode_candidate = encode
decode_candidate = decode
