# Copyright (c) Rich Connexions Ltd. All rights reserved.
# Licensed under the MIT License. See LICENSE for details.

"""Compact JWS decoder for App Store signed payloads.

Splits the compact serialisation into its three segments, base64url-decodes
them and validates the JOSE header fields the rest of the pipeline relies on
(``alg`` and the ``x5c`` certificate chain). Nothing in the payload is
interpreted here; it is carried as raw bytes until the signature has been
verified.
"""

from __future__ import annotations

import base64
import binascii
import json
import logging
import re
from dataclasses import dataclass
from typing import Any, Dict, Tuple

from appstore.signed_data.exceptions import VerificationError

logger = logging.getLogger("appstore.jws")

__all__ = ["JWSHeader", "DecodedJWS", "decode_jws", "b64url_decode"]

_B64URL_PATTERN = re.compile(r"^[A-Za-z0-9_-]+$")


# ---------------------------------------------------------------------------
# Data classes
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class JWSHeader:
    """Decoded JOSE header.

    Attributes:
        alg:  Signature algorithm (e.g. ``"ES256"``).
        x5c:  Certificate chain entries, standard base64 DER, leaf first.
    """

    alg: str
    x5c: Tuple[str, ...]


@dataclass(frozen=True)
class DecodedJWS:
    """A structurally valid compact JWS.

    Attributes:
        header:       Decoded JOSE header.
        raw_header:   Header segment exactly as received.
        raw_payload:  Payload segment exactly as received.
        payload:      base64url-decoded payload bytes (not yet trusted).
        signature:    base64url-decoded signature bytes.
    """

    header: JWSHeader
    raw_header: str
    raw_payload: str
    payload: bytes
    signature: bytes

    @property
    def signing_input(self) -> bytes:
        return f"{self.raw_header}.{self.raw_payload}".encode("ascii")


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------

def b64url_decode(segment: str, label: str) -> bytes:
    """Decode an unpadded base64url *segment*, raising on any stray character."""
    if not _B64URL_PATTERN.match(segment):
        raise VerificationError.invalid_format(
            f"{label} is not unpadded base64url"
        )
    padded = segment + "=" * (-len(segment) % 4)
    try:
        return base64.urlsafe_b64decode(padded)
    except (binascii.Error, ValueError) as exc:
        raise VerificationError.invalid_format(
            f"Base64url decoding of {label} failed: {exc}"
        ) from exc


def _decode_header_json(raw: bytes) -> Dict[str, Any]:
    try:
        obj = json.loads(raw)
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise VerificationError.invalid_format(
            f"JSON decoding of header failed: {exc}"
        ) from exc
    if not isinstance(obj, dict):
        raise VerificationError.invalid_format(
            f"Expected JSON object for header, got {type(obj).__name__}"
        )
    return obj


def _extract_header(data: Dict[str, Any]) -> JWSHeader:
    alg = data.get("alg")
    if not isinstance(alg, str) or not alg:
        raise VerificationError.invalid_format("JOSE header missing 'alg'")

    x5c = data.get("x5c")
    if not isinstance(x5c, list) or not x5c:
        raise VerificationError.invalid_format("JOSE header missing 'x5c' chain")
    if not all(isinstance(entry, str) and entry for entry in x5c):
        raise VerificationError.invalid_format("'x5c' entries must be non-empty strings")

    return JWSHeader(alg=alg, x5c=tuple(x5c))


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def decode_jws(signed_payload: str) -> DecodedJWS:
    """Decode a compact JWS into its header, payload and signature.

    Parameters:
        signed_payload: The ``header.payload.signature`` string.

    Returns:
        A :class:`DecodedJWS`. The payload bytes are untrusted at this point.

    Raises:
        VerificationError: ``INVALID_JWS_FORMAT`` on any structural problem.
    """
    if not isinstance(signed_payload, str) or not signed_payload:
        raise VerificationError.invalid_format("signed payload is missing or empty")
    if not signed_payload.isascii():
        raise VerificationError.invalid_format("signed payload contains non-ASCII characters")

    parts = signed_payload.split(".")
    if len(parts) != 3:
        raise VerificationError.invalid_format(
            f"expected 3 segments, got {len(parts)}"
        )
    raw_header, raw_payload, raw_signature = parts
    if not (raw_header and raw_payload and raw_signature):
        raise VerificationError.invalid_format("empty segment")

    header = _extract_header(_decode_header_json(b64url_decode(raw_header, "header")))
    payload = b64url_decode(raw_payload, "payload")
    signature = b64url_decode(raw_signature, "signature")

    logger.debug("Decoded JWS alg=%s chain_length=%d", header.alg, len(header.x5c))

    return DecodedJWS(
        header=header,
        raw_header=raw_header,
        raw_payload=raw_payload,
        payload=payload,
        signature=signature,
    )
