# Copyright (c) Rich Connexions Ltd. All rights reserved.
# Licensed under the MIT License. See LICENSE for details.

"""ES256 JWS signature verification.

Verifies the signature of an App Store JWS with the public key of the
already-validated leaf certificate.  The key must never come from a
chain that has not passed :class:`~appstore.signed_data.chain.ChainVerifier`.

References
----------
- RFC 7515 §5.2: JWS signing input
- RFC 7518 §3.4: ECDSA signatures as raw ``R || S``
"""

from __future__ import annotations

import logging

from cryptography.exceptions import InvalidSignature, UnsupportedAlgorithm
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.asymmetric.utils import encode_dss_signature

from appstore.config import ALLOWED_ALGORITHMS
from appstore.signed_data.exceptions import VerificationError
from appstore.signed_data.jws import DecodedJWS

logger = logging.getLogger("appstore.signature")

__all__ = ["verify_jws_signature"]

# P-256 coordinates are 32 bytes, so the raw signature is 64.
_ES256_SIGNATURE_LEN = 64


def verify_jws_signature(decoded: DecodedJWS, public_key: ec.EllipticCurvePublicKey) -> None:
    """Verify the ES256 signature on *decoded*.

    Parameters
    ----------
    decoded : DecodedJWS
        Structurally decoded JWS; ``raw_header`` and ``raw_payload`` are
        used verbatim as the signing input.
    public_key : EllipticCurvePublicKey
        Public key of the validated leaf certificate.

    Raises
    ------
    VerificationError
        ``UNSUPPORTED_ALGORITHM`` if the header algorithm or key type is
        not allowlisted, ``INVALID_SIGNATURE`` if the signature does not
        verify.
    """
    alg = decoded.header.alg
    if alg not in ALLOWED_ALGORITHMS:
        raise VerificationError.unsupported_algorithm(alg)

    if not isinstance(public_key, ec.EllipticCurvePublicKey) or not isinstance(
        public_key.curve, ec.SECP256R1
    ):
        raise VerificationError.unsupported_algorithm(
            f"{alg} requires a P-256 key, leaf has {type(public_key).__name__}"
        )

    signature = decoded.signature
    if len(signature) != _ES256_SIGNATURE_LEN:
        raise VerificationError.invalid_signature(
            f"unexpected ES256 signature length {len(signature)}"
        )

    r = int.from_bytes(signature[:32], "big")
    s = int.from_bytes(signature[32:], "big")

    try:
        public_key.verify(
            encode_dss_signature(r, s),
            decoded.signing_input,
            ec.ECDSA(hashes.SHA256()),
        )
    except InvalidSignature as exc:
        raise VerificationError.invalid_signature("signature does not match") from exc
    except (ValueError, UnsupportedAlgorithm) as exc:
        raise VerificationError.internal(f"ECDSA verification failed: {exc}") from exc

    logger.debug("JWS signature verified (%s)", alg)
