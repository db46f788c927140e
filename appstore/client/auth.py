# Copyright (c) Rich Connexions Ltd. All rights reserved.
# Licensed under the MIT License. See LICENSE for details.
"""Bearer tokens for the App Store Server API.

Each request carries a short-lived ES256 JWT signed with the In-App
Purchase key downloaded from App Store Connect.
"""

import logging
import time
from typing import Callable, Optional, Union

import jwt
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec

logger = logging.getLogger("appstore.client.auth")

AUDIENCE = "appstoreconnect-v1"
ALGORITHM = "ES256"
TOKEN_LIFETIME_SECONDS = 300


def load_signing_key(signing_key: Union[str, bytes]) -> ec.EllipticCurvePrivateKey:
    """Load a PEM (PKCS#8) P-256 private key.

    Raises:
        ValueError: If the key is not a PEM EC P-256 private key.
    """
    if isinstance(signing_key, str):
        signing_key = signing_key.encode("utf-8")
    key = serialization.load_pem_private_key(signing_key, password=None)
    if not isinstance(key, ec.EllipticCurvePrivateKey) or not isinstance(key.curve, ec.SECP256R1):
        raise ValueError("signing key must be an EC P-256 private key")
    return key


class BearerTokenAuthenticator:
    """Generates App Store Server API bearer tokens.

    Args:
        signing_key: PEM private key from App Store Connect.
        key_id: ID of that key.
        issuer_id: Issuer ID from the Keys page.
        bundle_id: The app's bundle identifier.
        clock: Returns the current UNIX time (tests pin it).
    """

    def __init__(
        self,
        signing_key: Union[str, bytes],
        key_id: str,
        issuer_id: str,
        bundle_id: str,
        clock: Optional[Callable[[], float]] = None,
    ):
        self._signing_key = load_signing_key(signing_key)
        self._key_id = key_id
        self._issuer_id = issuer_id
        self._bundle_id = bundle_id
        self._clock = clock or time.time

    def generate_token(self) -> str:
        issued_at = int(self._clock())
        claims = {
            "bid": self._bundle_id,
            "iss": self._issuer_id,
            "aud": AUDIENCE,
            "iat": issued_at,
            "exp": issued_at + TOKEN_LIFETIME_SECONDS,
        }
        token = jwt.encode(
            claims,
            self._signing_key,
            algorithm=ALGORITHM,
            headers={"kid": self._key_id},
        )
        logger.debug("Generated bearer token kid=%s exp=%d", self._key_id, claims["exp"])
        return token
