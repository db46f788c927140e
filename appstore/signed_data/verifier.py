# Copyright (c) Rich Connexions Ltd. All rights reserved.
# Licensed under the MIT License. See LICENSE for details.

"""SignedDataVerifier: the single entry point for App Store signed data.

Each call runs a strictly linear pipeline and stops at the first failure:

1. Decode the compact JWS (``jws.decode_jws``).
2. Rebuild the ``x5c`` chain (``chain.extract_certificate_chain``).
3. Validate the chain against the pinned anchors (``chain.ChainVerifier``).
4. Verify the ES256 signature with the leaf key (``signature``).
5. Decode the payload and check its identity fields (``payload``).

The payload bytes are never interpreted before step 4 succeeds.  For the
``Xcode`` and ``LocalTesting`` environments there is no production signing
key to trust, so steps 2 to 4 are skipped and the result is marked
``LOCALLY_TRUSTED``.

A verifier is immutable after construction and may be shared across
threads.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Generic, List, Optional, Sequence, Tuple, Type, TypeVar

from cryptography import x509
from cryptography.exceptions import UnsupportedAlgorithm

from appstore.signed_data.chain import ChainVerifier, extract_certificate_chain
from appstore.signed_data.exceptions import VerificationError
from appstore.signed_data.jws import decode_jws
from appstore.signed_data.models import (
    AppTransaction,
    Environment,
    JWSRenewalInfoDecodedPayload,
    JWSTransactionDecodedPayload,
    ResponseBodyV2DecodedPayload,
    SignedPayloadModel,
)
from appstore.signed_data.payload import decode_payload, validate_identity
from appstore.signed_data.revocation import (
    OCSPRevocationChecker,
    RevocationFailurePolicy,
)
from appstore.signed_data.signature import verify_jws_signature

logger = logging.getLogger("appstore.verify")

__all__ = [
    "SignedDataVerifier",
    "TrustLevel",
    "VerifiedPayload",
    "load_root_certificate",
]

T = TypeVar("T", bound=SignedPayloadModel)


class TrustLevel(str, Enum):
    """How far the signature of a verified payload was trusted."""

    CHAIN_VERIFIED = "CHAIN_VERIFIED"
    LOCALLY_TRUSTED = "LOCALLY_TRUSTED"


@dataclass(frozen=True)
class VerifiedPayload(Generic[T]):
    """A decoded payload together with how it was trusted.

    Attributes:
        payload:      The typed payload model.
        trust_level:  ``CHAIN_VERIFIED`` for chain-validated signatures.
        warnings:     Non-fatal findings, e.g. soft revocation failures.
    """

    payload: T
    trust_level: TrustLevel
    warnings: Tuple[str, ...] = ()


def load_root_certificate(data: bytes) -> x509.Certificate:
    """Load a trust anchor given as DER or PEM bytes.

    Raises:
        ValueError: If *data* is neither.
    """
    if not isinstance(data, (bytes, bytearray)):
        raise ValueError("root certificate must be bytes")
    if data.lstrip().startswith(b"-----BEGIN"):
        return x509.load_pem_x509_certificate(bytes(data))
    return x509.load_der_x509_certificate(bytes(data))


def _log_failure(model: type, error: VerificationError) -> None:
    logger.warning(
        "%s verification failed: code=%s reason=%s message=%s",
        model.__name__, error.code,
        error.reason.value if error.reason is not None else None, error.message,
    )


class SignedDataVerifier:
    """Verifies and decodes App Store signed transactions, renewal info,
    server notifications and app transactions.

    Parameters
    ----------
    root_certificates : sequence of bytes
        Pinned trust anchors, DER or PEM encoded.
    bundle_id : str
        Expected ``bundleId`` of every payload.
    app_apple_id : int, optional
        Expected ``appAppleId``; required for Production.
    environment : Environment
        Expected environment of every payload.
    enable_online_checks : bool
        Query OCSP for every non-anchor certificate.
    revocation_policy : RevocationFailurePolicy
        Outcome of an unavailable revocation status.
    verification_time : datetime, optional
        Fixed, timezone-aware instant for validity checks; the wall clock
        is read on every call when omitted.
    revocation_checker : OCSPRevocationChecker, optional
        Checker to use when online checks are enabled.

    Raises
    ------
    ValueError
        On inconsistent configuration.
    """

    def __init__(
        self,
        root_certificates: Sequence[bytes],
        bundle_id: str,
        app_apple_id: Optional[int],
        environment: Environment,
        enable_online_checks: bool = False,
        revocation_policy: RevocationFailurePolicy = RevocationFailurePolicy.SOFT_WARN,
        verification_time: Optional[datetime] = None,
        revocation_checker: Optional[OCSPRevocationChecker] = None,
    ) -> None:
        environment = Environment(environment)
        if not bundle_id:
            raise ValueError("bundle_id is required")
        if environment == Environment.PRODUCTION and app_apple_id is None:
            raise ValueError("app_apple_id is required for the Production environment")
        if verification_time is not None and verification_time.tzinfo is None:
            raise ValueError("verification_time must be timezone-aware")

        anchors: List[x509.Certificate] = []
        for index, data in enumerate(root_certificates or ()):
            try:
                anchors.append(load_root_certificate(data))
            except ValueError as e:
                raise ValueError(f"root certificate {index} is not DER or PEM: {e}") from e
        if not anchors and not environment.is_local:
            raise ValueError(
                f"at least one root certificate is required for {environment.value}"
            )

        self._bundle_id = bundle_id
        self._app_apple_id = app_apple_id
        self._environment = environment
        self._verification_time = verification_time
        self._online_checks = enable_online_checks

        if enable_online_checks and revocation_checker is None:
            revocation_checker = OCSPRevocationChecker()
        self._chain_verifier = ChainVerifier(
            anchors,
            revocation_checker=revocation_checker if enable_online_checks else None,
            revocation_policy=RevocationFailurePolicy(revocation_policy),
        )

        logger.info(
            "SignedDataVerifier ready: bundle_id=%s environment=%s anchors=%d online_checks=%s",
            bundle_id, environment.value, len(anchors), enable_online_checks,
        )

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def bundle_id(self) -> str:
        return self._bundle_id

    @property
    def app_apple_id(self) -> Optional[int]:
        return self._app_apple_id

    @property
    def environment(self) -> Environment:
        return self._environment

    @property
    def online_checks(self) -> bool:
        return self._online_checks

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    def verify_and_decode_signed_transaction(
        self, signed_transaction: str
    ) -> VerifiedPayload[JWSTransactionDecodedPayload]:
        return self._verify(signed_transaction, JWSTransactionDecodedPayload)

    def verify_and_decode_renewal_info(
        self, signed_renewal_info: str
    ) -> VerifiedPayload[JWSRenewalInfoDecodedPayload]:
        return self._verify(signed_renewal_info, JWSRenewalInfoDecodedPayload)

    def verify_and_decode_notification(
        self, signed_payload: str
    ) -> VerifiedPayload[ResponseBodyV2DecodedPayload]:
        return self._verify(signed_payload, ResponseBodyV2DecodedPayload)

    def verify_and_decode_app_transaction(
        self, signed_app_transaction: str
    ) -> VerifiedPayload[AppTransaction]:
        return self._verify(signed_app_transaction, AppTransaction)

    # ------------------------------------------------------------------
    # Pipeline
    # ------------------------------------------------------------------

    def _now(self) -> datetime:
        if self._verification_time is not None:
            return self._verification_time
        return datetime.now(timezone.utc)

    def _verify(self, signed: str, model: Type[T]) -> VerifiedPayload[T]:
        try:
            result = self._run_pipeline(signed, model)
        except VerificationError as e:
            _log_failure(model, e)
            raise
        except (ValueError, TypeError, UnsupportedAlgorithm) as e:
            error = VerificationError.internal(f"{type(e).__name__}: {e}")
            _log_failure(model, error)
            raise error from e
        logger.debug(
            "%s verified: trust_level=%s warnings=%d",
            model.__name__, result.trust_level.value, len(result.warnings),
        )
        return result

    def _run_pipeline(self, signed: str, model: Type[T]) -> VerifiedPayload[T]:
        decoded = decode_jws(signed)

        warnings: Tuple[str, ...] = ()
        if self._environment.is_local:
            trust_level = TrustLevel.LOCALLY_TRUSTED
        else:
            chain = extract_certificate_chain(decoded.header)
            verification = self._chain_verifier.verify(chain, self._now())
            verify_jws_signature(decoded, verification.leaf.public_key())
            trust_level = TrustLevel.CHAIN_VERIFIED
            warnings = verification.warnings

        payload = decode_payload(decoded, model)
        validate_identity(payload, self._bundle_id, self._app_apple_id, self._environment)
        return VerifiedPayload(payload=payload, trust_level=trust_level, warnings=warnings)
