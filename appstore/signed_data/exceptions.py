# Copyright (c) Rich Connexions Ltd. All rights reserved.
# Licensed under the MIT License. See LICENSE for details.
"""Signed data verification errors and their status codes."""

from enum import Enum
from typing import Optional


class VerificationStatus(str, Enum):
    INVALID_JWS_FORMAT = "INVALID_JWS_FORMAT"
    MALFORMED_CERTIFICATE = "MALFORMED_CERTIFICATE"
    INVALID_CERTIFICATE_CHAIN = "INVALID_CERTIFICATE_CHAIN"
    UNSUPPORTED_ALGORITHM = "UNSUPPORTED_ALGORITHM"
    INVALID_SIGNATURE = "INVALID_SIGNATURE"
    BUNDLE_ID_MISMATCH = "BUNDLE_ID_MISMATCH"
    APP_APPLE_ID_MISMATCH = "APP_APPLE_ID_MISMATCH"
    ENVIRONMENT_MISMATCH = "ENVIRONMENT_MISMATCH"
    INTERNAL = "INTERNAL"


class ChainFailure(str, Enum):
    """Sub-kind carried by ``INVALID_CERTIFICATE_CHAIN`` errors."""

    EXPIRED_CERTIFICATE = "EXPIRED_CERTIFICATE"
    UNTRUSTED_ROOT = "UNTRUSTED_ROOT"
    BROKEN_CHAIN = "BROKEN_CHAIN"
    REVOKED_CERTIFICATE = "REVOKED_CERTIFICATE"
    REVOCATION_UNAVAILABLE = "REVOCATION_UNAVAILABLE"


class AppStoreError(Exception):
    """Base exception for App Store signed data errors."""
    pass


class VerificationError(AppStoreError):
    """Terminal failure of a single verification call.

    ``status`` is the :class:`VerificationStatus`; ``code`` is its string
    value. ``reason`` is only set for ``INVALID_CERTIFICATE_CHAIN``.
    """

    def __init__(
        self,
        status: VerificationStatus,
        message: str,
        reason: Optional[ChainFailure] = None,
    ):
        self.status = status
        self.code = status.value
        self.message = message
        self.reason = reason
        super().__init__(message)

    def __repr__(self) -> str:
        if self.reason is not None:
            return f"VerificationError({self.code}/{self.reason.value}: {self.message!r})"
        return f"VerificationError({self.code}: {self.message!r})"

    # -- JWS structure -------------------------------------------------------

    @classmethod
    def invalid_format(cls, reason: str) -> "VerificationError":
        return cls(VerificationStatus.INVALID_JWS_FORMAT, f"JWS is malformed: {reason}")

    # -- certificates ----------------------------------------------------------

    @classmethod
    def malformed_certificate(cls, reason: str) -> "VerificationError":
        return cls(
            VerificationStatus.MALFORMED_CERTIFICATE,
            f"x5c certificate chain is malformed: {reason}",
        )

    @classmethod
    def expired_certificate(cls, index: int, subject: str, reason: str) -> "VerificationError":
        return cls(
            VerificationStatus.INVALID_CERTIFICATE_CHAIN,
            f"Certificate {index} ({subject}) {reason}",
            ChainFailure.EXPIRED_CERTIFICATE,
        )

    @classmethod
    def untrusted_root(cls, subject: str) -> "VerificationError":
        return cls(
            VerificationStatus.INVALID_CERTIFICATE_CHAIN,
            f"Chain top ({subject}) does not lead to a pinned trust anchor",
            ChainFailure.UNTRUSTED_ROOT,
        )

    @classmethod
    def broken_chain(cls, index: int, reason: str) -> "VerificationError":
        return cls(
            VerificationStatus.INVALID_CERTIFICATE_CHAIN,
            f"Chain broken at position {index}: {reason}",
            ChainFailure.BROKEN_CHAIN,
        )

    @classmethod
    def revoked_certificate(cls, index: int, serial: int) -> "VerificationError":
        return cls(
            VerificationStatus.INVALID_CERTIFICATE_CHAIN,
            f"Certificate {index} (serial={serial:x}) has been revoked",
            ChainFailure.REVOKED_CERTIFICATE,
        )

    @classmethod
    def revocation_unavailable(cls, index: int, reason: str) -> "VerificationError":
        return cls(
            VerificationStatus.INVALID_CERTIFICATE_CHAIN,
            f"Revocation status of certificate {index} unavailable: {reason}",
            ChainFailure.REVOCATION_UNAVAILABLE,
        )

    # -- algorithms / signature -----------------------------------------------

    @classmethod
    def unsupported_algorithm(cls, alg: str) -> "VerificationError":
        return cls(
            VerificationStatus.UNSUPPORTED_ALGORITHM,
            f"Algorithm not allowed: {alg}",
        )

    @classmethod
    def invalid_signature(cls, reason: str) -> "VerificationError":
        return cls(
            VerificationStatus.INVALID_SIGNATURE,
            f"JWS signature verification failed: {reason}",
        )

    # -- payload identity -----------------------------------------------------

    @classmethod
    def bundle_id_mismatch(cls, expected: str, actual: object) -> "VerificationError":
        return cls(
            VerificationStatus.BUNDLE_ID_MISMATCH,
            f"bundleId mismatch: expected={expected!r}, payload={actual!r}",
        )

    @classmethod
    def app_apple_id_mismatch(cls, expected: object, actual: object) -> "VerificationError":
        return cls(
            VerificationStatus.APP_APPLE_ID_MISMATCH,
            f"appAppleId mismatch: expected={expected!r}, payload={actual!r}",
        )

    @classmethod
    def environment_mismatch(cls, expected: object, actual: object) -> "VerificationError":
        return cls(
            VerificationStatus.ENVIRONMENT_MISMATCH,
            f"environment mismatch: expected={expected!r}, payload={actual!r}",
        )

    @classmethod
    def internal(cls, reason: str) -> "VerificationError":
        return cls(VerificationStatus.INTERNAL, f"Internal verification failure: {reason}")
