# Copyright (c) Rich Connexions Ltd. All rights reserved.
# Licensed under the MIT License. See LICENSE for details.

"""x5c certificate chain extraction and path validation.

The chain carried in the JWS header is an ordered sequence, leaf first.
Validation walks it by index: each certificate must name, and be signed
by, the one after it; the last certificate must be (or be signed by) a
pinned trust anchor.  No certificate graph is built.

Checks run in a fixed order so that the reported failure is stable:

1. Algorithm allowlist (ECDSA keys and ECDSA signatures only).
2. Adjacent issuer/subject and signature links.
3. Basic constraints (marked non-CA leaf, CA intermediates within path length).
4. Trust anchor match by name and signature.
5. Validity windows at the verification instant.
6. Optional OCSP revocation lookup.
"""

from __future__ import annotations

import base64
import binascii
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional, Sequence, Tuple

from cryptography import x509
from cryptography.exceptions import InvalidSignature, UnsupportedAlgorithm
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.x509.oid import SignatureAlgorithmOID

from appstore.config import MAX_CHAIN_LENGTH, MIN_CHAIN_LENGTH
from appstore.signed_data.exceptions import VerificationError
from appstore.signed_data.jws import JWSHeader
from appstore.signed_data.revocation import (
    CertificateStatus,
    OCSPRevocationChecker,
    RevocationCheckError,
    RevocationFailurePolicy,
)

logger = logging.getLogger("appstore.chain")

__all__ = [
    "ALLOWED_CERTIFICATE_SIGNATURE_ALGORITHMS",
    "CertificateChain",
    "ChainVerification",
    "ChainVerifier",
    "extract_certificate_chain",
]

CertificateChain = Tuple[x509.Certificate, ...]

ALLOWED_CERTIFICATE_SIGNATURE_ALGORITHMS = frozenset({
    SignatureAlgorithmOID.ECDSA_WITH_SHA256,
    SignatureAlgorithmOID.ECDSA_WITH_SHA384,
})


# ---------------------------------------------------------------------------
# Extraction
# ---------------------------------------------------------------------------

def extract_certificate_chain(header: JWSHeader) -> CertificateChain:
    """Decode the ``x5c`` entries of *header* into X.509 certificates.

    Raises:
        VerificationError: ``MALFORMED_CERTIFICATE`` if an entry is not
            base64 DER or the chain length is out of bounds.
    """
    count = len(header.x5c)
    if count < MIN_CHAIN_LENGTH:
        raise VerificationError.malformed_certificate("chain has no leaf certificate")
    if count > MAX_CHAIN_LENGTH:
        raise VerificationError.malformed_certificate(
            f"chain length {count} exceeds maximum {MAX_CHAIN_LENGTH}"
        )

    certificates: List[x509.Certificate] = []
    for index, entry in enumerate(header.x5c):
        try:
            der = base64.b64decode(entry, validate=True)
        except (binascii.Error, ValueError) as exc:
            raise VerificationError.malformed_certificate(
                f"entry {index} is not base64: {exc}"
            ) from exc
        try:
            certificates.append(x509.load_der_x509_certificate(der))
        except ValueError as exc:
            raise VerificationError.malformed_certificate(
                f"entry {index} is not a DER certificate: {exc}"
            ) from exc
    return tuple(certificates)


# ---------------------------------------------------------------------------
# Verification
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ChainVerification:
    """Outcome of a successful chain validation.

    Attributes:
        chain:     The validated chain, leaf first.
        anchor:    The pinned anchor the chain terminates at.
        warnings:  Non-fatal findings (soft revocation failures).
    """

    chain: CertificateChain
    anchor: x509.Certificate
    warnings: Tuple[str, ...] = ()

    @property
    def leaf(self) -> x509.Certificate:
        return self.chain[0]


def _subject(cert: x509.Certificate) -> str:
    return cert.subject.rfc4514_string()


def _is_signed_by(child: x509.Certificate, issuer: x509.Certificate) -> bool:
    """Return whether *child*'s signature verifies under *issuer*'s key."""
    public_key = issuer.public_key()
    if not isinstance(public_key, ec.EllipticCurvePublicKey):
        return False
    try:
        public_key.verify(
            child.signature,
            child.tbs_certificate_bytes,
            ec.ECDSA(child.signature_hash_algorithm),
        )
    except InvalidSignature:
        return False
    except (ValueError, TypeError, UnsupportedAlgorithm) as exc:
        raise VerificationError.internal(f"certificate signature check failed: {exc}") from exc
    return True


def _basic_constraints(cert: x509.Certificate) -> Optional[x509.BasicConstraints]:
    try:
        return cert.extensions.get_extension_for_class(x509.BasicConstraints).value
    except x509.ExtensionNotFound:
        return None


class ChainVerifier:
    """Validates x5c chains against an immutable set of pinned anchors.

    Parameters
    ----------
    trust_anchors : sequence of x509.Certificate
        Pinned root certificates.  Copied into a tuple at construction.
    revocation_checker : OCSPRevocationChecker, optional
        When given, every non-anchor certificate is checked over OCSP.
    revocation_policy : RevocationFailurePolicy
        Outcome of an unreachable or inconclusive OCSP lookup.
    """

    def __init__(
        self,
        trust_anchors: Sequence[x509.Certificate],
        revocation_checker: Optional[OCSPRevocationChecker] = None,
        revocation_policy: RevocationFailurePolicy = RevocationFailurePolicy.SOFT_WARN,
    ) -> None:
        self._anchors: Tuple[x509.Certificate, ...] = tuple(trust_anchors)
        self._revocation_checker = revocation_checker
        self._revocation_policy = revocation_policy

    @property
    def trust_anchors(self) -> Tuple[x509.Certificate, ...]:
        return self._anchors

    def verify(self, chain: CertificateChain, at: datetime) -> ChainVerification:
        """Validate *chain* at the instant *at* (timezone-aware).

        Raises:
            VerificationError: ``UNSUPPORTED_ALGORITHM`` or
                ``INVALID_CERTIFICATE_CHAIN`` with the failing sub-kind.
        """
        if not chain:
            raise VerificationError.malformed_certificate("chain is empty")

        self._check_algorithms(chain)
        self._check_links(chain)
        self._check_basic_constraints(chain)
        anchor, anchor_in_chain = self._match_anchor(chain[-1])

        validity_scope = list(chain)
        if not anchor_in_chain:
            validity_scope.append(anchor)
        self._check_validity(validity_scope, at)

        warnings: List[str] = []
        if self._revocation_checker is not None:
            warnings.extend(self._check_revocation(chain, anchor, anchor_in_chain))

        logger.debug(
            "Chain verified: length=%d anchor=%s", len(chain), _subject(anchor)
        )
        return ChainVerification(chain=chain, anchor=anchor, warnings=tuple(warnings))

    # ------------------------------------------------------------------
    # Individual checks
    # ------------------------------------------------------------------

    @staticmethod
    def _check_algorithms(chain: CertificateChain) -> None:
        for cert in chain:
            if cert.signature_algorithm_oid not in ALLOWED_CERTIFICATE_SIGNATURE_ALGORITHMS:
                raise VerificationError.unsupported_algorithm(
                    f"{cert.signature_algorithm_oid.dotted_string} on {_subject(cert)}"
                )
            try:
                public_key = cert.public_key()
            except (ValueError, UnsupportedAlgorithm) as exc:
                raise VerificationError.unsupported_algorithm(
                    f"unreadable public key on {_subject(cert)}: {exc}"
                ) from exc
            if not isinstance(public_key, ec.EllipticCurvePublicKey):
                raise VerificationError.unsupported_algorithm(
                    f"{type(public_key).__name__} key on {_subject(cert)}"
                )

    @staticmethod
    def _check_links(chain: CertificateChain) -> None:
        for index in range(len(chain) - 1):
            child, parent = chain[index], chain[index + 1]
            if child.issuer != parent.subject:
                raise VerificationError.broken_chain(
                    index,
                    f"issuer {child.issuer.rfc4514_string()} != subject {_subject(parent)}",
                )
            if not _is_signed_by(child, parent):
                raise VerificationError.broken_chain(
                    index, f"signature does not verify under {_subject(parent)}"
                )

    @staticmethod
    def _check_basic_constraints(chain: CertificateChain) -> None:
        leaf_constraints = _basic_constraints(chain[0])
        if leaf_constraints is None:
            raise VerificationError.broken_chain(0, "leaf certificate has no basic constraints")
        if leaf_constraints.ca:
            raise VerificationError.broken_chain(0, "leaf certificate is a CA")

        for index in range(1, len(chain)):
            constraints = _basic_constraints(chain[index])
            if constraints is None or not constraints.ca:
                raise VerificationError.broken_chain(
                    index, f"{_subject(chain[index])} is not a CA"
                )
            # CA certificates below this one, excluding the leaf.
            below = index - 1
            if constraints.path_length is not None and constraints.path_length < below:
                raise VerificationError.broken_chain(
                    index,
                    f"path length {constraints.path_length} exceeded by {below} CA(s)",
                )

    def _match_anchor(self, top: x509.Certificate) -> Tuple[x509.Certificate, bool]:
        """Return ``(anchor, anchor_in_chain)`` for the chain's top certificate."""
        for anchor in self._anchors:
            if anchor == top:
                return anchor, True
        for anchor in self._anchors:
            if top.issuer == anchor.subject and _is_signed_by(top, anchor):
                return anchor, False
        raise VerificationError.untrusted_root(_subject(top))

    @staticmethod
    def _check_validity(certs: Sequence[x509.Certificate], at: datetime) -> None:
        for index, cert in enumerate(certs):
            if at < cert.not_valid_before_utc:
                raise VerificationError.expired_certificate(
                    index, _subject(cert),
                    f"is not valid before {cert.not_valid_before_utc.isoformat()}",
                )
            if at > cert.not_valid_after_utc:
                raise VerificationError.expired_certificate(
                    index, _subject(cert),
                    f"expired at {cert.not_valid_after_utc.isoformat()}",
                )

    def _check_revocation(
        self,
        chain: CertificateChain,
        anchor: x509.Certificate,
        anchor_in_chain: bool,
    ) -> List[str]:
        warnings: List[str] = []
        last = len(chain) - 1 if anchor_in_chain else len(chain)
        for index in range(last):
            cert = chain[index]
            issuer = chain[index + 1] if index + 1 < len(chain) else anchor
            try:
                status = self._revocation_checker.check(cert, issuer)
            except RevocationCheckError as exc:
                status = None
                detail = str(exc)
            else:
                detail = "responder does not know the certificate"

            if status == CertificateStatus.REVOKED:
                raise VerificationError.revoked_certificate(index, cert.serial_number)
            if status == CertificateStatus.GOOD:
                continue

            if self._revocation_policy == RevocationFailurePolicy.HARD_FAIL:
                raise VerificationError.revocation_unavailable(index, detail)
            logger.warning(
                "Revocation soft-fail for certificate %d (%s): %s",
                index, _subject(cert), detail,
            )
            warnings.append(
                f"revocation status of certificate {index} ({_subject(cert)}) "
                f"unavailable: {detail}"
            )
        return warnings
