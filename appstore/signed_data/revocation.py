# Copyright (c) Rich Connexions Ltd. All rights reserved.
# Licensed under the MIT License. See LICENSE for details.

"""Online certificate revocation checking over OCSP.

When online checks are enabled, each non-anchor certificate of an
``x5c`` chain is looked up at the OCSP responder named in its Authority
Information Access extension.  Results are cached for the lifetime of
the process in a bounded LRU keyed by ``(issuer name hash, issuer key
hash, serial number)``, the same triple that identifies a certificate
inside an OCSP request.

Concurrency model:

* A short global guard protects the LRU bookkeeping only.
* Each cache key has its own lock, held while the responder is queried,
  so concurrent verifications of *different* certificates never wait on
  each other while duplicate lookups of the *same* certificate collapse
  into a single request.
* Every request carries an explicit timeout.

Responses past their ``nextUpdate``, or dated ahead of the local clock by
more than ``OCSP_CLOCK_SKEW``, are rejected.  Only definitive answers
(``GOOD`` / ``REVOKED``) are cached, and never beyond the response's
``nextUpdate``.  Network or responder failures
raise :class:`RevocationCheckError`; whether that fails the verification
is decided by the caller's :class:`RevocationFailurePolicy`.
"""

from __future__ import annotations

import logging
import threading
import time
from collections import OrderedDict
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Dict, Iterator, Optional, Tuple

import httpx
from cryptography import x509
from cryptography.exceptions import InvalidSignature, UnsupportedAlgorithm
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec, padding, rsa
from cryptography.x509 import ocsp
from cryptography.x509.oid import (
    AuthorityInformationAccessOID,
    ExtendedKeyUsageOID,
    ExtensionOID,
)

from appstore.config import OCSP_TIMEOUT_SECONDS, REVOCATION_CACHE_MAX_ENTRIES

logger = logging.getLogger("appstore.revocation")

__all__ = [
    "CertificateStatus",
    "RevocationFailurePolicy",
    "RevocationCheckError",
    "OCSPStatusCache",
    "OCSPRevocationChecker",
    "get_status_cache",
    "reset_status_cache",
]

# Type alias for the cache key.
StatusKey = Tuple[str, str, int]  # (issuer_name_hash, issuer_key_hash, serial)

# Tolerated lead of a responder clock over ours.
OCSP_CLOCK_SKEW = timedelta(minutes=5)


class CertificateStatus(str, Enum):
    GOOD = "good"
    REVOKED = "revoked"
    UNKNOWN = "unknown"


class RevocationFailurePolicy(str, Enum):
    """What a revocation lookup failure does to an otherwise valid chain.

    SOFT_WARN
        Attach a warning to the result and accept the chain.
    HARD_FAIL
        Reject with ``INVALID_CERTIFICATE_CHAIN/REVOCATION_UNAVAILABLE``.
    """

    SOFT_WARN = "soft"
    HARD_FAIL = "hard"


class RevocationCheckError(Exception):
    """The revocation status could not be established."""
    pass


# ======================================================================
# OCSPStatusCache
# ======================================================================


@dataclass(frozen=True)
class _CachedStatus:
    status: CertificateStatus
    expires_at: Optional[float]


class _KeyLock:
    __slots__ = ("lock", "holders")

    def __init__(self) -> None:
        self.lock = threading.Lock()
        self.holders = 0


class OCSPStatusCache:
    """Bounded, thread-safe LRU of certificate revocation statuses.

    Parameters
    ----------
    max_entries : int
        Maximum number of statuses kept before LRU eviction.
    """

    def __init__(self, max_entries: int = 1024) -> None:
        self._max_entries = max_entries
        self._entries: "OrderedDict[StatusKey, _CachedStatus]" = OrderedDict()
        self._key_locks: Dict[StatusKey, _KeyLock] = {}
        self._guard = threading.Lock()
        self._hits = 0
        self._misses = 0
        self._evictions = 0

    def get(self, key: StatusKey) -> Optional[CertificateStatus]:
        now = time.time()
        with self._guard:
            entry = self._entries.get(key)
            if entry is None:
                self._misses += 1
                return None
            if entry.expires_at is not None and now > entry.expires_at:
                del self._entries[key]
                self._evictions += 1
                self._misses += 1
                return None
            self._entries.move_to_end(key)
            self._hits += 1
            return entry.status

    def put(
        self,
        key: StatusKey,
        status: CertificateStatus,
        expires_at: Optional[float] = None,
    ) -> None:
        with self._guard:
            self._entries[key] = _CachedStatus(status=status, expires_at=expires_at)
            self._entries.move_to_end(key)
            while len(self._entries) > self._max_entries:
                self._entries.popitem(last=False)
                self._evictions += 1

    @contextmanager
    def key_lock(self, key: StatusKey) -> Iterator[None]:
        """Hold the lock for *key* only; other keys proceed in parallel."""
        with self._guard:
            entry = self._key_locks.get(key)
            if entry is None:
                entry = self._key_locks[key] = _KeyLock()
            entry.holders += 1
        try:
            with entry.lock:
                yield
        finally:
            with self._guard:
                entry.holders -= 1
                if entry.holders == 0:
                    self._key_locks.pop(key, None)

    def stats(self) -> dict:
        with self._guard:
            return {
                "hits": self._hits,
                "misses": self._misses,
                "evictions": self._evictions,
                "size": len(self._entries),
            }


# ======================================================================
# OCSPRevocationChecker
# ======================================================================


def _ocsp_url(cert: x509.Certificate) -> str:
    try:
        aia = cert.extensions.get_extension_for_oid(
            ExtensionOID.AUTHORITY_INFORMATION_ACCESS
        ).value
    except x509.ExtensionNotFound as exc:
        raise RevocationCheckError("certificate has no Authority Information Access") from exc
    for description in aia:
        if description.access_method == AuthorityInformationAccessOID.OCSP:
            return description.access_location.value
    raise RevocationCheckError("certificate names no OCSP responder")


def _verify_signed_by(public_key, signature: bytes, data: bytes, hash_alg) -> bool:
    try:
        if isinstance(public_key, ec.EllipticCurvePublicKey):
            public_key.verify(signature, data, ec.ECDSA(hash_alg))
        elif isinstance(public_key, rsa.RSAPublicKey):
            public_key.verify(signature, data, padding.PKCS1v15(), hash_alg)
        else:
            return False
    except InvalidSignature:
        return False
    return True


def _check_freshness(
    this_update: datetime,
    next_update: Optional[datetime],
    now: datetime,
) -> None:
    """Reject responses issued in the future or past their ``nextUpdate``."""
    if this_update > now + OCSP_CLOCK_SKEW:
        raise RevocationCheckError(
            f"OCSP response thisUpdate {this_update.isoformat()} is in the future"
        )
    if next_update is not None and next_update < now:
        raise RevocationCheckError(
            f"OCSP response is stale: nextUpdate {next_update.isoformat()} has passed"
        )


class OCSPRevocationChecker:
    """Queries OCSP responders and caches their answers.

    Parameters
    ----------
    cache : OCSPStatusCache, optional
        Status cache; defaults to the process-wide cache from
        :func:`get_status_cache`.
    timeout : float
        Per-request timeout in seconds.
    client : httpx.Client, optional
        HTTP client to use (tests inject one backed by a mock transport).
    """

    def __init__(
        self,
        cache: Optional[OCSPStatusCache] = None,
        timeout: float = OCSP_TIMEOUT_SECONDS,
        client: Optional[httpx.Client] = None,
    ) -> None:
        self._cache = cache if cache is not None else get_status_cache()
        self._timeout = timeout
        self._client = client if client is not None else httpx.Client(
            timeout=httpx.Timeout(timeout),
        )

    @property
    def cache(self) -> OCSPStatusCache:
        return self._cache

    def check(self, cert: x509.Certificate, issuer: x509.Certificate) -> CertificateStatus:
        """Return the revocation status of *cert* as issued by *issuer*.

        Raises
        ------
        RevocationCheckError
            If the responder could not be reached or gave no usable answer.
        """
        request = ocsp.OCSPRequestBuilder().add_certificate(
            cert, issuer, hashes.SHA1()
        ).build()
        key: StatusKey = (
            request.issuer_name_hash.hex(),
            request.issuer_key_hash.hex(),
            request.serial_number,
        )

        cached = self._cache.get(key)
        if cached is not None:
            return cached

        with self._cache.key_lock(key):
            # Another thread may have completed the lookup while we waited.
            cached = self._cache.get(key)
            if cached is not None:
                return cached

            status, expires_at = self._fetch(cert, issuer, request)
            if status != CertificateStatus.UNKNOWN:
                self._cache.put(key, status, expires_at)
            return status

    def _fetch(
        self,
        cert: x509.Certificate,
        issuer: x509.Certificate,
        request: ocsp.OCSPRequest,
    ) -> Tuple[CertificateStatus, Optional[float]]:
        url = _ocsp_url(cert)
        headers = {
            "Content-Type": "application/ocsp-request",
            "Accept": "application/ocsp-response",
        }
        try:
            response = self._client.post(
                url,
                content=request.public_bytes(serialization.Encoding.DER),
                headers=headers,
                timeout=self._timeout,
            )
        except (httpx.HTTPError, httpx.InvalidURL) as exc:
            logger.warning("OCSP request to %s failed: %s", url, exc)
            raise RevocationCheckError(f"OCSP request failed: {exc}") from exc

        if response.status_code != 200:
            raise RevocationCheckError(f"OCSP responder returned HTTP {response.status_code}")

        try:
            ocsp_response = ocsp.load_der_ocsp_response(response.content)
        except ValueError as exc:
            raise RevocationCheckError(f"OCSP response is not parseable: {exc}") from exc

        if ocsp_response.response_status != ocsp.OCSPResponseStatus.SUCCESSFUL:
            raise RevocationCheckError(
                f"OCSP responder status {ocsp_response.response_status.name}"
            )
        try:
            serial_number = ocsp_response.serial_number
            cert_status = ocsp_response.certificate_status
            this_update = ocsp_response.this_update_utc
            next_update = ocsp_response.next_update_utc
        except ValueError as exc:
            # Raised when the response carries more than one SingleResponse.
            raise RevocationCheckError(f"OCSP response is ambiguous: {exc}") from exc
        if serial_number != cert.serial_number:
            raise RevocationCheckError("OCSP response is for a different certificate")

        try:
            self._verify_response_signature(ocsp_response, issuer)
        except (ValueError, TypeError, UnsupportedAlgorithm) as exc:
            raise RevocationCheckError(f"OCSP response signature is unreadable: {exc}") from exc
        _check_freshness(this_update, next_update, datetime.now(timezone.utc))

        if cert_status == ocsp.OCSPCertStatus.GOOD:
            status = CertificateStatus.GOOD
        elif cert_status == ocsp.OCSPCertStatus.REVOKED:
            status = CertificateStatus.REVOKED
        else:
            status = CertificateStatus.UNKNOWN

        expires_at = next_update.timestamp() if next_update is not None else None

        logger.debug(
            "OCSP status for serial=%x: %s", cert.serial_number, status.value
        )
        return status, expires_at

    @staticmethod
    def _verify_response_signature(
        ocsp_response: ocsp.OCSPResponse,
        issuer: x509.Certificate,
    ) -> None:
        """Accept responses signed by the issuer or by its delegated responder."""
        signer = issuer
        if ocsp_response.certificates:
            delegate = ocsp_response.certificates[0]
            if delegate.issuer != issuer.subject or not _verify_signed_by(
                issuer.public_key(),
                delegate.signature,
                delegate.tbs_certificate_bytes,
                delegate.signature_hash_algorithm,
            ):
                raise RevocationCheckError("OCSP delegate is not issued by the certificate issuer")
            try:
                eku = delegate.extensions.get_extension_for_class(x509.ExtendedKeyUsage).value
            except x509.ExtensionNotFound as exc:
                raise RevocationCheckError("OCSP delegate lacks OCSPSigning usage") from exc
            if ExtendedKeyUsageOID.OCSP_SIGNING not in eku:
                raise RevocationCheckError("OCSP delegate lacks OCSPSigning usage")
            signer = delegate

        if not _verify_signed_by(
            signer.public_key(),
            ocsp_response.signature,
            ocsp_response.tbs_response_bytes,
            ocsp_response.signature_hash_algorithm,
        ):
            raise RevocationCheckError("OCSP response signature is invalid")


# ======================================================================
# Module-level singleton
# ======================================================================

_status_cache: Optional[OCSPStatusCache] = None
_status_cache_guard = threading.Lock()


def get_status_cache() -> OCSPStatusCache:
    """Return the process-wide OCSP status cache, creating it on first use."""
    global _status_cache
    with _status_cache_guard:
        if _status_cache is None:
            _status_cache = OCSPStatusCache(max_entries=REVOCATION_CACHE_MAX_ENTRIES)
            logger.info(
                "OCSP status cache initialized: max_entries=%d",
                REVOCATION_CACHE_MAX_ENTRIES,
            )
        return _status_cache


def reset_status_cache() -> None:
    """Discard the process-wide cache (tests)."""
    global _status_cache
    with _status_cache_guard:
        _status_cache = None
