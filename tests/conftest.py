# Copyright (c) Rich Connexions Ltd. All rights reserved.
# Licensed under the MIT License. See LICENSE for details.
"""Shared test fixtures for the App Store signed data test suite.

Builds real EC P-256 key material and a root -> intermediate -> leaf
certificate hierarchy with ``cryptography``, plus a factory producing
ES256-signed compact JWS strings in the App Store layout (raw ``R || S``
signature, ``x5c`` chain in the header).  Nothing here touches the
network.
"""

from __future__ import annotations

import base64
import json
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional, Sequence, Union

import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec, rsa
from cryptography.hazmat.primitives.asymmetric.utils import decode_dss_signature
from cryptography.x509.oid import AuthorityInformationAccessOID, ExtendedKeyUsageOID, NameOID

from appstore.signed_data.models import Environment
from appstore.signed_data.revocation import reset_status_cache
from appstore.signed_data.verifier import SignedDataVerifier

BUNDLE_ID = "com.example.app"
APP_APPLE_ID = 1234567890
VERIFICATION_TIME = datetime(2025, 6, 1, 12, 0, 0, tzinfo=timezone.utc)
OCSP_URL = "http://ocsp.example.test/ocsp"


# =========================================================================
# Certificate construction
# =========================================================================

@dataclass(frozen=True)
class Issued:
    """A certificate together with its private key."""

    cert: x509.Certificate
    key: Any

    @property
    def der(self) -> bytes:
        return self.cert.public_bytes(serialization.Encoding.DER)

    @property
    def pem(self) -> bytes:
        return self.cert.public_bytes(serialization.Encoding.PEM)

    @property
    def x5c(self) -> str:
        return base64.b64encode(self.der).decode("ascii")


def _name(common_name: str) -> x509.Name:
    return x509.Name([
        x509.NameAttribute(NameOID.ORGANIZATION_NAME, "Example Test PKI"),
        x509.NameAttribute(NameOID.COMMON_NAME, common_name),
    ])


def issue_certificate(
    common_name: str,
    issuer: Optional[Issued] = None,
    *,
    key: Any = None,
    ca: bool = False,
    path_length: Optional[int] = None,
    not_before: datetime = datetime(2020, 1, 1, tzinfo=timezone.utc),
    not_after: datetime = datetime(2040, 1, 1, tzinfo=timezone.utc),
    ocsp_url: Optional[str] = None,
    ocsp_signing: bool = False,
    basic_constraints: bool = True,
) -> Issued:
    """Issue a certificate; self-signed when *issuer* is None."""
    if key is None:
        key = ec.generate_private_key(ec.SECP256R1())
    subject = _name(common_name)
    issuer_name = issuer.cert.subject if issuer is not None else subject
    signing_key = issuer.key if issuer is not None else key

    builder = (
        x509.CertificateBuilder()
        .subject_name(subject)
        .issuer_name(issuer_name)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(not_before)
        .not_valid_after(not_after)
    )
    if basic_constraints:
        builder = builder.add_extension(
            x509.BasicConstraints(ca=ca, path_length=path_length if ca else None),
            critical=True,
        )
    if ocsp_url is not None:
        builder = builder.add_extension(
            x509.AuthorityInformationAccess([
                x509.AccessDescription(
                    AuthorityInformationAccessOID.OCSP,
                    x509.UniformResourceIdentifier(ocsp_url),
                ),
            ]),
            critical=False,
        )
    if ocsp_signing:
        builder = builder.add_extension(
            x509.ExtendedKeyUsage([ExtendedKeyUsageOID.OCSP_SIGNING]),
            critical=False,
        )
    return Issued(cert=builder.sign(signing_key, hashes.SHA256()), key=key)


@dataclass(frozen=True)
class PKI:
    """Root R, intermediate I signed by R, leaf L signed by I."""

    root: Issued
    intermediate: Issued
    leaf: Issued


# =========================================================================
# JWS construction
# =========================================================================

def b64url(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).decode("ascii").rstrip("=")


def sign_es256(key: ec.EllipticCurvePrivateKey, signing_input: bytes) -> bytes:
    """Sign and return the JOSE raw ``R || S`` form."""
    r, s = decode_dss_signature(key.sign(signing_input, ec.ECDSA(hashes.SHA256())))
    return r.to_bytes(32, "big") + s.to_bytes(32, "big")


def build_jws(
    payload: Union[Dict[str, Any], bytes],
    chain: Sequence[Issued],
    signing_key: Any,
    header: Optional[Dict[str, Any]] = None,
) -> str:
    jose = {"alg": "ES256", "x5c": [entry.x5c for entry in chain]}
    if header:
        jose.update(header)
    raw_header = b64url(json.dumps(jose).encode())
    body = payload if isinstance(payload, bytes) else json.dumps(payload).encode()
    raw_payload = b64url(body)
    signature = sign_es256(signing_key, f"{raw_header}.{raw_payload}".encode("ascii"))
    return f"{raw_header}.{raw_payload}.{b64url(signature)}"


# =========================================================================
# Payload factories
# =========================================================================

def transaction_payload(**overrides: Any) -> Dict[str, Any]:
    payload = {
        "transactionId": "2000000000000001",
        "originalTransactionId": "2000000000000001",
        "webOrderLineItemId": "2000000000000002",
        "bundleId": BUNDLE_ID,
        "productId": "com.example.app.premium",
        "subscriptionGroupIdentifier": "21000001",
        "purchaseDate": 1717200000000,
        "originalPurchaseDate": 1717200000000,
        "expiresDate": 1719792000000,
        "quantity": 1,
        "type": "Auto-Renewable Subscription",
        "inAppOwnershipType": "PURCHASED",
        "signedDate": 1717200001000,
        "environment": "Sandbox",
        "transactionReason": "PURCHASE",
        "storefront": "USA",
        "storefrontId": "143441",
        "price": 9990,
        "currency": "USD",
    }
    payload.update(overrides)
    return payload


def renewal_payload(**overrides: Any) -> Dict[str, Any]:
    payload = {
        "originalTransactionId": "2000000000000001",
        "autoRenewProductId": "com.example.app.premium",
        "productId": "com.example.app.premium",
        "autoRenewStatus": 1,
        "isInBillingRetryPeriod": False,
        "signedDate": 1717200001000,
        "environment": "Sandbox",
        "recentSubscriptionStartDate": 1717200000000,
        "renewalDate": 1719792000000,
    }
    payload.update(overrides)
    return payload


def notification_payload(**data_overrides: Any) -> Dict[str, Any]:
    data = {
        "appAppleId": APP_APPLE_ID,
        "bundleId": BUNDLE_ID,
        "bundleVersion": "42",
        "environment": "Sandbox",
        "status": 1,
    }
    data.update(data_overrides)
    return {
        "notificationType": "SUBSCRIBED",
        "subtype": "INITIAL_BUY",
        "notificationUUID": "002e14d5-51f5-4503-b5a8-c3a1af68eb20",
        "version": "2.0",
        "signedDate": 1717200002000,
        "data": data,
    }


def app_transaction_payload(**overrides: Any) -> Dict[str, Any]:
    payload = {
        "receiptType": "Sandbox",
        "appAppleId": APP_APPLE_ID,
        "bundleId": BUNDLE_ID,
        "applicationVersion": "42",
        "versionExternalIdentifier": 1,
        "receiptCreationDate": 1717200000000,
        "originalPurchaseDate": 1700000000000,
        "originalApplicationVersion": "1",
        "deviceVerification": "dGVzdA==",
        "deviceVerificationNonce": "48ccfa42-7431-4f22-9908-7e88983e105a",
        "appTransactionId": "71134",
        "originalPlatform": "iOS",
    }
    payload.update(overrides)
    return payload


# =========================================================================
# Fixtures
# =========================================================================

@pytest.fixture(scope="session")
def pki() -> PKI:
    """The R -> I -> L hierarchy, valid at VERIFICATION_TIME."""
    root = issue_certificate("Test Root R", ca=True, path_length=1)
    intermediate = issue_certificate(
        "Test Intermediate I", root, ca=True, path_length=0, ocsp_url=OCSP_URL,
        not_after=datetime(2035, 1, 1, tzinfo=timezone.utc),
    )
    leaf = issue_certificate(
        "Test Leaf L", intermediate, ocsp_url=OCSP_URL,
        not_before=datetime(2024, 1, 1, tzinfo=timezone.utc),
        not_after=datetime(2027, 1, 1, tzinfo=timezone.utc),
    )
    return PKI(root=root, intermediate=intermediate, leaf=leaf)


@pytest.fixture(scope="session")
def rsa_key() -> rsa.RSAPrivateKey:
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


@pytest.fixture
def make_jws(pki: PKI) -> Callable[..., str]:
    """Factory fixture: sign a payload with L and carry [L, I] in x5c.

    Keyword arguments:
        chain:        Issued certificates for x5c (default ``[L, I]``).
        signing_key:  Private key to sign with (default L's key).
        header:       Extra or overriding JOSE header fields.
    """

    def _make(
        payload: Union[Dict[str, Any], bytes],
        chain: Optional[Sequence[Issued]] = None,
        signing_key: Any = None,
        header: Optional[Dict[str, Any]] = None,
    ) -> str:
        if chain is None:
            chain = [pki.leaf, pki.intermediate]
        if signing_key is None:
            signing_key = chain[0].key
        return build_jws(payload, chain, signing_key, header)

    return _make


@pytest.fixture
def make_verifier(pki: PKI) -> Callable[..., SignedDataVerifier]:
    """Factory fixture: a Sandbox verifier trusting R at VERIFICATION_TIME."""

    def _make(**overrides: Any) -> SignedDataVerifier:
        kwargs: Dict[str, Any] = {
            "root_certificates": [pki.root.der],
            "bundle_id": BUNDLE_ID,
            "app_apple_id": APP_APPLE_ID,
            "environment": Environment.SANDBOX,
            "verification_time": VERIFICATION_TIME,
        }
        kwargs.update(overrides)
        return SignedDataVerifier(**kwargs)

    return _make


@pytest.fixture(autouse=True)
def _fresh_status_cache():
    """Each test starts with an empty process-wide OCSP cache."""
    reset_status_cache()
    yield
    reset_status_cache()
