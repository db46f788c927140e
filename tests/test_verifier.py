# Copyright (c) Rich Connexions Ltd. All rights reserved.
# Licensed under the MIT License. See LICENSE for details.
"""End-to-end tests for SignedDataVerifier (appstore.signed_data.verifier).

Runs the full pipeline (decode, chain, signature, payload) against the
R -> I -> L test hierarchy from conftest.
"""

from __future__ import annotations

import json
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone

import pytest

from appstore.signed_data.exceptions import ChainFailure, VerificationError
from appstore.signed_data.models import Environment, Unrecognized
from appstore.signed_data.revocation import CertificateStatus, RevocationFailurePolicy
from appstore.signed_data.verifier import SignedDataVerifier, TrustLevel
from tests.conftest import (
    APP_APPLE_ID,
    BUNDLE_ID,
    app_transaction_payload,
    b64url,
    issue_certificate,
    notification_payload,
    renewal_payload,
    transaction_payload,
)


class TestConcreteScenario:
    """R self-signed, I under R, L under I; x5c = [L, I]; anchors = [R]."""

    PAYLOAD = {"bundleId": "com.example.app", "environment": "Sandbox", "transactionId": "1"}

    def test_sandbox_accepts(self, make_jws, make_verifier):
        result = make_verifier().verify_and_decode_signed_transaction(make_jws(self.PAYLOAD))
        assert result.payload.transaction_id == "1"
        assert result.trust_level == TrustLevel.CHAIN_VERIFIED
        assert result.warnings == ()

    def test_production_rejects_same_jws(self, make_jws, make_verifier):
        jws = make_jws(self.PAYLOAD)
        verifier = make_verifier(environment=Environment.PRODUCTION)
        with pytest.raises(VerificationError) as exc_info:
            verifier.verify_and_decode_signed_transaction(jws)
        assert exc_info.value.code == "ENVIRONMENT_MISMATCH"


class TestEntryPoints:

    def test_transaction_round_trip(self, make_jws, make_verifier):
        """The decoded payload equals the JSON that was signed."""
        source = transaction_payload()
        result = make_verifier().verify_and_decode_signed_transaction(make_jws(source))
        assert result.payload.to_json_dict() == source

    def test_renewal_info(self, make_jws, make_verifier):
        result = make_verifier().verify_and_decode_renewal_info(make_jws(renewal_payload()))
        assert result.payload.auto_renew_product_id == "com.example.app.premium"

    def test_notification(self, make_jws, make_verifier):
        result = make_verifier().verify_and_decode_notification(make_jws(notification_payload()))
        assert result.payload.data.bundle_id == BUNDLE_ID
        assert result.payload.notification_uuid == "002e14d5-51f5-4503-b5a8-c3a1af68eb20"

    def test_app_transaction(self, make_jws, make_verifier):
        result = make_verifier().verify_and_decode_app_transaction(
            make_jws(app_transaction_payload())
        )
        assert result.payload.app_transaction_id == "71134"

    def test_root_in_chain(self, make_jws, make_verifier, pki):
        jws = make_jws(transaction_payload(), chain=[pki.leaf, pki.intermediate, pki.root])
        assert make_verifier().verify_and_decode_signed_transaction(jws).payload

    def test_pem_root(self, make_jws, make_verifier, pki):
        verifier = make_verifier(root_certificates=[pki.root.pem])
        assert verifier.verify_and_decode_signed_transaction(make_jws(transaction_payload()))

    def test_unknown_enum_does_not_fail(self, make_jws, make_verifier):
        jws = make_jws(transaction_payload(inAppOwnershipType="GIFTED"))
        result = make_verifier().verify_and_decode_signed_transaction(jws)
        assert result.payload.in_app_ownership_type == Unrecognized(raw="GIFTED")


class TestPipelineFailures:

    def test_not_a_jws(self, make_verifier):
        with pytest.raises(VerificationError) as exc_info:
            make_verifier().verify_and_decode_signed_transaction("only.two")
        assert exc_info.value.code == "INVALID_JWS_FORMAT"

    def test_tampered_payload(self, make_jws, make_verifier):
        header, _, signature = make_jws(transaction_payload()).split(".")
        forged = b64url(json.dumps(transaction_payload(price=1)).encode())
        with pytest.raises(VerificationError) as exc_info:
            make_verifier().verify_and_decode_signed_transaction(
                f"{header}.{forged}.{signature}"
            )
        assert exc_info.value.code == "INVALID_SIGNATURE"

    def test_signature_checked_before_payload(self, make_jws, make_verifier, pki):
        """An unsigned garbage payload fails on the signature, not on JSON."""
        header, _, signature = make_jws(transaction_payload()).split(".")
        with pytest.raises(VerificationError) as exc_info:
            make_verifier().verify_and_decode_signed_transaction(
                f"{header}.{b64url(b'not json')}.{signature}"
            )
        assert exc_info.value.code == "INVALID_SIGNATURE"

    def test_signed_by_non_leaf_key(self, make_jws, make_verifier, pki):
        jws = make_jws(transaction_payload(), signing_key=pki.intermediate.key)
        with pytest.raises(VerificationError) as exc_info:
            make_verifier().verify_and_decode_signed_transaction(jws)
        assert exc_info.value.code == "INVALID_SIGNATURE"

    def test_expired_leaf_with_valid_signature(self, make_jws, make_verifier, pki):
        expired = issue_certificate(
            "Expired Leaf", pki.intermediate,
            not_after=datetime(2021, 1, 1, tzinfo=timezone.utc),
        )
        jws = make_jws(transaction_payload(), chain=[expired, pki.intermediate])
        with pytest.raises(VerificationError) as exc_info:
            make_verifier().verify_and_decode_signed_transaction(jws)
        assert exc_info.value.code == "INVALID_CERTIFICATE_CHAIN"
        assert exc_info.value.reason == ChainFailure.EXPIRED_CERTIFICATE

    def test_expired_intermediate_with_valid_signature(self, make_jws, make_verifier, pki):
        intermediate = issue_certificate(
            "Expired Intermediate", pki.root, ca=True, path_length=0,
            not_after=datetime(2022, 1, 1, tzinfo=timezone.utc),
        )
        leaf = issue_certificate("Leaf", intermediate)
        with pytest.raises(VerificationError) as exc_info:
            make_verifier().verify_and_decode_signed_transaction(
                make_jws(transaction_payload(), chain=[leaf, intermediate])
            )
        assert exc_info.value.reason == ChainFailure.EXPIRED_CERTIFICATE

    def test_untrusted_chain(self, make_jws, make_verifier):
        other_root = issue_certificate("Other Root", ca=True)
        verifier = make_verifier(root_certificates=[other_root.der])
        with pytest.raises(VerificationError) as exc_info:
            verifier.verify_and_decode_signed_transaction(make_jws(transaction_payload()))
        assert exc_info.value.reason == ChainFailure.UNTRUSTED_ROOT

    def test_unsupported_alg(self, make_jws, make_verifier):
        jws = make_jws(transaction_payload(), header={"alg": "none"})
        with pytest.raises(VerificationError) as exc_info:
            make_verifier().verify_and_decode_signed_transaction(jws)
        assert exc_info.value.code == "UNSUPPORTED_ALGORITHM"

    def test_malformed_x5c(self, make_jws, make_verifier):
        jws = make_jws(transaction_payload(), header={"x5c": ["@@@"]})
        with pytest.raises(VerificationError) as exc_info:
            make_verifier().verify_and_decode_signed_transaction(jws)
        assert exc_info.value.code == "MALFORMED_CERTIFICATE"

    def test_bundle_mismatch(self, make_jws, make_verifier):
        jws = make_jws(transaction_payload(bundleId="com.other.app"))
        with pytest.raises(VerificationError) as exc_info:
            make_verifier().verify_and_decode_signed_transaction(jws)
        assert exc_info.value.code == "BUNDLE_ID_MISMATCH"

    def test_app_apple_id_mismatch(self, make_jws, make_verifier):
        jws = make_jws(notification_payload(environment="Production", appAppleId=42))
        verifier = make_verifier(environment=Environment.PRODUCTION)
        with pytest.raises(VerificationError) as exc_info:
            verifier.verify_and_decode_notification(jws)
        assert exc_info.value.code == "APP_APPLE_ID_MISMATCH"

    def test_environment_mismatch(self, make_jws, make_verifier):
        jws = make_jws(transaction_payload(environment="Production"))
        with pytest.raises(VerificationError) as exc_info:
            make_verifier().verify_and_decode_signed_transaction(jws)
        assert exc_info.value.code == "ENVIRONMENT_MISMATCH"

    def test_wrong_entry_point_model(self, make_jws, make_verifier):
        """A notification passed as an app transaction has no top-level bundleId."""
        with pytest.raises(VerificationError) as exc_info:
            make_verifier().verify_and_decode_app_transaction(make_jws(notification_payload()))
        assert exc_info.value.code == "BUNDLE_ID_MISMATCH"


class TestLocalEnvironments:
    """Xcode and LocalTesting skip chain and signature checks."""

    @pytest.mark.parametrize("environment", [Environment.XCODE, Environment.LOCAL_TESTING])
    def test_locally_trusted(self, make_jws, environment):
        verifier = SignedDataVerifier(
            root_certificates=[], bundle_id=BUNDLE_ID, app_apple_id=None,
            environment=environment,
        )
        self_signed = issue_certificate("Xcode Signing")
        jws = make_jws(
            transaction_payload(environment=environment.value), chain=[self_signed]
        )
        result = verifier.verify_and_decode_signed_transaction(jws)
        assert result.trust_level == TrustLevel.LOCALLY_TRUSTED

    def test_local_still_checks_structure(self):
        verifier = SignedDataVerifier(
            root_certificates=[], bundle_id=BUNDLE_ID, app_apple_id=None,
            environment=Environment.XCODE,
        )
        with pytest.raises(VerificationError) as exc_info:
            verifier.verify_and_decode_signed_transaction("a.b")
        assert exc_info.value.code == "INVALID_JWS_FORMAT"

    def test_local_still_checks_identity(self, make_jws):
        verifier = SignedDataVerifier(
            root_certificates=[], bundle_id=BUNDLE_ID, app_apple_id=None,
            environment=Environment.XCODE,
        )
        with pytest.raises(VerificationError) as exc_info:
            verifier.verify_and_decode_signed_transaction(make_jws(transaction_payload()))
        assert exc_info.value.code == "ENVIRONMENT_MISMATCH"

    def test_sandbox_never_locally_trusted(self, make_jws, make_verifier):
        self_signed = issue_certificate("Xcode Signing")
        jws = make_jws(transaction_payload(), chain=[self_signed])
        with pytest.raises(VerificationError) as exc_info:
            make_verifier().verify_and_decode_signed_transaction(jws)
        assert exc_info.value.reason == ChainFailure.UNTRUSTED_ROOT


class TestConstruction:

    def test_production_requires_app_apple_id(self, pki):
        with pytest.raises(ValueError):
            SignedDataVerifier(
                [pki.root.der], BUNDLE_ID, None, Environment.PRODUCTION,
            )

    @pytest.mark.parametrize("environment", [Environment.SANDBOX, Environment.PRODUCTION])
    def test_roots_required(self, environment):
        with pytest.raises(ValueError):
            SignedDataVerifier([], BUNDLE_ID, APP_APPLE_ID, environment)

    def test_bad_root_bytes(self):
        with pytest.raises(ValueError):
            SignedDataVerifier([b"not a certificate"], BUNDLE_ID, APP_APPLE_ID, Environment.SANDBOX)

    def test_naive_verification_time(self, pki):
        with pytest.raises(ValueError):
            SignedDataVerifier(
                [pki.root.der], BUNDLE_ID, APP_APPLE_ID, Environment.SANDBOX,
                verification_time=datetime(2025, 6, 1),
            )

    def test_empty_bundle_id(self, pki):
        with pytest.raises(ValueError):
            SignedDataVerifier([pki.root.der], "", APP_APPLE_ID, Environment.SANDBOX)

    def test_environment_string_accepted(self, pki):
        verifier = SignedDataVerifier([pki.root.der], BUNDLE_ID, APP_APPLE_ID, "Sandbox")
        assert verifier.environment == Environment.SANDBOX


class TestRevocationIntegration:

    class _Checker:
        def __init__(self, status):
            self.status = status

        def check(self, cert, issuer):
            return self.status

    def test_online_checks_disabled_by_default(self, make_jws, make_verifier):
        verifier = make_verifier(revocation_checker=self._Checker(CertificateStatus.REVOKED))
        assert verifier.verify_and_decode_signed_transaction(make_jws(transaction_payload()))

    def test_revoked_rejected(self, make_jws, make_verifier):
        verifier = make_verifier(
            enable_online_checks=True,
            revocation_checker=self._Checker(CertificateStatus.REVOKED),
        )
        with pytest.raises(VerificationError) as exc_info:
            verifier.verify_and_decode_signed_transaction(make_jws(transaction_payload()))
        assert exc_info.value.reason == ChainFailure.REVOKED_CERTIFICATE

    def test_soft_warning_surfaces(self, make_jws, make_verifier):
        verifier = make_verifier(
            enable_online_checks=True,
            revocation_checker=self._Checker(CertificateStatus.UNKNOWN),
        )
        result = verifier.verify_and_decode_signed_transaction(make_jws(transaction_payload()))
        assert result.trust_level == TrustLevel.CHAIN_VERIFIED
        assert len(result.warnings) == 2

    def test_hard_policy(self, make_jws, make_verifier):
        verifier = make_verifier(
            enable_online_checks=True,
            revocation_policy=RevocationFailurePolicy.HARD_FAIL,
            revocation_checker=self._Checker(CertificateStatus.UNKNOWN),
        )
        with pytest.raises(VerificationError) as exc_info:
            verifier.verify_and_decode_signed_transaction(make_jws(transaction_payload()))
        assert exc_info.value.reason == ChainFailure.REVOCATION_UNAVAILABLE

    def test_checker_primitive_failure_is_internal(self, make_jws, make_verifier):
        class BrokenChecker:
            def check(self, cert, issuer):
                raise TypeError("unexpected key object")

        verifier = make_verifier(enable_online_checks=True, revocation_checker=BrokenChecker())
        with pytest.raises(VerificationError) as exc_info:
            verifier.verify_and_decode_signed_transaction(make_jws(transaction_payload()))
        assert exc_info.value.code == "INTERNAL"
        assert isinstance(exc_info.value.__cause__, TypeError)


class TestDeterminismAndIsolation:

    def test_same_input_same_output(self, make_jws, make_verifier):
        jws = make_jws(transaction_payload())
        verifier = make_verifier()
        first = verifier.verify_and_decode_signed_transaction(jws)
        second = verifier.verify_and_decode_signed_transaction(jws)
        assert first == second

    def test_failure_leaves_no_state(self, make_jws, make_verifier):
        verifier = make_verifier()
        good = make_jws(transaction_payload())
        with pytest.raises(VerificationError):
            verifier.verify_and_decode_signed_transaction(make_jws(transaction_payload(bundleId="x")))
        assert verifier.verify_and_decode_signed_transaction(good).payload.bundle_id == BUNDLE_ID

    def test_instances_do_not_share_anchors(self, make_jws, make_verifier):
        other_root = issue_certificate("Other Root", ca=True)
        trusting = make_verifier()
        distrusting = make_verifier(root_certificates=[other_root.der])
        jws = make_jws(transaction_payload())
        assert trusting.verify_and_decode_signed_transaction(jws)
        with pytest.raises(VerificationError):
            distrusting.verify_and_decode_signed_transaction(jws)
        assert trusting.verify_and_decode_signed_transaction(jws)

    def test_concurrent_calls(self, make_jws, make_verifier):
        """One verifier serves many threads with mixed valid and invalid inputs."""
        verifier = make_verifier()
        valid = [make_jws(transaction_payload(transactionId=str(i))) for i in range(8)]
        invalid = make_jws(transaction_payload(environment="Production"))

        def run(index):
            if index % 3 == 0:
                try:
                    verifier.verify_and_decode_signed_transaction(invalid)
                except VerificationError as exc:
                    return exc.code
                return "unexpected success"
            jws = valid[index % len(valid)]
            return verifier.verify_and_decode_signed_transaction(jws).payload.transaction_id

        with ThreadPoolExecutor(max_workers=8) as pool:
            results = list(pool.map(run, range(48)))

        for index, outcome in enumerate(results):
            if index % 3 == 0:
                assert outcome == "ENVIRONMENT_MISMATCH"
            else:
                assert outcome == str(index % len(valid))

