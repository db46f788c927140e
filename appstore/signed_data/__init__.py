# Copyright (c) Rich Connexions Ltd. All rights reserved.
# Licensed under the MIT License. See LICENSE for details.

"""App Store signed data verification.

Decodes compact JWS, validates the x5c chain against pinned roots,
verifies the ES256 signature and checks payload identity.
"""

from .exceptions import (
    AppStoreError,
    ChainFailure,
    VerificationError,
    VerificationStatus,
)
from .models import (
    AppTransaction,
    Environment,
    JWSRenewalInfoDecodedPayload,
    JWSTransactionDecodedPayload,
    ResponseBodyV2DecodedPayload,
    Unrecognized,
)
from .revocation import OCSPRevocationChecker, RevocationFailurePolicy
from .verifier import SignedDataVerifier, TrustLevel, VerifiedPayload

__all__ = [
    # Exceptions
    "AppStoreError",
    "ChainFailure",
    "VerificationError",
    "VerificationStatus",
    # Models
    "AppTransaction",
    "Environment",
    "JWSRenewalInfoDecodedPayload",
    "JWSTransactionDecodedPayload",
    "ResponseBodyV2DecodedPayload",
    "Unrecognized",
    # Verification
    "OCSPRevocationChecker",
    "RevocationFailurePolicy",
    "SignedDataVerifier",
    "TrustLevel",
    "VerifiedPayload",
]
