# Copyright (c) Rich Connexions Ltd. All rights reserved.
# Licensed under the MIT License. See LICENSE for details.
"""Payload decoding and identity checks.

Only called once the JWS signature has verified (or, for local
environments, once the JWS has decoded).
"""

import json
import logging
from typing import Optional, Type, TypeVar

from pydantic import ValidationError

from appstore.signed_data.exceptions import VerificationError
from appstore.signed_data.jws import DecodedJWS
from appstore.signed_data.models import (
    Environment,
    JWSRenewalInfoDecodedPayload,
    PayloadIdentity,
    SignedPayloadModel,
)

logger = logging.getLogger("appstore.payload")

M = TypeVar("M", bound=SignedPayloadModel)


def decode_payload(decoded: DecodedJWS, model: Type[M]) -> M:
    """Parse the payload bytes of *decoded* into *model*.

    Raises:
        VerificationError: INVALID_JWS_FORMAT if the payload is not a JSON
            object or does not fit the model.
    """
    try:
        obj = json.loads(decoded.payload)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise VerificationError.invalid_format(f"payload is not JSON: {e}") from e
    if not isinstance(obj, dict):
        raise VerificationError.invalid_format(
            f"Expected JSON object for payload, got {type(obj).__name__}"
        )
    try:
        return model.model_validate(obj)
    except ValidationError as e:
        raise VerificationError.invalid_format(
            f"payload does not match {model.__name__}: {e.error_count()} error(s)"
        ) from e


def validate_identity(
    payload: SignedPayloadModel,
    bundle_id: str,
    app_apple_id: Optional[int],
    environment: Environment,
) -> None:
    """Check bundle id, app Apple id and environment of *payload*.

    Order is fixed: bundle, then app Apple id, then environment.
    """
    identity: PayloadIdentity = payload.identity()

    bundle_optional = isinstance(payload, JWSRenewalInfoDecodedPayload)
    if identity.bundle_id is None and bundle_optional:
        logger.debug("Renewal info carries no bundleId, bundle check skipped")
    elif identity.bundle_id != bundle_id:
        raise VerificationError.bundle_id_mismatch(bundle_id, identity.bundle_id)

    if (
        environment == Environment.PRODUCTION
        and identity.app_apple_id is not None
        and identity.app_apple_id != app_apple_id
    ):
        raise VerificationError.app_apple_id_mismatch(app_apple_id, identity.app_apple_id)

    # Unrecognized never equals a known Environment
    if identity.environment != environment:
        actual = getattr(identity.environment, "value", identity.environment)
        raise VerificationError.environment_mismatch(environment.value, actual)
