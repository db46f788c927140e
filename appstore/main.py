# Copyright (c) Rich Connexions Ltd. All rights reserved.
# Licensed under the MIT License. See LICENSE for details.

"""FastAPI receiver for App Store Server Notifications V2.

**HTTP Endpoints**

* ``POST /notifications``: accept ``{"signedPayload": "<jws>"}`` as sent
  by the App Store, verify it with the configured
  :class:`SignedDataVerifier` and answer 200 with the decoded summary,
  or 400 with the verification error code.  The App Store retries
  notifications that are not answered with 200.

* ``GET /healthz``: service status, configured environment, config
  fingerprint and OCSP cache statistics.

The verifier is built once at startup from ``appstore.config``.  When the
configuration is unusable the service still starts, reports it on
``/healthz`` and answers notifications with 503.

**Logging**

Structured JSON logging (or plain text with ``APPSTORE_LOG_FORMAT=text``)
is configured at startup using the ``LOG_LEVEL`` setting.
"""

from __future__ import annotations

import json
import logging
import sys
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, Dict, List, Optional

from fastapi import Depends, FastAPI
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field

from appstore import __version__
from appstore.config import (
    APP_APPLE_ID,
    BUNDLE_ID,
    ENABLE_ONLINE_CHECKS,
    ENVIRONMENT,
    HTTP_HOST,
    HTTP_PORT,
    LOG_FORMAT,
    LOG_LEVEL,
    REVOCATION_POLICY,
    ROOT_CERT_PATHS,
    config_fingerprint,
)
from appstore.signed_data.exceptions import VerificationError
from appstore.signed_data.models import Environment, Unrecognized
from appstore.signed_data.revocation import RevocationFailurePolicy, get_status_cache
from appstore.signed_data.verifier import SignedDataVerifier


# ======================================================================
# Structured JSON logging
# ======================================================================


class _JSONFormatter(logging.Formatter):
    """One JSON object per log line.

    Fields: ``timestamp``, ``level``, ``logger``, ``message``, ``module``
    and ``funcName``, plus ``exception`` when the record carries one.
    """

    def format(self, record: logging.LogRecord) -> str:
        log_entry: Dict[str, Any] = {
            "timestamp": self.formatTime(record, datefmt="%Y-%m-%dT%H:%M:%S%z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "funcName": record.funcName,
        }
        if record.exc_info and record.exc_info[1] is not None:
            log_entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(log_entry, default=str)


def _configure_logging() -> None:
    """Install a single stdout handler on the root logger.

    Existing handlers are removed first so uvicorn's own setup does not
    produce duplicate lines.
    """
    root = logging.getLogger()

    for handler in root.handlers[:]:
        root.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    if LOG_FORMAT.lower() == "text":
        handler.setFormatter(
            logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s")
        )
    else:
        handler.setFormatter(_JSONFormatter())

    root.addHandler(handler)
    root.setLevel(getattr(logging, LOG_LEVEL.upper(), logging.INFO))

    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)


logger = logging.getLogger("appstore.main")


# ======================================================================
# Verifier singleton
# ======================================================================

_verifier: Optional[SignedDataVerifier] = None
_verifier_error: Optional[str] = None


def build_verifier_from_config() -> SignedDataVerifier:
    """Build a verifier from the ``APPSTORE_*`` settings.

    Raises:
        ValueError: If the settings are inconsistent.
        OSError: If a root certificate file cannot be read.
    """
    roots: List[bytes] = [Path(path).read_bytes() for path in ROOT_CERT_PATHS]
    return SignedDataVerifier(
        root_certificates=roots,
        bundle_id=BUNDLE_ID,
        app_apple_id=APP_APPLE_ID,
        environment=Environment(ENVIRONMENT),
        enable_online_checks=ENABLE_ONLINE_CHECKS,
        revocation_policy=RevocationFailurePolicy(REVOCATION_POLICY),
    )


def get_verifier() -> Optional[SignedDataVerifier]:
    """Return the verifier built at startup (``None`` if misconfigured)."""
    return _verifier


def reset_verifier() -> None:
    """Discard the startup verifier (tests)."""
    global _verifier, _verifier_error
    _verifier = None
    _verifier_error = None


# ======================================================================
# Application lifespan
# ======================================================================


@asynccontextmanager
async def lifespan(app: FastAPI):
    global _verifier, _verifier_error

    _configure_logging()
    logger.info(
        "App Store notification receiver starting: HTTP=%s:%d environment=%s fingerprint=%s",
        HTTP_HOST, HTTP_PORT, ENVIRONMENT, config_fingerprint(),
    )

    try:
        _verifier = build_verifier_from_config()
        _verifier_error = None
    except (ValueError, OSError) as exc:
        _verifier = None
        _verifier_error = str(exc)
        logger.error("Signed data verifier not configured: %s", exc)

    yield

    logger.info("App Store notification receiver shutting down")
    _verifier = None


# ======================================================================
# FastAPI application
# ======================================================================

app = FastAPI(
    title="App Store Notification Receiver",
    description=(
        "Verifies App Store Server Notifications V2 signed payloads "
        "against pinned Apple root certificates."
    ),
    version=__version__,
    lifespan=lifespan,
)


class NotificationRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    signed_payload: str = Field(alias="signedPayload")


def _enum_value(value: Any) -> Any:
    if isinstance(value, Unrecognized):
        return value.raw
    return getattr(value, "value", value)


# ======================================================================
# Endpoints
# ======================================================================


@app.post(
    "/notifications",
    summary="Receive an App Store Server Notification V2",
    tags=["notifications"],
)
def notifications(
    request: NotificationRequest,
    verifier: Optional[SignedDataVerifier] = Depends(get_verifier),
) -> JSONResponse:
    """Verify and decode a notification.

    Runs synchronously in FastAPI's threadpool; the verifier is
    thread-safe.
    """
    if verifier is None:
        return JSONResponse(
            content={
                "status": "UNAVAILABLE",
                "message": "signed data verifier is not configured",
            },
            status_code=503,
        )

    try:
        result = verifier.verify_and_decode_notification(request.signed_payload)
    except VerificationError as exc:
        return JSONResponse(
            content={
                "status": "INVALID",
                "code": exc.code,
                "reason": exc.reason.value if exc.reason is not None else None,
                "message": exc.message,
            },
            status_code=400,
        )

    payload = result.payload
    identity = payload.identity()
    logger.info(
        "Notification accepted: type=%s subtype=%s uuid=%s",
        _enum_value(payload.notification_type),
        _enum_value(payload.subtype),
        payload.notification_uuid,
    )
    return JSONResponse(
        content={
            "status": "VALID",
            "notificationType": _enum_value(payload.notification_type),
            "subtype": _enum_value(payload.subtype),
            "notificationUUID": payload.notification_uuid,
            "environment": _enum_value(identity.environment),
            "trustLevel": result.trust_level.value,
            "warnings": list(result.warnings),
        },
        status_code=200,
    )


@app.get("/healthz", summary="Health check", tags=["health"])
def healthz(
    verifier: Optional[SignedDataVerifier] = Depends(get_verifier),
) -> JSONResponse:
    return JSONResponse(
        content={
            "status": "ok" if verifier is not None else "degraded",
            "environment": ENVIRONMENT,
            "config_fingerprint": config_fingerprint(),
            "verifier": "ready" if verifier is not None else _verifier_error,
            "online_checks": ENABLE_ONLINE_CHECKS,
            "revocation_cache": get_status_cache().stats(),
        },
        status_code=200,
    )


# ======================================================================
# Application runner (for direct invocation)
# ======================================================================


def main() -> None:
    """Run the receiver with uvicorn::

        python -m appstore.main
    """
    import uvicorn

    _configure_logging()
    logger.info("Starting App Store notification receiver: HTTP=%s:%d", HTTP_HOST, HTTP_PORT)

    uvicorn.run(
        "appstore.main:app",
        host=HTTP_HOST,
        port=HTTP_PORT,
        log_level=LOG_LEVEL.lower(),
        reload=False,
    )


if __name__ == "__main__":
    main()
