# Copyright (c) Rich Connexions Ltd. All rights reserved.
# Licensed under the MIT License. See LICENSE for details.
"""App Store signed data verifier configuration.

Normative constants are fixed by the JWS profile the App Store uses.
Configurable defaults may be overridden via environment variables.
"""

import hashlib
import json
import os
from typing import Optional

# =============================================================================
# NORMATIVE CONSTANTS
# =============================================================================

ALLOWED_ALGORITHMS: frozenset[str] = frozenset({"ES256"})
MIN_CHAIN_LENGTH: int = 1
MAX_CHAIN_LENGTH: int = 5

# =============================================================================
# VERIFIER IDENTITY (per deployment)
# =============================================================================

BUNDLE_ID: str = os.getenv("APPSTORE_BUNDLE_ID", "")
ENVIRONMENT: str = os.getenv("APPSTORE_ENVIRONMENT", "Sandbox")


def _parse_app_apple_id() -> Optional[int]:
    raw = os.getenv("APPSTORE_APP_APPLE_ID", "").strip()
    if not raw:
        return None
    return int(raw)


APP_APPLE_ID: Optional[int] = _parse_app_apple_id()


def _parse_root_cert_paths() -> list[str]:
    env = os.getenv("APPSTORE_ROOT_CERT_PATHS", "")
    return [p.strip() for p in env.split(",") if p.strip()]


ROOT_CERT_PATHS: list[str] = _parse_root_cert_paths()

# =============================================================================
# REVOCATION
# =============================================================================

ENABLE_ONLINE_CHECKS: bool = os.getenv("APPSTORE_ENABLE_ONLINE_CHECKS", "false").lower() == "true"
REVOCATION_POLICY: str = os.getenv("APPSTORE_REVOCATION_POLICY", "soft").lower()
OCSP_TIMEOUT_SECONDS: float = float(os.getenv("APPSTORE_OCSP_TIMEOUT", "5.0"))
REVOCATION_CACHE_MAX_ENTRIES: int = int(os.getenv("APPSTORE_REVOCATION_CACHE_MAX_ENTRIES", "1024"))

# =============================================================================
# APP STORE SERVER API
# =============================================================================

API_TIMEOUT_SECONDS: float = float(os.getenv("APPSTORE_API_TIMEOUT", "30.0"))

# =============================================================================
# NETWORK
# =============================================================================

HTTP_HOST: str = os.getenv("APPSTORE_HTTP_HOST", "0.0.0.0")
HTTP_PORT: int = int(os.getenv("APPSTORE_HTTP_PORT", "8000"))

# =============================================================================
# LOGGING
# =============================================================================

LOG_LEVEL: str = os.getenv("APPSTORE_LOG_LEVEL", "INFO")
LOG_FORMAT: str = os.getenv("APPSTORE_LOG_FORMAT", "json")


# =============================================================================
# CONFIG FINGERPRINT
# =============================================================================

def config_fingerprint() -> str:
    """SHA256 of validation-affecting settings, reported by the health check."""
    data = json.dumps({
        "bundle_id": BUNDLE_ID,
        "app_apple_id": APP_APPLE_ID,
        "environment": ENVIRONMENT,
        "root_cert_paths": sorted(ROOT_CERT_PATHS),
        "online_checks": ENABLE_ONLINE_CHECKS,
        "revocation_policy": REVOCATION_POLICY,
    }, sort_keys=True)
    return hashlib.sha256(data.encode()).hexdigest()[:16]
