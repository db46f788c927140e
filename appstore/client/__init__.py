# Copyright (c) Rich Connexions Ltd. All rights reserved.
# Licensed under the MIT License. See LICENSE for details.

"""App Store Server API client."""

from .api_client import PRODUCTION_URL, SANDBOX_URL, AppStoreServerAPIClient
from .auth import BearerTokenAuthenticator
from .exceptions import APIError, APIException

__all__ = [
    "APIError",
    "APIException",
    "AppStoreServerAPIClient",
    "BearerTokenAuthenticator",
    "PRODUCTION_URL",
    "SANDBOX_URL",
]
