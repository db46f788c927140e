# Copyright (c) Rich Connexions Ltd. All rights reserved.
# Licensed under the MIT License. See LICENSE for details.
"""HTTP client for the App Store Server API.

Synchronous, one request per call, no retries.  Signed fields in the
responses are returned untouched; verify them with
:class:`~appstore.signed_data.verifier.SignedDataVerifier`.
"""

import logging
from typing import List, Optional, Sequence, Tuple, Type, TypeVar, Union

import httpx
from pydantic import BaseModel, ValidationError

from appstore import __version__
from appstore.client.auth import BearerTokenAuthenticator
from appstore.client.exceptions import APIException
from appstore.client.models import (
    APIModel,
    CheckTestNotificationResponse,
    ConsumptionRequest,
    ErrorPayload,
    ExtendRenewalDateRequest,
    ExtendRenewalDateResponse,
    HistoryResponse,
    MassExtendRenewalDateRequest,
    MassExtendRenewalDateResponse,
    MassExtendRenewalDateStatusResponse,
    NotificationHistoryRequest,
    NotificationHistoryResponse,
    OrderLookupResponse,
    RefundHistoryResponse,
    SendTestNotificationResponse,
    StatusResponse,
    TransactionHistoryRequest,
    TransactionInfoResponse,
)
from appstore.config import API_TIMEOUT_SECONDS
from appstore.signed_data.models import Environment, Status

logger = logging.getLogger("appstore.client")

PRODUCTION_URL = "https://api.storekit.itunes.apple.com"
SANDBOX_URL = "https://api.storekit-sandbox.itunes.apple.com"
USER_AGENT = f"appstore-signed-data/python/{__version__}"

R = TypeVar("R", bound=BaseModel)
QueryParams = List[Tuple[str, str]]


def _base_url(environment: Environment) -> str:
    environment = Environment(environment)
    if environment == Environment.SANDBOX:
        return SANDBOX_URL
    if environment == Environment.PRODUCTION:
        return PRODUCTION_URL
    raise ValueError(f"the App Store Server API is not available for {environment.value}")


class AppStoreServerAPIClient:
    """App Store Server API client.

    Args:
        signing_key: PEM private key downloaded from App Store Connect.
        key_id: ID of the private key.
        issuer_id: Issuer ID from the Keys page in App Store Connect.
        bundle_id: The app's bundle identifier.
        environment: Sandbox or Production.
        transport: Optional httpx transport (tests pass a MockTransport).
        timeout: Per-request timeout in seconds.
    """

    def __init__(
        self,
        signing_key: Union[str, bytes],
        key_id: str,
        issuer_id: str,
        bundle_id: str,
        environment: Environment,
        transport: Optional[httpx.BaseTransport] = None,
        timeout: float = API_TIMEOUT_SECONDS,
    ):
        self._authenticator = BearerTokenAuthenticator(signing_key, key_id, issuer_id, bundle_id)
        self.base_url = _base_url(environment)
        self._http = httpx.Client(
            base_url=self.base_url,
            headers={"User-Agent": USER_AGENT, "Accept": "application/json"},
            timeout=httpx.Timeout(timeout),
            transport=transport,
        )

    def close(self) -> None:
        """Close the underlying HTTP client."""
        self._http.close()

    def __enter__(self) -> "AppStoreServerAPIClient":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    # -------------------------------------------------------------------------
    # Internal request helpers
    # -------------------------------------------------------------------------

    def _request(
        self,
        method: str,
        path: str,
        params: Optional[QueryParams] = None,
        body: Optional[APIModel] = None,
    ) -> httpx.Response:
        headers = {"Authorization": f"Bearer {self._authenticator.generate_token()}"}
        json_body = None
        if body is not None:
            json_body = body.to_request_body()
        logger.debug("%s %s params=%s", method, path, params)
        return self._http.request(
            method,
            path,
            params=params or None,
            json=json_body,
            headers=headers,
        )

    def _call(
        self,
        method: str,
        path: str,
        response_model: Optional[Type[R]],
        params: Optional[QueryParams] = None,
        body: Optional[APIModel] = None,
    ) -> Optional[R]:
        """Send a request and decode the response.

        Raises:
            APIException: On a non-2xx status or an undecodable 2xx body.
            httpx.HTTPError: On transport failure.
        """
        response = self._request(method, path, params=params, body=body)

        if not 200 <= response.status_code < 300:
            raise self._error_from_response(response)

        if response_model is None:
            return None
        try:
            return response_model.model_validate(response.json())
        except (ValueError, ValidationError) as e:
            raise APIException(
                response.status_code,
                error_message=f"response body could not be decoded: {e}",
            ) from e

    @staticmethod
    def _error_from_response(response: httpx.Response) -> APIException:
        try:
            error = ErrorPayload.model_validate(response.json())
        except (ValueError, ValidationError):
            logger.warning("App Store Server API HTTP %d with undecodable body", response.status_code)
            return APIException(response.status_code)
        logger.warning(
            "App Store Server API HTTP %d: errorCode=%s", response.status_code, error.error_code
        )
        return APIException.from_error_code(
            response.status_code, error.error_code, error.error_message
        )

    # -------------------------------------------------------------------------
    # Subscriptions
    # -------------------------------------------------------------------------

    def extend_renewal_date_for_all_active_subscribers(
        self, mass_extend_renewal_date_request: MassExtendRenewalDateRequest
    ) -> MassExtendRenewalDateResponse:
        """Extend the renewal date of every eligible active subscriber of a product."""
        return self._call(
            "POST",
            "/inApps/v1/subscriptions/extend/mass",
            MassExtendRenewalDateResponse,
            body=mass_extend_renewal_date_request,
        )

    def extend_subscription_renewal_date(
        self,
        original_transaction_id: str,
        extend_renewal_date_request: ExtendRenewalDateRequest,
    ) -> ExtendRenewalDateResponse:
        return self._call(
            "PUT",
            f"/inApps/v1/subscriptions/extend/{original_transaction_id}",
            ExtendRenewalDateResponse,
            body=extend_renewal_date_request,
        )

    def get_all_subscription_statuses(
        self, transaction_id: str, status: Optional[Sequence[Status]] = None
    ) -> StatusResponse:
        """Statuses of all the customer's auto-renewable subscriptions.

        ``status`` filters the result; the parameter repeats per value.
        """
        params: QueryParams = []
        if status is not None:
            params.extend(("status", str(Status(s).value)) for s in status)
        return self._call(
            "GET",
            f"/inApps/v1/subscriptions/{transaction_id}",
            StatusResponse,
            params=params,
        )

    def get_status_of_subscription_renewal_date_extensions(
        self, request_identifier: str, product_id: str
    ) -> MassExtendRenewalDateStatusResponse:
        return self._call(
            "GET",
            f"/inApps/v1/subscriptions/extend/mass/{product_id}/{request_identifier}",
            MassExtendRenewalDateStatusResponse,
        )

    # -------------------------------------------------------------------------
    # Transactions
    # -------------------------------------------------------------------------

    def get_refund_history(
        self, transaction_id: str, revision: Optional[str] = None
    ) -> RefundHistoryResponse:
        params: QueryParams = []
        if revision is not None:
            params.append(("revision", revision))
        return self._call(
            "GET",
            f"/inApps/v2/refund/lookup/{transaction_id}",
            RefundHistoryResponse,
            params=params,
        )

    def get_transaction_history(
        self,
        transaction_id: str,
        revision: Optional[str],
        transaction_history_request: TransactionHistoryRequest,
    ) -> HistoryResponse:
        """One page of the customer's transaction history.

        Filters travel as query parameters. Repeat the same filters when
        following ``revision``.
        """
        request = transaction_history_request
        params: QueryParams = []
        if revision is not None:
            params.append(("revision", revision))
        if request.start_date is not None:
            params.append(("startDate", str(request.start_date)))
        if request.end_date is not None:
            params.append(("endDate", str(request.end_date)))
        if request.product_ids is not None:
            params.extend(("productId", product_id) for product_id in request.product_ids)
        if request.product_types is not None:
            params.extend(("productType", product_type.name) for product_type in request.product_types)
        if request.sort is not None:
            params.append(("sort", request.sort.name))
        if request.subscription_group_identifiers is not None:
            params.extend(
                ("subscriptionGroupIdentifier", group)
                for group in request.subscription_group_identifiers
            )
        if request.in_app_ownership_type is not None:
            params.append(("inAppOwnershipType", request.in_app_ownership_type.name))
        if request.revoked is not None:
            params.append(("revoked", "true" if request.revoked else "false"))
        return self._call(
            "GET",
            f"/inApps/v1/history/{transaction_id}",
            HistoryResponse,
            params=params,
        )

    def get_transaction_info(self, transaction_id: str) -> TransactionInfoResponse:
        return self._call(
            "GET",
            f"/inApps/v1/transactions/{transaction_id}",
            TransactionInfoResponse,
        )

    def look_up_order_id(self, order_id: str) -> OrderLookupResponse:
        return self._call("GET", f"/inApps/v1/lookup/{order_id}", OrderLookupResponse)

    def send_consumption_data(
        self, transaction_id: str, consumption_request: ConsumptionRequest
    ) -> None:
        """Report consumption of a consumable after a CONSUMPTION_REQUEST notification."""
        self._call(
            "PUT",
            f"/inApps/v1/transactions/consumption/{transaction_id}",
            None,
            body=consumption_request,
        )

    # -------------------------------------------------------------------------
    # Notifications
    # -------------------------------------------------------------------------

    def get_notification_history(
        self,
        pagination_token: Optional[str],
        notification_history_request: NotificationHistoryRequest,
    ) -> NotificationHistoryResponse:
        params: QueryParams = []
        if pagination_token is not None:
            params.append(("paginationToken", pagination_token))
        return self._call(
            "POST",
            "/inApps/v1/notifications/history",
            NotificationHistoryResponse,
            params=params,
            body=notification_history_request,
        )

    def get_test_notification_status(
        self, test_notification_token: str
    ) -> CheckTestNotificationResponse:
        return self._call(
            "GET",
            f"/inApps/v1/notifications/test/{test_notification_token}",
            CheckTestNotificationResponse,
        )

    def request_test_notification(self) -> SendTestNotificationResponse:
        return self._call(
            "POST",
            "/inApps/v1/notifications/test",
            SendTestNotificationResponse,
        )
