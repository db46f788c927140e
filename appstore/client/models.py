# Copyright (c) Rich Connexions Ltd. All rights reserved.
# Licensed under the MIT License. See LICENSE for details.
"""Request and response bodies of the App Store Server API.

Signed fields (``signedTransactionInfo``, ``signedRenewalInfo``,
``signedPayload``...) are returned as opaque JWS strings; pass them to
:class:`~appstore.signed_data.verifier.SignedDataVerifier`.
"""

from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from appstore.signed_data.models import (
    EnvironmentField,
    InAppOwnershipType,
    NotificationTypeV2,
    StatusField,
    Subtype,
    forward_compatible,
)


class APIModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="allow",
    )

    def to_request_body(self) -> dict:
        return self.model_dump(by_alias=True, exclude_none=True, mode="json")


# =============================================================================
# Enums
# =============================================================================

class ExtendReasonCode(int, Enum):
    UNDECLARED = 0
    CUSTOMER_SATISFACTION = 1
    OTHER = 2
    SERVICE_ISSUE_OR_OUTAGE = 3


class Order(str, Enum):
    ASCENDING = "ASCENDING"
    DESCENDING = "DESCENDING"


class ProductType(str, Enum):
    AUTO_RENEWABLE = "AUTO_RENEWABLE"
    NON_RENEWABLE = "NON_RENEWABLE"
    CONSUMABLE = "CONSUMABLE"
    NON_CONSUMABLE = "NON_CONSUMABLE"


class OrderLookupStatus(int, Enum):
    VALID = 0
    INVALID = 1


class SendAttemptResult(str, Enum):
    SUCCESS = "SUCCESS"
    TIMED_OUT = "TIMED_OUT"
    TLS_ISSUE = "TLS_ISSUE"
    CIRCULAR_REDIRECT = "CIRCULAR_REDIRECT"
    NO_RESPONSE = "NO_RESPONSE"
    SOCKET_ISSUE = "SOCKET_ISSUE"
    UNSUPPORTED_CHARSET = "UNSUPPORTED_CHARSET"
    INVALID_RESPONSE = "INVALID_RESPONSE"
    PREMATURE_CLOSE = "PREMATURE_CLOSE"
    UNSUCCESSFUL_HTTP_RESPONSE_CODE = "UNSUCCESSFUL_HTTP_RESPONSE_CODE"
    OTHER = "OTHER"


class ConsumptionStatus(int, Enum):
    UNDECLARED = 0
    NOT_CONSUMED = 1
    PARTIALLY_CONSUMED = 2
    FULLY_CONSUMED = 3


class Platform(int, Enum):
    UNDECLARED = 0
    APPLE = 1
    NON_APPLE = 2


class DeliveryStatus(int, Enum):
    DELIVERED_AND_WORKING_PROPERLY = 0
    DID_NOT_DELIVER_DUE_TO_QUALITY_ISSUE = 1
    DELIVERED_WRONG_ITEM = 2
    DID_NOT_DELIVER_DUE_TO_SERVER_OUTAGE = 3
    DID_NOT_DELIVER_DUE_TO_IN_GAME_CURRENCY_CHANGE = 4
    DID_NOT_DELIVER_FOR_OTHER_REASON = 5


class UserStatus(int, Enum):
    UNDECLARED = 0
    ACTIVE = 1
    SUSPENDED = 2
    TERMINATED = 3
    LIMITED_ACCESS = 4


class RefundPreference(int, Enum):
    UNDECLARED = 0
    PREFER_GRANT = 1
    PREFER_DECLINE = 2
    NO_PREFERENCE = 3


OrderLookupStatusField = forward_compatible(OrderLookupStatus)
SendAttemptResultField = forward_compatible(SendAttemptResult)


# =============================================================================
# Requests
# =============================================================================

class ExtendRenewalDateRequest(APIModel):
    extend_by_days: Optional[int] = None
    extend_reason_code: Optional[ExtendReasonCode] = None
    request_identifier: Optional[str] = None


class MassExtendRenewalDateRequest(APIModel):
    extend_by_days: Optional[int] = None
    extend_reason_code: Optional[ExtendReasonCode] = None
    request_identifier: Optional[str] = None
    storefront_country_codes: Optional[List[str]] = None
    product_id: Optional[str] = None


class NotificationHistoryRequest(APIModel):
    start_date: Optional[int] = None
    end_date: Optional[int] = None
    notification_type: Optional[NotificationTypeV2] = None
    notification_subtype: Optional[Subtype] = None
    transaction_id: Optional[str] = None
    only_failures: Optional[bool] = None


class TransactionHistoryRequest(APIModel):
    """Filters for transaction history; sent as query parameters, not a body."""

    start_date: Optional[int] = None
    end_date: Optional[int] = None
    product_ids: Optional[List[str]] = None
    product_types: Optional[List[ProductType]] = None
    sort: Optional[Order] = None
    subscription_group_identifiers: Optional[List[str]] = None
    in_app_ownership_type: Optional[InAppOwnershipType] = None
    revoked: Optional[bool] = None


class ConsumptionRequest(APIModel):
    customer_consented: Optional[bool] = None
    consumption_status: Optional[ConsumptionStatus] = None
    platform: Optional[Platform] = None
    sample_content_provided: Optional[bool] = None
    delivery_status: Optional[DeliveryStatus] = None
    app_account_token: Optional[str] = None
    account_tenure: Optional[int] = None
    play_time: Optional[int] = None
    lifetime_dollars_refunded: Optional[int] = None
    lifetime_dollars_purchased: Optional[int] = None
    user_status: Optional[UserStatus] = None
    refund_preference: Optional[RefundPreference] = None


# =============================================================================
# Responses
# =============================================================================

class ExtendRenewalDateResponse(APIModel):
    original_transaction_id: Optional[str] = None
    web_order_line_item_id: Optional[str] = None
    success: Optional[bool] = None
    effective_date: Optional[int] = None


class MassExtendRenewalDateResponse(APIModel):
    request_identifier: Optional[str] = None


class MassExtendRenewalDateStatusResponse(APIModel):
    request_identifier: Optional[str] = None
    complete: Optional[bool] = None
    complete_date: Optional[int] = None
    succeeded_count: Optional[int] = None
    failed_count: Optional[int] = None


class LastTransactionsItem(APIModel):
    status: Optional[StatusField] = None
    original_transaction_id: Optional[str] = None
    signed_transaction_info: Optional[str] = None
    signed_renewal_info: Optional[str] = None


class SubscriptionGroupIdentifierItem(APIModel):
    subscription_group_identifier: Optional[str] = None
    last_transactions: Optional[List[LastTransactionsItem]] = None


class StatusResponse(APIModel):
    environment: Optional[EnvironmentField] = None
    bundle_id: Optional[str] = None
    app_apple_id: Optional[int] = None
    data: Optional[List[SubscriptionGroupIdentifierItem]] = None


class RefundHistoryResponse(APIModel):
    signed_transactions: Optional[List[str]] = None
    revision: Optional[str] = None
    has_more: Optional[bool] = None


class HistoryResponse(APIModel):
    revision: Optional[str] = None
    has_more: Optional[bool] = None
    bundle_id: Optional[str] = None
    app_apple_id: Optional[int] = None
    environment: Optional[EnvironmentField] = None
    signed_transactions: Optional[List[str]] = None


class TransactionInfoResponse(APIModel):
    signed_transaction_info: Optional[str] = None


class OrderLookupResponse(APIModel):
    status: Optional[OrderLookupStatusField] = None
    signed_transactions: Optional[List[str]] = None


class SendAttemptItem(APIModel):
    attempt_date: Optional[int] = None
    send_attempt_result: Optional[SendAttemptResultField] = None


class CheckTestNotificationResponse(APIModel):
    signed_payload: Optional[str] = None
    send_attempts: Optional[List[SendAttemptItem]] = None


class NotificationHistoryResponseItem(APIModel):
    signed_payload: Optional[str] = None
    send_attempts: Optional[List[SendAttemptItem]] = None


class NotificationHistoryResponse(APIModel):
    pagination_token: Optional[str] = None
    has_more: Optional[bool] = None
    notification_history: Optional[List[NotificationHistoryResponseItem]] = None


class SendTestNotificationResponse(APIModel):
    test_notification_token: Optional[str] = None


class ErrorPayload(APIModel):
    error_code: Optional[int] = None
    error_message: Optional[str] = None
