# Copyright (c) Rich Connexions Ltd. All rights reserved.
# Licensed under the MIT License. See LICENSE for details.
"""Decoded payload models for App Store signed data.

Enum-valued fields are forward compatible: a value the platform adds after
this release decodes to :class:`Unrecognized` carrying the raw value
instead of failing validation.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Annotated, Any, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, PlainSerializer, PlainValidator
from pydantic.alias_generators import to_camel


# =============================================================================
# Forward-compatible enum support
# =============================================================================

@dataclass(frozen=True)
class Unrecognized:
    """An enum value not known to this release."""

    raw: Union[str, int]


def forward_compatible(enum_cls: type) -> Any:
    """Annotated type accepting *enum_cls* members or :class:`Unrecognized`."""

    def _validate(value: Any) -> Union[Enum, Unrecognized]:
        if isinstance(value, (enum_cls, Unrecognized)):
            return value
        if isinstance(value, bool) or not isinstance(value, (str, int)):
            raise ValueError(f"{enum_cls.__name__} value must be a string or integer")
        try:
            return enum_cls(value)
        except ValueError:
            return Unrecognized(raw=value)

    def _serialize(value: Union[Enum, Unrecognized]) -> Union[str, int]:
        if isinstance(value, Unrecognized):
            return value.raw
        return value.value

    return Annotated[
        Union[enum_cls, Unrecognized],
        PlainValidator(_validate),
        PlainSerializer(_serialize),
    ]


# =============================================================================
# Enums
# =============================================================================

class Environment(str, Enum):
    SANDBOX = "Sandbox"
    PRODUCTION = "Production"
    XCODE = "Xcode"
    LOCAL_TESTING = "LocalTesting"

    @property
    def is_local(self) -> bool:
        """Developer-local signing contexts without production trust anchors."""
        return self in (Environment.XCODE, Environment.LOCAL_TESTING)


class Type(str, Enum):
    AUTO_RENEWABLE_SUBSCRIPTION = "Auto-Renewable Subscription"
    NON_CONSUMABLE = "Non-Consumable"
    CONSUMABLE = "Consumable"
    NON_RENEWING_SUBSCRIPTION = "Non-Renewing Subscription"


class InAppOwnershipType(str, Enum):
    FAMILY_SHARED = "FAMILY_SHARED"
    PURCHASED = "PURCHASED"


class TransactionReason(str, Enum):
    PURCHASE = "PURCHASE"
    RENEWAL = "RENEWAL"


class OfferType(int, Enum):
    INTRODUCTORY_OFFER = 1
    PROMOTIONAL_OFFER = 2
    SUBSCRIPTION_OFFER_CODE = 3
    WIN_BACK_OFFER = 4


class OfferDiscountType(str, Enum):
    FREE_TRIAL = "FREE_TRIAL"
    PAY_AS_YOU_GO = "PAY_AS_YOU_GO"
    PAY_UP_FRONT = "PAY_UP_FRONT"


class RevocationReason(int, Enum):
    REFUNDED_FOR_OTHER_REASON = 0
    REFUNDED_DUE_TO_ISSUE = 1


class AutoRenewStatus(int, Enum):
    OFF = 0
    ON = 1


class ExpirationIntent(int, Enum):
    CUSTOMER_CANCELLED = 1
    BILLING_ERROR = 2
    CUSTOMER_DID_NOT_CONSENT_TO_PRICE_INCREASE = 3
    PRODUCT_NOT_AVAILABLE = 4
    OTHER = 5


class PriceIncreaseStatus(int, Enum):
    CUSTOMER_HAS_NOT_RESPONDED = 0
    CUSTOMER_CONSENTED_OR_WAS_NOTIFIED_WITHOUT_NEEDING_CONSENT = 1


class Status(int, Enum):
    ACTIVE = 1
    EXPIRED = 2
    BILLING_RETRY = 3
    BILLING_GRACE_PERIOD = 4
    REVOKED = 5


class NotificationTypeV2(str, Enum):
    SUBSCRIBED = "SUBSCRIBED"
    DID_CHANGE_RENEWAL_PREF = "DID_CHANGE_RENEWAL_PREF"
    DID_CHANGE_RENEWAL_STATUS = "DID_CHANGE_RENEWAL_STATUS"
    OFFER_REDEEMED = "OFFER_REDEEMED"
    DID_RENEW = "DID_RENEW"
    EXPIRED = "EXPIRED"
    DID_FAIL_TO_RENEW = "DID_FAIL_TO_RENEW"
    GRACE_PERIOD_EXPIRED = "GRACE_PERIOD_EXPIRED"
    PRICE_INCREASE = "PRICE_INCREASE"
    REFUND = "REFUND"
    REFUND_DECLINED = "REFUND_DECLINED"
    CONSUMPTION_REQUEST = "CONSUMPTION_REQUEST"
    RENEWAL_EXTENDED = "RENEWAL_EXTENDED"
    REVOKE = "REVOKE"
    TEST = "TEST"
    RENEWAL_EXTENSION = "RENEWAL_EXTENSION"
    REFUND_REVERSED = "REFUND_REVERSED"
    EXTERNAL_PURCHASE_TOKEN = "EXTERNAL_PURCHASE_TOKEN"
    ONE_TIME_CHARGE = "ONE_TIME_CHARGE"


class Subtype(str, Enum):
    INITIAL_BUY = "INITIAL_BUY"
    RESUBSCRIBE = "RESUBSCRIBE"
    DOWNGRADE = "DOWNGRADE"
    UPGRADE = "UPGRADE"
    AUTO_RENEW_ENABLED = "AUTO_RENEW_ENABLED"
    AUTO_RENEW_DISABLED = "AUTO_RENEW_DISABLED"
    VOLUNTARY = "VOLUNTARY"
    BILLING_RETRY = "BILLING_RETRY"
    PRICE_INCREASE = "PRICE_INCREASE"
    GRACE_PERIOD = "GRACE_PERIOD"
    PENDING = "PENDING"
    ACCEPTED = "ACCEPTED"
    BILLING_RECOVERY = "BILLING_RECOVERY"
    PRODUCT_NOT_FOR_SALE = "PRODUCT_NOT_FOR_SALE"
    SUMMARY = "SUMMARY"
    FAILURE = "FAILURE"
    UNREPORTED = "UNREPORTED"


class PurchasePlatform(str, Enum):
    IOS = "iOS"
    MAC_OS = "macOS"
    TV_OS = "tvOS"
    VISION_OS = "visionOS"


EnvironmentField = forward_compatible(Environment)
TypeField = forward_compatible(Type)
InAppOwnershipTypeField = forward_compatible(InAppOwnershipType)
TransactionReasonField = forward_compatible(TransactionReason)
OfferTypeField = forward_compatible(OfferType)
OfferDiscountTypeField = forward_compatible(OfferDiscountType)
RevocationReasonField = forward_compatible(RevocationReason)
AutoRenewStatusField = forward_compatible(AutoRenewStatus)
ExpirationIntentField = forward_compatible(ExpirationIntent)
PriceIncreaseStatusField = forward_compatible(PriceIncreaseStatus)
StatusField = forward_compatible(Status)
NotificationTypeV2Field = forward_compatible(NotificationTypeV2)
SubtypeField = forward_compatible(Subtype)
PurchasePlatformField = forward_compatible(PurchasePlatform)


# =============================================================================
# Identity carried by every payload
# =============================================================================

@dataclass(frozen=True)
class PayloadIdentity:
    """The fields checked against the verifier's configuration."""

    bundle_id: Optional[str]
    app_apple_id: Optional[int]
    environment: Optional[Union[Environment, Unrecognized]]


class SignedPayloadModel(BaseModel):
    """Base for decoded JWS payloads.

    Unknown fields are kept so a dump by alias reproduces the signed JSON.
    """

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="allow",
        frozen=True,
    )

    def identity(self) -> PayloadIdentity:
        raise NotImplementedError

    def to_json_dict(self) -> dict:
        return self.model_dump(by_alias=True, exclude_none=True)


# =============================================================================
# Transactions
# =============================================================================

class JWSTransactionDecodedPayload(SignedPayloadModel):
    original_transaction_id: Optional[str] = None
    transaction_id: Optional[str] = None
    web_order_line_item_id: Optional[str] = None
    bundle_id: Optional[str] = None
    product_id: Optional[str] = None
    subscription_group_identifier: Optional[str] = None
    purchase_date: Optional[int] = None
    original_purchase_date: Optional[int] = None
    expires_date: Optional[int] = None
    quantity: Optional[int] = None
    type: Optional[TypeField] = None
    app_account_token: Optional[str] = None
    in_app_ownership_type: Optional[InAppOwnershipTypeField] = None
    signed_date: Optional[int] = None
    revocation_reason: Optional[RevocationReasonField] = None
    revocation_date: Optional[int] = None
    is_upgraded: Optional[bool] = None
    offer_type: Optional[OfferTypeField] = None
    offer_identifier: Optional[str] = None
    environment: Optional[EnvironmentField] = None
    storefront: Optional[str] = None
    storefront_id: Optional[str] = None
    transaction_reason: Optional[TransactionReasonField] = None
    currency: Optional[str] = None
    price: Optional[int] = None
    offer_discount_type: Optional[OfferDiscountTypeField] = None
    offer_period: Optional[str] = None
    app_transaction_id: Optional[str] = None

    def identity(self) -> PayloadIdentity:
        return PayloadIdentity(self.bundle_id, None, self.environment)


class JWSRenewalInfoDecodedPayload(SignedPayloadModel):
    """Subscription renewal state.

    The platform does not put ``bundleId`` in renewal info; the bundle is
    checked only when a payload carries one.
    """

    expiration_intent: Optional[ExpirationIntentField] = None
    original_transaction_id: Optional[str] = None
    auto_renew_product_id: Optional[str] = None
    product_id: Optional[str] = None
    auto_renew_status: Optional[AutoRenewStatusField] = None
    is_in_billing_retry_period: Optional[bool] = None
    price_increase_status: Optional[PriceIncreaseStatusField] = None
    grace_period_expires_date: Optional[int] = None
    offer_type: Optional[OfferTypeField] = None
    offer_identifier: Optional[str] = None
    signed_date: Optional[int] = None
    environment: Optional[EnvironmentField] = None
    recent_subscription_start_date: Optional[int] = None
    renewal_date: Optional[int] = None
    currency: Optional[str] = None
    renewal_price: Optional[int] = None
    offer_discount_type: Optional[OfferDiscountTypeField] = None
    eligible_win_back_offer_ids: Optional[List[str]] = None
    app_account_token: Optional[str] = None
    app_transaction_id: Optional[str] = None
    bundle_id: Optional[str] = None

    def identity(self) -> PayloadIdentity:
        return PayloadIdentity(self.bundle_id, None, self.environment)


# =============================================================================
# Server notifications (V2)
# =============================================================================

class NotificationData(SignedPayloadModel):
    environment: Optional[EnvironmentField] = None
    app_apple_id: Optional[int] = None
    bundle_id: Optional[str] = None
    bundle_version: Optional[str] = None
    signed_transaction_info: Optional[str] = None
    signed_renewal_info: Optional[str] = None
    status: Optional[StatusField] = None
    consumption_request_reason: Optional[str] = None


class NotificationSummary(SignedPayloadModel):
    environment: Optional[EnvironmentField] = None
    app_apple_id: Optional[int] = None
    bundle_id: Optional[str] = None
    product_id: Optional[str] = None
    request_identifier: Optional[str] = None
    storefront_country_codes: Optional[List[str]] = None
    succeeded_count: Optional[int] = None
    failed_count: Optional[int] = None


class ExternalPurchaseToken(SignedPayloadModel):
    external_purchase_id: Optional[str] = None
    token_creation_date: Optional[int] = None
    app_apple_id: Optional[int] = None
    bundle_id: Optional[str] = None

    @property
    def environment(self) -> Environment:
        if self.external_purchase_id and self.external_purchase_id.startswith("SANDBOX"):
            return Environment.SANDBOX
        return Environment.PRODUCTION


class ResponseBodyV2DecodedPayload(SignedPayloadModel):
    notification_type: Optional[NotificationTypeV2Field] = None
    subtype: Optional[SubtypeField] = None
    notification_uuid: Optional[str] = Field(default=None, alias="notificationUUID")
    data: Optional[NotificationData] = None
    summary: Optional[NotificationSummary] = None
    external_purchase_token: Optional[ExternalPurchaseToken] = None
    version: Optional[str] = None
    signed_date: Optional[int] = None

    def identity(self) -> PayloadIdentity:
        if self.data is not None:
            source = self.data
            environment = self.data.environment
        elif self.summary is not None:
            source = self.summary
            environment = self.summary.environment
        elif self.external_purchase_token is not None:
            source = self.external_purchase_token
            environment = self.external_purchase_token.environment
        else:
            return PayloadIdentity(None, None, None)
        return PayloadIdentity(source.bundle_id, source.app_apple_id, environment)


# =============================================================================
# App transactions
# =============================================================================

class AppTransaction(SignedPayloadModel):
    """Decoded app transaction; its environment is carried in ``receiptType``."""

    receipt_type: Optional[EnvironmentField] = None
    app_apple_id: Optional[int] = None
    bundle_id: Optional[str] = None
    application_version: Optional[str] = None
    version_external_identifier: Optional[int] = None
    receipt_creation_date: Optional[int] = None
    original_purchase_date: Optional[int] = None
    original_application_version: Optional[str] = None
    device_verification: Optional[str] = None
    device_verification_nonce: Optional[str] = None
    preorder_date: Optional[int] = None
    app_transaction_id: Optional[str] = None
    original_platform: Optional[PurchasePlatformField] = None

    @property
    def environment(self):
        return self.receipt_type

    def identity(self) -> PayloadIdentity:
        return PayloadIdentity(self.bundle_id, self.app_apple_id, self.receipt_type)
