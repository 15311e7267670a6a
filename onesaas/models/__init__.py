"""Database models for OneSaaS."""

from onesaas.models.account import Account, Role, ROLE_LEVELS, STAFF_ROLES
from onesaas.models.service import Service
from onesaas.models.subscription import Subscription, SubscriptionStatus
from onesaas.models.api_key import ApiKey
from onesaas.models.trusted_device import TrustedDevice

__all__ = [
    "Account",
    "Role",
    "ROLE_LEVELS",
    "STAFF_ROLES",
    "Service",
    "Subscription",
    "SubscriptionStatus",
    "ApiKey",
    "TrustedDevice",
]
