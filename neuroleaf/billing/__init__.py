"""Pricing plans and Stripe billing"""

from .plans import (
    PricingPlan,
    PlanLimits,
    UsageSnapshot,
    PRICING_PLANS,
    PLAN_LIMITS,
    get_plan_by_id,
    get_plan_limits,
    get_plan_features,
    can_access_feature,
    format_price,
    calculate_yearly_discount,
    can_create_deck,
    can_add_card_to_deck,
    get_upgrade_suggestion,
    format_usage_stats,
)
from .stripe_client import (
    StripeClient,
    StripeError,
    StripeConfigError,
    StripeConnectionError,
    StripeSignatureError,
    verify_webhook_signature,
)
from .billing_service import (
    BillingError,
    create_checkout_session,
    create_billing_portal_session,
    cancel_subscription,
    reactivate_subscription,
    get_subscription_info,
)
from .webhooks import process_webhook, dispatch_event

__all__ = [
    'PricingPlan',
    'PlanLimits',
    'UsageSnapshot',
    'PRICING_PLANS',
    'PLAN_LIMITS',
    'get_plan_by_id',
    'get_plan_limits',
    'get_plan_features',
    'can_access_feature',
    'format_price',
    'calculate_yearly_discount',
    'can_create_deck',
    'can_add_card_to_deck',
    'get_upgrade_suggestion',
    'format_usage_stats',
    'StripeClient',
    'StripeError',
    'StripeConfigError',
    'StripeConnectionError',
    'StripeSignatureError',
    'verify_webhook_signature',
    'BillingError',
    'create_checkout_session',
    'create_billing_portal_session',
    'cancel_subscription',
    'reactivate_subscription',
    'get_subscription_info',
    'process_webhook',
    'dispatch_event',
]
