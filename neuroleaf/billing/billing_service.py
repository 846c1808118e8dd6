from datetime import datetime, timezone
from typing import Any, Dict, Optional

from neuroleaf.storage import get_account, update_account
from neuroleaf.subscription import update_subscription_tier
from neuroleaf.utils import get_logger, log_billing_event
from .stripe_client import StripeClient, StripeError

LOG = get_logger()


class BillingError(Exception):
    pass


def period_end_iso(subscription: Dict[str, Any]) -> Optional[str]:
    end = subscription.get('current_period_end')
    if not end:
        return None
    return datetime.fromtimestamp(int(end), tz=timezone.utc).isoformat()


def _require_account(user_id: str) -> Dict[str, Any]:
    account = get_account(user_id)
    if not account:
        raise BillingError('Account not found')
    return account


def _downgrade_to_free(user_id: str):
    update_subscription_tier(user_id, 'free')
    update_account(user_id, subscription_status='canceled', subscription_expires_at=None)
    log_billing_event('downgraded', user_id=user_id, tier='free', status='canceled')


def create_checkout_session(price_id: str, user_id: str, success_url: str, cancel_url: str) -> Dict[str, Any]:
    account = _require_account(user_id)
    stripe = StripeClient.get_instance()
    customer_id = account.get('stripe_customer_id')
    if not customer_id:
        customer = stripe.create_customer(account.get('email'), metadata={'userId': account['id']})
        customer_id = customer['id']
        update_account(user_id, stripe_customer_id=customer_id)
        LOG.info('stripe_customer_created', extra={'account_id': user_id})
    session = stripe.create_checkout_session(customer_id, price_id, success_url, cancel_url, metadata={'userId': account['id']})
    log_billing_event('checkout_session_created', user_id=user_id, tier=account.get('subscription_tier'))
    return {'session_id': session.get('id'), 'url': session.get('url')}


def create_billing_portal_session(user_id: str, return_url: str) -> Dict[str, Any]:
    account = _require_account(user_id)
    if not account.get('stripe_customer_id'):
        raise BillingError('No Stripe customer found. Please contact support.')
    if account.get('subscription_tier') == 'free':
        raise BillingError('No active subscription to manage')
    session = StripeClient.get_instance().create_billing_portal_session(account['stripe_customer_id'], return_url)
    return {'url': session.get('url')}


def cancel_subscription(user_id: str) -> bool:
    account = _require_account(user_id)
    if account.get('subscription_tier') == 'free':
        raise BillingError('No active subscription to cancel')

    subscription_id = account.get('stripe_subscription_id')
    if not subscription_id:
        LOG.warning('pro_account_without_subscription', extra={'account_id': user_id})
        _downgrade_to_free(user_id)
        return True

    try:
        canceled = StripeClient.get_instance().update_subscription(subscription_id, cancel_at_period_end=True)
    except StripeError as e:
        # already canceled on the provider side, so mirror that locally
        LOG.warning('stripe_cancel_failed', extra={'account_id': user_id, 'error': str(e)})
        _downgrade_to_free(user_id)
        return True

    # tier stays pro until the paid period ends
    update_account(user_id, subscription_status='canceled', subscription_expires_at=period_end_iso(canceled))
    log_billing_event('subscription_canceled', user_id=user_id, tier=account.get('subscription_tier'), status='canceled')
    return True


def reactivate_subscription(user_id: str) -> Dict[str, Any]:
    account = _require_account(user_id)
    if account.get('subscription_tier') == 'free':
        raise BillingError('No subscription to reactivate')
    subscription_id = account.get('stripe_subscription_id')
    if not subscription_id:
        raise BillingError('No Stripe subscription found')

    stripe = StripeClient.get_instance()
    try:
        subscription = stripe.retrieve_subscription(subscription_id)
        if subscription.get('cancel_at_period_end') and subscription.get('status') == 'active':
            reactivated = stripe.update_subscription(subscription_id, cancel_at_period_end=False)
            update_account(user_id, subscription_status='active', subscription_expires_at=period_end_iso(reactivated))
            log_billing_event('subscription_reactivated', user_id=user_id, tier=account.get('subscription_tier'), status='active')
            return {'success': True, 'type': 'reactivated'}
        if subscription.get('status') == 'canceled':
            return {'success': False, 'type': 'expired', 'message': 'Subscription has expired. Please create a new subscription.'}
        return {'success': False, 'type': 'already_active', 'message': 'Subscription is already active.'}
    except StripeError as e:
        LOG.exception('stripe_reactivate_failed', exc_info=True)
        raise BillingError('Failed to reactivate subscription. Please try again or contact support.') from e


def get_subscription_info(user_id: str) -> Dict[str, Any]:
    account = get_account(user_id)
    if not account:
        return {'tier': 'free', 'status': None, 'expires_at': None, 'subscription_id': None}
    return {
        'tier': account.get('subscription_tier') or 'free',
        'status': account.get('subscription_status'),
        'expires_at': account.get('subscription_expires_at'),
        'subscription_id': account.get('stripe_subscription_id'),
    }
