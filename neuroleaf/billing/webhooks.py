import os
import json
from typing import Any, Dict, Optional, Tuple

from neuroleaf.storage import get_account_by_customer, get_account_by_email, update_account
from neuroleaf.subscription import update_subscription_tier
from neuroleaf.utils import get_logger, log_billing_event
from .billing_service import period_end_iso
from .stripe_client import StripeClient, StripeError, StripeSignatureError, verify_webhook_signature

LOG = get_logger()


def pro_price_ids():
    ids = [
        os.getenv('STRIPE_PRICE_ID'),
        os.getenv('STRIPE_PRO_MONTHLY_PRICE_ID'),
        os.getenv('STRIPE_PRO_YEARLY_PRICE_ID'),
    ]
    return [i for i in ids if i]


def _first_price_id(subscription: Dict[str, Any]) -> Optional[str]:
    items = (subscription.get('items') or {}).get('data') or []
    if not items:
        return None
    return (items[0].get('price') or {}).get('id')


def find_or_link_account(customer_id: str, stripe: Optional[StripeClient] = None) -> Optional[Dict[str, Any]]:
    account = get_account_by_customer(customer_id)
    if account:
        return account
    if stripe is None:
        return None
    try:
        customer = stripe.retrieve_customer(customer_id)
    except StripeError as e:
        LOG.warning('stripe_customer_lookup_failed', extra={'customer_id': customer_id, 'error': str(e)})
        return None
    if customer.get('deleted') or not customer.get('email'):
        LOG.warning('stripe_customer_unusable', extra={'customer_id': customer_id})
        return None
    account = get_account_by_email(customer['email'])
    if not account:
        LOG.warning('stripe_customer_no_account', extra={'customer_id': customer_id})
        return None
    LOG.info('stripe_customer_linked', extra={'account_id': account['id'], 'customer_id': customer_id})
    return update_account(account['id'], stripe_customer_id=customer_id)


def handle_subscription_change(subscription: Dict[str, Any], stripe: Optional[StripeClient] = None):
    customer_id = subscription.get('customer')
    account = find_or_link_account(customer_id, stripe)
    if not account:
        LOG.error('subscription_account_missing', extra={'customer_id': customer_id, 'subscription_id': subscription.get('id')})
        return
    tier = 'pro' if _first_price_id(subscription) in pro_price_ids() else 'free'
    update_subscription_tier(account['id'], tier)
    update_account(
        account['id'],
        stripe_subscription_id=subscription.get('id'),
        subscription_status=subscription.get('status'),
        subscription_expires_at=period_end_iso(subscription),
    )
    log_billing_event('subscription_changed', user_id=account['id'], tier=tier, status=subscription.get('status'))


def handle_subscription_cancellation(subscription: Dict[str, Any]):
    account = get_account_by_customer(subscription.get('customer'))
    if not account:
        LOG.error('subscription_account_missing', extra={'customer_id': subscription.get('customer')})
        return
    update_subscription_tier(account['id'], 'free')
    update_account(account['id'], stripe_subscription_id=None, subscription_status='canceled', subscription_expires_at=None)
    log_billing_event('subscription_deleted', user_id=account['id'], tier='free', status='canceled')


def _set_payment_status(invoice: Dict[str, Any], status: str):
    account = get_account_by_customer(invoice.get('customer'))
    if not account:
        LOG.error('invoice_account_missing', extra={'customer_id': invoice.get('customer')})
        return
    update_account(account['id'], subscription_status=status)
    log_billing_event('payment_status', user_id=account['id'], tier=account.get('subscription_tier'), status=status)


def dispatch_event(event: Dict[str, Any], stripe: Optional[StripeClient] = None):
    event_type = event.get('type')
    obj = (event.get('data') or {}).get('object') or {}
    LOG.info('stripe_webhook_event', extra={'event_type': event_type, 'event_id': event.get('id')})

    if event_type in ('customer.subscription.created', 'customer.subscription.updated'):
        handle_subscription_change(obj, stripe)
    elif event_type == 'customer.subscription.deleted':
        handle_subscription_cancellation(obj)
    elif event_type == 'invoice.payment_succeeded':
        _set_payment_status(obj, 'active')
        if obj.get('subscription') and stripe is not None:
            subscription = stripe.retrieve_subscription(obj['subscription'])
            handle_subscription_change(subscription, stripe)
    elif event_type == 'invoice.payment_failed':
        _set_payment_status(obj, 'past_due')
    else:
        LOG.info('stripe_webhook_unhandled', extra={'event_type': event_type})


def process_webhook(payload: bytes, signature: Optional[str]) -> Tuple[int, Dict[str, Any]]:
    """Verify and apply a Stripe webhook delivery. Returns (status_code, body)."""
    if not os.getenv('STRIPE_SECRET_KEY'):
        LOG.error('stripe_not_configured')
        return 500, {'error': 'Stripe not configured'}
    secret = os.getenv('STRIPE_WEBHOOK_SECRET')
    if not secret:
        LOG.error('stripe_webhook_secret_missing')
        return 500, {'error': 'Webhook secret not configured'}
    if not signature:
        return 400, {'error': 'Missing signature'}
    try:
        verify_webhook_signature(payload, signature, secret)
        event = json.loads(payload.decode('utf-8'))
    except (StripeSignatureError, ValueError) as e:
        LOG.warning('stripe_webhook_signature_invalid', extra={'error': str(e)})
        return 400, {'error': 'Invalid signature'}

    try:
        dispatch_event(event, StripeClient.get_instance())
    except Exception:
        LOG.exception('stripe_webhook_failed', exc_info=True)
        return 500, {'error': 'Webhook processing failed'}
    return 200, {'received': True}
