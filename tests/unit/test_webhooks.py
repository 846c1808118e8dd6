import pytest

from neuroleaf.billing import dispatch_event, process_webhook
from neuroleaf.storage import get_account, update_account
from tests.fixtures.mock_stripe import CUSTOMER_ID, SUBSCRIPTION_ID, signed_event, subscription_body


@pytest.fixture
def customer_account(account):
    return update_account(account['id'], stripe_customer_id=CUSTOMER_ID)


def test_unconfigured_stripe_returns_500(db):
    payload, header = signed_event('customer.subscription.updated', subscription_body())
    status, body = process_webhook(payload, header)
    assert status == 500
    assert body == {'error': 'Stripe not configured'}


def test_missing_webhook_secret(mock_stripe, monkeypatch):
    monkeypatch.delenv('STRIPE_WEBHOOK_SECRET')
    payload, header = signed_event('customer.subscription.updated', subscription_body())
    assert process_webhook(payload, header)[0] == 500


def test_missing_or_bad_signature(mock_stripe, customer_account):
    payload, header = signed_event('customer.subscription.updated', subscription_body())
    assert process_webhook(payload, None) == (400, {'error': 'Missing signature'})
    _, forged = signed_event('customer.subscription.updated', subscription_body(), secret='whsec_wrong')
    assert process_webhook(payload, forged) == (400, {'error': 'Invalid signature'})
    assert get_account(customer_account['id'])['subscription_tier'] == 'free'


def test_subscription_update_grants_pro(mock_stripe, customer_account):
    payload, header = signed_event('customer.subscription.updated', subscription_body())
    assert process_webhook(payload, header) == (200, {'received': True})
    account = get_account(customer_account['id'])
    assert account['subscription_tier'] == 'pro'
    assert account['deck_limit'] == -1
    assert account['stripe_subscription_id'] == SUBSCRIPTION_ID
    assert account['subscription_status'] == 'active'


def test_unknown_price_maps_to_free(mock_stripe, customer_account):
    payload, header = signed_event('customer.subscription.created', subscription_body(price_id='price_other'))
    assert process_webhook(payload, header)[0] == 200
    assert get_account(customer_account['id'])['subscription_tier'] == 'free'


def test_customer_linked_by_email(mock_stripe, account):
    payload, header = signed_event('customer.subscription.created', subscription_body())
    assert process_webhook(payload, header)[0] == 200
    linked = get_account(account['id'])
    assert linked['stripe_customer_id'] == CUSTOMER_ID
    assert linked['subscription_tier'] == 'pro'


def test_subscription_deleted_downgrades(mock_stripe, customer_account):
    payload, header = signed_event('customer.subscription.updated', subscription_body())
    process_webhook(payload, header)
    payload, header = signed_event('customer.subscription.deleted', subscription_body(status='canceled'))
    assert process_webhook(payload, header)[0] == 200
    account = get_account(customer_account['id'])
    assert account['subscription_tier'] == 'free'
    assert account['subscription_status'] == 'canceled'
    assert account['stripe_subscription_id'] is None


def test_invoice_events_set_payment_status(customer_account):
    dispatch_event({'type': 'invoice.payment_failed', 'data': {'object': {'customer': CUSTOMER_ID}}})
    assert get_account(customer_account['id'])['subscription_status'] == 'past_due'
    dispatch_event({'type': 'invoice.payment_succeeded', 'data': {'object': {'customer': CUSTOMER_ID}}})
    assert get_account(customer_account['id'])['subscription_status'] == 'active'


def test_unhandled_event_is_ignored(customer_account):
    dispatch_event({'type': 'charge.refunded', 'data': {'object': {}}})
    assert get_account(customer_account['id'])['subscription_status'] == 'active'
