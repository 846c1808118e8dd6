import pytest

from neuroleaf.billing import (
    BillingError,
    cancel_subscription,
    create_billing_portal_session,
    create_checkout_session,
    get_subscription_info,
    reactivate_subscription,
)
from neuroleaf.storage import get_account, update_account
from tests.fixtures.mock_stripe import CUSTOMER_ID, SUBSCRIPTION_ID, subscription_body


@pytest.fixture
def subscribed(pro_account):
    return update_account(pro_account['id'], stripe_customer_id=CUSTOMER_ID, stripe_subscription_id=SUBSCRIPTION_ID)


def test_checkout_creates_and_stores_customer(mock_stripe, account):
    result = create_checkout_session('price_pro_monthly', account['id'], 'https://app/ok', 'https://app/cancel')
    assert result == {'session_id': 'cs_test_1', 'url': 'https://checkout.stripe.com/c/pay/cs_test_1'}
    assert get_account(account['id'])['stripe_customer_id'] == CUSTOMER_ID
    assert mock_stripe.last('POST', 'customers')['data']['email'] == 'learner@example.com'


def test_checkout_reuses_existing_customer(mock_stripe, account):
    update_account(account['id'], stripe_customer_id='cus_existing')
    create_checkout_session('price_pro_monthly', account['id'], 'https://app/ok', 'https://app/cancel')
    assert mock_stripe.last('POST', 'customers') is None
    assert mock_stripe.last('POST', 'checkout/sessions')['data']['customer'] == 'cus_existing'


def test_checkout_unknown_account(mock_stripe, db):
    with pytest.raises(BillingError):
        create_checkout_session('price_pro_monthly', 'nobody', 'https://app/ok', 'https://app/cancel')


def test_portal_requires_paid_customer(mock_stripe, account):
    with pytest.raises(BillingError):
        create_billing_portal_session(account['id'], 'https://app/billing')
    update_account(account['id'], stripe_customer_id=CUSTOMER_ID)
    with pytest.raises(BillingError) as exc:
        create_billing_portal_session(account['id'], 'https://app/billing')
    assert 'No active subscription' in str(exc.value)


def test_portal_session(mock_stripe, subscribed):
    assert create_billing_portal_session(subscribed['id'], 'https://app/billing') == {'url': 'https://billing.stripe.com/p/session/test'}


def test_cancel_keeps_pro_until_period_end(mock_stripe, subscribed):
    assert cancel_subscription(subscribed['id']) is True
    account = get_account(subscribed['id'])
    assert account['subscription_tier'] == 'pro'
    assert account['subscription_status'] == 'canceled'
    assert account['subscription_expires_at'].startswith('2030-01-01')
    assert mock_stripe.last('POST', f'subscriptions/{SUBSCRIPTION_ID}')['data'] == {'cancel_at_period_end': True}


def test_cancel_free_account_rejected(mock_stripe, account):
    with pytest.raises(BillingError):
        cancel_subscription(account['id'])


def test_cancel_without_subscription_downgrades(mock_stripe, pro_account):
    assert cancel_subscription(pro_account['id']) is True
    account = get_account(pro_account['id'])
    assert account['subscription_tier'] == 'free'
    assert account['deck_limit'] == 3


def test_cancel_provider_error_downgrades(mock_stripe, subscribed):
    mock_stripe.route('POST', f'subscriptions/{SUBSCRIPTION_ID}', {'error': {'message': 'gone'}}, status_code=404)
    assert cancel_subscription(subscribed['id']) is True
    assert get_account(subscribed['id'])['subscription_tier'] == 'free'


def test_reactivate(mock_stripe, subscribed):
    assert reactivate_subscription(subscribed['id'])['type'] == 'already_active'

    mock_stripe.route('GET', f'subscriptions/{SUBSCRIPTION_ID}', subscription_body(cancel_at_period_end=True))
    mock_stripe.route('POST', f'subscriptions/{SUBSCRIPTION_ID}', subscription_body())
    result = reactivate_subscription(subscribed['id'])
    assert result == {'success': True, 'type': 'reactivated'}
    assert get_account(subscribed['id'])['subscription_status'] == 'active'

    mock_stripe.route('GET', f'subscriptions/{SUBSCRIPTION_ID}', subscription_body(status='canceled'))
    assert reactivate_subscription(subscribed['id'])['type'] == 'expired'


def test_reactivate_provider_error(mock_stripe, subscribed):
    mock_stripe.route('GET', f'subscriptions/{SUBSCRIPTION_ID}', {'error': {'message': 'boom'}}, status_code=500)
    with pytest.raises(BillingError):
        reactivate_subscription(subscribed['id'])


def test_subscription_info(subscribed, db):
    info = get_subscription_info(subscribed['id'])
    assert info['tier'] == 'pro'
    assert info['subscription_id'] == SUBSCRIPTION_ID
    assert get_subscription_info('nobody') == {'tier': 'free', 'status': None, 'expires_at': None, 'subscription_id': None}
