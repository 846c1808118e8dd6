import hashlib
import hmac
import json
import time

import stripe

WEBHOOK_SECRET = 'whsec_test_secret'
CUSTOMER_ID = 'cus_test123'
SUBSCRIPTION_ID = 'sub_test123'
PRO_PRICE_ID = 'price_pro_monthly'


def subscription_body(status='active', cancel_at_period_end=False, price_id=PRO_PRICE_ID, customer=CUSTOMER_ID):
    return {
        'id': SUBSCRIPTION_ID,
        'object': 'subscription',
        'customer': customer,
        'status': status,
        'cancel_at_period_end': cancel_at_period_end,
        'current_period_end': 1893456000,
        'items': {'data': [{'price': {'id': price_id}}]},
    }


class FakeStripeObject(dict):
    def __getattr__(self, name):
        try:
            return self[name]
        except KeyError:
            raise AttributeError(name)

    def to_dict(self):
        return dict(self)


class FakeStripeAPI:
    """Stands in for the stripe SDK resource calls; routes on (method, path)."""

    def __init__(self):
        self.requests = []
        self.routes = {
            ('POST', 'customers'): (200, {'id': CUSTOMER_ID, 'object': 'customer'}),
            ('GET', f'customers/{CUSTOMER_ID}'): (200, {'id': CUSTOMER_ID, 'email': 'learner@example.com'}),
            ('POST', 'checkout/sessions'): (200, {'id': 'cs_test_1', 'url': 'https://checkout.stripe.com/c/pay/cs_test_1'}),
            ('POST', 'billing_portal/sessions'): (200, {'id': 'bps_1', 'url': 'https://billing.stripe.com/p/session/test'}),
            ('GET', f'subscriptions/{SUBSCRIPTION_ID}'): (200, subscription_body()),
            ('POST', f'subscriptions/{SUBSCRIPTION_ID}'): (200, subscription_body(cancel_at_period_end=True)),
        }
        self.connection_error = None

    def route(self, method, path, body, status_code=200):
        self.routes[(method, path)] = (status_code, body)

    def request(self, method, path, params=None):
        self.requests.append({'method': method, 'path': path, 'data': dict(params or {})})
        if self.connection_error:
            raise stripe.APIConnectionError(self.connection_error)
        status_code, body = self.routes.get((method, path), (404, {'error': {'message': 'No such resource', 'code': 'resource_missing'}}))
        if status_code >= 400:
            error = body.get('error', {})
            raise stripe.InvalidRequestError(error.get('message'), None, code=error.get('code'), http_status=status_code)
        return FakeStripeObject(body)

    def last(self, method, path):
        matches = [r for r in self.requests if r['method'] == method and r['path'] == path]
        return matches[-1] if matches else None

    def install(self, monkeypatch):
        monkeypatch.setattr(stripe.Customer, 'create', lambda **p: self.request('POST', 'customers', p))
        monkeypatch.setattr(stripe.Customer, 'retrieve', lambda cid, **p: self.request('GET', f'customers/{cid}', p))
        monkeypatch.setattr(stripe.checkout.Session, 'create', lambda **p: self.request('POST', 'checkout/sessions', p))
        monkeypatch.setattr(stripe.billing_portal.Session, 'create',
                            lambda **p: self.request('POST', 'billing_portal/sessions', p))
        monkeypatch.setattr(stripe.Subscription, 'retrieve', lambda sid, **p: self.request('GET', f'subscriptions/{sid}', p))
        monkeypatch.setattr(stripe.Subscription, 'modify', lambda sid, **p: self.request('POST', f'subscriptions/{sid}', p))


def sign(payload, timestamp, secret=WEBHOOK_SECRET):
    """Signature header value the way Stripe signs webhook deliveries."""
    digest = hmac.new(secret.encode(), f'{timestamp}.'.encode() + payload, hashlib.sha256).hexdigest()
    return f't={timestamp},v1={digest}'


def signed_event(event_type, obj, secret=WEBHOOK_SECRET, timestamp=None):
    """Return (payload_bytes, signature_header) for a webhook delivery."""
    payload = json.dumps({'id': 'evt_test', 'type': event_type, 'data': {'object': obj}}).encode('utf-8')
    timestamp = int(time.time()) if timestamp is None else timestamp
    return payload, sign(payload, timestamp, secret)
