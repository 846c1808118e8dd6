import os
import time
from typing import Any, Dict, Optional

import stripe
import tenacity

from neuroleaf.utils import get_logger

LOG = get_logger()

STRIPE_RETRY_ATTEMPTS = int(os.getenv('STRIPE_RETRY_ATTEMPTS', '3'))
STRIPE_WEBHOOK_TOLERANCE = int(os.getenv('STRIPE_WEBHOOK_TOLERANCE', '300'))


class StripeError(Exception):
    def __init__(self, message: str, status_code: Optional[int] = None, code: Optional[str] = None):
        super().__init__(message)
        self.status_code = status_code
        self.code = code


class StripeConfigError(StripeError):
    pass


class StripeConnectionError(StripeError):
    pass


class StripeSignatureError(StripeError):
    pass


def _plain(obj) -> Dict[str, Any]:
    if obj is None:
        return {}
    return obj.to_dict() if hasattr(obj, 'to_dict') else dict(obj)


class StripeClient:
    """Thin wrapper over the stripe SDK returning plain dicts and raising StripeError."""
    _instance = None

    def __init__(self, api_key: Optional[str] = None):
        self.api_key = api_key or os.getenv('STRIPE_SECRET_KEY')
        if not self.api_key:
            raise StripeConfigError('STRIPE_SECRET_KEY environment variable is not set')
        stripe.api_key = self.api_key
        api_base = os.getenv('STRIPE_API_BASE')
        if api_base:
            stripe.api_base = api_base
        LOG.info('StripeClient initialized')

    @classmethod
    def get_instance(cls) -> 'StripeClient':
        if cls._instance is None:
            cls._instance = StripeClient()
        return cls._instance

    @classmethod
    def reset_instance(cls):
        cls._instance = None

    @tenacity.retry(stop=tenacity.stop_after_attempt(STRIPE_RETRY_ATTEMPTS),
                    wait=tenacity.wait_exponential(multiplier=1, min=1, max=8),
                    retry=tenacity.retry_if_exception_type(StripeConnectionError),
                    reraise=True)
    def _call(self, operation: str, fn, *args, **params) -> Dict[str, Any]:
        start = time.time()
        try:
            result = fn(*args, **params)
        except stripe.APIConnectionError as e:
            LOG.warning('stripe_connection_failed', extra={'operation': operation, 'error': str(e)})
            raise StripeConnectionError(e.user_message or str(e)) from e
        except stripe.StripeError as e:
            LOG.warning('stripe_call_failed', extra={'operation': operation, 'status_code': e.http_status, 'code': e.code})
            raise StripeError(e.user_message or str(e), status_code=e.http_status, code=e.code) from e
        duration = int((time.time() - start) * 1000)
        LOG.info('stripe_call', extra={'operation': operation, 'duration_ms': duration})
        return _plain(result)

    def create_customer(self, email: Optional[str], metadata: Optional[Dict[str, str]] = None) -> Dict[str, Any]:
        return self._call('customer_create', stripe.Customer.create, email=email, metadata=metadata or {})

    def retrieve_customer(self, customer_id: str) -> Dict[str, Any]:
        return self._call('customer_retrieve', stripe.Customer.retrieve, customer_id)

    def create_checkout_session(self, customer_id: str, price_id: str, success_url: str, cancel_url: str,
                                metadata: Optional[Dict[str, str]] = None) -> Dict[str, Any]:
        return self._call(
            'checkout_session_create',
            stripe.checkout.Session.create,
            customer=customer_id,
            payment_method_types=['card'],
            line_items=[{'price': price_id, 'quantity': 1}],
            mode='subscription',
            success_url=success_url,
            cancel_url=cancel_url,
            subscription_data={'metadata': metadata or {}},
        )

    def create_billing_portal_session(self, customer_id: str, return_url: str) -> Dict[str, Any]:
        return self._call('billing_portal_create', stripe.billing_portal.Session.create,
                          customer=customer_id, return_url=return_url)

    def retrieve_subscription(self, subscription_id: str) -> Dict[str, Any]:
        return self._call('subscription_retrieve', stripe.Subscription.retrieve, subscription_id)

    def update_subscription(self, subscription_id: str, **params) -> Dict[str, Any]:
        return self._call('subscription_update', stripe.Subscription.modify, subscription_id, **params)


def verify_webhook_signature(payload: bytes, header: str, secret: str, tolerance: int = STRIPE_WEBHOOK_TOLERANCE) -> bool:
    try:
        return stripe.WebhookSignature.verify_header(payload, header, secret, tolerance)
    except stripe.SignatureVerificationError as e:
        raise StripeSignatureError(e.user_message or str(e)) from e
