from typing import Optional, Dict, Any

from neuroleaf.utils import get_logger, utcnow_iso
from .database import get_db, new_id, row_to_dict

LOG = get_logger()

FREE_DECK_LIMIT = 3
FREE_FLASHCARD_LIMIT_PER_DECK = 50


class AccountError(Exception):
    pass


class AccountNotFoundError(AccountError):
    pass


class AccountValidationError(AccountError):
    pass


def create_account(email: str, name: Optional[str] = None, account_id: Optional[str] = None) -> Dict[str, Any]:
    email = (email or '').strip().lower()
    if not email or '@' not in email:
        raise AccountValidationError('A valid email is required')
    db = get_db()
    if db.fetch_one('SELECT id FROM accounts WHERE email = ?', (email,)):
        raise AccountValidationError('An account with this email already exists')
    if account_id and db.fetch_one('SELECT id FROM accounts WHERE id = ?', (account_id,)):
        raise AccountValidationError('An account with this id already exists')
    account_id = account_id or new_id()
    now = utcnow_iso()
    db.execute(
        'INSERT INTO accounts (id, email, name, subscription_tier, subscription_status, deck_limit, flashcard_limit_per_deck, created_at, updated_at) '
        "VALUES (?, ?, ?, 'free', 'active', ?, ?, ?, ?)",
        (account_id, email, name, FREE_DECK_LIMIT, FREE_FLASHCARD_LIMIT_PER_DECK, now, now),
    )
    LOG.info('account_created', extra={'account_id': account_id})
    return get_account(account_id)


def get_account(account_id: str) -> Optional[Dict[str, Any]]:
    if not account_id:
        return None
    return row_to_dict(get_db().fetch_one('SELECT * FROM accounts WHERE id = ?', (account_id,)))


def require_account(account_id: str) -> Dict[str, Any]:
    account = get_account(account_id)
    if not account:
        raise AccountNotFoundError('Account not found')
    return account


def get_account_by_customer(customer_id: str) -> Optional[Dict[str, Any]]:
    return row_to_dict(get_db().fetch_one('SELECT * FROM accounts WHERE stripe_customer_id = ?', (customer_id,)))


def get_account_by_email(email: str) -> Optional[Dict[str, Any]]:
    return row_to_dict(get_db().fetch_one('SELECT * FROM accounts WHERE email = ?', ((email or '').strip().lower(),)))


_UPDATABLE = {
    'name', 'subscription_tier', 'subscription_status', 'subscription_expires_at',
    'stripe_customer_id', 'stripe_subscription_id', 'deck_limit', 'flashcard_limit_per_deck',
}


def update_account(account_id: str, **fields) -> Dict[str, Any]:
    updates = {k: v for k, v in fields.items() if k in _UPDATABLE}
    if not updates:
        return require_account(account_id)
    updates['updated_at'] = utcnow_iso()
    assignments = ', '.join(f'{k} = ?' for k in updates)
    count = get_db().execute(f'UPDATE accounts SET {assignments} WHERE id = ?', (*updates.values(), account_id))
    if count == 0:
        raise AccountNotFoundError('Account not found')
    return require_account(account_id)
