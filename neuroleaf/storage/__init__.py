"""Persistence layer: sqlite database, accounts and the redis cache"""

from .database import (
    Database,
    DatabaseError,
    get_db,
    new_id,
    to_json,
    from_json,
    row_to_dict,
)
from .accounts import (
    AccountError,
    AccountNotFoundError,
    AccountValidationError,
    create_account,
    get_account,
    require_account,
    update_account,
    get_account_by_customer,
    get_account_by_email,
)
from .cache_manager import CacheManager

__all__ = [
    'Database',
    'DatabaseError',
    'get_db',
    'new_id',
    'to_json',
    'from_json',
    'row_to_dict',
    'AccountError',
    'AccountNotFoundError',
    'AccountValidationError',
    'create_account',
    'get_account',
    'require_account',
    'update_account',
    'get_account_by_customer',
    'get_account_by_email',
    'CacheManager',
]
