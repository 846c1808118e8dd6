import os
import sys
import argparse
from pathlib import Path
from dotenv import load_dotenv

load_dotenv(Path(__file__).parent.parent / '.env')

errors = []
warnings = []

parser = argparse.ArgumentParser()
parser.add_argument('--strict', '-s', action='store_true', help='Convert warnings to failures')
args = parser.parse_args()
STRICT = args.strict

required = {
    'server': ['ENVIRONMENT', 'HOST', 'PORT'],
    'openai': ['OPENAI_API_KEY', 'OPENAI_MODEL'],
    'database': ['DATABASE_PATH'],
}

optional = {
    'stripe': ['STRIPE_SECRET_KEY', 'STRIPE_WEBHOOK_SECRET', 'STRIPE_PRO_MONTHLY_PRICE_ID'],
    'app': ['APP_URL'],
}


def check_presence(cat, keys, bucket):
    for k in keys:
        if not os.getenv(k):
            bucket.append(f"{cat}: Missing {k}")


for cat, keys in required.items():
    check_presence(cat, keys, errors)
for cat, keys in optional.items():
    check_presence(cat, keys, warnings)

# Format checks
try:
    port = int(os.getenv('PORT', '0'))
    if port < 1 or port > 65535:
        errors.append('PORT must be integer between 1 and 65535')
except ValueError:
    errors.append('PORT must be an integer')

openai_key = os.getenv('OPENAI_API_KEY', '')
if openai_key and not openai_key.startswith('sk-'):
    warnings.append('OPENAI_API_KEY does not start with sk-; verify provider')

stripe_key = os.getenv('STRIPE_SECRET_KEY', '')
if stripe_key and not stripe_key.startswith(('sk_test_', 'sk_live_', 'rk_')):
    warnings.append('STRIPE_SECRET_KEY does not look like a Stripe secret key')

webhook_secret = os.getenv('STRIPE_WEBHOOK_SECRET', '')
if webhook_secret and not webhook_secret.startswith('whsec_'):
    warnings.append('STRIPE_WEBHOOK_SECRET does not start with whsec_')

for name, default, low, high in (
    ('OPENAI_TIMEOUT', '30', 1, 600),
    ('OPENAI_RETRY_ATTEMPTS', '3', 1, 10),
    ('REDIS_CACHE_TTL', '3600', 1, 7 * 24 * 3600),
    ('STRIPE_WEBHOOK_TOLERANCE', '300', 1, 3600),
):
    try:
        value = float(os.getenv(name, default))
        if value < low or value > high:
            errors.append(f'{name} must be between {low} and {high}')
    except ValueError:
        errors.append(f'{name} must be a number')

# OpenAI check - use 1.x client API (OpenAI)
try:
    from openai import OpenAI
    if openai_key:
        try:
            client = OpenAI(api_key=openai_key)
            client.models.list()
            print('OpenAI: API reachable')
        except Exception as e:
            warnings.append(f'OpenAI check failed: {e}')
except Exception:
    warnings.append('openai package not available or client error; skipping OpenAI check')

# DB check
try:
    from neuroleaf.storage import Database
    if Database(os.getenv('DATABASE_PATH', 'neuroleaf.db')).health_check():
        print('Database: OK')
    else:
        errors.append('Database health check failed')
except Exception as e:
    errors.append(f'Database initialization failed: {e}')

# Redis check (optional)
if os.getenv('REDIS_HOST'):
    try:
        import redis
        r = redis.Redis(host=os.getenv('REDIS_HOST'), port=int(os.getenv('REDIS_PORT', '6379')), password=os.getenv('REDIS_PASSWORD') or None)
        if r.ping():
            print('Redis: OK')
    except Exception as e:
        warnings.append(f'Redis check failed: {e}')

# Stripe check (optional)
if stripe_key:
    try:
        import stripe
        stripe.Balance.retrieve(api_key=stripe_key)
        print('Stripe: API reachable')
    except Exception as e:
        warnings.append(f'Stripe check failed: {e}')

if errors:
    print('\nENV validation failed:')
    for e in errors:
        print(' -', e)
    sys.exit(1)

if warnings:
    print('\nWarnings:')
    for w in warnings:
        print(' -', w)
    if STRICT:
        print('\nStrict mode enabled: treating warnings as errors')
        sys.exit(1)

print('\nAll critical validations passed')
sys.exit(0)
