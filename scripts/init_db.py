import os
import sys
import argparse
from pathlib import Path

from dotenv import load_dotenv

load_dotenv(Path(__file__).parent.parent / '.env')

from neuroleaf.storage import Database  # noqa: E402
from neuroleaf.storage.database import TABLES  # noqa: E402

parser = argparse.ArgumentParser(description='Create the Neuroleaf sqlite schema')
parser.add_argument('--reset', '-r', action='store_true', help='Delete the existing database file first')
parser.add_argument('--path', '-p', default=None, help='Database path (defaults to DATABASE_PATH)')
args = parser.parse_args()

path = args.path or os.getenv('DATABASE_PATH', 'neuroleaf.db')

if args.reset and os.path.exists(path):
    os.remove(path)
    print(f'ℹ Removed existing database at {path}')

try:
    db = Database(path)
except Exception as e:
    print(f'⚠ Failed to initialize database: {e}')
    sys.exit(1)

for table in TABLES:
    count = db.fetch_value(f'SELECT COUNT(*) FROM {table}', default=0)
    print(f'✓ {table} ({count} rows)')

if not db.health_check():
    print('⚠ Database health check failed')
    sys.exit(1)

print(f'\nDatabase ready at {path}')
sys.exit(0)
