import os
import pytest
from pathlib import Path

from dotenv import load_dotenv

# load test env first
env_path = Path(__file__).resolve().parents[1] / '.env.test'
if env_path.exists():
    load_dotenv(env_path)

os.environ.setdefault('TESTING', '1')
os.environ.setdefault('OPENAI_RETRY_ATTEMPTS', '1')
os.environ.setdefault('STRIPE_RETRY_ATTEMPTS', '1')
os.environ.setdefault('FLASHCARD_CHUNK_DELAY', '0')
os.environ.setdefault('REDIS_CACHE_ENABLED', 'false')

from neuroleaf.ai import LLMClient  # noqa: E402
from neuroleaf.billing import StripeClient  # noqa: E402
from neuroleaf.storage import Database, CacheManager  # noqa: E402
from tests.fixtures.sample_data import SAMPLE_FLASHCARDS, TEST_USER_ID, TEST_USER_EMAIL  # noqa: E402


def _reset_singletons():
    Database.reset_instance()
    LLMClient.reset_instance()
    CacheManager.reset_instance()
    StripeClient.reset_instance()


@pytest.fixture(autouse=True)
def silence_logger():
    from neuroleaf.utils import get_logger
    logger = get_logger()
    previous = logger.disabled
    logger.disabled = True
    yield
    logger.disabled = previous


@pytest.fixture(autouse=True)
def isolated_env(tmp_path, monkeypatch):
    """Fresh sqlite file and no external credentials for every test."""
    monkeypatch.setenv('DATABASE_PATH', str(tmp_path / 'neuroleaf-test.db'))
    for key in ('OPENAI_API_KEY', 'STRIPE_SECRET_KEY', 'STRIPE_WEBHOOK_SECRET'):
        monkeypatch.delenv(key, raising=False)
    _reset_singletons()
    yield
    _reset_singletons()


@pytest.fixture
def db():
    return Database.get_instance()


@pytest.fixture
def account(db):
    from neuroleaf.storage import create_account
    return create_account(TEST_USER_EMAIL, 'Test User', TEST_USER_ID)


@pytest.fixture
def pro_account(account):
    from neuroleaf.subscription import update_subscription_tier
    return update_subscription_tier(account['id'], 'pro')


@pytest.fixture
def deck(account):
    from neuroleaf.decks import CreateDeckData, create_deck
    return create_deck(CreateDeckData(name='Biology 101', description='Cell biology basics', tags=['biology']), account['id'])


@pytest.fixture
def deck_with_cards(deck, account):
    from neuroleaf.flashcards import FlashcardContent, bulk_import_flashcards
    cards = bulk_import_flashcards(deck['id'], [FlashcardContent(**c) for c in SAMPLE_FLASHCARDS], account['id'])
    return deck, cards


@pytest.fixture
def mock_openai(monkeypatch):
    from tests.fixtures.mock_openai import FakeOpenAIState, make_fake_openai
    state = FakeOpenAIState()
    monkeypatch.setenv('OPENAI_API_KEY', 'sk-test-key')
    monkeypatch.setattr('neuroleaf.ai.llm_client.OpenAI', make_fake_openai(state))
    LLMClient.reset_instance()
    return state


@pytest.fixture
def mock_redis(monkeypatch):
    from tests.fixtures.mock_redis import MockRedisClient
    client = MockRedisClient()
    monkeypatch.setenv('REDIS_CACHE_ENABLED', 'true')
    monkeypatch.setattr('redis.Redis', lambda *a, **k: client)
    CacheManager.reset_instance()
    return client


@pytest.fixture
def mock_stripe(monkeypatch):
    import stripe
    from tests.fixtures.mock_stripe import FakeStripeAPI, WEBHOOK_SECRET
    api = FakeStripeAPI()
    api.install(monkeypatch)
    monkeypatch.setattr(stripe, 'api_key', None)
    monkeypatch.setenv('STRIPE_SECRET_KEY', 'sk_test_123')
    monkeypatch.setenv('STRIPE_WEBHOOK_SECRET', WEBHOOK_SECRET)
    monkeypatch.setenv('STRIPE_PRO_MONTHLY_PRICE_ID', 'price_pro_monthly')
    StripeClient.reset_instance()
    return api


@pytest.fixture
def client(db):
    from fastapi.testclient import TestClient
    import main
    return TestClient(main.app)


@pytest.fixture
def auth_headers(account):
    return {'X-User-ID': account['id']}
