import pytest

from storefront.config import DEFAULT_FRONTEND_URL, load_settings
from storefront.exceptions import ConfigurationError
from storefront.main import create_app

ENV_VARS = (
    "STRIPE_SECRET_KEY",
    "STRIPE_WEBHOOK_SECRET",
    "FRONTEND_URL",
    "DATABASE_URL",
    "RABBITMQ_URL",
    "PRODUCT_NAME",
    "PRODUCT_DESCRIPTION",
    "PRODUCT_AMOUNT",
    "PRODUCT_CURRENCY",
    "LOG_LEVEL",
    "LOG_FORMAT",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    # Keep a developer's .env file out of these tests.
    monkeypatch.setattr("storefront.config.load_dotenv", lambda: False)
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)


def test_load_settings_with_required_secrets(monkeypatch):
    monkeypatch.setenv("STRIPE_SECRET_KEY", "sk_test_abc")
    monkeypatch.setenv("STRIPE_WEBHOOK_SECRET", "whsec_abc")

    settings = load_settings()

    assert settings.stripe_secret_key == "sk_test_abc"
    assert settings.stripe_webhook_secret == "whsec_abc"
    assert settings.frontend_url == DEFAULT_FRONTEND_URL
    assert settings.rabbitmq_url is None
    assert settings.product.name == "Premium Wireless Headphones"
    assert settings.product.amount == 9999
    assert settings.product.currency == "usd"


def test_product_and_frontend_overrides(monkeypatch):
    monkeypatch.setenv("STRIPE_SECRET_KEY", "sk_test_abc")
    monkeypatch.setenv("STRIPE_WEBHOOK_SECRET", "whsec_abc")
    monkeypatch.setenv("FRONTEND_URL", "https://shop.example.com/")
    monkeypatch.setenv("PRODUCT_NAME", "Widget")
    monkeypatch.setenv("PRODUCT_AMOUNT", "500")
    monkeypatch.setenv("PRODUCT_CURRENCY", "EUR")

    settings = load_settings()

    assert settings.frontend_url == "https://shop.example.com"
    assert settings.product.name == "Widget"
    assert settings.product.amount == 500
    assert settings.product.currency == "eur"


@pytest.mark.parametrize("missing", ["STRIPE_SECRET_KEY", "STRIPE_WEBHOOK_SECRET"])
def test_missing_secret_is_fatal(monkeypatch, missing):
    monkeypatch.setenv("STRIPE_SECRET_KEY", "sk_test_abc")
    monkeypatch.setenv("STRIPE_WEBHOOK_SECRET", "whsec_abc")
    monkeypatch.setenv(missing, "  ")

    with pytest.raises(ConfigurationError, match=missing):
        load_settings()


@pytest.mark.parametrize("amount", ["abc", "0"])
def test_invalid_product_amount_is_fatal(monkeypatch, amount):
    monkeypatch.setenv("STRIPE_SECRET_KEY", "sk_test_abc")
    monkeypatch.setenv("STRIPE_WEBHOOK_SECRET", "whsec_abc")
    monkeypatch.setenv("PRODUCT_AMOUNT", amount)

    with pytest.raises(ConfigurationError):
        load_settings()


def test_app_refuses_to_start_without_secrets():
    with pytest.raises(ConfigurationError):
        create_app()
