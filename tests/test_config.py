"""Settings resolution and the store factory."""
import pytest
from pydantic import ValidationError

from app.core.config import EnvironmentMode, Settings, StoreBackend, get_settings
from app.services.store import (
    InMemoryOrderItemStore,
    get_order_item_store,
    reset_order_item_store,
)


def test_defaults():
    settings = Settings(_env_file=None)
    assert settings.default_delay_seconds == 15
    assert settings.sweeper_interval_seconds == 1.0
    assert settings.sweeper_initial_delay_seconds == 5.0


@pytest.mark.parametrize(
    "env_mode, store_backend, expected",
    [
        ("development", None, StoreBackend.MEMORY),
        ("production", None, StoreBackend.DATABASE),
        ("staging", None, StoreBackend.DATABASE),
        ("production", "memory", StoreBackend.MEMORY),
        ("development", "DATABASE", StoreBackend.DATABASE),
        ("development", "", StoreBackend.MEMORY),
    ],
)
def test_resolved_store_backend(env_mode, store_backend, expected):
    settings = Settings(_env_file=None, env_mode=env_mode, store_backend=store_backend)
    assert settings.resolved_store_backend == expected


def test_env_mode_is_case_insensitive():
    settings = Settings(_env_file=None, env_mode="PRODUCTION")
    assert settings.env_mode == EnvironmentMode.PRODUCTION
    assert settings.is_production


@pytest.mark.parametrize(
    "field, value",
    [
        ("sweeper_interval_seconds", 0),
        ("default_delay_seconds", -1),
        ("env_mode", "qa"),
        ("store_backend", "redis"),
    ],
)
def test_invalid_settings_rejected(field, value):
    with pytest.raises(ValidationError):
        Settings(_env_file=None, **{field: value})


def test_store_factory_caches_until_reset(monkeypatch):
    monkeypatch.setenv("STORE_BACKEND", "memory")
    get_settings.cache_clear()
    reset_order_item_store()
    try:
        first = get_order_item_store()
        assert isinstance(first, InMemoryOrderItemStore)
        assert get_order_item_store() is first

        reset_order_item_store()
        assert get_order_item_store() is not first
    finally:
        reset_order_item_store()
        get_settings.cache_clear()
