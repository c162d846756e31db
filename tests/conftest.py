from datetime import date

import pytest

from config import get_settings
from schemas import RouterRequest

# Wednesday
NOW_ISO = "2026-10-21T11:05:00+04:00"
TODAY = date(2026, 10, 21)


@pytest.fixture(autouse=True)
def rules_backend(monkeypatch):
    monkeypatch.setenv("ROUTER_BACKEND", "rules")
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def llm_backend(monkeypatch):
    monkeypatch.setenv("ROUTER_BACKEND", "llm")
    monkeypatch.setenv("OPENAI_API_KEY", "test-key")
    get_settings.cache_clear()
    return get_settings()


@pytest.fixture
def make_request():
    def _make(message: str, menu: str = "HABITS", **extra) -> RouterRequest:
        payload = {
            "currentMenu": menu,
            "userMessage": message,
            "timezone": "Asia/Yerevan",
            "nowISO": NOW_ISO,
        }
        payload.update(extra)
        return RouterRequest.model_validate(payload)

    return _make
