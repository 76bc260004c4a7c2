from __future__ import annotations

import pytest
from pydantic import ValidationError

from settings import Settings


def test_api_key_is_required(monkeypatch):
    monkeypatch.delenv("API_KEY", raising=False)

    with pytest.raises(ValidationError) as exc:
        Settings(_env_file=None)

    assert "API_KEY" in str(exc.value)


def test_short_api_key_rejected(monkeypatch):
    monkeypatch.setenv("API_KEY", "short")

    with pytest.raises(ValidationError):
        Settings(_env_file=None)


def test_api_key_read_from_env(monkeypatch):
    monkeypatch.setenv("API_KEY", "inbound-secret-123")

    assert Settings(_env_file=None).API_KEY == "inbound-secret-123"
