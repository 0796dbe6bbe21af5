import os
import uuid
from collections.abc import Callable

import pytest

# Settings are read once at import time, so the environment is fixed here
# before any test module imports the app.
WEBHOOK_SECRET = "test-secret"
WEBHOOK_USER_ID = "6f1c2b1e-8d0a-4c3e-9a57-0d3b8f6a1c22"

os.environ["STORAGE_BACKEND"] = "memory"
os.environ["KIWIFY_WEBHOOK_SECRET"] = WEBHOOK_SECRET
os.environ["WEBHOOK_DEFAULT_USER_ID"] = WEBHOOK_USER_ID
os.environ["DEV_TOOLS"] = "true"
os.environ["APP_TIMEZONE"] = "America/Sao_Paulo"

from fastapi.testclient import TestClient  # noqa: E402

from nocry.main import app  # noqa: E402


@pytest.fixture
def register_user() -> Callable[..., dict[str, str]]:
    """Register a fresh user and return its bearer headers."""

    def _register(full_name: str | None = "Test User", email: str | None = None) -> dict[str, str]:
        res = TestClient(app).post(
            "/api/v1/auth/register",
            json={
                "email": email or f"user-{uuid.uuid4().hex[:10]}@example.com",
                "password": "Secret123!",
                "fullName": full_name,
            },
        )
        assert res.status_code == 201, res.text
        return {"Authorization": f"Bearer {res.json()['token']}"}

    return _register


@pytest.fixture
def auth_headers(register_user: Callable[..., dict[str, str]]) -> dict[str, str]:
    return register_user()
