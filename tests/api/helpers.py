from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from types import SimpleNamespace

from fastapi.testclient import TestClient

from h2all.main import app
from h2all.redemption.types import RedemptionResult, RedemptionTracking

INTERNAL_TOKEN = "internal-secret"
INTERNAL_HEADERS = {"X-Internal-Token": INTERNAL_TOKEN}


class DummySession:
    def __init__(self) -> None:
        self.refreshed: list[object] = []

    async def refresh(self, instance: object) -> None:
        self.refreshed.append(instance)


class DummySessionContext:
    def __init__(self, session: DummySession) -> None:
        self._session = session

    async def __aenter__(self) -> DummySession:
        return self._session

    async def __aexit__(self, exc_type, exc, tb) -> bool:
        return False


class DummySessionLocal:
    def __init__(self) -> None:
        self.session = DummySession()

    def __call__(self) -> DummySessionContext:
        return DummySessionContext(self.session)

    def begin(self) -> DummySessionContext:
        return DummySessionContext(self.session)


def internal_settings(**overrides) -> SimpleNamespace:
    values = dict(
        internal_api_token=INTERNAL_TOKEN,
        internal_api_allowlist="127.0.0.1/32",
        internal_api_trusted_proxies="",
        code_length=8,
        code_prefix="",
    )
    values.update(overrides)
    return SimpleNamespace(**values)


def internal_client() -> TestClient:
    return TestClient(app, client=("127.0.0.1", 5100))


def redemption_result(**tracking) -> RedemptionResult:
    return RedemptionResult(
        id="code-row-1",
        code="OVXQYE0I",
        campaign_id="camp-1",
        user_email="user@example.com",
        user_id="dXNlckBleGFtcGxlLmNvbQ==",
        redeemed_at=datetime(2026, 10, 1, 12, 0, tzinfo=timezone.utc),
        redemption_value=Decimal("25.00"),
        campaign_name="Spring promo",
        campaign_description=None,
        tracking=RedemptionTracking(**tracking),
    )
