from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from types import SimpleNamespace

import pytest

from h2all.redemption import service
from h2all.redemption.errors import (
    CampaignEndedError,
    CampaignInactiveError,
    CampaignNotFoundError,
    CodeAlreadyRedeemedError,
    CodeExpiredError,
    RedemptionCodeNotFoundError,
    RedemptionValidationError,
)
from h2all.redemption.service import RedemptionService
from h2all.services.user_ids import user_id_from_email

NOW_UTC = datetime(2026, 10, 1, 12, 0, tzinfo=timezone.utc)


class _FakeStore:
    """In-memory stand-in for the three repos used by the redemption flow."""

    def __init__(self) -> None:
        self.codes: dict[str, SimpleNamespace] = {}
        self.campaigns: dict[str, SimpleNamespace] = {}
        self.users: dict[str, SimpleNamespace] = {}

    def add_campaign(self, campaign_id: str = "camp-1", **overrides) -> SimpleNamespace:
        values = dict(
            id=campaign_id,
            name="Spring promo",
            description="Bottle caps",
            status="active",
            expires_at=None,
            redemption_value=Decimal("25.00"),
            current_redemptions=0,
            total_redemptions=0,
            total_redemption_value=Decimal("0"),
        )
        values.update(overrides)
        campaign = SimpleNamespace(**values)
        campaign.is_active = campaign.status == "active"
        self.campaigns[campaign_id] = campaign
        return campaign

    def add_code(self, unique_code: str = "OVXQYE0I", **overrides) -> SimpleNamespace:
        values = dict(
            id=f"id-{unique_code}",
            campaign_id="camp-1",
            unique_code=unique_code,
            is_used=False,
            redeemed_at=None,
            user_id=None,
            user_email=None,
            expires_at=None,
        )
        values.update(overrides)
        code = SimpleNamespace(**values)
        self.codes[code.id] = code
        return code

    def install(self, monkeypatch) -> None:
        async def _get_by_campaign_and_code(session, *, campaign_id, unique_code):
            del session
            await asyncio.sleep(0)
            for code in self.codes.values():
                if code.campaign_id == campaign_id and code.unique_code == unique_code:
                    return SimpleNamespace(**vars(code))
            return None

        async def _get_by_unique_code(session, unique_code):
            del session
            for code in self.codes.values():
                if code.unique_code == unique_code:
                    return SimpleNamespace(**vars(code))
            return None

        async def _mark_used_if_unused(session, *, code_id, user_id, user_email, now_utc, **tracking):
            del session
            await asyncio.sleep(0)
            code = self.codes[code_id]
            if code.is_used:
                return False
            code.is_used = True
            code.user_id = user_id
            code.user_email = user_email
            code.redeemed_at = now_utc
            code.tracking = tracking
            return True

        async def _get_campaign(session, campaign_id):
            del session
            return self.campaigns.get(campaign_id)

        async def _record_redemption(session, *, campaign_id, value, now_utc):
            del session, now_utc
            campaign = self.campaigns[campaign_id]
            campaign.current_redemptions += 1
            campaign.total_redemptions += 1
            campaign.total_redemption_value += value

        async def _ensure_exists(session, *, user_id, email, now_utc):
            del session, now_utc
            if user_id in self.users:
                return False
            self.users[user_id] = SimpleNamespace(
                email=email,
                balance=Decimal("0"),
                total_redemptions=0,
            )
            return True

        async def _credit_redemption(session, *, user_id, value, now_utc):
            del session, now_utc
            user = self.users[user_id]
            user.balance += value
            user.total_redemptions += 1

        monkeypatch.setattr(
            service.RedemptionCodesRepo, "get_by_campaign_and_code", _get_by_campaign_and_code
        )
        monkeypatch.setattr(service.RedemptionCodesRepo, "get_by_unique_code", _get_by_unique_code)
        monkeypatch.setattr(
            service.RedemptionCodesRepo, "mark_used_if_unused", _mark_used_if_unused
        )
        monkeypatch.setattr(service.CampaignsRepo, "get_by_id", _get_campaign)
        monkeypatch.setattr(service.CampaignsRepo, "record_redemption", _record_redemption)
        monkeypatch.setattr(service.UsersRepo, "ensure_exists", _ensure_exists)
        monkeypatch.setattr(service.UsersRepo, "credit_redemption", _credit_redemption)


@pytest.fixture
def store(monkeypatch) -> _FakeStore:
    fake = _FakeStore()
    fake.install(monkeypatch)
    return fake


async def _redeem(**overrides):
    kwargs = dict(
        campaign_id="camp-1",
        code="OVXQYE0I",
        user_email="User@Example.com",
        now_utc=NOW_UTC,
    )
    kwargs.update(overrides)
    return await RedemptionService.redeem(SimpleNamespace(), **kwargs)


@pytest.mark.asyncio
async def test_redeem_credits_user_and_campaign(store: _FakeStore) -> None:
    store.add_campaign()
    code = store.add_code()

    result = await _redeem()

    user_id = user_id_from_email("user@example.com")
    assert result.id == code.id
    assert result.code == "OVXQYE0I"
    assert result.campaign_id == "camp-1"
    assert result.user_id == user_id
    assert result.redemption_value == Decimal("25.00")
    assert result.redeemed_at == NOW_UTC
    assert result.campaign_name == "Spring promo"
    assert result.campaign_description == "Bottle caps"

    assert code.is_used is True
    assert code.user_id == user_id
    assert code.user_email == "user@example.com"
    assert result.user_email == "user@example.com"
    assert store.users[user_id].email == "user@example.com"
    assert store.users[user_id].balance == Decimal("25.00")
    assert store.users[user_id].total_redemptions == 1
    assert store.campaigns["camp-1"].current_redemptions == 1
    assert store.campaigns["camp-1"].total_redemption_value == Decimal("25.00")


@pytest.mark.asyncio
async def test_redeem_twice_rejects_second_attempt(store: _FakeStore) -> None:
    store.add_campaign()
    store.add_code()

    await _redeem()
    with pytest.raises(CodeAlreadyRedeemedError) as exc_info:
        await _redeem(user_email="other@example.com")

    assert exc_info.value.details == {
        "redeemedAt": NOW_UTC.isoformat(),
        "redeemedBy": "user@example.com",
    }
    assert store.users[user_id_from_email("user@example.com")].balance == Decimal("25.00")
    assert user_id_from_email("other@example.com") not in store.users


@pytest.mark.asyncio
async def test_concurrent_redemptions_of_one_code_succeed_exactly_once(store: _FakeStore) -> None:
    store.add_campaign()
    store.add_code()

    outcomes = await asyncio.gather(
        _redeem(user_email="a@example.com"),
        _redeem(user_email="b@example.com"),
        return_exceptions=True,
    )

    successes = [outcome for outcome in outcomes if not isinstance(outcome, Exception)]
    failures = [outcome for outcome in outcomes if isinstance(outcome, Exception)]
    assert len(successes) == 1
    assert len(failures) == 1
    assert isinstance(failures[0], CodeAlreadyRedeemedError)
    assert store.campaigns["camp-1"].current_redemptions == 1
    credited = [user for user in store.users.values() if user.balance > 0]
    assert len(credited) == 1


@pytest.mark.asyncio
async def test_redeem_reports_missing_fields(store: _FakeStore) -> None:
    with pytest.raises(RedemptionValidationError) as exc_info:
        await _redeem(code=None, user_email="")

    assert exc_info.value.message == "Missing required fields"
    assert exc_info.value.details == {
        "campaignId": "OK",
        "code": "Required",
        "userEmail": "Required",
    }


@pytest.mark.asyncio
async def test_redeem_treats_blank_fields_as_missing(store: _FakeStore) -> None:
    with pytest.raises(RedemptionValidationError) as exc_info:
        await _redeem(campaign_id="   ", code="\t", user_email=" ")

    assert exc_info.value.details == {
        "campaignId": "Required",
        "code": "Required",
        "userEmail": "Required",
    }


@pytest.mark.asyncio
async def test_redeem_strips_padded_input(store: _FakeStore) -> None:
    store.add_campaign()
    code = store.add_code()

    result = await _redeem(
        campaign_id=" camp-1 ",
        code="OVXQYE0I ",
        user_email="  User@Example.com ",
    )

    assert result.code == "OVXQYE0I"
    assert code.user_email == "user@example.com"
    assert store.users[user_id_from_email("user@example.com")].email == "user@example.com"


@pytest.mark.asyncio
async def test_redeem_rejects_invalid_email(store: _FakeStore) -> None:
    with pytest.raises(RedemptionValidationError) as exc_info:
        await _redeem(user_email="not-an-email")

    assert exc_info.value.message == "Invalid email format"


@pytest.mark.asyncio
async def test_redeem_unknown_code(store: _FakeStore) -> None:
    store.add_campaign()
    store.add_code(campaign_id="camp-2")

    with pytest.raises(RedemptionCodeNotFoundError):
        await _redeem()


@pytest.mark.asyncio
async def test_redeem_expired_code(store: _FakeStore) -> None:
    store.add_campaign()
    expires_at = NOW_UTC - timedelta(seconds=1)
    store.add_code(expires_at=expires_at)

    with pytest.raises(CodeExpiredError) as exc_info:
        await _redeem()

    assert exc_info.value.details == {
        "expiredAt": expires_at.isoformat(),
        "currentTime": NOW_UTC.isoformat(),
    }


@pytest.mark.asyncio
async def test_redeem_code_expiring_exactly_now_is_still_valid(store: _FakeStore) -> None:
    store.add_campaign()
    store.add_code(expires_at=NOW_UTC)

    result = await _redeem()

    assert result.code == "OVXQYE0I"


@pytest.mark.asyncio
async def test_redeem_missing_campaign(store: _FakeStore) -> None:
    store.add_code()

    with pytest.raises(CampaignNotFoundError):
        await _redeem()


@pytest.mark.asyncio
async def test_redeem_inactive_campaign(store: _FakeStore) -> None:
    store.add_campaign(status="inactive")
    code = store.add_code()

    with pytest.raises(CampaignInactiveError) as exc_info:
        await _redeem()

    assert exc_info.value.details == {"campaignStatus": "inactive", "campaignName": "Spring promo"}
    assert code.is_used is False


@pytest.mark.asyncio
async def test_redeem_ended_campaign(store: _FakeStore) -> None:
    store.add_campaign(expires_at=NOW_UTC - timedelta(days=1))
    store.add_code()

    with pytest.raises(CampaignEndedError):
        await _redeem()

    assert store.users == {}


@pytest.mark.asyncio
async def test_redeem_tracks_utm_source_and_metadata(store: _FakeStore) -> None:
    store.add_campaign()
    store.add_code()
    url = "https://h2all.example/redeem?campaign_id=camp-1&code=OVXQYE0I&utm_source=email"

    result = await _redeem(
        redemption_url=url,
        metadata={"source": "qr", "device": "Mozilla/5.0", "location": "Berlin"},
    )

    assert result.tracking.source == "email"
    assert result.tracking.device == "Mozilla/5.0"
    assert result.tracking.location == "Berlin"
    assert result.tracking.url == url
    stored = store.codes["id-OVXQYE0I"].tracking
    assert stored["redemption_source"] == "email"
    assert stored["redemption_url"] == url


@pytest.mark.asyncio
async def test_redeem_with_unparseable_url_falls_back_to_metadata_source(store: _FakeStore) -> None:
    store.add_campaign()
    store.add_code()

    result = await _redeem(redemption_url="/redeem?code=lower", metadata={"source": "qr"})

    assert result.tracking.source == "qr"
    assert result.tracking.url == "/redeem?code=lower"


@pytest.mark.asyncio
async def test_redeem_by_code_resolves_campaign(store: _FakeStore) -> None:
    store.add_campaign()
    store.add_code()

    result = await RedemptionService.redeem_by_code(
        SimpleNamespace(),
        unique_code="OVXQYE0I",
        user_email="user@example.com",
        user_id=user_id_from_email("user@example.com"),
        now_utc=NOW_UTC,
    )

    assert result.campaign_id == "camp-1"


@pytest.mark.asyncio
async def test_redeem_by_code_rejects_mismatched_user_id(store: _FakeStore) -> None:
    store.add_campaign()
    store.add_code()

    with pytest.raises(RedemptionValidationError) as exc_info:
        await RedemptionService.redeem_by_code(
            SimpleNamespace(),
            unique_code="OVXQYE0I",
            user_email="user@example.com",
            user_id=user_id_from_email("someone@example.com"),
        )

    assert exc_info.value.message == "userId does not match userEmail"


@pytest.mark.asyncio
async def test_redeem_by_code_unknown_code(store: _FakeStore) -> None:
    with pytest.raises(RedemptionCodeNotFoundError):
        await RedemptionService.redeem_by_code(
            SimpleNamespace(),
            unique_code="MISSING1",
            user_email="user@example.com",
        )


@pytest.mark.asyncio
async def test_redeem_by_code_reports_missing_fields(store: _FakeStore) -> None:
    with pytest.raises(RedemptionValidationError) as exc_info:
        await RedemptionService.redeem_by_code(SimpleNamespace(), unique_code="", user_email=None)

    assert exc_info.value.details == {"uniqueCode": "Required", "userEmail": "Required"}


@pytest.mark.asyncio
async def test_redeem_by_code_treats_blank_code_as_missing(store: _FakeStore) -> None:
    with pytest.raises(RedemptionValidationError) as exc_info:
        await RedemptionService.redeem_by_code(
            SimpleNamespace(),
            unique_code="  ",
            user_email="user@example.com",
        )

    assert exc_info.value.details == {"uniqueCode": "Required", "userEmail": "OK"}


@pytest.mark.asyncio
async def test_check_code_reports_campaign_without_redeeming(store: _FakeStore) -> None:
    store.add_campaign(expires_at=NOW_UTC + timedelta(days=30))
    code = store.add_code(created_at=NOW_UTC - timedelta(days=1))

    result = await RedemptionService.check_code(
        SimpleNamespace(),
        campaign_id="camp-1",
        code="OVXQYE0I",
        now_utc=NOW_UTC,
    )

    assert result.campaign_id == "camp-1"
    assert result.campaign_name == "Spring promo"
    assert result.campaign_is_active is True
    assert result.redemption_value == Decimal("25.00")
    assert result.unique_code == "OVXQYE0I"
    assert result.code_created_at == NOW_UTC - timedelta(days=1)
    assert result.checked_at == NOW_UTC
    assert code.is_used is False
    assert store.users == {}
    assert store.campaigns["camp-1"].current_redemptions == 0


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("campaign_overrides", "code_overrides", "error_type"),
    [
        ({}, {"is_used": True, "user_email": "a@example.com"}, CodeAlreadyRedeemedError),
        ({}, {"expires_at": NOW_UTC - timedelta(minutes=1)}, CodeExpiredError),
        ({"status": "inactive"}, {}, CampaignInactiveError),
        ({"expires_at": NOW_UTC - timedelta(days=1)}, {}, CampaignEndedError),
    ],
)
async def test_check_code_applies_redemption_rules(
    store: _FakeStore,
    campaign_overrides: dict,
    code_overrides: dict,
    error_type: type[Exception],
) -> None:
    store.add_campaign(**campaign_overrides)
    store.add_code(created_at=NOW_UTC, **code_overrides)

    with pytest.raises(error_type):
        await RedemptionService.check_code(
            SimpleNamespace(),
            campaign_id="camp-1",
            code="OVXQYE0I",
            now_utc=NOW_UTC,
        )


@pytest.mark.asyncio
async def test_check_code_unknown_code(store: _FakeStore) -> None:
    store.add_campaign()

    with pytest.raises(RedemptionCodeNotFoundError):
        await RedemptionService.check_code(
            SimpleNamespace(),
            campaign_id="camp-1",
            code="MISSING1",
            now_utc=NOW_UTC,
        )


@pytest.mark.asyncio
async def test_check_code_requires_campaign_and_code(store: _FakeStore) -> None:
    with pytest.raises(RedemptionValidationError) as exc_info:
        await RedemptionService.check_code(SimpleNamespace(), campaign_id="camp-1", code=" ")

    assert exc_info.value.details == {"campaignId": "OK", "uniqueCode": "Required"}
