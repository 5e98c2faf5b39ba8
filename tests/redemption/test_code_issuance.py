from __future__ import annotations

from datetime import datetime, timezone
from types import SimpleNamespace

import pytest

from h2all.codes.alphabet import CodeGenerationOptions
from h2all.codes.generator import BulkGenerationResult
from h2all.redemption import issuance
from h2all.redemption.errors import (
    CampaignInactiveError,
    CampaignNotFoundError,
    RedemptionValidationError,
)
from h2all.redemption.issuance import (
    INSERT_CHUNK_SIZE,
    MAX_COLLISION_ROUNDS,
    CodeIssuanceService,
)

NOW_UTC = datetime(2026, 10, 1, 12, 0, tzinfo=timezone.utc)
CAMPAIGN_EXPIRES_AT = datetime(2026, 12, 31, tzinfo=timezone.utc)


def _install_repos(
    monkeypatch,
    *,
    campaign: SimpleNamespace | None,
    stored_codes: set[str] | None = None,
) -> list[dict]:
    stored = stored_codes if stored_codes is not None else set()
    insert_calls: list[dict] = []

    async def _get_campaign(session, campaign_id):
        del session, campaign_id
        return campaign

    async def _insert_codes_skip_existing(session, *, campaign_id, unique_codes, expires_at, now_utc):
        del session
        insert_calls.append(
            {
                "campaign_id": campaign_id,
                "count": len(unique_codes),
                "expires_at": expires_at,
                "now_utc": now_utc,
            }
        )
        inserted = [code for code in unique_codes if code not in stored]
        stored.update(inserted)
        return inserted

    monkeypatch.setattr(issuance.CampaignsRepo, "get_by_id", _get_campaign)
    monkeypatch.setattr(
        issuance.RedemptionCodesRepo,
        "insert_codes_skip_existing",
        _insert_codes_skip_existing,
    )
    return insert_calls


def _active_campaign(**overrides) -> SimpleNamespace:
    values = dict(
        id="camp-1",
        name="Spring promo",
        status="active",
        is_active=True,
        expires_at=CAMPAIGN_EXPIRES_AT,
    )
    values.update(overrides)
    return SimpleNamespace(**values)


def _scripted_generator(batches: list[list[str]]):
    calls: list[tuple[int, set[str]]] = []

    def _generate(count, options=None, *, existing_codes=None):
        del options
        calls.append((count, set(existing_codes or ())))
        codes = batches.pop(0) if batches else []
        codes = [code for code in codes if code not in (existing_codes or set())][:count]
        return BulkGenerationResult(
            codes=codes,
            requested=count,
            generated=len(codes),
            metadata=None,
        )

    return _generate, calls


@pytest.mark.asyncio
async def test_issue_codes_stores_requested_quantity(monkeypatch) -> None:
    insert_calls = _install_repos(monkeypatch, campaign=_active_campaign())

    result = await CodeIssuanceService.issue_codes(
        SimpleNamespace(),
        campaign_id="camp-1",
        quantity=5,
        now_utc=NOW_UTC,
    )

    assert result.success is True
    assert result.codes_generated == 5
    assert len(set(result.codes)) == 5
    assert all(len(code) == 8 for code in result.codes)
    assert result.errors == []
    assert insert_calls == [
        {
            "campaign_id": "camp-1",
            "count": 5,
            "expires_at": CAMPAIGN_EXPIRES_AT,
            "now_utc": NOW_UTC,
        }
    ]


@pytest.mark.asyncio
async def test_issue_codes_applies_generation_options(monkeypatch) -> None:
    _install_repos(monkeypatch, campaign=_active_campaign())

    result = await CodeIssuanceService.issue_codes(
        SimpleNamespace(),
        campaign_id="camp-1",
        quantity=3,
        options=CodeGenerationOptions(length=6, prefix="H2-"),
    )

    assert all(code.startswith("H2-") and len(code) == 9 for code in result.codes)


@pytest.mark.asyncio
async def test_issue_codes_regenerates_codes_that_collide_with_stored_ones(monkeypatch) -> None:
    insert_calls = _install_repos(
        monkeypatch,
        campaign=_active_campaign(),
        stored_codes={"TAKEN001", "TAKEN002"},
    )
    generate, generate_calls = _scripted_generator(
        [
            ["TAKEN001", "FRESH001", "TAKEN002"],
            ["FRESH002", "FRESH003"],
        ]
    )
    monkeypatch.setattr(issuance, "generate_bulk_codes", generate)

    result = await CodeIssuanceService.issue_codes(
        SimpleNamespace(),
        campaign_id="camp-1",
        quantity=3,
    )

    assert result.success is True
    assert result.codes == ["FRESH001", "FRESH002", "FRESH003"]
    assert [count for count, _ in generate_calls] == [3, 2]
    assert generate_calls[1][1] == {"FRESH001"}
    assert [call["count"] for call in insert_calls] == [3, 2]


@pytest.mark.asyncio
async def test_issue_codes_reports_shortfall_when_code_space_is_exhausted(monkeypatch) -> None:
    _install_repos(monkeypatch, campaign=_active_campaign(), stored_codes={"TAKEN001"})
    generate, generate_calls = _scripted_generator(
        [["FRESH001", "TAKEN001"]] + [["TAKEN001"]] * MAX_COLLISION_ROUNDS
    )
    monkeypatch.setattr(issuance, "generate_bulk_codes", generate)

    result = await CodeIssuanceService.issue_codes(
        SimpleNamespace(),
        campaign_id="camp-1",
        quantity=2,
    )

    assert result.success is False
    assert result.codes == ["FRESH001"]
    assert result.errors == [
        "Generated 1 of 2 codes; the code space is too crowded for the remaining codes"
    ]
    assert len(generate_calls) == MAX_COLLISION_ROUNDS


@pytest.mark.asyncio
async def test_issue_bulk_inserts_in_chunks(monkeypatch) -> None:
    insert_calls = _install_repos(monkeypatch, campaign=_active_campaign())

    result = await CodeIssuanceService.issue_bulk(
        SimpleNamespace(),
        campaign_id="camp-1",
        quantity=INSERT_CHUNK_SIZE * 2 + 500,
    )

    assert result.codes_generated == INSERT_CHUNK_SIZE * 2 + 500
    assert [call["count"] for call in insert_calls] == [INSERT_CHUNK_SIZE, INSERT_CHUNK_SIZE, 500]


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("quantity", "message"),
    [
        (0, "Quantity must be between 1 and 100"),
        (101, "Quantity must be between 1 and 100"),
        ("5", "Quantity must be an integer"),
        (True, "Quantity must be an integer"),
        (2.5, "Quantity must be an integer"),
    ],
)
async def test_issue_codes_validates_quantity(monkeypatch, quantity, message: str) -> None:
    _install_repos(monkeypatch, campaign=_active_campaign())

    with pytest.raises(RedemptionValidationError) as exc_info:
        await CodeIssuanceService.issue_codes(
            SimpleNamespace(),
            campaign_id="camp-1",
            quantity=quantity,
        )

    assert exc_info.value.message == message


@pytest.mark.asyncio
async def test_issue_bulk_allows_large_quantities(monkeypatch) -> None:
    _install_repos(monkeypatch, campaign=_active_campaign())

    with pytest.raises(RedemptionValidationError) as exc_info:
        await CodeIssuanceService.issue_bulk(
            SimpleNamespace(),
            campaign_id="camp-1",
            quantity=100_001,
        )

    assert exc_info.value.message == "Quantity must be between 1 and 100,000"


@pytest.mark.asyncio
async def test_issue_codes_requires_existing_campaign(monkeypatch) -> None:
    _install_repos(monkeypatch, campaign=None)

    with pytest.raises(CampaignNotFoundError):
        await CodeIssuanceService.issue_codes(SimpleNamespace(), campaign_id="nope", quantity=1)


@pytest.mark.asyncio
async def test_issue_codes_requires_active_campaign(monkeypatch) -> None:
    insert_calls = _install_repos(
        monkeypatch,
        campaign=_active_campaign(status="inactive", is_active=False),
    )

    with pytest.raises(CampaignInactiveError):
        await CodeIssuanceService.issue_codes(SimpleNamespace(), campaign_id="camp-1", quantity=1)

    assert insert_calls == []
