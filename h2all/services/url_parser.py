from __future__ import annotations

import re
from dataclasses import dataclass, field
from urllib.parse import parse_qsl, urlencode, urlsplit

CAMPAIGN_ID_PARAM = "campaign_id"
CODE_PARAM = "code"
RESERVED_PARAMS = (CAMPAIGN_ID_PARAM, CODE_PARAM)

DEFAULT_CAMPAIGN_ID_PATTERN = re.compile(r"^[a-zA-Z0-9_-]{1,50}$")
DEFAULT_CODE_PATTERN = re.compile(r"^[A-Z0-9]{4,32}$")

_PLACEHOLDER_ORIGIN = "http://localhost"
_REDEMPTION_PATHS = ("/redeem", "/claim", "/activate", "/use")
_UNSAFE_PARAM_CHARS = re.compile(r"[<>'\"]")
_TIMESTAMP_LIKE = re.compile(r"^\d+$")
MAX_SANITIZED_PARAM_LENGTH = 100


@dataclass(frozen=True, slots=True)
class UrlParserConfig:
    validate_campaign_id: bool = True
    validate_code: bool = True
    allow_extra_params: bool = True
    campaign_id_pattern: re.Pattern[str] = DEFAULT_CAMPAIGN_ID_PATTERN
    code_pattern: re.Pattern[str] = DEFAULT_CODE_PATTERN


@dataclass(slots=True)
class CampaignUrlData:
    campaign_id: str
    unique_code: str
    original_url: str
    errors: list[str] = field(default_factory=list)
    additional_params: dict[str, str] = field(default_factory=dict)

    @property
    def is_valid(self) -> bool:
        return not self.errors and bool(self.campaign_id) and bool(self.unique_code)


@dataclass(slots=True)
class UrlValidationResult:
    errors: list[str]
    warnings: list[str]
    data: CampaignUrlData | None = None

    @property
    def is_valid(self) -> bool:
        return not self.errors


@dataclass(slots=True)
class CampaignDataCheck:
    errors: list[str]
    warnings: list[str]

    @property
    def is_valid(self) -> bool:
        return not self.errors


def _split_url(url: str):
    if url.startswith(("/", "?")):
        return urlsplit(f"{_PLACEHOLDER_ORIGIN}{url}")
    if "://" in url:
        parts = urlsplit(url)
        _ = parts.port  # raises ValueError on a malformed port
        return parts
    return urlsplit(f"{_PLACEHOLDER_ORIGIN}?{url}")


def _query_pairs(url: str) -> list[tuple[str, str]]:
    if not isinstance(url, str):
        raise ValueError("url must be a string")
    return parse_qsl(_split_url(url).query, keep_blank_values=True)


def parse_redemption_url(url: str, config: UrlParserConfig | None = None) -> CampaignUrlData:
    """Extracts ``campaign_id`` and ``code`` from a redemption URL.

    Accepts absolute URLs, ``/path?query``, ``?query`` and bare query strings.
    Later duplicates of a parameter override earlier ones. Never raises;
    problems are reported in ``errors``.
    """
    config = config or UrlParserConfig()
    try:
        pairs = _query_pairs(url)
    except ValueError as exc:
        return CampaignUrlData(
            campaign_id="",
            unique_code="",
            original_url=url if isinstance(url, str) else "",
            errors=[f"URL parsing error: {exc}"],
        )

    params = dict(pairs)
    campaign_id = params.get(CAMPAIGN_ID_PARAM, "").strip()
    unique_code = params.get(CODE_PARAM, "").strip()
    errors: list[str] = []

    if not campaign_id:
        errors.append(f"Missing required parameter: {CAMPAIGN_ID_PARAM}")
    if not unique_code:
        errors.append(f"Missing required parameter: {CODE_PARAM}")

    if campaign_id and config.validate_campaign_id:
        if config.campaign_id_pattern.fullmatch(campaign_id) is None:
            errors.append(f"Invalid campaign_id format: {campaign_id}")
    if unique_code and config.validate_code:
        if config.code_pattern.fullmatch(unique_code) is None:
            errors.append(f"Invalid code format: {unique_code}")

    additional_params: dict[str, str] = {}
    if config.allow_extra_params:
        additional_params = {key: value for key, value in params.items() if key not in RESERVED_PARAMS}

    return CampaignUrlData(
        campaign_id=campaign_id,
        unique_code=unique_code,
        original_url=url,
        errors=errors,
        additional_params=additional_params,
    )


def parse_campaign_url(url: str, config: UrlParserConfig | None = None) -> CampaignUrlData:
    return parse_redemption_url(url, config)


def validate_campaign_url(url: str, config: UrlParserConfig | None = None) -> UrlValidationResult:
    config = config or UrlParserConfig()
    parsed = parse_redemption_url(url, config)
    if any(error.startswith("URL parsing error") for error in parsed.errors):
        return UrlValidationResult(errors=list(parsed.errors), warnings=[])

    pairs = _query_pairs(url)
    keys = {key for key, _ in pairs}
    warnings: list[str] = []

    extra_count = len(keys - set(RESERVED_PARAMS))
    if extra_count and not config.allow_extra_params:
        warnings.append(f"Found {extra_count} additional parameters")
    if "campaign" in keys and CAMPAIGN_ID_PARAM not in keys:
        warnings.append('Found "campaign" parameter, did you mean "campaign_id"?')
    if "unique_code" in keys and CODE_PARAM not in keys:
        warnings.append('Found "unique_code" parameter, did you mean "code"?')

    return UrlValidationResult(
        errors=list(parsed.errors),
        warnings=warnings,
        data=parsed if parsed.is_valid else None,
    )


def check_campaign_data(data: CampaignUrlData) -> CampaignDataCheck:
    warnings: list[str] = []
    if data.campaign_id and len(data.campaign_id) < 3:
        warnings.append("Campaign ID is very short, might be invalid")
    if data.unique_code and len(data.unique_code) < 6:
        warnings.append("Code is short, ensure it's sufficient for security")
    if (
        data.campaign_id
        and _TIMESTAMP_LIKE.fullmatch(data.campaign_id)
        and len(data.campaign_id) > 15
    ):
        warnings.append("Campaign ID appears to be a timestamp, verify format")
    return CampaignDataCheck(errors=list(data.errors), warnings=warnings)


def build_campaign_url(
    *,
    campaign_id: str | None = None,
    unique_code: str | None = None,
    extra_params: dict[str, str] | None = None,
    base_path: str = "/redeem",
) -> str:
    params: dict[str, str] = {}
    if campaign_id:
        params[CAMPAIGN_ID_PARAM] = campaign_id
    if unique_code:
        params[CODE_PARAM] = unique_code
    for key, value in (extra_params or {}).items():
        params[key] = value

    if not params:
        return base_path
    return f"{base_path}?{urlencode(params)}"


def sanitize_url_param(value: str) -> str:
    return _UNSAFE_PARAM_CHARS.sub("", value.strip())[:MAX_SANITIZED_PARAM_LENGTH]


def is_redemption_url(url: str) -> bool:
    try:
        parts = _split_url(url)
        keys = {key for key, _ in parse_qsl(parts.query, keep_blank_values=True)}
    except (AttributeError, ValueError):
        return False

    path = parts.path.lower()
    if any(candidate in path for candidate in _REDEMPTION_PATHS):
        return True
    return bool(keys & {CAMPAIGN_ID_PARAM, CODE_PARAM, "campaign"})
