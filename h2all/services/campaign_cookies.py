from __future__ import annotations

import json
import math
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from datetime import datetime, timezone
from email.utils import format_datetime, parsedate_to_datetime
from typing import Any, Protocol
from urllib.parse import quote, unquote

import structlog

logger = structlog.get_logger(__name__)

CAMPAIGN_COOKIE_NAME = "h2all_campaign_data"
DEFAULT_EXPIRATION_HOURS = 24
MAX_EXPIRATION_HOURS = 48
MAX_COOKIE_PAYLOAD_BYTES = 4000
MS_PER_HOUR = 60 * 60 * 1000
EPOCH_EXPIRES = "Thu, 01 Jan 1970 00:00:00 GMT"
SAME_SITE_VALUES = ("strict", "lax", "none")
UTM_FIELDS = ("source", "medium", "content")

# encodeURIComponent leaves these unescaped
_URI_COMPONENT_SAFE = "-_.!~*'()"

# latest instant datetime can render once the longest expiration is added
MAX_COOKIE_TIMESTAMP_MS = (
    int(datetime(9999, 1, 1, tzinfo=timezone.utc).timestamp() * 1000)
    - MAX_EXPIRATION_HOURS * MS_PER_HOUR
)


def _now_ms() -> int:
    return int(time.time() * 1000)


def _is_number(value: object) -> bool:
    return (
        isinstance(value, (int, float))
        and not isinstance(value, bool)
        and math.isfinite(value)
    )


@dataclass(frozen=True, slots=True)
class UtmParams:
    source: str | None = None
    medium: str | None = None
    content: str | None = None

    def merged(self, other: UtmParams) -> UtmParams:
        return UtmParams(
            source=other.source if other.source is not None else self.source,
            medium=other.medium if other.medium is not None else self.medium,
            content=other.content if other.content is not None else self.content,
        )

    def to_payload(self) -> dict[str, str]:
        return {
            name: value
            for name in UTM_FIELDS
            if (value := getattr(self, name)) is not None
        }

    @classmethod
    def from_params(cls, params: Mapping[str, str]) -> UtmParams:
        return cls(
            source=params.get("utm_source"),
            medium=params.get("utm_medium"),
            content=params.get("utm_content"),
        )


@dataclass(frozen=True, slots=True)
class CampaignCookieData:
    campaign_id: str
    unique_code: str
    timestamp: int
    utm_params: UtmParams | None = None
    expiration_hours: float = DEFAULT_EXPIRATION_HOURS

    @property
    def expires_at_ms(self) -> float:
        return self.timestamp + self.expiration_hours * MS_PER_HOUR

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "campaignId": self.campaign_id,
            "uniqueCode": self.unique_code,
            "timestamp": self.timestamp,
            "expirationHours": self.expiration_hours,
        }
        if self.utm_params is not None:
            payload["utmParams"] = self.utm_params.to_payload()
        return payload

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> CampaignCookieData:
        raw_utm = payload.get("utmParams")
        utm_params = None
        if isinstance(raw_utm, Mapping):
            utm_params = UtmParams(**{name: raw_utm.get(name) for name in UTM_FIELDS})
        return cls(
            campaign_id=payload["campaignId"],
            unique_code=payload["uniqueCode"],
            timestamp=int(payload["timestamp"]),
            utm_params=utm_params,
            expiration_hours=payload.get("expirationHours", DEFAULT_EXPIRATION_HOURS),
        )


@dataclass(frozen=True, slots=True)
class CookieOptions:
    expiration_hours: float = DEFAULT_EXPIRATION_HOURS
    domain: str | None = None
    path: str = "/"
    secure: bool | None = None
    same_site: str = "lax"


@dataclass(slots=True)
class CookieWriteResult:
    errors: list[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return not self.errors


@dataclass(slots=True)
class CookieReadResult:
    data: CampaignCookieData | None = None
    errors: list[str] = field(default_factory=list)
    is_expired: bool = False

    @property
    def is_valid(self) -> bool:
        return self.data is not None and not self.errors


@dataclass(frozen=True, slots=True)
class CookieExpiration:
    exists: bool
    expires_at: datetime | None = None
    time_remaining_ms: float | None = None
    is_expired: bool | None = None


def validate_campaign_payload(payload: object) -> list[str]:
    """Shape check for a decoded cookie payload. Returns the list of problems."""
    if not isinstance(payload, Mapping):
        return ["Invalid data format"]

    errors: list[str] = []
    campaign_id = payload.get("campaignId")
    if not isinstance(campaign_id, str) or not campaign_id:
        errors.append("Missing or invalid campaignId")

    unique_code = payload.get("uniqueCode")
    if not isinstance(unique_code, str) or not unique_code:
        errors.append("Missing or invalid uniqueCode")

    timestamp = payload.get("timestamp")
    if not _is_number(timestamp) or not 0 < timestamp <= MAX_COOKIE_TIMESTAMP_MS:
        errors.append("Missing or invalid timestamp")

    expiration_hours = payload.get("expirationHours")
    if expiration_hours is not None and (
        not _is_number(expiration_hours)
        or not 0 < expiration_hours <= MAX_EXPIRATION_HOURS
    ):
        errors.append("Invalid expirationHours")

    utm_params = payload.get("utmParams")
    if utm_params is not None:
        if not isinstance(utm_params, Mapping):
            errors.append("Invalid UTM parameters format")
        else:
            for name in UTM_FIELDS:
                value = utm_params.get(name)
                if value is not None and not isinstance(value, str):
                    errors.append(f"Invalid UTM {name} format")

    return errors


@dataclass(slots=True)
class SetCookie:
    name: str
    value: str
    attributes: dict[str, str]

    @property
    def path(self) -> str:
        return self.attributes.get("path") or "/"

    @property
    def domain(self) -> str:
        return self.attributes.get("domain", "").lstrip(".").lower()

    def expires_at(self) -> datetime | None:
        raw = self.attributes.get("expires")
        if not raw:
            return None
        try:
            return parsedate_to_datetime(raw)
        except (TypeError, ValueError):
            return None


def parse_set_cookie(cookie_string: str) -> SetCookie:
    head, *attribute_parts = cookie_string.split(";")
    name, _, value = head.strip().partition("=")
    attributes: dict[str, str] = {}
    for part in attribute_parts:
        key, _, attr_value = part.strip().partition("=")
        if key:
            attributes[key.lower()] = attr_value
    return SetCookie(name=name, value=value, attributes=attributes)


def find_cookie_value(cookie_header: str, name: str) -> str | None:
    for item in cookie_header.split(";"):
        item_name, separator, value = item.strip().partition("=")
        if separator and item_name == name:
            return value
    return None


class CookieStore(Protocol):
    def read_header(self) -> str: ...

    def write(self, cookie_string: str) -> None: ...


class InMemoryCookieStore:
    """Browser-like jar: honours ``expires`` and keys cookies by name, domain and path."""

    def __init__(self, *, clock: Callable[[], int] = _now_ms) -> None:
        self._clock = clock
        self._cookies: dict[tuple[str, str, str], tuple[str, datetime | None]] = {}

    def _now(self) -> datetime:
        return datetime.fromtimestamp(self._clock() / 1000, tz=timezone.utc)

    def write(self, cookie_string: str) -> None:
        cookie = parse_set_cookie(cookie_string)
        key = (cookie.name, cookie.domain, cookie.path)
        expires_at = cookie.expires_at()
        if expires_at is not None and expires_at <= self._now():
            self._cookies.pop(key, None)
            return
        self._cookies[key] = (cookie.value, expires_at)

    def read_header(self) -> str:
        now = self._now()
        live: list[str] = []
        for key, (value, expires_at) in list(self._cookies.items()):
            if expires_at is not None and expires_at <= now:
                del self._cookies[key]
                continue
            live.append(f"{key[0]}={value}")
        return "; ".join(live)


class ResponseCookieStore:
    """Request cookies overlaid with the ``Set-Cookie`` headers written to a response."""

    def __init__(self, request_cookies: Mapping[str, str], response: Any) -> None:
        self._cookies: dict[str, str] = dict(request_cookies)
        self._response = response

    def write(self, cookie_string: str) -> None:
        self._response.headers.append("set-cookie", cookie_string)
        cookie = parse_set_cookie(cookie_string)
        expires_at = cookie.expires_at()
        if expires_at is not None and expires_at <= datetime.now(timezone.utc):
            self._cookies.pop(cookie.name, None)
        else:
            self._cookies[cookie.name] = cookie.value

    def read_header(self) -> str:
        return "; ".join(f"{name}={value}" for name, value in self._cookies.items())


class CampaignCookieManager:
    def __init__(
        self,
        store: CookieStore,
        *,
        cookie_name: str = CAMPAIGN_COOKIE_NAME,
        default_expiration_hours: float = DEFAULT_EXPIRATION_HOURS,
        default_domain: str | None = None,
        secure_default: bool = False,
        clock: Callable[[], int] = _now_ms,
    ) -> None:
        self._store = store
        self._cookie_name = cookie_name
        self._default_expiration_hours = default_expiration_hours
        self._default_domain = default_domain
        self._secure_default = secure_default
        self._clock = clock

    @property
    def cookie_name(self) -> str:
        return self._cookie_name

    def default_options(self) -> CookieOptions:
        return CookieOptions(
            expiration_hours=self._default_expiration_hours,
            domain=self._default_domain,
        )

    def set_campaign_cookie(
        self,
        *,
        campaign_id: str,
        unique_code: str,
        utm_params: UtmParams | None = None,
        options: CookieOptions | None = None,
    ) -> CookieWriteResult:
        options = options or self.default_options()
        hours = options.expiration_hours
        if not _is_number(hours) or not 0 < hours <= MAX_EXPIRATION_HOURS:
            return CookieWriteResult(
                errors=[
                    "Invalid expiration hours. Must be greater than 0 and at most "
                    f"{MAX_EXPIRATION_HOURS}"
                ]
            )
        if options.same_site.lower() not in SAME_SITE_VALUES:
            return CookieWriteResult(errors=[f"Invalid SameSite value: {options.same_site}"])

        now_ms = self._clock()
        payload = CampaignCookieData(
            campaign_id=campaign_id,
            unique_code=unique_code,
            timestamp=now_ms,
            utm_params=utm_params,
            expiration_hours=hours,
        ).to_payload()
        shape_errors = validate_campaign_payload(payload)
        if shape_errors:
            return CookieWriteResult(errors=shape_errors)

        serialized = json.dumps(payload, separators=(",", ":"))
        if len(serialized.encode("utf-8")) > MAX_COOKIE_PAYLOAD_BYTES:
            return CookieWriteResult(errors=["Campaign data too large for cookie storage"])

        expires = datetime.fromtimestamp(now_ms / 1000 + hours * 3600, tz=timezone.utc)
        parts = [
            f"{self._cookie_name}={quote(serialized, safe=_URI_COMPONENT_SAFE)}",
            f"expires={format_datetime(expires, usegmt=True)}",
            f"path={options.path}",
        ]
        if options.domain:
            parts.append(f"domain={options.domain}")
        secure = self._secure_default if options.secure is None else options.secure
        if secure:
            parts.append("secure")
        parts.append(f"samesite={options.same_site.lower()}")

        self._store.write("; ".join(parts))

        verification = self.get_campaign_cookie()
        if not verification.is_valid:
            logger.warning(
                "campaign_cookie_verification_failed",
                campaign_id=campaign_id,
                errors=verification.errors,
            )
            return CookieWriteResult(errors=["Failed to verify cookie was set correctly"])
        return CookieWriteResult()

    def get_campaign_cookie(self, validate_expiration: bool = True) -> CookieReadResult:
        raw_value = find_cookie_value(self._store.read_header(), self._cookie_name)
        if not raw_value:
            return CookieReadResult(errors=["Campaign cookie not found"])

        try:
            payload = json.loads(unquote(raw_value))
        except ValueError as exc:
            return CookieReadResult(errors=[f"Failed to retrieve campaign cookie: {exc}"])

        shape_errors = validate_campaign_payload(payload)
        if shape_errors:
            return CookieReadResult(errors=["Invalid campaign cookie data", *shape_errors])

        data = CampaignCookieData.from_payload(payload)
        if validate_expiration and self._clock() > data.expires_at_ms:
            self.clear_campaign_cookie()
            return CookieReadResult(errors=["Campaign cookie has expired"], is_expired=True)

        return CookieReadResult(data=data)

    def clear_campaign_cookie(
        self,
        *,
        domain: str | None = None,
        path: str = "/",
    ) -> CookieWriteResult:
        domain = domain if domain is not None else self._default_domain
        parts = [f"{self._cookie_name}=", f"expires={EPOCH_EXPIRES}", f"path={path}"]
        if domain:
            parts.append(f"domain={domain}")
        self._store.write("; ".join(parts))

        if self.get_campaign_cookie(validate_expiration=False).is_valid:
            return CookieWriteResult(errors=["Failed to clear campaign cookie"])
        return CookieWriteResult()

    def has_campaign_cookie(self) -> bool:
        return find_cookie_value(self._store.read_header(), self._cookie_name) is not None

    def get_campaign_cookie_expiration(self) -> CookieExpiration:
        result = self.get_campaign_cookie(validate_expiration=False)
        if not result.is_valid or result.data is None:
            return CookieExpiration(exists=False)

        expires_at_ms = result.data.expires_at_ms
        remaining_ms = expires_at_ms - self._clock()
        return CookieExpiration(
            exists=True,
            expires_at=datetime.fromtimestamp(expires_at_ms / 1000, tz=timezone.utc),
            time_remaining_ms=max(0, remaining_ms),
            is_expired=remaining_ms <= 0,
        )

    def update_campaign_cookie_utm(self, utm_params: UtmParams) -> CookieWriteResult:
        current = self.get_campaign_cookie()
        if not current.is_valid or current.data is None:
            return CookieWriteResult(errors=["No valid campaign cookie found to update"])

        data = current.data
        merged = (data.utm_params or UtmParams()).merged(utm_params)
        return self.set_campaign_cookie(
            campaign_id=data.campaign_id,
            unique_code=data.unique_code,
            utm_params=merged,
            options=CookieOptions(
                expiration_hours=data.expiration_hours,
                domain=self._default_domain,
            ),
        )

    def debug_info(self) -> dict[str, Any]:
        result = self.get_campaign_cookie(validate_expiration=False)
        expiration = self.get_campaign_cookie_expiration()
        return {
            "exists": self.has_campaign_cookie(),
            "is_valid": result.is_valid,
            "data": result.data.to_payload() if result.data is not None else None,
            "errors": result.errors,
            "expiration": {
                "exists": expiration.exists,
                "expires_at": expiration.expires_at.isoformat() if expiration.expires_at else None,
                "time_remaining_ms": expiration.time_remaining_ms,
                "is_expired": expiration.is_expired,
            },
            "all_cookies": self._store.read_header(),
        }

    def force_clear(self, hostname: str) -> list[CookieWriteResult]:
        variations = ["", hostname, f".{hostname}"]
        results = [self.clear_campaign_cookie(domain=domain, path="/") for domain in variations]
        logger.info(
            "campaign_cookie_force_cleared",
            hostname=hostname,
            success=any(result.success for result in results),
        )
        return results
