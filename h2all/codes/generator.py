from __future__ import annotations

import secrets
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from uuid import uuid4

import structlog

from h2all.codes.alphabet import CodeGenerationOptions, build_alphabet
from h2all.codes.validator import UniquenessReport, verify_uniqueness

logger = structlog.get_logger(__name__)

MAX_BULK_CODES = 100_000
BULK_ATTEMPTS_PER_CODE = 10


class CodeGenerationError(ValueError):
    pass


@dataclass(frozen=True, slots=True)
class BulkGenerationMetadata:
    alphabet: str
    length: int
    prefix: str
    suffix: str
    generated_at: datetime
    uniqueness_verified: bool = True


@dataclass(frozen=True, slots=True)
class BulkGenerationResult:
    codes: list[str]
    requested: int
    generated: int
    metadata: BulkGenerationMetadata

    @property
    def is_complete(self) -> bool:
        return self.generated == self.requested

    @property
    def shortfall(self) -> int:
        return self.requested - self.generated


@dataclass(frozen=True, slots=True)
class BenchmarkResult:
    duration_ms: float
    codes_per_second: float
    uniqueness_check: UniquenessReport = field(repr=False)


def _draw_core(alphabet: str, length: int) -> str:
    return "".join(secrets.choice(alphabet) for _ in range(length))


def _validate_length(length: int) -> None:
    if isinstance(length, bool) or not isinstance(length, int) or length <= 0:
        raise CodeGenerationError("length must be a positive integer")


def generate_redemption_code(options: CodeGenerationOptions | None = None) -> str:
    options = options or CodeGenerationOptions()
    _validate_length(options.length)
    alphabet = build_alphabet(options)
    return f"{options.prefix}{_draw_core(alphabet, options.length)}{options.suffix}"


def generate_bulk_codes(
    count: int,
    options: CodeGenerationOptions | None = None,
    *,
    existing_codes: set[str] | None = None,
) -> BulkGenerationResult:
    """Generates up to ``count`` distinct codes.

    Draws are bounded by ``count * 10``. When the bound is hit the result is
    returned short rather than raising; callers must compare ``generated``
    with ``requested``. Codes in ``existing_codes`` are never returned.
    """
    if isinstance(count, bool) or not isinstance(count, int) or count <= 0:
        raise CodeGenerationError("Count must be a positive number")
    if count > MAX_BULK_CODES:
        raise CodeGenerationError(f"Maximum bulk generation limit is {MAX_BULK_CODES:,} codes")

    options = options or CodeGenerationOptions()
    _validate_length(options.length)
    alphabet = build_alphabet(options)
    excluded = existing_codes or set()

    codes: dict[str, None] = {}
    max_attempts = count * BULK_ATTEMPTS_PER_CODE
    attempts = 0
    while len(codes) < count and attempts < max_attempts:
        attempts += 1
        full_code = f"{options.prefix}{_draw_core(alphabet, options.length)}{options.suffix}"
        if full_code in excluded:
            continue
        codes[full_code] = None

    if len(codes) < count:
        logger.warning(
            "bulk_code_generation_partial",
            requested=count,
            generated=len(codes),
            attempts=attempts,
            alphabet_size=len(alphabet),
            length=options.length,
        )

    return BulkGenerationResult(
        codes=list(codes),
        requested=count,
        generated=len(codes),
        metadata=BulkGenerationMetadata(
            alphabet=alphabet,
            length=options.length,
            prefix=options.prefix,
            suffix=options.suffix,
            generated_at=datetime.now(timezone.utc),
        ),
    )


def generate_unique_id() -> str:
    return str(uuid4())


def generate_short_id(length: int = 12) -> str:
    _validate_length(length)
    return secrets.token_urlsafe(length)[:length]


def benchmark_code_generation(
    count: int,
    options: CodeGenerationOptions | None = None,
) -> BenchmarkResult:
    started = time.perf_counter()
    result = generate_bulk_codes(count, options)
    duration_s = time.perf_counter() - started

    return BenchmarkResult(
        duration_ms=duration_s * 1000,
        codes_per_second=(count / duration_s) if duration_s > 0 else float("inf"),
        uniqueness_check=verify_uniqueness(result.codes),
    )
