from __future__ import annotations

import argparse
import asyncio
import sys
from collections.abc import Sequence

from h2all.codes.alphabet import CodeGenerationOptions, CodePresets
from h2all.codes.generator import (
    MAX_BULK_CODES,
    benchmark_code_generation,
    generate_bulk_codes,
)
from h2all.core.config import get_settings
from h2all.core.logging import configure_logging
from h2all.db.session import SessionLocal
from h2all.redemption.issuance import CodeIssuanceService


def _parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Redemption code batch generation tool")
    parser.add_argument("--campaign-id", help="store the codes under this campaign")
    parser.add_argument("--count", type=int, required=True)
    parser.add_argument("--preset", choices=sorted(CodePresets.all()))
    parser.add_argument("--length", type=int)
    parser.add_argument("--prefix")
    parser.add_argument("--suffix", help="use --suffix=-X for values starting with a dash")
    parser.add_argument("--letters-only", action="store_true")
    parser.add_argument("--allow-ambiguous", action="store_true")
    parser.add_argument("--dry-run", action="store_true", help="generate and print without storing")
    parser.add_argument("--benchmark", action="store_true")
    return parser.parse_args(argv)


def _validate_args(args: argparse.Namespace) -> None:
    if not 1 <= args.count <= MAX_BULK_CODES:
        raise ValueError(f"--count must be in range 1..{MAX_BULK_CODES}")
    if args.length is not None and args.length <= 0:
        raise ValueError("--length must be positive")
    if not args.dry_run and not args.benchmark and not args.campaign_id:
        raise ValueError("--campaign-id is required unless --dry-run or --benchmark is set")


def _build_options(args: argparse.Namespace) -> CodeGenerationOptions:
    if args.preset:
        options = CodePresets.all()[args.preset]
    else:
        settings = get_settings()
        options = CodeGenerationOptions(length=settings.code_length, prefix=settings.code_prefix)

    overrides: dict[str, object] = {}
    if args.length is not None:
        overrides["length"] = args.length
    if args.prefix is not None:
        overrides["prefix"] = args.prefix
    if args.suffix is not None:
        overrides["suffix"] = args.suffix
    if args.letters_only:
        overrides["include_numbers"] = False
    if args.allow_ambiguous:
        overrides["exclude_ambiguous"] = False
    return options.with_overrides(**overrides) if overrides else options


async def _store_codes(
    *,
    campaign_id: str,
    count: int,
    options: CodeGenerationOptions,
) -> tuple[list[str], list[str]]:
    async with SessionLocal.begin() as session:
        result = await CodeIssuanceService.issue_bulk(
            session,
            campaign_id=campaign_id,
            quantity=count,
            options=options,
        )
    return result.codes, result.errors


async def _run(argv: Sequence[str] | None = None) -> int:
    args = _parse_args(argv)
    _validate_args(args)
    configure_logging(get_settings().log_level)
    options = _build_options(args)

    if args.benchmark:
        report = benchmark_code_generation(args.count, options)
        print(  # noqa: T201
            f"count={args.count} duration_ms={report.duration_ms:.2f} "
            f"codes_per_second={report.codes_per_second:.0f} "
            f"unique={report.uniqueness_check.is_unique}"
        )
        return 0

    if args.dry_run:
        generated = generate_bulk_codes(args.count, options)
        codes, errors = generated.codes, []
        if not generated.is_complete:
            errors.append(f"generated {generated.generated} of {generated.requested} codes")
    else:
        codes, errors = await _store_codes(
            campaign_id=args.campaign_id,
            count=args.count,
            options=options,
        )

    for code in codes:
        print(code)  # noqa: T201
    for error in errors:
        print(error, file=sys.stderr)  # noqa: T201
    print(  # noqa: T201
        f"requested={args.count} generated={len(codes)} stored={0 if args.dry_run else len(codes)}",
        file=sys.stderr,
    )
    return 0 if not errors else 1


def main(argv: Sequence[str] | None = None) -> int:
    return asyncio.run(_run(argv))


if __name__ == "__main__":
    raise SystemExit(main())
