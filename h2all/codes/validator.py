from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field

from h2all.codes.alphabet import CodeGenerationOptions, build_alphabet


@dataclass(frozen=True, slots=True)
class CodeFormat:
    length: int
    has_prefix: bool
    has_suffix: bool
    alphabet: str


@dataclass(frozen=True, slots=True)
class CodeValidationResult:
    errors: list[str]
    format: CodeFormat

    @property
    def is_valid(self) -> bool:
        return not self.errors


@dataclass(frozen=True, slots=True)
class UniquenessReport:
    duplicates: list[str] = field(default_factory=list)
    unique_count: int = 0

    @property
    def is_unique(self) -> bool:
        return not self.duplicates


def validate_code_format(
    code: object,
    options: CodeGenerationOptions | None = None,
) -> CodeValidationResult:
    """Checks a candidate code against length, prefix, suffix and alphabet.

    All failed checks are reported except the alphabet check, which stops
    at the first character outside the alphabet.
    """
    if not isinstance(code, str) or not code:
        return CodeValidationResult(
            errors=["Code must be a non-empty string"],
            format=CodeFormat(length=0, has_prefix=False, has_suffix=False, alphabet=""),
        )

    options = options or CodeGenerationOptions()
    alphabet = build_alphabet(options)
    errors: list[str] = []

    expected_length = options.length + len(options.prefix) + len(options.suffix)
    if len(code) != expected_length:
        errors.append(f"Code length must be {expected_length} characters, got {len(code)}")

    core = code
    if options.prefix:
        if code.startswith(options.prefix):
            core = core[len(options.prefix) :]
        else:
            errors.append(f'Code must start with prefix "{options.prefix}"')

    if options.suffix:
        if code.endswith(options.suffix):
            core = core[: len(core) - len(options.suffix)]
        else:
            errors.append(f'Code must end with suffix "{options.suffix}"')

    allowed = set(alphabet)
    for char in core:
        if char not in allowed:
            errors.append(f'Invalid character "{char}" found in code')
            break

    return CodeValidationResult(
        errors=errors,
        format=CodeFormat(
            length=len(code),
            has_prefix=bool(options.prefix),
            has_suffix=bool(options.suffix),
            alphabet=alphabet,
        ),
    )


def verify_uniqueness(codes: Iterable[str]) -> UniquenessReport:
    seen: set[str] = set()
    duplicates: dict[str, None] = {}
    for code in codes:
        if code in seen:
            duplicates[code] = None
        else:
            seen.add(code)

    return UniquenessReport(duplicates=list(duplicates), unique_count=len(seen))
