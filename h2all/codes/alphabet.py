from __future__ import annotations

from dataclasses import dataclass, replace

SAFE_ALPHANUMERIC = "23456789ABCDEFGHJKMNPQRSTUVWXYZ"
SAFE_LETTERS = "ABCDEFGHJKMNPQRSTUVWXYZ"
FULL_ALPHANUMERIC = "0123456789ABCDEFGHIJKLMNOPQRSTUVWXYZ"
LETTERS_ONLY = "ABCDEFGHIJKLMNOPQRSTUVWXYZ"
AMBIGUOUS_CHARACTERS = frozenset("0OIl1")

DEFAULT_CODE_LENGTH = 8


@dataclass(frozen=True, slots=True)
class CodeGenerationOptions:
    length: int = DEFAULT_CODE_LENGTH
    alphabet: str | None = None
    prefix: str = ""
    suffix: str = ""
    uppercase: bool = True
    include_numbers: bool = True
    exclude_ambiguous: bool = True

    def with_overrides(self, **changes: object) -> CodeGenerationOptions:
        return replace(self, **changes)


def build_alphabet(options: CodeGenerationOptions | None = None) -> str:
    """Returns the characters a code core may be drawn from.

    An explicit ``alphabet`` is used verbatim. Otherwise one of four fixed
    classes is selected by ``exclude_ambiguous`` x ``include_numbers`` and
    lowercased when ``uppercase`` is off.
    """
    options = options or CodeGenerationOptions()
    if options.alphabet:
        return options.alphabet

    if options.exclude_ambiguous:
        alphabet = SAFE_ALPHANUMERIC if options.include_numbers else SAFE_LETTERS
    else:
        alphabet = FULL_ALPHANUMERIC if options.include_numbers else LETTERS_ONLY

    if not options.uppercase:
        alphabet = alphabet.lower()
    return alphabet


class CodePresets:
    STANDARD = CodeGenerationOptions(length=8)
    SHORT = CodeGenerationOptions(length=6)
    SECURE = CodeGenerationOptions(length=12)
    LETTERS_ONLY = CodeGenerationOptions(length=8, include_numbers=False)
    CAMPAIGN = CodeGenerationOptions(length=6, prefix="H2-")

    @classmethod
    def all(cls) -> dict[str, CodeGenerationOptions]:
        return {
            "STANDARD": cls.STANDARD,
            "SHORT": cls.SHORT,
            "SECURE": cls.SECURE,
            "LETTERS_ONLY": cls.LETTERS_ONLY,
            "CAMPAIGN": cls.CAMPAIGN,
        }
