"""Ordered value rewriting applied to every configured field value.

A raw string taken from the source document passes through these steps, in
this order:

1. Replace rules (character, literal string or regex; declared order)
2. HTML entity unescaping
3. ISO date normalization for ``DATE_*`` fields
4. Identifier cleanup for the record identifier field (``PI``)
5. One-token folding, if configured
6. Lowercasing, if configured
7. Length normalizers (fixed-length pad/truncate, roman numeral conversion)
8. Non-sort character stripping

Usage:
    from value_pipeline import apply_pipeline

    value = apply_pipeline("<<Der>> Titel", field_rule)
"""

from __future__ import annotations

import html
import logging
import re
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Sequence, Union

try:
    from nodes.metadata_transform.dates import normalize_date_field_value
    from nodes.metadata_transform.models import PI
except ImportError:
    from dates import normalize_date_field_value
    from models import PI

if TYPE_CHECKING:
    from nodes.metadata_transform.rules import FieldRule

logger = logging.getLogger(__name__)

SPACE_PLACEHOLDER = "#SPACE#"
IDENTIFIER_ILLEGAL_CHARS = re.compile(r"[ ,:()]")
ROMAN_NUMERAL = re.compile(r"^[IVXLCDM]+$", re.IGNORECASE)
ROMAN_VALUES = {"i": 1, "v": 5, "x": 10, "l": 50, "c": 100, "d": 500, "m": 1000}
_NON_ALNUM_ASCII = r"[\x00-\x2f\x3a-\x40\x5b-\x60\x7b-\x7f]"
_LEADING_JUNK = re.compile(rf"^{_NON_ALNUM_ASCII}+")
_TRAILING_JUNK = re.compile(rf"{_NON_ALNUM_ASCII}+$")


# =============================================================================
# Replace rules
# =============================================================================


@dataclass(frozen=True)
class CharRule:
    """Replace every occurrence of a single character."""

    char: str
    replacement: str

    def apply(self, value: str) -> str:
        return value.replace(self.char, self.replacement)


@dataclass(frozen=True)
class LiteralRule:
    """Replace every occurrence of a literal string."""

    text: str
    replacement: str

    def apply(self, value: str) -> str:
        return value.replace(self.text, self.replacement)


@dataclass(frozen=True)
class RegexRule:
    """Replace every match of a regular expression (``re.sub`` semantics)."""

    pattern: str
    replacement: str

    def apply(self, value: str) -> str:
        try:
            return re.sub(self.pattern, self.replacement, value)
        except re.error as e:
            logger.warning(f"Invalid replace rule regex '{self.pattern}': {e}")
            return value


ReplaceRule = Union[CharRule, LiteralRule, RegexRule]


def apply_replace_rules(value: str, rules: Sequence[ReplaceRule] | None) -> str:
    """Apply replace rules strictly in declared order.

    Args:
        value: Value to modify
        rules: Ordered replace rules (may be None or empty)

    Returns:
        Modified value

    Raises:
        ValueError: If value is None
    """
    if value is None:
        raise ValueError("value may not be None")
    if not rules:
        return value

    result = value
    for rule in rules:
        result = rule.apply(result)
    return result


def replace_rule_from_dict(rule: dict) -> ReplaceRule:
    """Build a tagged replace rule from its configuration entry.

    The entry carries exactly one of the keys ``char``, ``string`` or
    ``regex`` plus an optional ``replace_with`` (default empty string).
    ``#SPACE#`` stands for a single space in both key and replacement.

    Raises:
        ValueError: If the entry names no rule key or a malformed character
    """
    replacement = str(rule.get("replace_with", "")).replace(SPACE_PLACEHOLDER, " ")

    if "char" in rule:
        char = str(rule["char"]).replace(SPACE_PLACEHOLDER, " ")
        if len(char) != 1:
            raise ValueError(f"Character replace rule needs exactly one character: {char!r}")
        return CharRule(char=char, replacement=replacement)
    if "string" in rule:
        text = str(rule["string"]).replace(SPACE_PLACEHOLDER, " ")
        if not text:
            raise ValueError("String replace rule may not be empty")
        return LiteralRule(text=text, replacement=replacement)
    if "regex" in rule:
        pattern = str(rule["regex"]).replace(SPACE_PLACEHOLDER, " ")
        try:
            re.compile(pattern)
        except re.error as e:
            raise ValueError(f"Invalid replace rule regex '{pattern}': {e}") from e
        return RegexRule(pattern=pattern, replacement=replacement)

    raise ValueError(f"Replace rule needs one of 'char', 'string', 'regex': {rule}")


# =============================================================================
# Length normalization
# =============================================================================


class NormalizerPosition(Enum):
    """Side of the value at which padding is added or truncation happens."""

    FRONT = "front"
    REAR = "rear"

    @classmethod
    def from_name(cls, name: str | None) -> NormalizerPosition:
        if name and name.lower() in ("rear", "back"):
            return cls.REAR
        return cls.FRONT


def convert_roman_numeral(numeral: str) -> int:
    """Convert a roman numeral (either case) to an integer.

    Raises:
        ValueError: If the string is not a roman numeral
    """
    if not numeral or not ROMAN_NUMERAL.match(numeral):
        raise ValueError(f"Not a roman numeral: {numeral!r}")

    total = 0
    previous = 0
    for char in reversed(numeral.lower()):
        current = ROMAN_VALUES[char]
        if current < previous:
            total -= current
        else:
            total += current
            previous = current
    return total


@dataclass(frozen=True)
class ValueNormalizer:
    """Bring a value (or the regex-selected parts of it) to a fixed length.

    Attributes:
        length: Target length of the relevant part
        filler: Padding character
        position: FRONT pads/truncates at the start, REAR at the end
        relevant_part_regex: Optional regex; only the first match (or its
            capture groups, if any) is normalized, the rest stays untouched
        convert_roman: Replace roman numeral parts with arabic numbers
            instead of padding them
    """

    length: int
    filler: str = "0"
    position: NormalizerPosition = NormalizerPosition.FRONT
    relevant_part_regex: str | None = None
    convert_roman: bool = False

    def normalize(self, value: str) -> str:
        if value is None:
            return value

        if not self.relevant_part_regex:
            return self._normalize_part(value)

        try:
            match = re.search(self.relevant_part_regex, value)
        except re.error as e:
            logger.warning(f"Invalid normalizer regex '{self.relevant_part_regex}': {e}")
            return value
        if match is None:
            return value

        if match.re.groups:
            spans = [match.span(i) for i in range(1, match.re.groups + 1)]
        else:
            spans = [match.span()]

        # Rewrite from the right so earlier offsets stay valid
        result = value
        for start, end in sorted(spans, reverse=True):
            if start < 0:
                continue
            result = result[:start] + self._normalize_part(value[start:end]) + result[end:]
        return result

    def _normalize_part(self, part: str) -> str:
        if self.convert_roman and ROMAN_NUMERAL.match(part):
            return str(convert_roman_numeral(part))

        if len(part) == self.length:
            return part
        if len(part) < self.length:
            padding = self.filler * (self.length - len(part))
            if self.position == NormalizerPosition.REAR:
                return part + padding
            return padding + part
        if self.position == NormalizerPosition.REAR:
            return part[: self.length]
        return part[len(part) - self.length :]

    @classmethod
    def from_dict(cls, config: dict) -> ValueNormalizer:
        """Create a normalizer from configuration.

        Raises:
            ValueError: If length is missing or not a positive integer
        """
        try:
            length = int(config.get("length", 0))
        except (TypeError, ValueError) as e:
            raise ValueError(f"Invalid normalizer length: {config.get('length')}") from e
        if length < 1:
            raise ValueError(f"Normalizer length must be positive: {length}")

        filler = str(config.get("filler") or "0")
        return cls(
            length=length,
            filler=filler[0],
            position=NormalizerPosition.from_name(config.get("position")),
            relevant_part_regex=config.get("relevant_part_regex") or None,
            convert_roman=bool(config.get("convert_roman", False)),
        )


# =============================================================================
# Non-sort characters
# =============================================================================


@dataclass(frozen=True)
class NonSortConfiguration:
    """Remove a span delimited by a prefix and/or suffix regex.

    ``<<Der>> Titel`` with prefix ``<<`` and suffix ``>>`` becomes ``Titel``.
    """

    prefix: str | None = None
    suffix: str | None = None

    def apply(self, value: str) -> str:
        if value is None or not (self.prefix or self.suffix):
            return value
        pattern = f"{self.prefix or ''}[\\w|\\W]*{self.suffix or ''}"
        try:
            return re.sub(pattern, "", value).strip()
        except re.error as e:
            logger.warning(f"Invalid non-sort pattern '{pattern}': {e}")
            return value


# =============================================================================
# Small value helpers
# =============================================================================


def to_one_token(value: str, splitting_char: str | None = None) -> str:
    """Fold a value into a single token.

    Non-word characters are removed. If a splitting character is given it is
    kept as a hierarchy separator and rewritten to a period.
    """
    if splitting_char:
        result = value.replace(" ", "")
        result = re.sub(rf"[^\w|{re.escape(splitting_char)}]", "", result)
        result = result.replace("_", "")
        return result.replace(splitting_char, ".")
    return re.sub(r"\W", "", value)


def apply_identifier_modifications(value: str) -> str:
    """Trim a record identifier and replace characters illegal in identifiers."""
    if not value:
        return value
    return IDENTIFIER_ILLEGAL_CHARS.sub("_", value.strip())


def clean_up_name(value: str | None) -> str | None:
    """Strip leading and trailing non-alphanumeric ASCII from a name.

    Catches the stray commas and brackets left over by concatenating XPath
    expressions when a person has only a first or only a last name.

    Examples:
        >>> clean_up_name('"(abcd,"')
        'abcd'
        >>> clean_up_name(", foo")
        'foo'
    """
    if value is None:
        return None
    result = _LEADING_JUNK.sub("", value.strip())
    return _TRAILING_JUNK.sub("", result)


def apply_pipeline(value: str, rule: FieldRule) -> str:
    """Run a raw value through every modification configured on a rule.

    Args:
        value: Raw value
        rule: Field rule carrying the modification chains

    Returns:
        Final value (empty input is returned unchanged)
    """
    if not value:
        return value

    result = apply_replace_rules(value, rule.replace_rules)
    result = html.unescape(result)

    if rule.field_name.startswith("DATE_"):
        normalized = normalize_date_field_value(result)
        if normalized:
            result = normalized
    elif rule.field_name == PI:
        result = apply_identifier_modifications(result)

    if rule.one_token:
        result = to_one_token(result, rule.splitting_character)

    if rule.lowercase:
        result = result.lower()

    for normalizer in rule.value_normalizers:
        result = normalizer.normalize(result)
        logger.debug(f"Normalized value: {result}")

    for non_sort in rule.non_sort_configurations:
        result = non_sort.apply(result)

    return result
