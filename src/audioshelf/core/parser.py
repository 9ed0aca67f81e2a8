"""Catalog name parsing.

Pure helpers mapping a directory or file name to the values the catalog is
built from: playability, conversion need, sort ordinals, display names and
stable identifiers. Nothing here touches the filesystem.

Expected library layout:

    盗墓笔记/
      盗墓笔记1之七星鲁王宫(周建龙)[42回]/
        盗墓笔记1-七星鲁王宫01.wma
        盗墓笔记1-七星鲁王宫02.wma

Ordinal extraction is heuristic. Each heuristic is a named OrdinalRule and
rules are tried in tuple order; the first rule that matches decides.
"""

from __future__ import annotations

import re
from collections.abc import Callable, Sequence
from dataclasses import dataclass

AUDIO_EXTENSIONS = frozenset(
    {".mp3", ".wma", ".wav", ".flac", ".aac", ".ogg", ".m4a", ".opus", ".ape", ".alac"}
)

# Formats many playback engines cannot decode; rewritten to AAC (.m4a).
LEGACY_EXTENSIONS = frozenset({".wma", ".ape"})

CJK_NUMERALS: dict[str, int] = {
    "零": 0,
    "〇": 0,
    "一": 1,
    "壹": 1,
    "二": 2,
    "贰": 2,
    "两": 2,
    "三": 3,
    "叁": 3,
    "四": 4,
    "肆": 4,
    "五": 5,
    "伍": 5,
    "六": 6,
    "陆": 6,
    "七": 7,
    "柒": 7,
    "八": 8,
    "捌": 8,
    "九": 9,
    "玖": 9,
    "十": 10,
    "拾": 10,
    "百": 100,
    "佰": 100,
    "千": 1000,
    "仟": 1000,
}

_CJK_CLASS = "".join(CJK_NUMERALS)
_COUNTERS = "季部卷章节集回"

_BAR_SPLIT_RE = re.compile(r"[｜|]")
_BRACKETS_RE = (
    re.compile(r"\([^)]*\)"),
    re.compile(r"\[[^\]]*\]"),
    re.compile(r"（[^）]*）"),
    re.compile(r"【[^】]*】"),
)
_WHITESPACE_RE = re.compile(r"\s+")
_EXTENSION_RE = re.compile(r"\.[^.]+$")
_DIGITS_RE = re.compile(r"\d+")

_BASE36 = "0123456789abcdefghijklmnopqrstuvwxyz"


def get_extension(name: str) -> str:
    """Lower-case extension including the dot, or '' when there is none."""
    dot = name.rfind(".")
    if dot == -1:
        return ""
    return name[dot:].lower()


def strip_extension(name: str) -> str:
    return _EXTENSION_RE.sub("", name)


def is_audio_playable(name: str) -> bool:
    return get_extension(name) in AUDIO_EXTENSIONS


def needs_conversion(name: str) -> bool:
    return get_extension(name) in LEGACY_EXTENSIONS


def cjk_to_int(text: str) -> int:
    """Convert a CJK numeral string to an int.

    Digits set the pending value, multipliers (十/百/千) add
    pending * multiplier (pending defaults to 1) and the trailing pending
    digit is added at the end:

        十二 -> 12, 二十 -> 20, 一百零五 -> 105, 三千二百 -> 3200

    Unknown characters count as zero.
    """
    if len(text) == 1:
        return CJK_NUMERALS.get(text, 0)

    result = 0
    pending = 0
    for ch in text:
        value = CJK_NUMERALS.get(ch, 0)
        if value >= 10:
            result += (pending or 1) * value
            pending = 0
        else:
            pending = value
    return result + pending


@dataclass(frozen=True)
class OrdinalRule:
    """One named ordinal heuristic.

    `pattern` is searched in the name; group 1 is converted with `convert`.
    With `last=True` the last full match of the pattern is used instead.
    """

    name: str
    pattern: re.Pattern[str]
    convert: Callable[[str], int] = int
    last: bool = False

    def extract(self, text: str) -> int | None:
        if self.last:
            matches = self.pattern.findall(text)
            if not matches:
                return None
            return self.convert(matches[-1])

        m = self.pattern.search(text)
        if m is None:
            return None
        return self.convert(m.group(1))


SEASON_RULES: tuple[OrdinalRule, ...] = (
    OrdinalRule("arabic_counter", re.compile(rf"第(\d+)[{_COUNTERS}]")),
    OrdinalRule("cjk_counter", re.compile(rf"第([{_CJK_CLASS}]+)[{_COUNTERS}]"), convert=cjk_to_int),
    OrdinalRule("digit_before_separator", re.compile(r"[^\d](\d+)[之\-_\s]")),
    OrdinalRule("trailing_digits", re.compile(r"(\d+)$")),
    OrdinalRule("leading_digits", re.compile(r"^(\d+)")),
    OrdinalRule("season_or_volume", re.compile(r"(?:season|vol(?:ume)?)\s*(\d+)", re.IGNORECASE)),
    OrdinalRule("any_digits", re.compile(r"(\d+)")),
)

EPISODE_RULES: tuple[OrdinalRule, ...] = (
    OrdinalRule("episode_counter", re.compile(r"第(\d+)[集回话]")),
    OrdinalRule("episode_marker", re.compile(r"[Ee](?:p|pisode)?\s*(\d+)")),
    OrdinalRule("trailing_separated_digits", re.compile(r"[-_\s](\d+)$")),
    OrdinalRule("trailing_digits", re.compile(r"(\d+)$")),
    OrdinalRule("last_digits", _DIGITS_RE, last=True),
)


def apply_rules(rules: Sequence[OrdinalRule], text: str) -> tuple[str, int] | None:
    """Return (rule name, value) of the first matching rule, or None."""
    for rule in rules:
        value = rule.extract(text)
        if value is not None:
            return rule.name, value
    return None


def extract_ordinal(name: str) -> int:
    """Sort key for a season/volume folder name ('第十二季' -> 12)."""
    hit = apply_rules(SEASON_RULES, name)
    return hit[1] if hit is not None else 0


def extract_episode_ordinal(name: str) -> int:
    """Sort key for an episode file name; the extension is ignored."""
    hit = apply_rules(EPISODE_RULES, strip_extension(name))
    return hit[1] if hit is not None else 0


def clean_display_name(name: str) -> str:
    """Human-readable name from a folder or file stem.

    'Name｜Author｜Narrator' keeps 'Name'; bracketed annotations in
    () [] （） 【】 are removed; whitespace is collapsed.
    """
    cleaned = name
    if "｜" in cleaned or "|" in cleaned:
        parts = [p.strip() for p in _BAR_SPLIT_RE.split(cleaned)]
        parts = [p for p in parts if p]
        if len(parts) > 1:
            cleaned = parts[0]

    for pattern in _BRACKETS_RE:
        cleaned = pattern.sub("", cleaned)

    return _WHITESPACE_RE.sub(" ", cleaned).strip()


def _to_base36(value: int) -> str:
    if value == 0:
        return "0"
    digits: list[str] = []
    while value:
        value, rem = divmod(value, 36)
        digits.append(_BASE36[rem])
    return "".join(reversed(digits))


def derive_id(name: str) -> str:
    """Stable identifier for a name.

    32-bit signed polynomial hash (h * 31 + code unit) over the UTF-16 code
    units of `name`, absolute value, base 36. Same name, same id. Collisions
    are possible and not detected.
    """
    data = name.encode("utf-16-le", "surrogatepass")
    h = 0
    for i in range(0, len(data), 2):
        unit = data[i] | (data[i + 1] << 8)
        h = (h * 31 + unit) & 0xFFFFFFFF
    if h >= 0x80000000:
        h -= 0x100000000
    return _to_base36(abs(h))
