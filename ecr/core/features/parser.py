"""Parser for free-text action descriptions.

Mines attack bonus, save DC, damage blocks, multiattack count and
area/ongoing-damage indicators out of stat-block action text.

Contract:
- Never raises; a pattern that does not match means "feature absent"
- Markup tokens ({@hit 4}, {@damage 1d6}, ...) are reduced to display text first
"""

import logging
import re
from typing import Any, Iterable, List, Optional

from ecr.core.constants import DEFAULT_MULTIATTACK, ONGOING_DAMAGE_SHARE
from ecr.core.features.models import DamageBlock, OffenseSummary

logger = logging.getLogger(__name__)


# Format: {@tag body} or {@tag body|extra|...}
MARKUP_PATTERN = re.compile(r"\{@(\w+)\s*([^}]*)\}")
TO_HIT_PATTERN = re.compile(r"(?:^|\b|\s)([+\-]?\d{1,2})\s*to\s*hit", re.IGNORECASE)
SAVE_DC_PATTERN = re.compile(r"DC\s*(\d{1,2})", re.IGNORECASE)
# Format: 7 (1d8 + 3) piercing
DAMAGE_BLOCK_PATTERN = re.compile(r"(\d+)\s*\(\s*([0-9d+\-\s]+?)\s*\)\s*([a-z]+)", re.IGNORECASE)
ONGOING_PATTERN = re.compile(r"(start|end).*(turn|round)", re.IGNORECASE | re.DOTALL)
MULTIATTACK_PATTERN = re.compile(r"makes?\s+(\w+)\s+attacks?", re.IGNORECASE)
AREA_PATTERN = re.compile(r"each creature|\b\d{1,2}-foot[- ]radius\b", re.IGNORECASE)
DICE_PATTERN = re.compile(r"(\d+)d(\d+)\s*([+\-]\s*\d+)?")

NUMBER_WORDS = {"one": 1, "two": 2, "three": 3, "four": 4, "five": 5, "six": 6}

# Tags rendered as nothing at all
_SILENT_TAGS = frozenset({"h", "atk", "atkr", "recharge", "hom"})


def _replace_markup(match: "re.Match[str]") -> str:
    tag = match.group(1).lower()
    body = match.group(2).split("|", 1)[0].strip()
    if tag in _SILENT_TAGS:
        return ""
    if tag == "hit":
        return body if body.startswith(("+", "-")) else f"+{body}"
    if tag == "dc":
        return f"DC {body}"
    return body


def strip_markup(text: Any) -> str:
    """Reduce {@tag text|...} markup tokens to their display text."""
    if not text:
        return ""
    return MARKUP_PATTERN.sub(_replace_markup, str(text))


def flatten_entries(entries: Any) -> str:
    """Join nested entry lists/objects into one space-separated string."""
    if entries is None:
        return ""
    if isinstance(entries, str):
        return entries
    if isinstance(entries, dict):
        parts = [flatten_entries(entries.get(key)) for key in ("name", "entry", "entries", "items")]
        return " ".join(p for p in parts if p)
    if isinstance(entries, (list, tuple)):
        return " ".join(p for p in (flatten_entries(e) for e in entries) if p)
    return str(entries)


def action_text(action: Any) -> str:
    """Plain description text of one action (desc, d, or flattened entries)."""
    if isinstance(action, str):
        return strip_markup(action)
    if not isinstance(action, dict):
        return ""
    desc = action.get("desc") or action.get("d") or ""
    if not desc:
        desc = flatten_entries(action.get("entries"))
    return strip_markup(desc)


def avg_from_dice_expr(expr: Any) -> float:
    """Average of a dice expression: NdM+K -> N*(M+1)/2 + K. Unparseable -> 0."""
    if not expr or not isinstance(expr, str):
        return 0
    match = DICE_PATTERN.search(expr.strip().lower())
    if not match:
        return 0
    num_dice = int(match.group(1))
    dice_size = int(match.group(2))
    modifier = int(match.group(3).replace(" ", "")) if match.group(3) else 0
    return num_dice * (dice_size + 1) / 2 + modifier


def parse_multiattack(text: str) -> int:
    """Attack count from "makes <word|digit> attacks". Defaults to 1."""
    match = MULTIATTACK_PATTERN.search(text or "")
    if not match:
        return DEFAULT_MULTIATTACK
    word = match.group(1).lower()
    if word in NUMBER_WORDS:
        return NUMBER_WORDS[word]
    try:
        return int(word) or DEFAULT_MULTIATTACK
    except ValueError:
        return DEFAULT_MULTIATTACK


def parse_damage_blocks(text: str) -> List[DamageBlock]:
    """All "avg (dice) type" blocks in text order."""
    return [
        DamageBlock(avg=int(m.group(1)), dice=" ".join(m.group(2).split()), damage_type=m.group(3).lower())
        for m in DAMAGE_BLOCK_PATTERN.finditer(text or "")
    ]


def _max_int(pattern: "re.Pattern[str]", text: str) -> Optional[int]:
    values = [int(m.group(1)) for m in pattern.finditer(text)]
    return max(values) if values else None


class ActionTextParser:
    """Extracts offense indicators from a list of action entries."""

    def parse(self, actions: Iterable[Any]) -> OffenseSummary:
        summary = OffenseSummary()
        for action in actions or ():
            text = action_text(action)
            if not text:
                continue

            atk = _max_int(TO_HIT_PATTERN, text)
            if atk is not None and (summary.best_attack is None or atk > summary.best_attack):
                summary.best_attack = atk

            dc = _max_int(SAVE_DC_PATTERN, text)
            if dc is not None and (summary.best_dc is None or dc > summary.best_dc):
                summary.best_dc = dc

            blocks = parse_damage_blocks(text)
            summary.damage_blocks.extend(blocks)
            if blocks and ONGOING_PATTERN.search(text):
                summary.ongoing += sum(b.avg for b in blocks) * ONGOING_DAMAGE_SHARE

            summary.multiattack = max(summary.multiattack, parse_multiattack(text))
            if AREA_PATTERN.search(text):
                summary.area_effect = True

        logger.debug(
            f"Parsed offense: atk={summary.best_attack} dc={summary.best_dc} "
            f"blocks={[b.avg for b in summary.damage_blocks]} ongoing={summary.ongoing:.1f}"
        )
        return summary
