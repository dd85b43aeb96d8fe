"""Static reference data for eCR estimation.

This module contains the challenge-rating scale, the DMG baseline table
(one row per CR step), the trait keyword list and the feature defaults.
All tables are immutable and versioned with the engine.
"""

from dataclasses import dataclass
from types import MappingProxyType
from typing import Final, Mapping, Tuple


# --- Challenge Rating Scale ---
CR_STEPS: Final[Tuple[float, ...]] = (
    0, 0.125, 0.25, 0.5,
    1, 2, 3, 4, 5, 6, 7, 8, 9, 10,
    11, 12, 13, 14, 15, 16, 17, 18, 19, 20,
    21, 22, 23, 24, 25, 26, 27, 28, 29, 30,
)

CR_LABELS: Final[Tuple[str, ...]] = ("0", "1/8", "1/4", "1/2") + tuple(str(n) for n in range(1, 31))

CR_TO_NUMERIC: Final[Mapping[str, float]] = MappingProxyType(dict(zip(CR_LABELS, CR_STEPS)))
NUMERIC_TO_CR: Final[Mapping[float, str]] = MappingProxyType(dict(zip(CR_STEPS, CR_LABELS)))

CR_MIN: Final[float] = 0.0
CR_MAX: Final[float] = 30.0


@dataclass(frozen=True)
class DMGBaseline:
    """Typical monster statistics at one CR step.

    Attributes:
        hp: Average hit points
        ac: Armor class
        attack_bonus: Attack bonus
        dpr: Damage per round
        save_dc: Save DC
    """

    hp: int
    ac: int
    attack_bonus: int
    dpr: int
    save_dc: int


# (hp, ac, attack bonus, dpr, save dc), one row per entry of CR_STEPS
_BASELINE_ROWS = (
    (1, 13, 3, 0, 13),
    (7, 13, 3, 2, 13),
    (36, 13, 3, 4, 13),
    (50, 13, 3, 5, 13),
    (71, 13, 3, 6, 13),
    (86, 13, 3, 14, 13),
    (101, 13, 4, 20, 13),
    (116, 14, 5, 26, 14),
    (131, 15, 6, 32, 15),
    (146, 15, 6, 38, 15),
    (161, 15, 6, 44, 15),
    (176, 16, 7, 50, 16),
    (191, 16, 7, 56, 16),
    (206, 17, 7, 62, 16),
    (221, 17, 8, 68, 17),
    (251, 17, 8, 74, 17),
    (281, 18, 8, 80, 18),
    (311, 18, 8, 86, 18),
    (341, 18, 8, 92, 18),
    (371, 18, 9, 98, 18),
    (401, 19, 10, 104, 19),
    (431, 19, 10, 110, 19),
    (461, 19, 10, 116, 19),
    (491, 19, 10, 122, 19),
    (521, 19, 11, 128, 20),
    (551, 19, 11, 134, 20),
    (581, 19, 11, 140, 20),
    (611, 19, 12, 146, 21),
    (641, 19, 12, 152, 21),
    (671, 19, 12, 158, 21),
    (701, 19, 13, 164, 22),
    (731, 19, 13, 170, 22),
    (761, 19, 13, 176, 22),
    (791, 19, 14, 182, 23),
)

DMG_BASELINES: Final[Tuple[DMGBaseline, ...]] = tuple(DMGBaseline(*row) for row in _BASELINE_ROWS)


# --- Trait Keywords ---
TRAIT_FLAGS: Final[Tuple[str, ...]] = (
    "Incorporeal",
    "Sunlight",
    "Magic Resistance",
    "Pack Tactics",
    "Multiattack",
    "Regeneration",
    "Legendary",
    "Lair",
    "Invisibility",
    "Frighten",
    "Paralyze",
    "Restrain",
    "Grapple",
    "Possession",
    "Web",
    "Teleport",
    "Poison",
)


def trait_key(trait: str) -> str:
    """Feature key for a trait keyword, e.g. "Pack Tactics" -> "trait_pack_tactics"."""
    return "trait_" + "_".join(trait.lower().split())


TRAIT_KEYS: Final[Tuple[str, ...]] = tuple(trait_key(t) for t in TRAIT_FLAGS)


# --- Feature Defaults ---
DEFAULT_ABILITY_SCORE: Final[int] = 10
DEFAULT_AC: Final[int] = 10
DEFAULT_HP: Final[float] = 1.0
DEFAULT_SPEED: Final[int] = 30
DEFAULT_MULTIATTACK: Final[int] = 1

ABILITIES: Final[Tuple[str, ...]] = ("str", "dex", "con", "int", "wis", "cha")


# --- Rule Estimator Coefficients ---
RESIST_WEIGHT: Final[float] = 0.25
IMMUNE_WEIGHT: Final[float] = 0.5
VULNERABLE_WEIGHT: Final[float] = 0.25
AOE_FACTOR: Final[float] = 1.5
ONGOING_DAMAGE_SHARE: Final[float] = 0.3
HIT_CHANCE_MIN: Final[float] = 0.05
HIT_CHANCE_MAX: Final[float] = 0.975
DAMAGE_BLOCKS_PER_ROUND: Final[int] = 2


# --- Confidence ---
CONFIDENCE_HIGH: Final[str] = "high"
CONFIDENCE_MEDIUM: Final[str] = "medium"
CONFIDENCE_LOW: Final[str] = "low"
CONFIDENCE_LOW_THRESHOLD: Final[float] = 2.0
CONFIDENCE_MEDIUM_THRESHOLD: Final[float] = 1.0
