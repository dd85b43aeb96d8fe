"""Data models for stat-block feature extraction.

These are the strict internal types that every alias-laden stat block is
normalized into at the boundary.
"""

from dataclasses import asdict, dataclass, field, fields
from typing import Any, Dict, List, Optional

from ecr.core.constants import TRAIT_KEYS


@dataclass(frozen=True)
class DamageBlock:
    """One "avg (dice) type" damage mention in an action description.

    Attributes:
        avg: Printed average damage
        dice: Dice expression inside the parentheses (e.g. "1d8 + 3")
        damage_type: First word after the parentheses, lowercased
    """

    avg: int
    dice: str
    damage_type: str


@dataclass
class OffenseSummary:
    """Offense indicators mined from a list of actions.

    Attributes:
        best_attack: Highest "+N to hit" found (None if no attack roll)
        best_dc: Highest "DC N" found (None if no save)
        damage_blocks: Every damage block found, in text order
        ongoing: Ongoing damage estimate (30% of blocks in start/end-of-turn text)
        multiattack: Attack count from "makes <n> attacks" (1 when absent)
        area_effect: True if any action targets an area
    """

    best_attack: Optional[int] = None
    best_dc: Optional[int] = None
    damage_blocks: List[DamageBlock] = field(default_factory=list)
    ongoing: float = 0.0
    multiattack: int = 1
    area_effect: bool = False

    def top_damage(self, count: int = 2) -> List[int]:
        """Averages of the `count` largest damage blocks, largest first."""
        return sorted((b.avg for b in self.damage_blocks), reverse=True)[:count]


@dataclass(frozen=True)
class FeatureVector:
    """Canonical numeric features of one stat block.

    Field names match the flat keys used by the residual model metadata.
    The *_rule fields are filled in by the rule-based estimator.
    """

    ac: int = 10
    hp_avg: float = 1.0
    str_score: int = 10
    dex_score: int = 10
    con_score: int = 10
    int_score: int = 10
    wis_score: int = 10
    cha_score: int = 10
    str_mod: int = 0
    dex_mod: int = 0
    con_mod: int = 0
    int_mod: int = 0
    wis_mod: int = 0
    cha_mod: int = 0
    num_saving_throws: int = 0
    max_save_bonus: int = 0
    num_skills: int = 0
    num_actions: int = 0
    num_bonus_actions: int = 0
    num_reactions: int = 0
    num_legendary_actions: int = 0
    num_lair_actions: int = 0
    num_resistances: int = 0
    num_immunities: int = 0
    num_vulnerabilities: int = 0
    num_cond_immunities: int = 0
    res_mult: float = 1.0
    atk_best: Optional[int] = None
    dc_best: Optional[int] = None
    dpr_naive: float = 0.0
    dpr_ongoing: float = 0.0
    multiattack: int = 1
    has_aoe: int = 0
    has_fly: int = 0
    spd: int = 30
    has_spellcasting: int = 0
    total_spell_levels: int = 0
    traits: Dict[str, int] = field(default_factory=lambda: {key: 0 for key in TRAIT_KEYS})
    cr_official: Optional[float] = None
    ehp_rule: float = 0.0
    dpr_rule: float = 0.0
    dpr_raw: float = 0.0
    ecr_rule: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        """Flat snake_case mapping, with trait flags inlined as trait_* keys.

        atk_best and dc_best stay None when the stat block has no attack roll
        or save DC; the estimator treats None and 0 differently.
        """
        data = asdict(self)
        traits = data.pop("traits")
        data.update(traits)
        return data

    def get(self, key: str, default: Any = 0) -> Any:
        """Look up a feature by its flat key (trait_* keys included)."""
        if key in self.traits:
            return self.traits[key]
        return getattr(self, key, default) if key != "traits" else default

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "FeatureVector":
        """Inverse of to_dict(). Unknown keys are ignored, missing ones defaulted."""
        names = {f.name for f in fields(cls)} - {"traits"}
        traits = {key: int(d.get(key, 0) or 0) for key in TRAIT_KEYS}
        return cls(traits=traits, **{k: v for k, v in d.items() if k in names})
