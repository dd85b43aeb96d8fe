"""Stat-block feature extraction.

Normalizes an arbitrarily-shaped stat block (5etools, Open5e, compact
in-app records) into a FeatureVector. Every logical field may appear
under several aliases; resolution order is fixed and documented per helper.

Contract:
- extract() never raises; unresolved fields take their documented defaults
- Ability scores -> 10, AC -> 10, HP -> 1, walk speed -> 30
"""

import json
import logging
import math
import re
from dataclasses import replace
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Sequence, Tuple

from ecr.core.constants import (
    ABILITIES,
    DAMAGE_BLOCKS_PER_ROUND,
    DEFAULT_ABILITY_SCORE,
    DEFAULT_AC,
    DEFAULT_HP,
    DEFAULT_SPEED,
    IMMUNE_WEIGHT,
    RESIST_WEIGHT,
    TRAIT_FLAGS,
    VULNERABLE_WEIGHT,
    trait_key,
)
from ecr.core.cr_scale import parse_cr
from ecr.core.features.models import FeatureVector
from ecr.core.features.parser import ActionTextParser, avg_from_dice_expr, flatten_entries, strip_markup

if TYPE_CHECKING:
    from ecr.core.rules import RuleBasedCREstimator

logger = logging.getLogger(__name__)


# Alias lists, first present key wins
ACTION_ALIASES = ("actions", "action")
BONUS_ACTION_ALIASES = ("bonusActions", "bonus")
REACTION_ALIASES = ("reactions", "reaction")
LEGENDARY_ALIASES = ("legendaryActions", "legendary")
LAIR_ALIASES = ("lairActions", "lair")
TRAIT_ALIASES = ("traits", "trait")
RESIST_ALIASES = ("damageResistances", "resist")
IMMUNE_ALIASES = ("damageImmunities", "immune")
VULNERABLE_ALIASES = ("damageVulnerabilities", "vulnerable")
CONDITION_IMMUNE_ALIASES = ("conditionImmunities", "conditionImmune")
SAVE_ALIASES = ("savingThrows", "save")
SKILL_ALIASES = ("skills", "skill")

SPELL_LEVEL_PATTERN = re.compile(r"\d+(?:st|nd|rd|th)[- ]level", re.IGNORECASE)
SPEED_PATTERN = re.compile(r"(?:(\w+)\s+)?(\d+)\s*ft", re.IGNORECASE)
SIGNED_INT_PATTERN = re.compile(r"[+\-]?\d+")
OTHER_SPEED_MODES = frozenset({"swim", "climb", "burrow"})


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool) and not math.isnan(value)


def first_present(stat: Dict[str, Any], aliases: Sequence[str], default: Any = None) -> Any:
    """Value of the first alias with a truthy value."""
    for key in aliases:
        value = stat.get(key)
        if value:
            return value
    return default


def as_list(value: Any) -> List[Any]:
    """Coerce a list-ish field: list as-is, dict -> values, comma-separated text -> parts."""
    if not value:
        return []
    if isinstance(value, list):
        return value
    if isinstance(value, tuple):
        return list(value)
    if isinstance(value, dict):
        return list(value.values())
    if isinstance(value, str):
        return [part.strip() for part in re.split(r"[,;]", value) if part.strip()]
    return [value]


def count_entries(value: Any) -> int:
    if isinstance(value, dict):
        return len(value)
    return len(as_list(value))


def parse_signed_int(value: Any) -> Optional[int]:
    """Integer out of a bonus value like 5, "+5" or "+5 (advantage)"."""
    if _is_number(value):
        return int(value)
    if isinstance(value, str):
        match = SIGNED_INT_PATTERN.search(value)
        if match:
            return int(match.group(0))
    return None


def ability_modifier(score: float) -> int:
    return int(math.floor((score - 10) / 2))


def resolve_hp(stat: Dict[str, Any]) -> float:
    """Average hit points.

    Priority: hpAvg > baseHP > numeric hp > hp object (average, avg, formula)
    > hp dice string. Missing or zero resolves to 1.
    """
    hp: Any = None
    if _is_number(stat.get("hpAvg")):
        hp = stat["hpAvg"]
    elif _is_number(stat.get("baseHP")):
        hp = stat["baseHP"]
    elif _is_number(stat.get("hp")):
        hp = stat["hp"]
    else:
        field = stat.get("hp")
        if isinstance(field, dict):
            hp = field.get("average") or field.get("avg") or avg_from_dice_expr(field.get("formula"))
        elif isinstance(field, str):
            hp = avg_from_dice_expr(field)
            if not hp:
                hp = parse_signed_int(field)
    return float(hp) if _is_number(hp) and hp else DEFAULT_HP


def resolve_ac(stat: Dict[str, Any]) -> int:
    """Armor class from a number, an object, or an array (first entry)."""
    raw = stat.get("ac")
    if isinstance(raw, (list, tuple)):
        raw = raw[0] if raw else None
    if isinstance(raw, dict):
        raw = raw.get("value") or raw.get("ac")
    if isinstance(raw, str):
        raw = parse_signed_int(raw)
    return int(raw) if _is_number(raw) and raw else DEFAULT_AC


def resolve_abilities(stat: Dict[str, Any]) -> Dict[str, int]:
    """Ability scores from abilities.* or flat str/dex/... fields, default 10."""
    nested = stat.get("abilities") if isinstance(stat.get("abilities"), dict) else {}
    scores = {}
    for ability in ABILITIES:
        value = nested.get(ability) or stat.get(ability)
        scores[ability] = int(value) if _is_number(value) and value else DEFAULT_ABILITY_SCORE
    return scores


def resolve_speed(stat: Dict[str, Any]) -> Tuple[int, bool]:
    """(walk speed, can fly) from an object, a number, or "30 ft., fly 60 ft." text."""
    speed = stat.get("speed")
    if _is_number(speed):
        return int(speed), False
    if isinstance(speed, str):
        walk, fly = None, False
        for mode, value in SPEED_PATTERN.findall(speed):
            mode = mode.lower()
            if mode == "fly":
                fly = True
            elif mode not in OTHER_SPEED_MODES and walk is None:
                walk = int(value)
        return (walk or DEFAULT_SPEED), fly
    if isinstance(speed, dict):
        walk = speed.get("walk") or speed.get("ground")
        if isinstance(walk, dict):
            walk = walk.get("number")
        fly = bool(speed.get("fly") or speed.get("canFly"))
        return (int(walk) if _is_number(walk) and walk else DEFAULT_SPEED), fly
    return DEFAULT_SPEED, False


def resolve_saves(stat: Dict[str, Any]) -> Tuple[int, int]:
    """(number of saving throws, best save bonus)."""
    saves = first_present(stat, SAVE_ALIASES, {})
    if isinstance(saves, dict):
        bonuses = [b for b in (parse_signed_int(v) for v in saves.values()) if b is not None]
        return len(saves), max(bonuses) if bonuses else 0
    return count_entries(saves), 0


def resolve_spellcasting(stat: Dict[str, Any], traits: List[Any]) -> Tuple[bool, int]:
    """(has spellcasting, count of "Nth-level" mentions in the spellcasting trait)."""
    has_spellcasting = bool(as_list(stat.get("spellcasting")))
    total_levels = 0
    for trait in traits:
        if not isinstance(trait, dict):
            continue
        if "spellcasting" in str(trait.get("name") or "").lower():
            has_spellcasting = True
            text = strip_markup(flatten_entries(trait.get("entries")) or trait.get("desc") or "")
            levels = SPELL_LEVEL_PATTERN.findall(text)
            if levels:
                total_levels = len(levels)
    return has_spellcasting, total_levels


def resistance_multiplier(resist: int, immune: int, vulnerable: int) -> float:
    """max(1, 1 + 0.25*resist + 0.5*immune - 0.25*vulnerable)."""
    mult = 1.0 + resist * RESIST_WEIGHT + immune * IMMUNE_WEIGHT - vulnerable * VULNERABLE_WEIGHT
    return max(1.0, mult)


def trait_flags(traits: List[Any], actions: List[Any], reactions: List[Any]) -> Dict[str, int]:
    """Keyword flags via case-insensitive substring search."""
    try:
        text = json.dumps(list(traits) + list(actions) + list(reactions), default=str).lower()
    except (TypeError, ValueError):
        text = " ".join(str(x) for x in list(traits) + list(actions) + list(reactions)).lower()
    return {trait_key(name): int(name.lower() in text) for name in TRAIT_FLAGS}


class FeatureExtractor:
    """Builds the FeatureVector for a stat block.

    When an estimator is supplied, the rule-based outputs (ehp_rule,
    dpr_rule, dpr_raw, ecr_rule) are filled in as well.
    """

    def __init__(self, estimator: Optional["RuleBasedCREstimator"] = None):
        self.parser = ActionTextParser()
        self.estimator = estimator

    def extract(self, stat: Any) -> FeatureVector:
        if not isinstance(stat, dict):
            logger.debug(f"Stat block is {type(stat).__name__}, using defaults")
            stat = {}

        actions = as_list(first_present(stat, ACTION_ALIASES))
        traits = as_list(first_present(stat, TRAIT_ALIASES))
        reactions = as_list(first_present(stat, REACTION_ALIASES))

        scores = resolve_abilities(stat)
        num_saves, max_save = resolve_saves(stat)
        walk, fly = resolve_speed(stat)
        has_spellcasting, spell_levels = resolve_spellcasting(stat, traits)

        num_resist = count_entries(first_present(stat, RESIST_ALIASES))
        num_immune = count_entries(first_present(stat, IMMUNE_ALIASES))
        num_vuln = count_entries(first_present(stat, VULNERABLE_ALIASES))

        offense = self.parser.parse(actions)

        features = FeatureVector(
            ac=resolve_ac(stat),
            hp_avg=resolve_hp(stat),
            str_score=scores["str"],
            dex_score=scores["dex"],
            con_score=scores["con"],
            int_score=scores["int"],
            wis_score=scores["wis"],
            cha_score=scores["cha"],
            str_mod=ability_modifier(scores["str"]),
            dex_mod=ability_modifier(scores["dex"]),
            con_mod=ability_modifier(scores["con"]),
            int_mod=ability_modifier(scores["int"]),
            wis_mod=ability_modifier(scores["wis"]),
            cha_mod=ability_modifier(scores["cha"]),
            num_saving_throws=num_saves,
            max_save_bonus=max_save,
            num_skills=count_entries(first_present(stat, SKILL_ALIASES)),
            num_actions=len(actions),
            num_bonus_actions=count_entries(first_present(stat, BONUS_ACTION_ALIASES)),
            num_reactions=len(reactions),
            num_legendary_actions=count_entries(first_present(stat, LEGENDARY_ALIASES)),
            num_lair_actions=count_entries(first_present(stat, LAIR_ALIASES)),
            num_resistances=num_resist,
            num_immunities=num_immune,
            num_vulnerabilities=num_vuln,
            num_cond_immunities=count_entries(first_present(stat, CONDITION_IMMUNE_ALIASES)),
            res_mult=resistance_multiplier(num_resist, num_immune, num_vuln),
            atk_best=offense.best_attack,
            dc_best=offense.best_dc,
            dpr_naive=float(sum(offense.top_damage(DAMAGE_BLOCKS_PER_ROUND))),
            dpr_ongoing=offense.ongoing,
            multiattack=offense.multiattack,
            has_aoe=int(offense.area_effect),
            has_fly=int(fly),
            spd=walk,
            has_spellcasting=int(has_spellcasting),
            total_spell_levels=spell_levels,
            traits=trait_flags(traits, actions, reactions),
            cr_official=parse_cr(stat.get("cr")),
        )

        if self.estimator is not None:
            estimate = self.estimator.estimate(features)
            features = replace(
                features,
                ehp_rule=estimate.ehp,
                dpr_rule=estimate.dpr,
                dpr_raw=estimate.dpr_raw,
                ecr_rule=estimate.ecr,
            )
        return features
