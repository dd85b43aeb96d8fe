"""Rule-based defensive/offensive CR estimation.

Follows the DMG "creating a monster" procedure against the baseline table:

- Defensive CR: effective HP picks the closest baseline step, then AC
  shifts it by one step per 2 points of difference from the baseline AC.
- Offensive CR: expected damage per round (two strongest damage blocks,
  scaled by hit probability and area factor, plus ongoing damage) picks the
  closest baseline step, then the attack bonus (or save DC) shifts it.
- eCR: mean of the two steps, quantized.

Pure and deterministic: no state beyond the read-only baseline table.
"""

from dataclasses import dataclass
from typing import Callable, Optional

from ecr.core.constants import (
    AOE_FACTOR,
    CR_STEPS,
    DMG_BASELINES,
    HIT_CHANCE_MAX,
    HIT_CHANCE_MIN,
    DMGBaseline,
)
from ecr.core.cr_scale import quantize, round_half_up, shift_step, step_index, to_label
from ecr.core.features.models import FeatureVector


@dataclass(frozen=True)
class RuleEstimate:
    """Result of the rule-based estimator.

    Attributes:
        defensive_cr: Defensive CR step value
        offensive_cr: Offensive CR step value
        ehp: Effective hit points (hp x resistance multiplier)
        dpr: Hit-adjusted damage per round
        dpr_raw: Damage per round assuming every attack hits
        attack_equivalent: Attack bonus used for the hit probability
        hit_probability: Chance to hit the reference AC, 0.05-0.975
        ecr_continuous: Mean of the defensive and offensive steps
        ecr: Quantized eCR (one of the 34 canonical steps)
    """

    defensive_cr: float
    offensive_cr: float
    ehp: float
    dpr: float
    dpr_raw: float
    attack_equivalent: float
    hit_probability: float
    ecr_continuous: float
    ecr: float

    @property
    def ecr_label(self) -> str:
        return to_label(self.ecr)


def closest_step(value: float, key: Callable[[DMGBaseline], float]) -> int:
    """Index of the baseline row whose key is closest to value (ties -> lower step)."""
    best = 0
    min_diff = abs(key(DMG_BASELINES[0]) - value)
    for index, baseline in enumerate(DMG_BASELINES):
        diff = abs(key(baseline) - value)
        if diff < min_diff:
            min_diff = diff
            best = index
    return best


def hit_probability(attack_bonus: float, target_ac: float) -> float:
    """Chance to hit: (21 - (AC - bonus)) / 20, clamped to [0.05, 0.975]."""
    chance = (21 - (target_ac - attack_bonus)) / 20.0
    return max(HIT_CHANCE_MIN, min(HIT_CHANCE_MAX, chance))


class RuleBasedCREstimator:
    """Deterministic DMG-baseline CR estimator."""

    def defensive_step(self, features: FeatureVector) -> int:
        index = closest_step(features.hp_avg * features.res_mult, lambda b: b.hp)
        shift = round_half_up((features.ac - DMG_BASELINES[index].ac) / 2.0)
        return shift_step(index, shift)

    def reference_baseline(self, features: FeatureVector, defensive_index: int) -> DMGBaseline:
        """Baseline at the declared CR, or at the defensive CR when none is declared."""
        declared: Optional[float] = features.cr_official
        index = step_index(declared) if declared is not None else defensive_index
        return DMG_BASELINES[index]

    def estimate(self, features: FeatureVector) -> RuleEstimate:
        ehp = features.hp_avg * features.res_mult
        dcr_index = self.defensive_step(features)

        reference = self.reference_baseline(features, dcr_index)
        if features.atk_best is not None:
            attack_equivalent = features.atk_best
        elif features.dc_best is not None:
            attack_equivalent = features.dc_best - 8
        else:
            attack_equivalent = reference.attack_bonus
        chance = hit_probability(attack_equivalent, reference.ac)

        aoe = AOE_FACTOR if features.has_aoe else 1.0
        base_damage = features.dpr_naive
        dpr_raw = base_damage * aoe + features.dpr_ongoing
        dpr = base_damage * chance * aoe + features.dpr_ongoing

        ocr_index = closest_step(dpr, lambda b: b.dpr)
        if features.atk_best is not None:
            delta = features.atk_best - DMG_BASELINES[ocr_index].attack_bonus
            ocr_index = shift_step(ocr_index, round_half_up(delta / 2.0))
        elif features.dc_best is not None:
            delta = features.dc_best - DMG_BASELINES[ocr_index].save_dc
            ocr_index = shift_step(ocr_index, round_half_up(delta / 2.0))

        defensive_cr = CR_STEPS[dcr_index]
        offensive_cr = CR_STEPS[ocr_index]
        ecr_continuous = 0.5 * (defensive_cr + offensive_cr)
        return RuleEstimate(
            defensive_cr=defensive_cr,
            offensive_cr=offensive_cr,
            ehp=ehp,
            dpr=dpr,
            dpr_raw=dpr_raw,
            attack_equivalent=attack_equivalent,
            hit_probability=chance,
            ecr_continuous=ecr_continuous,
            ecr=quantize(ecr_continuous),
        )
