"""Stat-block feature extraction package.

This package provides:
- Data models for extracted features (DamageBlock, OffenseSummary, FeatureVector)
- Parser for free-text action descriptions
- FeatureExtractor, which resolves stat-block aliases into a FeatureVector
"""

from ecr.core.features.models import DamageBlock, FeatureVector, OffenseSummary
from ecr.core.features.parser import (
    ActionTextParser,
    avg_from_dice_expr,
    parse_damage_blocks,
    parse_multiattack,
    strip_markup,
)
from ecr.core.features.extractor import FeatureExtractor, resistance_multiplier

__all__ = [
    # Models
    "DamageBlock",
    "FeatureVector",
    "OffenseSummary",
    # Parser
    "ActionTextParser",
    "avg_from_dice_expr",
    "parse_damage_blocks",
    "parse_multiattack",
    "strip_markup",
    # Extractor
    "FeatureExtractor",
    "resistance_multiplier",
]
