"""Prediction pipeline: stat block -> PredictionResult.

Two entry points return two different confidence definitions:

- predict_rule_based(): confidence compares the eCR with the stat block's
  declared CR (a missing CR counts as 0).
- PredictionPipeline.predict() with a working model: confidence compares the
  model's eCR with the rule-based eCR. When the model is unavailable or
  fails, it falls back to predict_rule_based() and says so in `method`.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from ecr.core.constants import CONFIDENCE_LOW
from ecr.core.cr_scale import bucket_confidence, to_label
from ecr.core.errors import ModelError
from ecr.core.features.extractor import FeatureExtractor
from ecr.core.features.models import FeatureVector
from ecr.core.ml import ResidualMLPredictor
from ecr.core.rules import RuleBasedCREstimator, RuleEstimate

logger = logging.getLogger(__name__)

METHOD_ML = "ml"
METHOD_RULES = "rules"


@dataclass(frozen=True)
class PredictionResult:
    """eCR prediction for one stat block.

    Attributes:
        ecr: eCR label (e.g. "1/2", "7")
        ecr_numeric: eCR step value
        confidence: "high", "medium" or "low"
        official_cr: Declared CR label ("0" on the rule path and None on the ML
            path when the stat block has none)
        features: Compact feature summary (hp, ac, ehp, dpr, ...)
        ecr_raw: eCR before quantization
        rule_based_ecr: Label of the rule-based eCR
        method: "ml" or "rules"
    """

    ecr: str
    ecr_numeric: float
    confidence: str
    official_cr: Optional[str]
    features: Dict[str, Any] = field(default_factory=dict)
    ecr_raw: float = 0.0
    rule_based_ecr: str = "0"
    method: str = METHOD_RULES

    def to_dict(self) -> Dict[str, Any]:
        """Wire format (camelCase keys)."""
        return {
            "ecr": self.ecr,
            "ecrNumeric": self.ecr_numeric,
            "ecrRaw": self.ecr_raw,
            "confidence": self.confidence,
            "officialCR": self.official_cr,
            "ruleBasedECR": self.rule_based_ecr,
            "method": self.method,
            "features": dict(self.features),
        }

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "PredictionResult":
        return cls(
            ecr=str(d.get("ecr", "0")),
            ecr_numeric=float(d.get("ecrNumeric", 0)),
            confidence=str(d.get("confidence", CONFIDENCE_LOW)),
            official_cr=d.get("officialCR"),
            features=dict(d.get("features") or {}),
            ecr_raw=float(d.get("ecrRaw", d.get("ecrNumeric", 0))),
            rule_based_ecr=str(d.get("ruleBasedECR", d.get("ecr", "0"))),
            method=str(d.get("method", METHOD_RULES)),
        )


def official_label(features: FeatureVector) -> Optional[str]:
    if features.cr_official is None:
        return None
    return to_label(features.cr_official)


def feature_summary(features: FeatureVector) -> Dict[str, Any]:
    return {
        "hp": features.hp_avg,
        "ac": features.ac,
        "ehp": features.ehp_rule,
        "dpr": features.dpr_rule,
        "dpr_raw": features.dpr_raw,
        "attackBonus": features.atk_best or 0,
        "numLegendaryActions": features.num_legendary_actions,
    }


def rule_only_confidence(ecr: float, official_cr: Optional[float]) -> str:
    """Bucket against the declared CR; a missing or unparseable CR counts as 0."""
    return bucket_confidence(ecr - (official_cr or 0))


class PredictionPipeline:
    """Feature extraction, rule-based estimate and optional residual model.

    Args:
        model: Residual predictor; None runs rules only
    """

    def __init__(self, model: Optional[ResidualMLPredictor] = None):
        self.estimator = RuleBasedCREstimator()
        self.extractor = FeatureExtractor(self.estimator)
        self.model = model

    def features(self, stat: Any) -> FeatureVector:
        return self.extractor.extract(stat)

    def estimate(self, features: FeatureVector) -> RuleEstimate:
        return self.estimator.estimate(features)

    def predict_rule_based(self, stat: Any) -> PredictionResult:
        features = self.features(stat)
        return self._rule_result(features)

    def _rule_result(self, features: FeatureVector) -> PredictionResult:
        estimate = self.estimate(features)
        return PredictionResult(
            ecr=to_label(estimate.ecr),
            ecr_numeric=estimate.ecr,
            confidence=rule_only_confidence(estimate.ecr, features.cr_official),
            official_cr=to_label(features.cr_official or 0),
            features=feature_summary(features),
            ecr_raw=estimate.ecr_continuous,
            rule_based_ecr=to_label(estimate.ecr),
            method=METHOD_RULES,
        )

    def predict(self, stat: Any) -> PredictionResult:
        features = self.features(stat)
        if self.model is None:
            return self._rule_result(features)
        try:
            prediction = self.model.predict(features, features.ecr_rule)
        except ModelError as e:
            logger.warning(f"Falling back to rule-based eCR for {_name_of(stat)}: {e}")
            return self._rule_result(features)
        return PredictionResult(
            ecr=prediction.ecr_label,
            ecr_numeric=prediction.ecr,
            confidence=prediction.confidence,
            official_cr=official_label(features),
            features=feature_summary(features),
            ecr_raw=prediction.ecr_raw,
            rule_based_ecr=to_label(prediction.rule_ecr),
            method=METHOD_ML,
        )


def _name_of(stat: Any) -> str:
    if isinstance(stat, dict):
        return str(stat.get("name") or "unnamed stat block")
    return "unnamed stat block"
