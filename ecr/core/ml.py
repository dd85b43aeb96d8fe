"""Residual ML correction on top of the rule-based estimate.

Loads a pretrained regression artifact (ONNX) plus its sidecar metadata:

    {"feature_cols": [...], "input_name": "...", "output_name": "...", "residual": true}

The load happens at most once per predictor instance; concurrent first
callers block on the same load instead of loading twice. A failed load is
remembered and re-raised as ModelUnavailableError, so callers can fall back
to the rule-based result without ever receiving a made-up number.
"""

import json
import logging
import math
import os
import threading
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

import numpy as np

from ecr.core.cr_scale import bucket_confidence, quantize, to_label
from ecr.core.constants import CR_MAX, CR_MIN
from ecr.core.errors import ModelInferenceError, ModelUnavailableError
from ecr.core.features.models import FeatureVector

logger = logging.getLogger(__name__)

DEFAULT_MODEL_DIR = os.path.join("models", "ecr_production")
DEFAULT_MODEL_PATH = os.path.join(DEFAULT_MODEL_DIR, "ecr_model_v1.onnx")
DEFAULT_METADATA_PATH = os.path.join(DEFAULT_MODEL_DIR, "ecr_model_metadata.json")

REQUIRED_METADATA_KEYS = ("feature_cols", "input_name", "output_name")

SessionFactory = Callable[[str], Any]


@dataclass(frozen=True)
class ModelMetadata:
    feature_cols: List[str]
    input_name: str
    output_name: str
    residual: bool = False

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "ModelMetadata":
        missing = [key for key in REQUIRED_METADATA_KEYS if not d.get(key)]
        if missing:
            raise ValueError(f"metadata missing {', '.join(missing)}")
        cols = d["feature_cols"]
        if not isinstance(cols, list) or not all(isinstance(c, str) for c in cols):
            raise ValueError("feature_cols must be a list of strings")
        return cls(
            feature_cols=list(cols),
            input_name=str(d["input_name"]),
            output_name=str(d["output_name"]),
            residual=bool(d.get("residual", False)),
        )


@dataclass(frozen=True)
class MLPrediction:
    """Residual model output.

    Attributes:
        ecr: Quantized eCR step
        ecr_raw: Absolute CR before quantization, clipped to [0, 30]
        rule_ecr: Rule-based eCR the prediction was compared against
        confidence: Bucketed |ecr - rule_ecr|
    """

    ecr: float
    ecr_raw: float
    rule_ecr: float
    confidence: str

    @property
    def ecr_label(self) -> str:
        return to_label(self.ecr)


def onnx_session_factory(intra_op_threads: int = 1) -> SessionFactory:
    """Session factory backed by onnxruntime on the CPU provider."""

    def create(model_path: str) -> Any:
        import onnxruntime as ort

        options = ort.SessionOptions()
        options.intra_op_num_threads = intra_op_threads
        return ort.InferenceSession(model_path, sess_options=options, providers=["CPUExecutionProvider"])

    return create


class ResidualMLPredictor:
    """Owns the model session and metadata for one process.

    Args:
        model_path: Path to the ONNX artifact
        metadata_path: Path to the sidecar metadata JSON
        session_factory: Callable creating a session with run(output_names, feeds);
            defaults to onnxruntime
        serialize_inference: Run inference under a lock, for sessions that
            are not safe to call concurrently (onnxruntime sessions are)
    """

    def __init__(
        self,
        model_path: str = DEFAULT_MODEL_PATH,
        metadata_path: str = DEFAULT_METADATA_PATH,
        session_factory: Optional[SessionFactory] = None,
        serialize_inference: bool = False,
    ):
        self.model_path = model_path
        self.metadata_path = metadata_path
        self._session_factory = session_factory or onnx_session_factory()
        self._load_lock = threading.Lock()
        self._run_lock = threading.Lock() if serialize_inference else None
        self._session: Any = None
        self._metadata: Optional[ModelMetadata] = None
        self._load_error: Optional[ModelUnavailableError] = None
        self.load_count = 0

    @property
    def is_loaded(self) -> bool:
        return self._session is not None

    def load(self) -> ModelMetadata:
        """Load the artifact once (single flight). Raises ModelUnavailableError."""
        if self._session is not None:
            return self._metadata
        with self._load_lock:
            if self._session is not None:
                return self._metadata
            if self._load_error is not None:
                raise self._load_error
            self.load_count += 1
            try:
                with open(self.metadata_path, encoding="utf-8") as f:
                    metadata = ModelMetadata.from_dict(json.load(f))
                if not os.path.isfile(self.model_path):
                    raise FileNotFoundError(f"model not found: {self.model_path}")
                session = self._session_factory(self.model_path)
            except Exception as e:  # noqa: BLE001 - any load failure is reported as unavailable
                self._load_error = ModelUnavailableError(
                    f"Residual model unavailable: {type(e).__name__}: {e}",
                    user_message="eCR model could not be loaded",
                    context={"model_path": self.model_path, "metadata_path": self.metadata_path},
                )
                logger.warning(str(self._load_error))
                raise self._load_error from e
            self._metadata = metadata
            self._session = session
            logger.info(f"Loaded eCR model {self.model_path} ({len(metadata.feature_cols)} features)")
            return metadata

    def build_input(self, features: FeatureVector, metadata: ModelMetadata) -> "np.ndarray":
        """Row vector in metadata column order; missing or non-numeric -> 0."""
        row = []
        for col in metadata.feature_cols:
            value = features.get(col, 0)
            try:
                value = float(value) if value is not None else 0.0
            except (TypeError, ValueError):
                value = 0.0
            row.append(0.0 if math.isnan(value) else value)
        return np.asarray([row], dtype=np.float32)

    def _run(self, metadata: ModelMetadata, inputs: "np.ndarray") -> float:
        try:
            if self._run_lock is not None:
                with self._run_lock:
                    outputs = self._session.run([metadata.output_name], {metadata.input_name: inputs})
            else:
                outputs = self._session.run([metadata.output_name], {metadata.input_name: inputs})
            values = np.asarray(outputs[0], dtype=np.float64).ravel()
        except Exception as e:  # noqa: BLE001 - runtime errors vary by backend
            raise ModelInferenceError(f"Residual model inference failed: {type(e).__name__}: {e}") from e
        if values.size == 0 or not np.isfinite(values[0]):
            raise ModelInferenceError(f"Residual model returned unusable output {values[:4].tolist()}")
        return float(values[0])

    def predict(self, features: FeatureVector, rule_ecr: float) -> MLPrediction:
        """Refine the rule-based estimate. Raises ModelError subclasses on failure."""
        metadata = self.load()
        raw = self._run(metadata, self.build_input(features, metadata))
        if metadata.residual:
            raw += rule_ecr
        raw = max(CR_MIN, min(CR_MAX, raw))
        ecr = quantize(raw)
        return MLPrediction(ecr=ecr, ecr_raw=raw, rule_ecr=rule_ecr, confidence=bucket_confidence(ecr - rule_ecr))
