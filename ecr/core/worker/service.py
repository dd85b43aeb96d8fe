"""eCR worker process.

Hosts the full prediction pipeline behind the line-delimited JSON protocol
on stdin/stdout. Started by WorkerSupervisor; can also be run by hand:

    python -m ecr.core.worker.service [--config ecr.json] [--rules-only]

stdout carries protocol lines only; all logging goes to stderr.
"""

import argparse
import logging
import sys
import threading
import traceback
from concurrent.futures import ThreadPoolExecutor
from typing import IO, Any, Dict, List, Optional

from ecr.common.config_store import load_config
from ecr.common.typed_config import ECRConfig
from ecr.core.errors import ModelError
from ecr.core.ml import ResidualMLPredictor, onnx_session_factory
from ecr.core.prediction import PredictionPipeline
from ecr.core.worker.protocol import (
    COMMAND_FEATURES,
    COMMAND_PING,
    COMMAND_PREDICT,
    decode_message,
    encode_error,
    encode_ready,
    encode_result,
    request_id_of,
)

logger = logging.getLogger(__name__)


class WorkerService:
    """Reads requests from a stream, answers them on another.

    Requests are handled on a thread pool, so responses may be written in
    a different order than the requests arrived.
    """

    def __init__(self, pipeline: PredictionPipeline, output: IO[str], threads: int = 4):
        self.pipeline = pipeline
        self.output = output
        self.threads = threads
        self._write_lock = threading.Lock()

    def _write(self, line: str) -> None:
        with self._write_lock:
            self.output.write(line)
            self.output.flush()

    def handle(self, command: Any, data: Any) -> Any:
        """Result of one command. Raises ValueError for unknown commands."""
        if command == COMMAND_PREDICT:
            return self.pipeline.predict(data).to_dict()
        if command == COMMAND_FEATURES:
            return self.pipeline.features(data).to_dict()
        if command == COMMAND_PING:
            return "pong"
        raise ValueError(f"Unknown command: {command}")

    def _respond(self, message: Dict[str, Any]) -> None:
        request_id = request_id_of(message)
        try:
            result = self.handle(message.get("command"), message.get("data"))
        except Exception as e:  # noqa: BLE001 - every failure becomes an error response
            logger.error(f"Request {request_id} failed: {e}\n{traceback.format_exc()}")
            self._write(encode_error(request_id, f"{type(e).__name__}: {e}"))
            return
        self._write(encode_result(request_id, result))

    def serve(self, requests: IO[str]) -> None:
        """Announce readiness, then answer requests until EOF."""
        self._write(encode_ready())
        with ThreadPoolExecutor(max_workers=self.threads, thread_name_prefix="ecr-request") as pool:
            for raw_line in requests:
                line = raw_line.strip()
                if not line:
                    continue
                try:
                    message = decode_message(line)
                except ValueError as e:
                    logger.warning(f"Discarding unparseable request line {line[:200]!r}: {e}")
                    continue
                if request_id_of(message) is None:
                    logger.warning(f"Discarding request without requestId: {line[:200]!r}")
                    continue
                pool.submit(self._respond, message)
        logger.info("Input closed, worker exiting")


def build_pipeline(config: ECRConfig, rules_only: bool = False) -> PredictionPipeline:
    model = None
    if config.model.enabled and not rules_only:
        model = ResidualMLPredictor(
            model_path=config.model.model_path,
            metadata_path=config.model.metadata_path,
            session_factory=onnx_session_factory(config.model.threads),
        )
    return PredictionPipeline(model)


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="eCR prediction worker (JSON lines over stdin/stdout)")
    parser.add_argument("--config", default=None, help="JSON config file (default: $ECR_CONFIG)")
    parser.add_argument("--rules-only", action="store_true", help="Skip the residual model")
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")
    args = parser.parse_args(argv)

    logging.basicConfig(
        stream=sys.stderr,
        level=logging.DEBUG if args.debug else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    config = load_config(args.config)
    pipeline = build_pipeline(config, rules_only=args.rules_only)
    if pipeline.model is not None:
        try:
            pipeline.model.load()
        except ModelError as e:
            logger.warning(f"Residual model not loaded, predictions will be rule-based: {e}")

    sys.stdin.reconfigure(encoding="utf-8")
    sys.stdout.reconfigure(encoding="utf-8", newline="\n")
    WorkerService(pipeline, sys.stdout, threads=config.worker.threads).serve(sys.stdin)
    return 0


if __name__ == "__main__":
    sys.exit(main())
