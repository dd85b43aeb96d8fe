#!/usr/bin/env python
"""
Command line eCR estimator for stat-block JSON files.

Each file may hold a single stat block object or a list of them. One JSON
result is printed per stat block, in input order.

Usage:
    python -m ecr.tools.estimate_cr goblin.json bestiary.json
    python -m ecr.tools.estimate_cr bestiary.json --rules-only
    python -m ecr.tools.estimate_cr bestiary.json --features
    python -m ecr.tools.estimate_cr bestiary.json --via-worker --config ecr.json
"""

import argparse
import json
import logging
import os
import sys
from dataclasses import replace
from typing import Any, Callable, Dict, Iterator, List, Optional, Tuple

from ecr.common.config_store import load_config, resolve_config_path
from ecr.common.typed_config import ECRConfig
from ecr.core.errors import ECRError
from ecr.core.prediction import PredictionPipeline
from ecr.core.worker.service import build_pipeline
from ecr.core.worker.supervisor import WorkerSupervisor

logger = logging.getLogger(__name__)


def load_stat_blocks(path: str) -> List[Dict[str, Any]]:
    """Stat blocks in a JSON file. Non-object list entries are skipped.

    Raises:
        OSError / ValueError: File missing, unreadable or not JSON.
    """
    with open(path, encoding="utf-8") as f:
        data = json.load(f)
    if isinstance(data, dict):
        return [data]
    if isinstance(data, list):
        blocks = [item for item in data if isinstance(item, dict)]
        if len(blocks) != len(data):
            logger.warning(f"{path}: skipped {len(data) - len(blocks)} entries that are not stat blocks")
        return blocks
    raise ValueError(f"{path}: expected a JSON object or list, got {type(data).__name__}")


def iter_stat_blocks(paths: List[str]) -> Iterator[Tuple[str, Optional[Dict[str, Any]], Optional[str]]]:
    """(path, stat, error) per stat block; a bad file yields one error entry."""
    for path in paths:
        try:
            blocks = load_stat_blocks(path)
        except (OSError, ValueError) as e:
            yield path, None, str(e)
            continue
        for stat in blocks:
            yield path, stat, None


def local_estimator(config: ECRConfig, rules_only: bool, features: bool) -> Callable[[Dict[str, Any]], Any]:
    pipeline: PredictionPipeline = build_pipeline(config, rules_only=rules_only)
    if features:
        return lambda stat: pipeline.features(stat).to_dict()
    return lambda stat: pipeline.predict(stat).to_dict()


def worker_estimator(supervisor: WorkerSupervisor, features: bool) -> Callable[[Dict[str, Any]], Any]:
    if features:
        return lambda stat: supervisor.features(stat).to_dict()
    return lambda stat: supervisor.predict(stat).to_dict()


def run(paths: List[str], estimate: Callable[[Dict[str, Any]], Any], out=None) -> int:
    """Print one JSON line per stat block. Returns the number of failures."""
    out = out or sys.stdout
    failures = 0
    for path, stat, error in iter_stat_blocks(paths):
        name = stat.get("name") if stat else None
        if error is None:
            try:
                record = {"file": path, "name": name, "result": estimate(stat)}
            except ECRError as e:
                error = e.user_message
                logger.debug(f"{path}: {name}: {e} {e.context}")
        if error is not None:
            failures += 1
            record = {"file": path, "name": name, "error": error}
        out.write(json.dumps(record, ensure_ascii=False) + "\n")
    return failures


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(
        description="Estimate effective Challenge Rating (eCR) for stat-block JSON files",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    # Rule-based estimate only
    python -m ecr.tools.estimate_cr bestiary.json --rules-only

    # Dump the feature vector instead of a prediction
    python -m ecr.tools.estimate_cr goblin.json --features

    # Route requests through the supervised worker process
    python -m ecr.tools.estimate_cr bestiary.json --via-worker
""",
    )
    parser.add_argument("files", nargs="+", metavar="FILE", help="Stat-block JSON file (object or list)")
    parser.add_argument("--rules-only", action="store_true", help="Skip the residual model")
    parser.add_argument("--features", action="store_true", help="Print feature vectors instead of predictions")
    parser.add_argument("--config", default=None, help="JSON config file (default: $ECR_CONFIG)")
    parser.add_argument("--via-worker", action="store_true", help="Run predictions in a supervised worker process")
    parser.add_argument("--debug", action="store_true", help="Enable debug output")
    args = parser.parse_args(argv)

    logging.basicConfig(
        stream=sys.stderr,
        level=logging.DEBUG if args.debug else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )

    missing = [path for path in args.files if not os.path.isfile(path)]
    if missing:
        print(f"Error: file does not exist: {', '.join(missing)}", file=sys.stderr)
        return 2

    try:
        config = load_config(args.config)
    except ECRError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 2

    if not args.via_worker:
        failures = run(args.files, local_estimator(config, args.rules_only, args.features))
        return 0 if failures == 0 else 1

    worker_config = config.worker
    if args.rules_only:
        worker_config = replace(worker_config, command=worker_config.command + ("--rules-only",))
    supervisor = WorkerSupervisor(worker_config, config_path=resolve_config_path(args.config))
    if not supervisor.start():
        print("Error: eCR worker did not start", file=sys.stderr)
        for line in supervisor.stderr_log.tail(10):
            print(f"  {line}", file=sys.stderr)
        supervisor.stop()
        return 1
    try:
        failures = run(args.files, worker_estimator(supervisor, args.features))
    finally:
        supervisor.stop()
    return 0 if failures == 0 else 1


if __name__ == "__main__":
    sys.exit(main())
