"""
Pytest configuration and shared fixtures for eCR tests.

This module provides:
- Stat-block fixtures in the shapes the extractor accepts
- Worker configurations for the scripted fake worker and the real worker
"""

import sys
from pathlib import Path

import pytest

from ecr.common.typed_config import WorkerConfig
from tests.fakes import FAKE_WORKER_SOURCE


# ---------------------------------------------------------------------------
# Paths
# ---------------------------------------------------------------------------

TESTS_DIR = Path(__file__).parent
REPO_ROOT = TESTS_DIR.parent


# ---------------------------------------------------------------------------
# Stat blocks
# ---------------------------------------------------------------------------


@pytest.fixture
def low_power_stat():
    """Compact in-app record: hp 7, AC 13, one weak attack, no declared CR."""
    return {
        "name": "Kobold Scrapper",
        "hp": 7,
        "ac": 13,
        "actions": [
            {"name": "Dagger", "desc": "Melee Weapon Attack: +3 to hit, reach 5 ft., one target. Hit: 2 (1d4) piercing damage."}
        ],
    }


@pytest.fixture
def fivetools_stat():
    """5etools-shaped record with markup, nested entries and an object CR."""
    return {
        "name": "Frost Wolf",
        "hp": {"average": 52, "formula": "8d10 + 8"},
        "ac": [{"ac": 14, "from": ["natural armor"]}],
        "str": 17,
        "dex": 12,
        "con": 13,
        "int": 7,
        "wis": 12,
        "cha": 8,
        "speed": {"walk": 50},
        "save": {"con": "+3", "wis": "+3"},
        "skill": {"perception": "+5", "stealth": "+4"},
        "immune": ["cold"],
        "vulnerable": ["fire"],
        "trait": [
            {"name": "Pack Tactics", "entries": ["The wolf has advantage on an attack roll against a creature..."]},
        ],
        "action": [
            {"name": "Multiattack", "entries": ["The wolf makes two attacks: one with its bite and one with its claws."]},
            {
                "name": "Bite",
                "entries": [
                    "{@atk mw} {@hit 5} to hit, reach 5 ft., one target. {@h}10 ({@damage 2d6 + 3}) piercing damage"
                    " plus 4 ({@damage 1d8}) cold damage."
                ],
            },
            {
                "name": "Frost Breath {@recharge 5}",
                "entries": [
                    "The wolf exhales freezing wind in a 15-foot cone. Each creature in that area must make a "
                    "{@dc 12} Dexterity saving throw, taking 18 ({@damage 4d8}) cold damage on a failed save."
                ],
            },
        ],
        "cr": {"cr": "3", "lair": "4"},
    }


@pytest.fixture
def open5e_stat():
    """Open5e-shaped record with flat abilities, text speed and string lists."""
    return {
        "name": "Swamp Hag",
        "hit_points": 82,
        "hpAvg": 82,
        "ac": "15 (natural armor)",
        "strength": 18,
        "abilities": {"str": 18, "dex": 13, "con": 16, "int": 13, "wis": 14, "cha": 14},
        "speed": "30 ft., swim 40 ft.",
        "damageResistances": "cold; fire",
        "conditionImmunities": "charmed",
        "traits": [
            {
                "name": "Innate Spellcasting",
                "desc": "The hag can cast: 1st-level (4 slots): sleep; 2nd-level (3 slots): web; 3rd-level (2 slots): fear",
            }
        ],
        "actions": [
            {"name": "Claws", "desc": "Melee Weapon Attack: +6 to hit, reach 5 ft. Hit: 13 (2d8 + 4) slashing damage."},
        ],
        "legendaryActions": [{"name": "Move"}, {"name": "Claw"}],
        "cr": "5",
    }


# ---------------------------------------------------------------------------
# Worker configurations
# ---------------------------------------------------------------------------


def fake_worker_config(*args: str, **overrides) -> WorkerConfig:
    """WorkerConfig spawning the scripted fake worker with extra argv."""
    settings = {
        "command": (sys.executable, "-c", FAKE_WORKER_SOURCE) + tuple(args),
        "startup_timeout": 10.0,
        "restart_delay": 0.05,
        "restart_backoff": 2.0,
        "max_restart_delay": 0.5,
    }
    settings.update(overrides)
    return WorkerConfig(**settings)


@pytest.fixture
def fake_config():
    return fake_worker_config()


@pytest.fixture
def real_worker_config():
    """The real worker module in rules-only mode."""
    return WorkerConfig(
        command=(sys.executable, "-m", "ecr.core.worker.service", "--rules-only"),
        startup_timeout=30.0,
        restart_delay=0.05,
    )
