"""JSON config file loading utilities."""

import json
from pathlib import Path
from typing import Any

from chainforge.constants import CONFIG_DIR, SKELETON_CONFIG_DIR


def load_json(path: Path) -> Any:
    """Load and return parsed JSON from a file."""
    with open(path) as f:
        return json.load(f)


def load_config(name: str) -> Any:
    """Load a config file from assets/config/."""
    return load_json(CONFIG_DIR / name)


def load_skeleton_config(name: str) -> Any:
    """Load a skeleton description from assets/config/skeleton/."""
    if not name.endswith(".json"):
        name = f"{name}.json"
    return load_json(SKELETON_CONFIG_DIR / name)
