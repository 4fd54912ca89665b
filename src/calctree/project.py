"""Project-level configuration and scaffolding."""

from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml

CONFIG_FILENAME = "calctree.yaml"

DEFAULT_CONFIG = {
    "database": "calctree.db",
    "check_cycles": True,
    "memoize": True,
    "logging_fsync": False,
    "logging_tail_bytes": 2_097_152,  # 2 MB
}

DEFAULT_CONFIG_YAML = """\
# calctree project config
database: calctree.db
check_cycles: true
memoize: true
logging_fsync: false
"""


def load_project_config(project_dir: Path) -> dict[str, Any]:
    """Load project configuration from ``calctree.yaml``, with defaults.

    Args:
        project_dir: Root of the calctree project.

    Returns:
        Merged configuration dict.

    Raises:
        ValueError: If the file does not hold a YAML mapping.
    """
    config = dict(DEFAULT_CONFIG)
    config_path = project_dir / CONFIG_FILENAME
    if config_path.exists():
        user_config = yaml.safe_load(config_path.read_text()) or {}
        if not isinstance(user_config, dict):
            raise ValueError(f"{config_path} must contain a mapping")
        config.update(user_config)
    return config


def database_path(project_dir: Path, config: dict[str, Any] | None = None) -> Path:
    """Resolve the definitions database path (relative to *project_dir*)."""
    if config is None:
        config = load_project_config(project_dir)
    db = Path(str(config.get("database") or DEFAULT_CONFIG["database"]))
    return db if db.is_absolute() else project_dir / db


def scaffold_project(target: Path) -> Path:
    """Create a new project directory with a config and an empty database.

    Args:
        target: Directory to create.  May exist if empty.

    Returns:
        The resolved project path.

    Raises:
        FileExistsError: If *target* exists and is not empty.
    """
    from calctree.store import DefinitionStore

    target = target.resolve()
    if target.exists() and any(target.iterdir()):
        raise FileExistsError(f"Directory {target} already exists and is not empty")
    target.mkdir(parents=True, exist_ok=True)

    (target / CONFIG_FILENAME).write_text(DEFAULT_CONFIG_YAML)
    (target / "logs").mkdir(exist_ok=True)

    with DefinitionStore(database_path(target)) as store:
        store.create_schema()

    return target
