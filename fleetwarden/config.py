"""
Configuration Management
========================

Handles loading configuration from environment variables and config files.
"""

import os
import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

from dotenv import load_dotenv

from fleetwarden.autonomy import AutonomyLevel
from fleetwarden.thresholds import ThresholdConfig, merge_thresholds

logger = logging.getLogger(__name__)

# Default configuration values
DEFAULT_PROJECT_ID = "default"
DEFAULT_OBSERVER_ID = "observer"
DEFAULT_AUTONOMY_LEVEL = AutonomyLevel.FULL_AUTO.value
CONFIG_FILENAME = "fleetwarden_config.json"

ENV_VARS = {
    "project_id": "FLEETWARDEN_PROJECT_ID",
    "observer_id": "FLEETWARDEN_OBSERVER_ID",
    "autonomy_level": "FLEETWARDEN_AUTONOMY_LEVEL",
    "db_dir": "FLEETWARDEN_DB_DIR",
}


@dataclass
class FleetwardenConfig:
    """Fleetwarden Configuration."""
    project_dir: Path
    project_id: str = DEFAULT_PROJECT_ID
    observer_id: str = DEFAULT_OBSERVER_ID
    autonomy_level: str = DEFAULT_AUTONOMY_LEVEL
    thresholds: dict[str, Any] = field(default_factory=dict)
    db_dir: Optional[Path] = None

    @property
    def effective_thresholds(self) -> ThresholdConfig:
        """Threshold overrides merged with the defaults."""
        return merge_thresholds(self.thresholds)

    @classmethod
    def load(cls, project_dir: Optional[Path] = None) -> "FleetwardenConfig":
        """
        Load configuration from multiple sources in precedence order:
        1. Environment variables (a .env file is loaded first)
        2. Project config file (fleetwarden_config.json)
        3. Default values
        """
        project_dir = Path(project_dir) if project_dir else Path.cwd()
        load_dotenv()

        # Start with defaults
        config: dict[str, Any] = {
            "project_id": DEFAULT_PROJECT_ID,
            "observer_id": DEFAULT_OBSERVER_ID,
            "autonomy_level": DEFAULT_AUTONOMY_LEVEL,
            "thresholds": {},
            "db_dir": None,
        }

        # Load from config file if exists
        config_path = project_dir / CONFIG_FILENAME
        if config_path.exists():
            try:
                with open(config_path, "r") as f:
                    file_config = json.load(f)
            except (OSError, json.JSONDecodeError) as e:
                logger.warning("Failed to load config file %s: %s", config_path, e)
            else:
                if isinstance(file_config, dict):
                    config.update({k: v for k, v in file_config.items() if k in config})
                else:
                    logger.warning("Ignoring config file %s: expected a JSON object", config_path)

        # Override with environment variables
        for key, env_name in ENV_VARS.items():
            value = os.environ.get(env_name)
            if value:
                config[key] = value

        # Fail early on an unknown level
        autonomy_level = AutonomyLevel(config["autonomy_level"]).value

        return cls(
            project_dir=project_dir,
            project_id=str(config["project_id"]),
            observer_id=str(config["observer_id"]),
            autonomy_level=autonomy_level,
            thresholds=dict(config["thresholds"] or {}),
            db_dir=Path(config["db_dir"]) if config["db_dir"] else None,
        )
