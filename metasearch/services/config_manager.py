import os
from pathlib import Path
from string import Template
from typing import Optional

import structlog
import yaml
from dotenv import load_dotenv
from pydantic import ValidationError

from metasearch.models.config import MetasearchConfig
from metasearch.utils.exceptions import ConfigValidationError

logger = structlog.get_logger()

DEFAULT_CONFIG_PATH = "config/metasearch_config.yaml"


class ConfigManager:
    """Loads and validates the engine configuration file"""

    def __init__(self, config_path: str = DEFAULT_CONFIG_PATH, load_env: bool = True):
        self.config_path = Path(config_path)
        self.env_loaded = not load_env
        self._config: Optional[MetasearchConfig] = None

    def load_config(self) -> MetasearchConfig:
        """Load and validate configuration

        Raises:
            FileNotFoundError: If the config file does not exist
            ConfigValidationError: If it cannot be read, parsed or validated
        """
        if self._config:
            return self._config

        # 1. Load environment
        if not self.env_loaded:
            load_dotenv()
            self.env_loaded = True

        # 2. Check file existence
        if not self.config_path.exists():
            raise FileNotFoundError(f"Configuration file not found: {self.config_path}")

        # 3. Read YAML
        try:
            raw_content = self.config_path.read_text()
        except OSError as e:
            raise ConfigValidationError(f"Failed to read config file: {e}") from e

        # 4. Substitute ${VAR} references and parse
        try:
            substituted = Template(raw_content).safe_substitute(os.environ)
            config_data = yaml.safe_load(substituted) or {}
        except yaml.YAMLError as e:
            raise ConfigValidationError(
                f"Failed to parse YAML or substitute variables: {e}"
            ) from e

        if not isinstance(config_data, dict):
            raise ConfigValidationError("Configuration root must be a mapping")

        # 5. Validate with Pydantic
        try:
            self._config = MetasearchConfig(**config_data)
        except ValidationError as e:
            raise ConfigValidationError(f"Invalid configuration: {e}") from e

        logger.info(
            "config_loaded",
            path=str(self.config_path),
            providers=[p.provider_id for p in self._config.providers],
        )
        return self._config
