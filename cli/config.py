"""Configuration management for MediaFleet CLI."""

import json
import os
import shutil
import tempfile
from pathlib import Path
from typing import List, Optional

from common.constants import DEFAULT_DISCOVERY_RELAYS
from common.logging_config import get_logger

logger = get_logger(__name__)


class Config:
    """Manages CLI configuration stored in JSON file."""

    DEFAULT_CONFIG = {
        "owner_pubkey": os.environ.get("MEDIAFLEET_OWNER") or None,
        "signer_command": os.environ.get("MEDIAFLEET_SIGNER_COMMAND") or None,
        "relays": list(DEFAULT_DISCOVERY_RELAYS),
        "timeout": 10,
        "max_retries": 3,
        "retry_backoff_base": 0.5,
        "cache_ttl": 300,
    }

    def __init__(self, config_path: Path):
        """
        Initialize configuration manager.

        Args:
            config_path: Path to config JSON file (typically ~/.mediafleet/config.json)
        """
        self.config_path = config_path
        self.data = self._load()

    def _defaults(self) -> dict:
        config = dict(self.DEFAULT_CONFIG)
        config["relays"] = list(config["relays"])
        return config

    def _load(self) -> dict:
        """
        Load configuration from file, creating defaults if necessary.

        A corrupted file is copied to config.json.bak and defaults are used.
        """
        try:
            self.config_path.parent.mkdir(parents=True, exist_ok=True)
        except PermissionError:
            self.config_path = Path(tempfile.gettempdir()) / ".mediafleet" / "config.json"
            self.config_path.parent.mkdir(parents=True, exist_ok=True)

        if self.config_path.exists():
            try:
                with open(self.config_path, "r") as f:
                    data = json.load(f)
                if not isinstance(data, dict):
                    raise ValueError("config root must be an object")
                config = self._defaults()
                config.update(data)
                return config
            except (json.JSONDecodeError, ValueError, IOError) as e:
                logger.warning(f"Config file {self.config_path} is unreadable ({e}), using defaults")
                backup_path = self.config_path.with_suffix(".json.bak")
                try:
                    shutil.copy(self.config_path, backup_path)
                except OSError as copy_error:
                    logger.warning(f"Could not back up config file: {copy_error}")
                return self._defaults()

        config = self._defaults()
        try:
            with open(self.config_path, "w") as f:
                json.dump(config, f, indent=2)
        except IOError as e:
            logger.warning(f"Could not write default config: {e}")
        return config

    def save(self) -> None:
        """Save current configuration to file."""
        try:
            with open(self.config_path, "w") as f:
                json.dump(self.data, f, indent=2)
        except IOError as e:
            logger.error(f"Could not save config to {self.config_path}: {e}")

    def get_owner(self) -> Optional[str]:
        return self.data.get("owner_pubkey")

    def set_owner(self, pubkey: str) -> None:
        """
        Set owner public key and save to file.

        Args:
            pubkey: 64-character lowercase hex public key
        """
        self.data["owner_pubkey"] = pubkey
        self.save()

    def get_signer_command(self) -> Optional[str]:
        """
        Get the external signing command.

        Returns:
            Shell-style command line, or None if not configured
        """
        return self.data.get("signer_command")

    def get_relays(self) -> List[str]:
        relays = self.data.get("relays") or list(DEFAULT_DISCOVERY_RELAYS)
        return [r for r in relays if isinstance(r, str) and r]

    def get_timeout(self) -> float:
        """
        Get request timeout in seconds.

        Returns:
            Timeout value in seconds
        """
        return float(self.data.get("timeout", 10))

    def get_cache_ttl(self) -> float:
        return float(self.data.get("cache_ttl", 300))

    def get_retry_config(self) -> dict:
        """
        Get retry configuration.

        Returns:
            Dictionary with 'max_retries' and 'retry_backoff_base'
        """
        return {
            "max_retries": int(self.data.get("max_retries", 3)),
            "retry_backoff_base": float(self.data.get("retry_backoff_base", 0.5)),
        }
