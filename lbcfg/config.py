"""Configuration management for lbcfg.

Loads YAML settings (settings.yaml) and environment variables (.env)
into a typed Config object. Property getters provide safe access with
sensible defaults for the transport, the balancer tree, backend
credentials and logging.

Key classes:
    Config: Central configuration manager.

Key functions:
    get_config: Singleton accessor for the global Config instance.
"""

import os
from pathlib import Path
from typing import List, Optional

import structlog
import yaml
from dotenv import load_dotenv
from pydantic import ValidationError

from .backend.cloud import DEFAULT_IDENTITY_URL
from .models import CredentialRecord
from .resolver import ConfigTree, build_tree

logger = structlog.get_logger("lbcfg.bot")

ADAPTERS = ("signal", "shell")


class Config:
    """Central configuration manager for lbcfg.

    Loads settings.yaml and .env from the config directory. Read-only
    after __init__; the balancer tree is built once and shared.

    Args:
        config_dir: Path to the config directory. Defaults to
            ``$LBCFG_CONFIG_DIR`` or ``<repo_root>/config/``.
    """

    def __init__(self, config_dir: Optional[Path] = None):
        if config_dir is None:
            env_dir = os.environ.get("LBCFG_CONFIG_DIR")
            config_dir = Path(env_dir) if env_dir else Path(__file__).parent.parent / "config"
        self.config_dir = Path(config_dir)

        # Load environment variables
        env_file = self.config_dir / ".env"
        if env_file.exists():
            load_dotenv(env_file)

        self.settings = self._load_yaml("settings.yaml")
        self._tree: Optional[ConfigTree] = None

    def _load_yaml(self, filename: str) -> dict:
        """Load a YAML configuration file."""
        filepath = self.config_dir / filename
        if filepath.exists():
            with open(filepath, "r") as f:
                data = yaml.safe_load(f) or {}
            if not isinstance(data, dict):
                logger.error("settings_invalid_type", file=filename, type=type(data).__name__)
                return {}
            return data
        logger.info("settings_not_found", path=str(filepath))
        return {}

    @property
    def _lbcfg(self) -> dict:
        section = self.settings.get("lbcfg", {})
        return section if isinstance(section, dict) else {}

    # --- Transport ---

    @property
    def adapter(self) -> str:
        """Transport to run: "signal" (default) or "shell"."""
        adapter = str(self.settings.get("adapter", "signal")).lower()
        if adapter not in ADAPTERS:
            logger.error("adapter_unknown", adapter=adapter, valid=list(ADAPTERS))
            return "signal"
        return adapter

    @property
    def command_prefix(self) -> str:
        """Word every command starts with (default "lbcfg")."""
        return str(self._lbcfg.get("command_prefix", "lbcfg"))

    @property
    def robot_name(self) -> str:
        """Name that addresses the bot in group chats (default "lita")."""
        return str(self.settings.get("robot_name", "lita"))

    @property
    def allowed_numbers(self) -> List[str]:
        """Get list of allowed phone numbers / UUIDs."""
        numbers = self.settings.get("allowed_numbers", [])
        if not isinstance(numbers, list):
            logger.error("allowed_numbers_invalid_type", type=type(numbers).__name__)
            return []
        return numbers

    @property
    def signal_api_url(self) -> str:
        """Get Signal API URL. Env var SIGNAL_API_URL takes precedence."""
        return os.environ.get("SIGNAL_API_URL") or self.settings.get(
            "signal_api_url", "http://127.0.0.1:8080"
        )

    # --- Balancers ---

    @property
    def lb_hash(self) -> dict:
        """Raw ``region -> environment -> balancer -> [ids]`` mapping."""
        lb_hash = self._lbcfg.get("lb_hash", {})
        if not isinstance(lb_hash, dict):
            logger.error("lb_hash_invalid_type", type=type(lb_hash).__name__)
            return {}
        return lb_hash

    @property
    def tree(self) -> ConfigTree:
        """Read-only ConfigTree built from lb_hash on first access."""
        if self._tree is None:
            self._tree = build_tree(self.lb_hash)
        return self._tree

    @property
    def credentials(self) -> List[CredentialRecord]:
        """Credential records; invalid entries are logged and skipped."""
        raw = self._lbcfg.get("credentials", [])
        if not isinstance(raw, list):
            logger.error("credentials_invalid_type", type=type(raw).__name__)
            return []
        records = []
        for index, entry in enumerate(raw):
            try:
                records.append(CredentialRecord.model_validate(entry))
            except ValidationError as e:
                logger.error(
                    "credentials_invalid_entry", index=index,
                    errors=[err["loc"] for err in e.errors()],
                )
        return records

    # --- Backend ---

    @property
    def backend_identity_url(self) -> str:
        backend = self.settings.get("backend", {})
        return backend.get("identity_url", DEFAULT_IDENTITY_URL)

    @property
    def backend_timeout(self) -> float:
        """Per-request timeout in seconds (default 30)."""
        backend = self.settings.get("backend", {})
        return float(backend.get("timeout", 30))

    @property
    def backend_max_retries(self) -> int:
        """Attempts per backend request for transient failures (default 3)."""
        backend = self.settings.get("backend", {})
        return int(backend.get("max_retries", 3))

    # --- Logging ---

    @property
    def log_dir(self) -> Path:
        """Get log directory path."""
        configured = self.settings.get("log_dir")
        if configured:
            return Path(configured).expanduser()
        return Path(__file__).parent.parent / "logs"

    @property
    def logging_level(self) -> str:
        """Global log level (default INFO). Controls console and combined file."""
        log_config = self.settings.get("logging", {})
        return log_config.get("level", "INFO")

    @property
    def logging_subsystem_levels(self) -> dict:
        """Per-subsystem log level overrides. E.g. {"backend": "DEBUG"}."""
        log_config = self.settings.get("logging", {})
        return log_config.get("subsystem_levels", {})

    @property
    def logging_max_file_size_mb(self) -> int:
        """Max size per log file in MB before rotation (default 10)."""
        log_config = self.settings.get("logging", {})
        return log_config.get("max_file_size_mb", 10)

    @property
    def logging_backup_count(self) -> int:
        """Number of rotated log files to keep (default 5)."""
        log_config = self.settings.get("logging", {})
        return log_config.get("backup_count", 5)

    def validate(self) -> List[str]:
        """Validate settings at startup.

        Logs problems but does not raise -- the bot starts in degraded
        mode and answers lookups for broken paths with config errors.

        Returns:
            Human-readable list of the problems found.
        """
        problems = []

        if self.adapter == "signal" and not self.allowed_numbers:
            logger.warning("no_allowed_numbers", msg="Bot will reject all messages")
            problems.append("allowed_numbers is empty")

        for region, envs in self.lb_hash.items():
            if not isinstance(envs, dict):
                problems.append(f"lb_hash.{region} is not a mapping")
                continue
            for env, balancers in envs.items():
                if not isinstance(balancers, dict):
                    problems.append(f"lb_hash.{region}.{env} is not a mapping")
                    continue
                for balancer, ids in balancers.items():
                    if not isinstance(ids, list):
                        problems.append(f"lb_hash.{region}.{env}.{balancer} is not a list")
                    elif not ids:
                        problems.append(f"lb_hash.{region}.{env}.{balancer} is empty")

        raw_credentials = self._lbcfg.get("credentials", [])
        if isinstance(raw_credentials, list) and len(self.credentials) != len(raw_credentials):
            problems.append("some credential records are invalid")

        for problem in problems:
            logger.error("config_problem", problem=problem)
        return problems


_config: Optional[Config] = None


def get_config() -> Config:
    """Get or create the global config instance."""
    global _config
    if _config is None:
        _config = Config()
    return _config
