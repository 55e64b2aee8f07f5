"""Credential registration and per-command client construction."""

import os
from typing import Callable, Dict, Iterable, List, Mapping

import structlog

from ..exceptions import ConfigurationError
from ..models import CredentialRecord
from .base import BackendClient

logger = structlog.get_logger("lbcfg.backend")

# Builds a client from a registered record: (env_key, record) -> client
ClientBuilder = Callable[[str, CredentialRecord], BackendClient]


class ClientRegistry:
    """Maps ``<region>-<environment>`` keys to credentials.

    Registration happens once at startup; afterwards the registry is
    only read. Calling the registry with a key returns a NEW client,
    so it can be handed to the router as its client factory.

    Args:
        builder: Constructs a client for a credential record.
    """

    def __init__(self, builder: ClientBuilder):
        self._builder = builder
        self._records: Dict[str, CredentialRecord] = {}

    def register(self, record: CredentialRecord) -> None:
        """Register one credential record under its env key.

        Raises:
            ConfigurationError: If no API key is available for the record.
        """
        key = record.key
        if not key and record.key_env:
            key = os.environ.get(record.key_env, "")
            record = record.model_copy(update={"key": key})
        if not key:
            raise ConfigurationError(
                f"No API key configured for {record.env_key}",
                setting_name="lbcfg.credentials",
                env_key=record.env_key,
            )
        if record.env_key in self._records:
            logger.warning("credentials_overridden", env_key=record.env_key)
        self._records[record.env_key] = record
        logger.info(
            "credentials_registered",
            env_key=record.env_key,
            username=record.username.lower(),
        )

    def register_all(self, records: Iterable[CredentialRecord]) -> int:
        """Register every record, logging and skipping invalid ones.

        Returns:
            Number of records registered.
        """
        count = 0
        for record in records:
            try:
                self.register(record)
                count += 1
            except ConfigurationError as e:
                logger.error("credentials_register_failed", error=str(e), **e.context)
        return count

    def __contains__(self, env_key: str) -> bool:
        return env_key.lower() in self._records

    @property
    def env_keys(self) -> frozenset:
        """All registered env keys."""
        return frozenset(self._records)

    def missing_for(self, tree: Mapping) -> List[str]:
        """Env keys used by ``tree`` that have no registered credentials.

        Commands for these pairs resolve fine but fail when the client
        is built, so they are worth reporting at startup.
        """
        missing = set()
        for region, envs in tree.items():
            if not isinstance(envs, Mapping):
                continue
            for env in envs:
                env_key = f"{region}-{env}".lower()
                if env_key not in self:
                    missing.add(env_key)
        return sorted(missing)

    def __call__(self, env_key: str) -> BackendClient:
        """Build a fresh client for ``env_key``.

        Raises:
            ConfigurationError: If no credentials were registered for the key.
        """
        env_key = env_key.lower()
        record = self._records.get(env_key)
        if record is None:
            raise ConfigurationError(
                f"No credentials registered for {env_key}",
                setting_name="lbcfg.credentials",
                env_key=env_key,
            )
        return self._builder(env_key, record)
