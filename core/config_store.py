# core/config_store.py
"""
Connection configuration persisted to a private JSON file

Secrets are stored in cleartext on disk (file mode 0600) and only ever
leave the store masked through read(). snapshot() is the internal path used
by the execution pipeline, which needs the real credentials.
"""

import json
import logging
import os
from typing import Any, Mapping, Optional

from core.exceptions import PersistenceError, ValidationError
from core.job_store import write_json_file
from core.models import ConnectionConfig
from core.rwlock import ReadWriteLock

logger = logging.getLogger(__name__)

CONFIG_FILE_MODE = 0o600


class ConfigStore:
    """Singleton connection config with its own lock, independent of the job lock"""

    def __init__(self, path: str, env_defaults: Optional[ConnectionConfig] = None):
        self.path = path
        self.env_defaults = env_defaults or ConnectionConfig()
        self._lock = ReadWriteLock()
        self._config = ConnectionConfig().with_defaults(self.env_defaults)

    def load(self) -> ConnectionConfig:
        """
        Read the stored config and fill empty fields from the environment defaults.

        The defaults are applied in memory only; the file is not rewritten.
        A missing file yields the defaults alone.
        """
        stored = ConnectionConfig()
        if os.path.exists(self.path):
            try:
                with open(self.path, 'r', encoding='utf-8') as f:
                    stored = ConnectionConfig.from_dict(json.load(f))
            except (OSError, ValueError) as e:
                raise PersistenceError(f"failed to read config file {self.path}: {e}") from e
            except ValidationError as e:
                raise PersistenceError(f"invalid config file {self.path}: {e}") from e
        else:
            os.makedirs(os.path.dirname(self.path) or '.', exist_ok=True)
            logger.info(f"No config file at {self.path}, using environment defaults")

        config = stored.with_defaults(self.env_defaults)
        with self._lock.write_locked():
            self._config = config
        logger.info(f"Loaded configuration (grafana={config.grafana_url}, smtp={config.smtp_host or 'unset'})")
        return config.masked()

    def read(self) -> ConnectionConfig:
        """Masked projection, safe to return to clients"""
        with self._lock.read_locked():
            return self._config.masked()

    def snapshot(self) -> ConnectionConfig:
        """Cleartext copy for outbound connections; never expose this"""
        with self._lock.read_locked():
            return self._config

    def update(self, payload: Mapping[str, Any]) -> ConnectionConfig:
        """
        Merge a submitted config and persist it

        Args:
            payload: Config record as posted by the UI; masked secrets mean "unchanged"

        Returns:
            The masked view of the new config

        Raises:
            ValidationError: if the payload is malformed
            PersistenceError: if the file write failed (the in-memory update stays)
        """
        incoming = ConnectionConfig.from_dict(payload)

        with self._lock.write_locked():
            merged = self._config.merged_with(incoming)
            self._config = merged
            try:
                write_json_file(self.path, merged.to_dict(), mode=CONFIG_FILE_MODE)
            except PersistenceError as e:
                logger.error(f"Failed to save configuration: {e}")
                raise

        logger.info("Configuration saved")
        return merged.masked()
