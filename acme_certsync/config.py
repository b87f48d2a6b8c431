"""
Runtime configuration, read from ``ACME_CERTSYNC_*`` environment variables.
"""

import logging
import os
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import timedelta

from acme_certsync import server, utils
from acme_certsync.acme import AcmeClient

logger = logging.getLogger(__name__)

ENV_PREFIX = "ACME_CERTSYNC_"
SEAL_KEY_ENV = f"{ENV_PREFIX}SEAL_KEY"

TRUE_VALUES = {"1", "true", "yes", "on"}


@dataclass
class Config:
    email: str = ""
    accept_tos: bool = False
    directory_url: str = ""
    staging: bool = True
    seal_key: str = ""
    store_path: str = "./certsync-data"
    store_prefix: str = "certsync"
    vulcand: str = ""
    dry_run: bool = False
    path_prefix: str = server.PATH_PREFIX_DEFAULT
    listen: str = server.DEFAULT_LISTEN
    renew_period: int = 3600
    renew_before: int = 7 * 24 * 3600
    log_level: str = "INFO"
    user_agent: str = "acme-certsync"

    @property
    def acme_directory(self) -> str:
        if self.directory_url:
            return self.directory_url
        return AcmeClient.TEST_DIRECTORY_URL if self.staging else AcmeClient.DIRECTORY_URL

    @property
    def period(self) -> timedelta:
        return timedelta(seconds=self.renew_period)

    @property
    def before(self) -> timedelta:
        return timedelta(seconds=self.renew_before)

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "Config":
        """
        Build a config from environment variables; unset variables keep defaults.

        The seal key may also come from a Docker secret file named
        ``ACME_CERTSYNC_SEAL_KEY``.

        Raises:
            ValueError: If a numeric variable is not an integer.
        """
        env = os.environ if environ is None else environ
        config = cls()

        def get(name: str) -> str | None:
            return env.get(ENV_PREFIX + name)

        for name in ("email", "directory_url", "store_path", "store_prefix", "vulcand",
                     "path_prefix", "listen", "log_level"):
            value = get(name.upper())
            if value is not None:
                setattr(config, name, value)

        for name in ("accept_tos", "staging", "dry_run"):
            value = get(name.upper())
            if value is not None:
                setattr(config, name, value.strip().lower() in TRUE_VALUES)

        for name in ("renew_period", "renew_before"):
            value = get(name.upper())
            if value is not None:
                try:
                    setattr(config, name, int(value))
                except ValueError:
                    raise ValueError(f"{ENV_PREFIX}{name.upper()} must be an integer, got '{value}'") from None

        if environ is None:
            try:
                config.seal_key = utils.get_env_secrets(SEAL_KEY_ENV) or ""
            except OSError:
                logger.debug(f"{SEAL_KEY_ENV} not set")
        else:
            config.seal_key = env.get(SEAL_KEY_ENV, "")

        return config

    def validate(self) -> None:
        """
        Check the settings needed to bind an ACME account.

        Raises:
            ValueError: If the contact email or the seal key is missing.
        """
        if not self.email:
            raise ValueError("A contact email is required (--email or ACME_CERTSYNC_EMAIL)")
        if not self.seal_key:
            raise ValueError("A seal key is required (--seal-key or ACME_CERTSYNC_SEAL_KEY); create one with 'newkey'")
