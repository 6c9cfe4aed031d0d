"""Credential storage: API token in the OS keyring, site and email in config."""

from __future__ import annotations

import logging

import keyring
import keyring.errors

from jsm_stats.core.data_models import ConnectionConfig
from jsm_stats.services.config_manager import ConfigManager

logger = logging.getLogger(__name__)

KEYRING_SERVICE = "jsm-stats"
KEYRING_USERNAME = "api_token"


class AuthManager:
    """Persist and restore the :class:`ConnectionConfig` for one Jira site.

    The token never touches the config file; only the non-secret site URL
    and email are stored there.
    """

    def __init__(self, config: ConfigManager) -> None:
        self._config = config

    @property
    def jira_url(self) -> str:
        return str(self._config.get("jira_url", ""))

    @property
    def jira_email(self) -> str:
        return str(self._config.get("jira_email", ""))

    @property
    def has_credentials(self) -> bool:
        """True when a complete, valid connection can be restored."""
        return self.load() is not None

    def get_api_token(self) -> str | None:
        """Retrieve the API token from the OS keyring."""
        return keyring.get_password(KEYRING_SERVICE, KEYRING_USERNAME)

    def save(self, connection: ConnectionConfig) -> None:
        """Store *connection*, replacing any previous credentials."""
        keyring.set_password(KEYRING_SERVICE, KEYRING_USERNAME, connection.api_token)
        self._config.update({
            "jira_url": connection.base_url or connection.site_url.strip(),
            "jira_email": connection.email.strip(),
        })
        logger.info("Credentials stored (site=%s)", connection.site_name)

    def load(self) -> ConnectionConfig | None:
        """Return the stored connection, or ``None`` if anything is missing."""
        token = self.get_api_token()
        if not token:
            logger.debug("No API token found in keyring")
            return None
        connection = ConnectionConfig(self.jira_url, self.jira_email, token)
        if not connection.is_valid:
            logger.debug("Stored connection is incomplete")
            return None
        return connection

    def clear(self) -> None:
        """Remove the token and the stored site details."""
        logger.info("Clearing stored credentials")
        try:
            keyring.delete_password(KEYRING_SERVICE, KEYRING_USERNAME)
        except keyring.errors.PasswordDeleteError:
            logger.debug("No API token stored in keyring")
        self._config.update({"jira_url": "", "jira_email": ""})
