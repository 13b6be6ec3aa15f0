"""
Configuration Management for the API Insights client.

This module handles client configuration including the server URL, the
authentication endpoint paths, credential storage and logging, with support
for configuration files and environment variables.
"""

import os
import json
import logging
from pathlib import Path
from typing import Optional, Dict, Any
from configparser import ConfigParser, Error as ConfigParserError

from api_insights.client.api_client import AuthPaths
from api_insights.shared.exceptions import ConfigurationError, ErrorCode

logger = logging.getLogger(__name__)

VALID_LOG_LEVELS = ('DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL')

DEFAULT_CONFIG_TEMPLATE = """# API Insights Client Configuration
# Configuration file: {config_path}

[server]
# Backend base URL
url = http://localhost:8000

# Request timeout in seconds
timeout = 30

[auth]
# Endpoint paths, relative to the server URL
login_path = /api/v1/auth/login/
refresh_path = /api/v1/auth/token/refresh/
logout_path = /api/v1/auth/logout/
profile_path = /api/v1/auth/profile/

[storage]
# Keyring service name used for stored credentials
service_name = api-insights-client

# Use the system keyring: true, false or auto
use_keyring = auto

[logging]
# Logging level: DEBUG, INFO, WARNING, ERROR, CRITICAL
level = WARNING
"""

# Maps [auth] keys onto AuthPaths fields
AUTH_PATH_KEYS = {
    'login_path': 'login',
    'refresh_path': 'refresh',
    'logout_path': 'logout',
    'profile_path': 'profile',
    'two_factor_path': 'two_factor',
    'register_path': 'register',
    'password_reset_path': 'password_reset',
    'password_reset_confirm_path': 'password_reset_confirm',
    'verify_email_path': 'verify_email',
}


class ClientConfiguration:
    """
    Configuration manager for the API Insights client.

    Supports configuration from:
    1. Command line arguments (highest priority)
    2. Environment variables
    3. Configuration file
    4. Default values (lowest priority)
    """

    def __init__(self, config_file: Optional[str] = None):
        self._config_file = config_file or self._get_default_config_path()
        self._config_data: Dict[str, Any] = {}
        self._overrides: Dict[str, Any] = {}

        self._load_configuration()

    def _get_default_config_path(self) -> str:
        """Get default configuration file path, creating it on first use."""
        config_dir = Path.home() / '.api-insights'
        user_config_path = str(config_dir / 'client.conf')

        if not os.path.exists(user_config_path):
            try:
                config_dir.mkdir(parents=True, exist_ok=True)
                self._create_default_config(user_config_path)
            except OSError as e:
                # Defaults still apply without a file
                logger.warning(f"Failed to create default configuration: {e}")

        return user_config_path

    def _create_default_config(self, config_path: str) -> None:
        """Create a minimal default configuration file."""
        with open(config_path, 'w') as f:
            f.write(DEFAULT_CONFIG_TEMPLATE.format(config_path=config_path))

        logger.info(f"Created default configuration file: {config_path}")

    def _load_configuration(self) -> None:
        """Load configuration from file and environment variables."""
        if os.path.exists(self._config_file):
            self._load_from_file()
            logger.info(f"Configuration loaded from: {self._config_file}")
        else:
            logger.info(f"Configuration file not found: {self._config_file}")

        self._load_from_environment()
        self._set_defaults()

    def _load_from_file(self) -> None:
        """Load configuration from INI file."""
        config = ConfigParser()
        try:
            config.read(self._config_file)
        except ConfigParserError as e:
            raise ConfigurationError(
                f"Invalid configuration file {self._config_file}: {e}",
                error_code=ErrorCode.CONFIG_INVALID_VALUE,
                cause=e
            ) from e

        for section_name in config.sections():
            section_data = {}
            for key, value in config[section_name].items():
                # Try to parse as JSON for numbers and booleans
                try:
                    section_data[key] = json.loads(value)
                except (json.JSONDecodeError, ValueError):
                    section_data[key] = value

            self._config_data[section_name] = section_data

    def _load_from_environment(self) -> None:
        """Load configuration from environment variables."""
        env_mappings = {
            'API_INSIGHTS_SERVER_URL': ('server', 'url'),
            'API_INSIGHTS_TIMEOUT': ('server', 'timeout'),
            'API_INSIGHTS_TOKEN_FILE': ('storage', 'token_file'),
            'API_INSIGHTS_USE_KEYRING': ('storage', 'use_keyring'),
            'API_INSIGHTS_LOG_LEVEL': ('logging', 'level'),
            'API_INSIGHTS_LOG_FILE': ('logging', 'file'),
        }

        for env_var, (section, key) in env_mappings.items():
            value = os.environ.get(env_var)
            if value is not None:
                self._config_data.setdefault(section, {})

                # Convert boolean strings
                if value.lower() in ('true', 'false'):
                    self._config_data[section][key] = value.lower() == 'true'
                else:
                    self._config_data[section][key] = value

    def _set_defaults(self) -> None:
        """Set default configuration values."""
        defaults = {
            'server': {
                'url': 'http://localhost:8000',
                'timeout': 30.0
            },
            'auth': {},
            'storage': {
                'service_name': 'api-insights-client',
                'token_file': None,
                'use_keyring': 'auto'
            },
            'logging': {
                'level': 'WARNING',
                'file': None,
                'format': 'detailed'
            }
        }

        for section, section_defaults in defaults.items():
            self._config_data.setdefault(section, {})
            for key, default_value in section_defaults.items():
                if key not in self._config_data[section]:
                    self._config_data[section][key] = default_value

    def get_config(self, key: str, default: Any = None) -> Any:
        """
        Get configuration value using dot notation.

        Args:
            key: Configuration key in format 'section.key'
            default: Default value if key not found

        Returns:
            Configuration value or default
        """
        if '.' not in key:
            return self._config_data.get(key, default)

        section, config_key = key.split('.', 1)
        return self._config_data.get(section, {}).get(config_key, default)

    def set_override(self, key: str, value: Any) -> None:
        """
        Set configuration override (highest priority).

        Args:
            key: Configuration key in format 'section.key'
            value: Override value
        """
        self._overrides[key] = value

    def _get(self, key: str, default: Any = None) -> Any:
        if self._overrides.get(key) is not None:
            return self._overrides[key]
        return self.get_config(key, default)

    def get_config_file_path(self) -> str:
        """Get configuration file path."""
        return self._config_file

    def get_all_config(self) -> Dict[str, Any]:
        """Get all configuration data."""
        return self._config_data.copy()

    def get_server_url(self) -> str:
        """Get server URL."""
        url = self._get('server.url')
        if not isinstance(url, str) or not url.startswith(('http://', 'https://')):
            raise ConfigurationError(
                f"Server URL must start with http:// or https://, got: {url!r}",
                error_code=ErrorCode.CONFIG_INVALID_VALUE,
                config_key='server.url'
            )
        return url.rstrip('/')

    def get_timeout(self) -> float:
        """Get request timeout in seconds."""
        value = self._get('server.timeout', 30.0)
        try:
            timeout = float(value)
        except (TypeError, ValueError):
            timeout = -1.0
        if timeout <= 0:
            raise ConfigurationError(
                f"Timeout must be a positive number, got: {value!r}",
                error_code=ErrorCode.CONFIG_INVALID_VALUE,
                config_key='server.timeout'
            )
        return timeout

    def get_auth_paths(self) -> AuthPaths:
        """Get authentication endpoint paths, defaults filled in."""
        section = self._config_data.get('auth', {})
        paths = {}
        for key, field_name in AUTH_PATH_KEYS.items():
            value = section.get(key)
            if value is None:
                continue
            if not isinstance(value, str) or not value.startswith('/'):
                raise ConfigurationError(
                    f"Auth path must be an absolute path, got: {value!r}",
                    error_code=ErrorCode.CONFIG_INVALID_VALUE,
                    config_key=f'auth.{key}'
                )
            paths[field_name] = value
        return AuthPaths.from_dict(paths)

    def get_service_name(self) -> str:
        return self._get('storage.service_name', 'api-insights-client')

    def get_token_file(self) -> Optional[Path]:
        value = self._get('storage.token_file')
        return Path(value).expanduser() if value else None

    def get_use_keyring(self) -> Optional[bool]:
        """
        Get keyring preference.

        Returns:
            True or False when configured explicitly, None to auto-detect
        """
        value = self._get('storage.use_keyring', 'auto')
        if isinstance(value, bool):
            return value
        if isinstance(value, str) and value.lower() in ('auto', ''):
            return None
        raise ConfigurationError(
            f"use_keyring must be true, false or auto, got: {value!r}",
            error_code=ErrorCode.CONFIG_INVALID_VALUE,
            config_key='storage.use_keyring'
        )

    def get_log_level(self) -> str:
        """Get logging level."""
        level = str(self._get('logging.level', 'WARNING')).upper()
        if level not in VALID_LOG_LEVELS:
            raise ConfigurationError(
                f"Invalid log level: {level}",
                error_code=ErrorCode.CONFIG_INVALID_VALUE,
                config_key='logging.level'
            )
        return level

    def get_log_file(self) -> Optional[str]:
        """Get log file path."""
        return self._get('logging.file')

    def get_log_format(self) -> str:
        """Get log format: standard, detailed or json."""
        return self._get('logging.format', 'detailed')

    def reload_configuration(self) -> None:
        """Reload configuration from file and environment."""
        self._config_data.clear()
        self._load_configuration()
        logger.info("Configuration reloaded")
