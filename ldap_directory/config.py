"""
Configuration for the directory client.

Settings come from a YAML file with a required 'directory' section and an
optional 'logging' section. Credentials may be supplied through environment
variables instead of the file.
"""

import logging
import os
import string
from typing import Any, Dict, List, Optional
from urllib.parse import urlsplit

import yaml

from ldap_directory.logging_setup import security_logger

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = 'config.yaml'
AUTHENTICATION_MODES = ('simple', 'ntlm')
SUPPORTED_SCHEMES = ('ldap', 'ldaps')


class ConfigurationError(Exception):
    """Raised when the configuration file is missing, unreadable or invalid."""
    pass


class ConfigLoader:
    """Reads, validates and completes the client configuration."""

    # directory.<key> taken from these variables when they are set
    CREDENTIAL_VARIABLES = {
        'username': 'DIRECTORY_USERNAME',
        'password': 'DIRECTORY_PASSWORD',
    }

    DIRECTORY_DEFAULTS = {
        'username': None,
        'password': None,
        'authentication': 'simple',
        'integrated_auth': False,
        'user_bind_format': '{username}',
        'connection_timeout': 10,
        'receive_timeout': 10,
        'page_size': 1000,
    }

    LOGGING_DEFAULTS = {
        'level': 'INFO',
        'log_dir': 'logs',
        'rotation': 'daily',
        'retention_days': 7,
        'console_output': True,
        'console_level': 'WARNING',
    }

    def __init__(self, config_path: Optional[str] = None):
        """
        Args:
            config_path: YAML file to read; defaults to $CONFIG_PATH, then config.yaml
        """
        self.config_path = config_path or os.getenv('CONFIG_PATH', DEFAULT_CONFIG_PATH)
        self.config = {}

    def load(self) -> Dict[str, Any]:
        """
        Read the configuration file and return the completed settings.

        Returns:
            Configuration with 'directory' and 'logging' sections, defaults filled in

        Raises:
            ConfigurationError: If the file cannot be read or any setting is invalid
        """
        self.config = self._read()
        directory = self.config.get('directory')
        if not isinstance(directory, dict):
            raise ConfigurationError("Configuration validation failed:\n  - Missing directory section")

        self._apply_credential_variables(directory)

        errors = self._check_directory(directory)
        if errors:
            details = "\n".join(f"  - {error}" for error in errors)
            raise ConfigurationError(f"Configuration validation failed:\n{details}")

        self.config['directory'] = self._with_defaults(directory, self.DIRECTORY_DEFAULTS)
        self.config['directory']['authentication'] = str(self.config['directory']['authentication']).lower()
        self.config['logging'] = self._with_defaults(self.config.get('logging'), self.LOGGING_DEFAULTS)

        logger.info(f"Loaded configuration from {self.config_path}")
        security_logger.log_configuration_access(self.config_path)
        return self.config

    def _read(self) -> Dict[str, Any]:
        try:
            with open(self.config_path, 'r') as f:
                content = yaml.safe_load(f)
        except FileNotFoundError:
            raise ConfigurationError(f"Configuration file not found: {self.config_path}")
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML in config file: {e}")

        if content is None:
            return {}
        if not isinstance(content, dict):
            raise ConfigurationError(f"Configuration root must be a mapping: {self.config_path}")
        return content

    def _apply_credential_variables(self, directory: Dict[str, Any]) -> None:
        for key, variable in self.CREDENTIAL_VARIABLES.items():
            value = os.getenv(variable)
            if value:
                directory[key] = value
                logger.debug(f"directory.{key} taken from {variable}")

    @staticmethod
    def _check_directory(directory: Dict[str, Any]) -> List[str]:
        """Collect every problem with the directory section."""
        errors = []

        path = directory.get('path')
        if not path:
            errors.append("Missing required directory field: path")
        else:
            url = urlsplit(str(path))
            if url.scheme.lower() not in SUPPORTED_SCHEMES:
                errors.append(f"Unsupported directory path scheme: {url.scheme or '(none)'}")
            elif not url.hostname:
                errors.append(f"Directory path has no host: {path}")

        if directory.get('password') and not directory.get('username'):
            errors.append("directory.password is set without directory.username")

        authentication = str(directory.get('authentication', 'simple')).lower()
        if authentication not in AUTHENTICATION_MODES:
            errors.append(f"Unknown authentication mode: {authentication} "
                          f"(expected one of {', '.join(AUTHENTICATION_MODES)})")

        page_size = directory.get('page_size', 1000)
        if isinstance(page_size, bool) or not isinstance(page_size, int) or page_size <= 0:
            errors.append(f"directory.page_size must be a positive integer, got {page_size!r}")

        bind_format = str(directory.get('user_bind_format', '{username}'))
        try:
            placeholders = {field for _, field, _, _ in string.Formatter().parse(bind_format) if field is not None}
        except ValueError as e:
            errors.append(f"Invalid user_bind_format: {e}")
        else:
            unknown = placeholders - {'username'}
            if unknown:
                errors.append(f"Unknown placeholder in user_bind_format: {', '.join(sorted(unknown))}")

        return errors

    @staticmethod
    def _with_defaults(section: Any, defaults: Dict[str, Any]) -> Dict[str, Any]:
        completed = dict(defaults)
        if isinstance(section, dict):
            completed.update(section)
        return completed


def load_config(config_path: Optional[str] = None) -> Dict[str, Any]:
    """
    Load and validate the configuration.

    Args:
        config_path: YAML file to read

    Returns:
        Completed configuration dictionary
    """
    return ConfigLoader(config_path).load()
