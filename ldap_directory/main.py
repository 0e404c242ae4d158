"""
Command-line report runner for the directory client.

Loads configuration, sets up logging and runs one read-only directory query,
printing the result as JSON. Intended for scheduled maintenance reports and
quick checks from a shell.
"""

import argparse
import json
import logging
import sys
from dataclasses import asdict
from datetime import datetime
from typing import Any, Dict, List, Optional

from ldap_directory.client import DirectoryClient
from ldap_directory.config import ConfigurationError, load_config
from ldap_directory.errors import DirectoryConnectionError, DirectoryError
from ldap_directory.logging_setup import setup_logging
from ldap_directory.models import UserProfile

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_NEGATIVE = 1
EXIT_CONFIG_ERROR = 2
EXIT_CONNECTION_ERROR = 3
EXIT_DIRECTORY_ERROR = 4

MISSING_REPORTS = {
    'office': 'get_users_with_missing_office',
    'phone': 'get_users_with_missing_phone_number',
    'email': 'get_users_with_missing_email_address',
    'address': 'get_users_with_missing_address',
    'department': 'get_users_with_missing_department',
}


class ReportRunner:
    """
    Runs a single directory report and renders it as JSON.

    Maps configuration, connection and directory failures onto distinct
    exit codes.
    """

    def __init__(self, config_path: Optional[str] = None, output=None):
        """
        Initialize the runner.

        Args:
            config_path: Path to configuration file
            output: Stream to write JSON to, stdout by default
        """
        self.config_path = config_path
        self.output = output or sys.stdout
        self.config = None
        self.client = None

    def run(self, args: argparse.Namespace) -> int:
        """
        Run the report selected on the command line.

        Returns:
            Exit code
        """
        try:
            self._load_configuration()
            setup_logging(self.config.get('logging', {}))
            self.client = DirectoryClient.from_config(self.config['directory'])

            if args.command == 'health-check':
                return self._health_check()

            result = self._dispatch(args)
            self._write(result)
            if args.command == 'user-exists' and not result['exists']:
                return EXIT_NEGATIVE
            return EXIT_OK

        except ConfigurationError as e:
            logger.error(f"Configuration error: {e}")
            print(f"Configuration error: {e}", file=sys.stderr)
            return EXIT_CONFIG_ERROR
        except DirectoryConnectionError as e:
            logger.error(f"Directory connection error: {e}")
            print(f"Directory connection error: {e}", file=sys.stderr)
            return EXIT_CONNECTION_ERROR
        except DirectoryError as e:
            logger.error(f"Directory error: {e}")
            print(f"Directory error: {e}", file=sys.stderr)
            return EXIT_DIRECTORY_ERROR

    def _load_configuration(self):
        try:
            self.config = load_config(self.config_path)
        except ConfigurationError:
            raise
        except Exception as e:
            raise ConfigurationError(f"Failed to load configuration: {e}")

    def _dispatch(self, args: argparse.Namespace) -> Any:
        command = args.command
        if command == 'groups':
            return self.client.get_groups()
        if command == 'users':
            return _profiles(self.client.get_users(args.filter or ''))
        if command == 'user-groups':
            return self.client.get_user_group_membership(args.username)
        if command == 'missing':
            return _profiles(getattr(self.client, MISSING_REPORTS[args.attribute])())
        if command == 'password-expiration':
            return _profiles(self.client.get_users_password_expiration(args.filter or ''))
        if command == 'user-exists':
            return {'username': args.username, 'exists': self.client.user_exists(args.username)}
        raise ValueError(f"Unknown command: {command}")

    def _health_check(self) -> int:
        """Check that the directory accepts a bind with the configured credentials."""
        health_status = {
            'status': 'healthy',
            'timestamp': datetime.now().isoformat(),
            'checks': {}
        }
        try:
            with self.client.session.connect() as connection:
                base = self.client.session.search_base(connection)
            health_status['checks']['directory'] = {
                'status': 'pass',
                'message': f'Bind successful, search base {base}'
            }
        except DirectoryError as e:
            health_status['status'] = 'unhealthy'
            health_status['checks']['directory'] = {
                'status': 'fail',
                'message': f'Directory check failed: {e}'
            }

        self._write(health_status)
        return EXIT_OK if health_status['status'] == 'healthy' else EXIT_NEGATIVE

    def _write(self, payload: Any) -> None:
        json.dump(payload, self.output, indent=2, default=_json_default)
        self.output.write('\n')


def _profiles(users: List[UserProfile]) -> List[Dict[str, Any]]:
    return [asdict(user) for user in users]


def _json_default(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description='Directory reports')
    parser.add_argument('--config', '-c', help='Path to configuration file')
    subparsers = parser.add_subparsers(dest='command', required=True)

    subparsers.add_parser('groups', help='List all groups')

    users = subparsers.add_parser('users', help='List person accounts')
    users.add_argument('--filter', help='Custom search filter')

    user_groups = subparsers.add_parser('user-groups', help='Nested group membership of a user')
    user_groups.add_argument('username')

    missing = subparsers.add_parser('missing', help='Active accounts missing a profile attribute')
    missing.add_argument('attribute', choices=sorted(MISSING_REPORTS))

    expiration = subparsers.add_parser('password-expiration', help='When each password was last set')
    expiration.add_argument('--filter', help='Custom search filter')

    exists = subparsers.add_parser('user-exists', help='Check whether an account exists')
    exists.add_argument('username')

    subparsers.add_parser('health-check', help='Check directory connectivity')
    return parser


def main(argv: Optional[List[str]] = None):
    """Main entry point for the report runner."""
    args = build_parser().parse_args(argv)
    runner = ReportRunner(config_path=args.config)
    sys.exit(runner.run(args))


if __name__ == "__main__":
    main()
