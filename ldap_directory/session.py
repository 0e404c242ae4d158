"""
Directory session management.

A DirectorySession holds the endpoint and connection settings and hands out
bound ldap3 connections. Connections are scoped: connect() is a context
manager that always unbinds, whatever happens inside the block.
"""

import logging
from contextlib import contextmanager
from typing import Any, Dict, Iterator, Optional

from ldap3 import ALL, ANONYMOUS, KERBEROS, NTLM, SASL, SIMPLE, Connection, Server
from ldap3.core.exceptions import LDAPException

from ldap_directory.errors import DirectoryConnectionError, DirectoryQueryError
from ldap_directory.models import DirectoryEndpoint

logger = logging.getLogger(__name__)

AUTHENTICATION_METHODS = {
    'simple': SIMPLE,
    'ntlm': NTLM,
}


class DirectorySession:
    """
    Produces bound connections to a directory endpoint.

    With stored credentials the connection binds as that account; without
    them it binds anonymously, or with Kerberos when integrated_auth is set.
    """

    def __init__(self, endpoint: DirectoryEndpoint, options: Optional[Dict[str, Any]] = None):
        """
        Initialize a session.

        Args:
            endpoint: Directory location and optional bind credentials
            options: Connection settings (authentication, integrated_auth,
                user_bind_format, connection_timeout, receive_timeout)
        """
        options = options or {}
        self.endpoint = endpoint
        self.authentication = options.get('authentication', 'simple').lower()
        self.integrated_auth = options.get('integrated_auth', False)
        self.user_bind_format = options.get('user_bind_format', '{username}')
        self.connection_timeout = options.get('connection_timeout', 10)
        self.receive_timeout = options.get('receive_timeout', 10)

        if self.authentication not in AUTHENTICATION_METHODS:
            raise ValueError(f"Unsupported authentication method: {self.authentication}")

        self._server = None

    @property
    def server(self) -> Server:
        if self._server is None:
            try:
                self._server = Server(
                    self.endpoint.host,
                    port=self.endpoint.port,
                    use_ssl=self.endpoint.use_ssl,
                    get_info=ALL,
                    connect_timeout=self.connection_timeout
                )
            except LDAPException as e:
                raise DirectoryConnectionError(f"Failed to create directory server for {self.endpoint.host}: {e}") from e
            logger.debug(f"Created directory server object for {self.endpoint.host}:{self.endpoint.port} "
                         f"(SSL: {self.endpoint.use_ssl})")
        return self._server

    def bind_principal(self, username: str) -> str:
        """Format a plain username into the principal used for a user bind."""
        return self.user_bind_format.format(username=username)

    @contextmanager
    def connect(self, username: Optional[str] = None, password: Optional[str] = None) -> Iterator[Connection]:
        """
        Open a bound connection for the duration of a with-block.

        Args:
            username: Bind as this user instead of the stored credentials
            password: Password for username

        Yields:
            Bound ldap3 connection

        Raises:
            DirectoryConnectionError: If the directory is unreachable or rejects the bind
        """
        if username is not None:
            connection = self._open(self.bind_principal(username), password or '')
        else:
            connection = self._open_default()

        try:
            yield connection
        finally:
            self._close(connection)

    def _open_default(self) -> Connection:
        if self.endpoint.has_credentials:
            return self._open(self.endpoint.username, self.endpoint.password or '')

        if self.integrated_auth:
            connection = Connection(
                self.server,
                authentication=SASL,
                sasl_mechanism=KERBEROS,
                auto_bind=False,
                receive_timeout=self.receive_timeout
            )
        else:
            connection = Connection(
                self.server,
                authentication=ANONYMOUS,
                auto_bind=False,
                receive_timeout=self.receive_timeout
            )
        return self._bind(connection, 'integrated' if self.integrated_auth else 'anonymous')

    def _open(self, user: str, password: str) -> Connection:
        try:
            connection = Connection(
                self.server,
                user=user,
                password=password,
                authentication=AUTHENTICATION_METHODS[self.authentication],
                auto_bind=False,
                receive_timeout=self.receive_timeout
            )
        except LDAPException as e:
            raise DirectoryConnectionError(f"Invalid bind credentials for {user}: {e}") from e
        return self._bind(connection, user)

    def _bind(self, connection: Connection, principal: str) -> Connection:
        try:
            # open() returns nothing; an unreachable server surfaces as LDAPSocketOpenError
            connection.open()
            if not connection.bind():
                raise DirectoryConnectionError(f"Bind failed: {describe_result(connection.result)}")
        except DirectoryConnectionError:
            self._close(connection)
            raise
        except LDAPException as e:
            self._close(connection)
            raise DirectoryConnectionError(f"Failed to connect to {self.endpoint.host}: {e}") from e

        logger.debug(f"Bound to {self.endpoint.host} as {principal}")
        return connection

    def _close(self, connection: Connection) -> None:
        try:
            connection.unbind()
        except LDAPException as e:
            logger.warning(f"Error closing directory connection: {e}")

    def search_base(self, connection: Connection) -> str:
        """
        Determine the search root for a connection.

        Uses the base DN from the endpoint path, falling back to the naming
        context the server advertises.
        """
        if self.endpoint.base_dn:
            return self.endpoint.base_dn

        info = getattr(connection.server, 'info', None)
        if info is not None:
            default_context = (info.other or {}).get('defaultNamingContext')
            if default_context:
                return default_context[0]
            if info.naming_contexts:
                return info.naming_contexts[0]

        raise DirectoryQueryError("Cannot determine search base DN")


def describe_result(result: Optional[Dict[str, Any]]) -> str:
    """Render an ldap3 result dictionary as a short message."""
    if not result:
        return 'no result'
    description = result.get('description') or 'unknown error'
    message = (result.get('message') or '').strip()
    return f"{description} ({message})" if message else description
