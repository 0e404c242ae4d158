"""
Directory client facade.

DirectoryClient is the public entry point: it authenticates users, resolves
their group membership, enumerates users and groups, reads single account
attributes and runs the maintenance queries that find accounts with missing
profile data. Every call opens its own connection and releases it before
returning.
"""

import logging
import traceback
from datetime import datetime
from typing import Any, Dict, List, Optional

from ldap3 import LEVEL, MODIFY_REPLACE, Connection
from ldap3.core.exceptions import LDAPException

from ldap_directory.errors import FormatError, NotFoundError, OperationError
from ldap_directory.logging_setup import security_logger
from ldap_directory.membership import MEMBER_OF, MembershipResolver
from ldap_directory.models import (
    AuthResult,
    DirectoryEndpoint,
    MailingAddress,
    SearchRecord,
    UserProfile,
    UserProfileBuilder,
    sort_users,
)
from ldap_directory.names import to_common_name
from ldap_directory.query import QueryExecutor
from ldap_directory.session import DirectorySession, describe_result
from ldap_directory.utils import escape_filter_value, filetime_to_datetime

logger = logging.getLogger(__name__)

AUTHENTICATE = 'Authenticate'
AUTHENTICATION_FAILED = 'Authentication failed.'

LOGIN_FILTER = '(sAMAccountName={username})'
ACCOUNT_FILTER = '(&(objectCategory=person)(sAMAccountName={username}))'
EMAIL_FILTER = '(&(objectCategory=person)(mail={email}))'
PERSON_FILTER = '(&(objectCategory=person))'
GROUP_FILTER = '(&(objectClass=group))'
LOCAL_ACCOUNT_FILTER = '(cn={name})'
# Active person accounts (ACCOUNTDISABLE bit clear) lacking an attribute
MISSING_ATTRIBUTE_FILTER = ('(&(objectCategory=person)(!({attribute}=*))'
                            '(!(userAccountControl:1.2.840.113556.1.4.803:=2)))')

ADDRESS_ATTRIBUTES = ['streetAddress', 'postOfficeBox', 'l', 'st', 'postalCode', 'c']
PROFILE_ATTRIBUTES = [MEMBER_OF, 'mail', 'department', 'telephoneNumber']


class DirectoryClient:
    """
    Authentication and read/maintenance operations against a directory.

    Lookups expecting exactly one account raise NotFoundError when it does
    not exist; collection queries return an empty list instead.
    """

    def __init__(self, session: DirectorySession, page_size: int = 1000):
        self.session = session
        self.executor = QueryExecutor(session, page_size=page_size)
        self.resolver = MembershipResolver(self.executor)

    @classmethod
    def from_config(cls, config: Dict[str, Any]) -> 'DirectoryClient':
        """
        Build a client from the 'directory' configuration section.

        Args:
            config: Directory configuration dictionary

        Returns:
            Configured DirectoryClient
        """
        endpoint = DirectoryEndpoint(
            path=config['path'],
            username=config.get('username'),
            password=config.get('password')
        )
        return cls(DirectorySession(endpoint, config), page_size=config.get('page_size', 1000))

    @classmethod
    def for_path(cls, path: str, username: Optional[str] = None, password: Optional[str] = None) -> 'DirectoryClient':
        return cls(DirectorySession(DirectoryEndpoint(path, username, password)))

    # Authentication

    def authenticate(self, username: str, password: str, include_profile: bool = False) -> AuthResult:
        """
        Authenticate a user by binding with the supplied credentials.

        A successful bind proves the password; the account is then looked up
        to build the returned profile. This method never raises: any failure
        is reported through a failed AuthResult.

        Args:
            username: Account being authenticated
            password: Account password
            include_profile: Also load e-mail, department, phone, mailing
                address and the full nested group membership

        Returns:
            AuthResult with result_code 0 and a user object on success,
            result_code 1 and error details otherwise
        """
        if not password:
            security_logger.log_authentication_attempt(username, False)
            return AuthResult.failure("A password is required.", process=AUTHENTICATE)

        try:
            with self.session.connect(username, password) as connection:
                attributes = ['cn', 'sAMAccountName']
                if include_profile:
                    attributes += PROFILE_ATTRIBUTES + ADDRESS_ATTRIBUTES

                search_filter = LOGIN_FILTER.format(username=escape_filter_value(username))
                record = self.executor.search_single(connection, search_filter, attributes)
                if record is None:
                    logger.info(f"Bind succeeded but no account matched {username}")
                    security_logger.log_authentication_attempt(username, False)
                    return AuthResult.failure(AUTHENTICATION_FAILED, process=AUTHENTICATE)

                builder = UserProfileBuilder(
                    username=record.first('sAMAccountName', username),
                    display_name=record.first('cn')
                )
                if include_profile:
                    self._populate_profile(connection, record, builder)

                security_logger.log_authentication_attempt(username, True)
                return AuthResult.success(builder.build())

        except Exception as e:
            logger.warning(f"Authentication of {username} failed: {e}")
            security_logger.log_authentication_attempt(username, False)
            return AuthResult.failure(
                str(e).strip() or type(e).__name__,
                process=AUTHENTICATE,
                full_error_message=''.join(traceback.format_exception(type(e), e, e.__traceback__)).strip(),
                source=_error_source(e)
            )

    def _populate_profile(self, connection: Connection, record: SearchRecord, builder: UserProfileBuilder) -> None:
        builder.email = record.first('mail')
        builder.department = record.first('department')
        builder.phone = record.first('telephoneNumber')
        builder.mailing_address = _address_from_record(record)

        direct_groups = self.executor.extract_names([record], MEMBER_OF)
        builder.add_groups(self.resolver.expand(connection, direct_groups))

    # Group membership

    def get_user_group_membership(self, username: str) -> List[str]:
        """All groups the user belongs to, including nested memberships."""
        with self.session.connect() as connection:
            return self.resolver.resolve_for_user(connection, username)

    def get_group_membership(self, group_name: str) -> List[str]:
        """All groups a group belongs to, including nested memberships."""
        with self.session.connect() as connection:
            return self.resolver.resolve_for_group(connection, group_name)

    def get_local_group_membership(self, username: str) -> List[str]:
        """
        Direct group memberships of an account stored directly under the search root.

        Only one level is reported; nested groups are not expanded.

        Raises:
            NotFoundError: If no such child entry exists
        """
        with self.session.connect() as connection:
            base = self.session.search_base(connection)
            search_filter = LOCAL_ACCOUNT_FILTER.format(name=escape_filter_value(username))
            record = self.executor.search_single(
                connection, search_filter, [MEMBER_OF], search_base=base, search_scope=LEVEL
            )
            if record is None:
                raise NotFoundError(f"No account named {username} under {base}")
            return self.executor.extract_names([record], MEMBER_OF)

    # Enumeration

    def get_groups(self) -> List[str]:
        """Names of every group in the directory, sorted."""
        with self.session.connect() as connection:
            records = self.executor.search(connection, GROUP_FILTER)
        return sorted(self.executor.extract_names(records))

    def get_users(self, search_filter: str = '') -> List[UserProfile]:
        """
        Person accounts with their username and display name, sorted by display name.

        Args:
            search_filter: Custom filter; all persons when empty
        """
        with self.session.connect() as connection:
            records = self.executor.search(
                connection, search_filter or PERSON_FILTER, ['sAMAccountName', 'displayName']
            )

        users = []
        for record in records:
            username = record.first('sAMAccountName')
            if not username:
                logger.warning(f"User entry has no account name: {record.dn}")
                continue
            users.append(UserProfileBuilder(username, record.first('displayName')).build())
        return sort_users(users)

    def user_exists(self, username: str) -> bool:
        search_filter = ACCOUNT_FILTER.format(username=escape_filter_value(username))
        with self.session.connect() as connection:
            return len(self.executor.search(connection, search_filter)) > 0

    def get_user_name_by_email(self, email: str) -> str:
        """
        Find the account name that owns an e-mail address.

        Falls back to treating the part before '@' as an account name when no
        account carries the address. Returns an empty string if both fail.
        """
        attributes = ['sAMAccountName']
        with self.session.connect() as connection:
            search_filter = EMAIL_FILTER.format(email=escape_filter_value(email))
            record = self.executor.search_single(connection, search_filter, attributes)

            if record is None and '@' in email:
                local_part = email.split('@', 1)[0]
                if local_part:
                    search_filter = ACCOUNT_FILTER.format(username=escape_filter_value(local_part))
                    record = self.executor.search_single(connection, search_filter, attributes)

        if record is None:
            return ''
        return record.first('sAMAccountName') or to_common_name(record.dn)

    # Single attribute reads

    def get_user_property(self, username: str, attribute: str) -> str:
        """
        Read the first value of one attribute of an account.

        Raises:
            NotFoundError: If the account does not exist or the attribute is not set
        """
        with self.session.connect() as connection:
            return self._read_property(connection, username, attribute)

    def get_user_email_address(self, username: str) -> str:
        return self.get_user_property(username, 'mail')

    def get_user_company(self, username: str) -> str:
        return self.get_user_property(username, 'company')

    def get_user_display_name(self, username: str) -> str:
        return self.get_user_property(username, 'displayName')

    def get_user_department(self, username: str) -> str:
        return self.get_user_property(username, 'department')

    def get_user_phone_number(self, username: str) -> str:
        return self.get_user_property(username, 'telephoneNumber')

    def get_user_address(self, username: str) -> MailingAddress:
        """
        Read the mailing address of an account.

        The street attribute is split at its first line break into two lines;
        unset address attributes come back as empty strings.

        Raises:
            NotFoundError: If the account does not exist
        """
        with self.session.connect() as connection:
            return self._read_address(connection, username)

    def get_password_last_changed(self, username: str) -> Optional[datetime]:
        """
        When the account password was last set, in UTC.

        Returns None when the directory records that the password was never
        set (or must be changed at next logon).
        """
        value = self.get_user_property(username, 'pwdLastSet')
        try:
            return filetime_to_datetime(value)
        except ValueError as e:
            raise FormatError(f"Unexpected pwdLastSet value for {username}: {value!r}") from e

    # Writes

    def change_password(self, username: str, new_password: str) -> None:
        """
        Set a new password and clear any account lockout.

        The two changes are separate directory operations: if clearing the
        lockout fails, the new password stays in place.

        Raises:
            NotFoundError: If the account does not exist
            OperationError: If the directory rejects either change
        """
        with self.session.connect() as connection:
            record = self._find_account(connection, username, ['sAMAccountName'])
            try:
                if not connection.extend.microsoft.modify_password(record.dn, new_password):
                    raise OperationError(f"Password change for {username} rejected: "
                                         f"{describe_result(connection.result)}")
                security_logger.log_password_change(username, True)

                # Unlock the account in case too many failed logins locked it
                if not connection.modify(record.dn, {'lockoutTime': [(MODIFY_REPLACE, ['0'])]}):
                    raise OperationError(f"Clearing lockout for {username} rejected: "
                                         f"{describe_result(connection.result)}")
                security_logger.log_lockout_cleared(username)
            except LDAPException as e:
                security_logger.log_password_change(username, False)
                raise OperationError(f"Password change for {username} failed: {e}") from e
            except OperationError:
                security_logger.log_password_change(username, False)
                raise

    # Maintenance queries

    def get_users_with_missing_property(self, attribute: str) -> List[UserProfile]:
        """Active person accounts that have no value for the given attribute."""
        search_filter = MISSING_ATTRIBUTE_FILTER.format(attribute=attribute)
        with self.session.connect() as connection:
            records = self.executor.search(connection, search_filter, ['sAMAccountName', 'cn'])

        users = [
            UserProfileBuilder(record.first('sAMAccountName'), record.first('cn')).build()
            for record in records
        ]
        return sort_users(users)

    def get_users_with_missing_office(self) -> List[UserProfile]:
        return self.get_users_with_missing_property('physicalDeliveryOfficeName')

    def get_users_with_missing_phone_number(self) -> List[UserProfile]:
        return self.get_users_with_missing_property('telephoneNumber')

    def get_users_with_missing_email_address(self) -> List[UserProfile]:
        return self.get_users_with_missing_property('mail')

    def get_users_with_missing_address(self) -> List[UserProfile]:
        return self.get_users_with_missing_property('streetAddress')

    def get_users_with_missing_department(self) -> List[UserProfile]:
        return self.get_users_with_missing_property('department')

    def get_users_password_expiration(self, search_filter: str = '') -> List[UserProfile]:
        """Person accounts with the time their password was last set, sorted by display name."""
        with self.session.connect() as connection:
            records = self.executor.search(
                connection, search_filter or PERSON_FILTER, ['sAMAccountName', 'displayName', 'pwdLastSet']
            )

        users = []
        for record in records:
            username = record.first('sAMAccountName')
            if not username:
                logger.warning(f"User entry has no account name: {record.dn}")
                continue
            builder = UserProfileBuilder(username, record.first('displayName'))
            raw_value = record.first('pwdLastSet')
            if raw_value:
                try:
                    builder.password_last_set = filetime_to_datetime(raw_value)
                except ValueError:
                    logger.warning(f"Ignoring unreadable pwdLastSet {raw_value!r} on {record.dn}")
            users.append(builder.build())
        return sort_users(users)

    # Helpers

    def _find_account(self, connection: Connection, username: str, attributes: List[str]) -> SearchRecord:
        search_filter = ACCOUNT_FILTER.format(username=escape_filter_value(username))
        record = self.executor.search_single(connection, search_filter, attributes)
        if record is None:
            raise NotFoundError(f"No account found for {username}")
        return record

    def _read_property(self, connection: Connection, username: str, attribute: str) -> str:
        record = self._find_account(connection, username, [attribute])
        value = record.first(attribute)
        if value is None:
            raise NotFoundError(f"Attribute {attribute} is not set for {username}")
        return value

    def _read_address(self, connection: Connection, username: str) -> MailingAddress:
        return _address_from_record(self._find_account(connection, username, ADDRESS_ATTRIBUTES))


def _address_from_record(record: SearchRecord) -> MailingAddress:
    """Mailing address from a record that was read with ADDRESS_ATTRIBUTES."""
    return MailingAddress.from_attributes(
        street=record.first('streetAddress', ''),
        po_box=record.first('postOfficeBox', ''),
        city=record.first('l', ''),
        state=record.first('st', ''),
        postal_code=record.first('postalCode', ''),
        country=record.first('c', '')
    )


def _error_source(error: BaseException) -> str:
    """Module that raised the error, looking through wrapper exceptions."""
    origin = error.__cause__ or error
    return type(origin).__module__
