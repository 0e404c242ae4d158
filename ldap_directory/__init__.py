"""
LDAP Directory - Authenticate users and read account data from a directory service.

This package wraps an LDAP directory behind a small client: user
authentication, nested group membership resolution, user and group
enumeration, single attribute reads and maintenance queries.
"""

from ldap_directory.client import DirectoryClient
from ldap_directory.errors import (
    DirectoryConnectionError,
    DirectoryError,
    DirectoryQueryError,
    FormatError,
    NotFoundError,
    OperationError,
)
from ldap_directory.models import (
    AuthResult,
    DirectoryEndpoint,
    MailingAddress,
    SearchQuery,
    SearchRecord,
    UserProfile,
    compare_users,
)

__version__ = "1.0.0"
__author__ = "LDAP Directory Team"
