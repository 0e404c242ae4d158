"""
In-memory stand-ins for an ldap3 connection and a directory session.

FakeConnection answers searches from a table keyed by the exact filter
string, returning raw attribute values the way ldap3 does.
"""

import os
import sys
from contextlib import contextmanager
from unittest.mock import Mock

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from ldap3 import SUBTREE

from ldap_directory.models import DirectoryEndpoint
from ldap_directory.session import DirectorySession

BASE_DN = 'DC=example,DC=com'


class FakeConnection:
    """Minimal ldap3 Connection replacement."""

    def __init__(self):
        self.entries = {}
        self.searches = []
        self.modifications = []
        self.password_changes = []
        self.response = []
        self.result = {'result': 0, 'description': 'success', 'message': ''}
        self.modify_succeeds = True
        self.password_change_succeeds = True
        self.unbind_count = 0
        self.server = Mock(info=None)
        self.extend = Mock()
        self.extend.microsoft.modify_password.side_effect = self._modify_password

    def add(self, search_filter, dn, **attributes):
        """Register an entry returned for a filter; attribute values may be str or list."""
        values = {
            name: value if isinstance(value, list) else [value]
            for name, value in attributes.items()
        }
        self.entries.setdefault(search_filter, []).append((dn, values))
        return self

    def add_group(self, name, parents=(), ou='OU=Groups'):
        """Register a group and the groups it is a direct member of."""
        search_filter = f'(&(objectCategory=group)(cn={name}))'
        member_of = [f'CN={parent},{ou},{BASE_DN}' for parent in parents]
        return self.add(search_filter, f'CN={name},{ou},{BASE_DN}', memberOf=member_of)

    def searches_for(self, search_filter):
        return [search for search in self.searches if search['search_filter'] == search_filter]

    def search(self, search_base, search_filter, search_scope=SUBTREE, attributes=None,
               paged_size=None, paged_cookie=None, **kwargs):
        self.searches.append({
            'search_base': search_base,
            'search_filter': search_filter,
            'search_scope': search_scope,
            'attributes': attributes,
            'paged_size': paged_size,
        })
        wanted = {name.lower() for name in (attributes or [])}
        self.response = []
        for dn, values in self.entries.get(search_filter, []):
            raw = {
                name: [value.encode('utf-8') for value in vals]
                for name, vals in values.items()
                if name.lower() in wanted
            }
            self.response.append({'type': 'searchResEntry', 'dn': dn, 'raw_attributes': raw})
        self.result = {'result': 0, 'description': 'success', 'message': '', 'controls': {}}
        return bool(self.response)

    def modify(self, dn, changes):
        self.modifications.append((dn, changes))
        if not self.modify_succeeds:
            self.result = {'result': 50, 'description': 'insufficientAccessRights', 'message': ''}
        return self.modify_succeeds

    def _modify_password(self, dn, new_password, old_password=None):
        self.password_changes.append((dn, new_password))
        if not self.password_change_succeeds:
            self.result = {'result': 19, 'description': 'constraintViolation', 'message': 'password policy'}
        return self.password_change_succeeds

    def unbind(self):
        self.unbind_count += 1
        return True


class FakeSession(DirectorySession):
    """DirectorySession that hands out a FakeConnection instead of binding."""

    def __init__(self, connection=None, base_dn=BASE_DN):
        super().__init__(DirectoryEndpoint(f'ldap://dc01.example.com/{base_dn}'))
        self.connection = connection or FakeConnection()
        self.connect_calls = []
        self.bind_error = None

    @contextmanager
    def connect(self, username=None, password=None):
        self.connect_calls.append((username, password))
        if self.bind_error is not None:
            raise self.bind_error
        try:
            yield self.connection
        finally:
            self.connection.unbind()
