#!/usr/bin/env python3
"""
End-to-end tests against ldap3's in-memory MOCK_SYNC strategy.

Sessions build real ldap3 Connection objects here, so open, bind, paged
search and unbind all go through ldap3 itself rather than a stand-in.
"""

import os
import sys
import unittest
from functools import partial
from unittest.mock import patch

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from ldap3 import MOCK_SYNC, Connection

from ldap_directory.client import DirectoryClient
from ldap_directory.errors import DirectoryConnectionError
from ldap_directory.models import DirectoryEndpoint
from ldap_directory.session import DirectorySession

BASE_DN = 'DC=example,DC=com'
SERVICE_DN = f'CN=svc_reader,OU=Service,{BASE_DN}'
ALICE_DN = f'CN=alice,OU=Users,{BASE_DN}'


class MockDirectoryTestCase(unittest.TestCase):

    def setUp(self):
        patcher = patch('ldap_directory.session.Connection', partial(Connection, client_strategy=MOCK_SYNC))
        patcher.start()
        self.addCleanup(patcher.stop)

    def make_session(self, username=SERVICE_DN, password='secret', **options):
        session = DirectorySession(
            DirectoryEndpoint(f'ldap://dc01.example.com/{BASE_DN}', username, password),
            options
        )
        # MOCK_SYNC keeps its entries on the Server object, shared by every connection
        seed = Connection(session.server, client_strategy=MOCK_SYNC).strategy
        seed.add_entry(SERVICE_DN, {'objectClass': 'user', 'sAMAccountName': 'svc_reader', 'userPassword': 'secret'})
        seed.add_entry(ALICE_DN, {
            'objectCategory': 'person',
            'sAMAccountName': 'alice',
            'displayName': 'Alice Smith',
            'mail': 'alice@example.com',
            'userPassword': 'alice-pw',
            'memberOf': [f'CN=Staff,OU=Groups,{BASE_DN}'],
        })
        seed.add_entry(f'CN=Staff,OU=Groups,{BASE_DN}', {
            'objectCategory': 'group',
            'memberOf': [f'CN=Everyone,OU=Groups,{BASE_DN}'],
        })
        seed.add_entry(f'CN=Everyone,OU=Groups,{BASE_DN}', {'objectCategory': 'group'})
        return session


class TestSessionWithLdap3(MockDirectoryTestCase):
    """DirectorySession driving real ldap3 connections."""

    def test_connect_with_stored_credentials(self):
        session = self.make_session()

        with session.connect() as connection:
            self.assertIsInstance(connection, Connection)
            self.assertTrue(connection.bound)

        self.assertTrue(connection.closed)

    def test_connect_anonymously(self):
        session = self.make_session(username=None, password=None)

        with session.connect() as connection:
            self.assertTrue(connection.bound)

    def test_wrong_password_rejected(self):
        session = self.make_session(password='wrong')

        with self.assertRaises(DirectoryConnectionError) as context:
            with session.connect():
                self.fail('block must not run')

        self.assertIn('Bind failed', str(context.exception))


class TestClientWithLdap3(MockDirectoryTestCase):
    """DirectoryClient operations over real ldap3 connections."""

    def setUp(self):
        super().setUp()
        self.client = DirectoryClient(self.make_session(user_bind_format='CN={username},OU=Users,' + BASE_DN))

    def test_user_exists(self):
        self.assertTrue(self.client.user_exists('alice'))
        self.assertFalse(self.client.user_exists('bob'))

    def test_single_attribute_read(self):
        self.assertEqual(self.client.get_user_email_address('alice'), 'alice@example.com')

    def test_nested_group_membership(self):
        self.assertEqual(self.client.get_user_group_membership('alice'), ['Staff', 'Everyone'])

    def test_authenticate(self):
        result = self.client.authenticate('alice', 'alice-pw')

        self.assertEqual(result.result_code, 0)
        self.assertEqual(result.user_object.username, 'alice')

    def test_authenticate_wrong_password(self):
        result = self.client.authenticate('alice', 'nope')

        self.assertEqual(result.result_code, 1)
        self.assertIn('Bind failed', result.error_message)
        self.assertIsNone(result.user_object)


if __name__ == '__main__':
    unittest.main()
