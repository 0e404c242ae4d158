#!/usr/bin/env python3
"""
Tests for logging infrastructure.

Covers file handler setup, retention cleanup, credential scrubbing and the
security audit logger.
"""

import logging
import logging.handlers
import os
import shutil
import sys
import tempfile
import time
import unittest

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from ldap_directory.logging_setup import (
    LOG_FILE_NAME,
    LoggingManager,
    SensitiveDataFilter,
    security_logger,
)


def _scrub(message):
    record = logging.LogRecord('test', logging.INFO, __file__, 1, message, None, None)
    SensitiveDataFilter().filter(record)
    return record.msg


class TestSensitiveDataFilter(unittest.TestCase):
    """Test cases for credential scrubbing."""

    def test_key_value(self):
        self.assertEqual(_scrub('password=secret123'), 'password=****')
        self.assertEqual(_scrub('bind with pwd=abc, user=alice'), 'bind with pwd=****, user=alice')
        self.assertEqual(_scrub('token=abc123def456'), 'token=****')

    def test_json_values(self):
        self.assertEqual(_scrub('{"bind_password": "topsecret"}'), '{"bind_password": "****"}')
        self.assertEqual(_scrub('{"password": "test123"}'), '{"password": "****"}')
        self.assertEqual(_scrub('{"token": 12345}'), '{"token": ****}')

    def test_python_repr(self):
        self.assertEqual(_scrub("{'new_password': 'N3w'}"), "{'new_password': '****'}")

    def test_case_insensitive(self):
        self.assertEqual(_scrub('PASSWORD=Hunter2'), 'PASSWORD=****')

    def test_plain_message_untouched(self):
        message = 'Authentication SUCCESS: user=alice'
        self.assertEqual(_scrub(message), message)

    def test_always_lets_record_through(self):
        record = logging.LogRecord('test', logging.INFO, __file__, 1, 'password=x', None, None)
        self.assertTrue(SensitiveDataFilter().filter(record))


class TestLoggingManager(unittest.TestCase):
    """Test cases for LoggingManager."""

    def setUp(self):
        self.temp_dir = tempfile.mkdtemp(prefix='ldap_directory_logs_')
        self.manager = LoggingManager()
        self.root_logger = logging.getLogger()
        self.saved_handlers = self.root_logger.handlers[:]
        self.saved_level = self.root_logger.level

    def tearDown(self):
        self.manager.reset()
        for handler in self.saved_handlers:
            self.root_logger.addHandler(handler)
        self.root_logger.setLevel(self.saved_level)
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def config(self, **overrides):
        config = {
            'level': 'DEBUG',
            'log_dir': self.temp_dir,
            'rotation': 'daily',
            'retention_days': 3,
            'console_output': False,
        }
        config.update(overrides)
        return config

    def read_log(self):
        with open(os.path.join(self.temp_dir, LOG_FILE_NAME), encoding='utf-8') as f:
            return f.read()

    def test_daily_rotation_handler(self):
        self.manager.setup_logging(self.config())

        handlers = self.root_logger.handlers
        self.assertEqual(len(handlers), 1)
        self.assertIsInstance(handlers[0], logging.handlers.TimedRotatingFileHandler)
        self.assertEqual(handlers[0].backupCount, 3)
        self.assertEqual(self.root_logger.level, logging.DEBUG)

    def test_plain_file_handler_without_rotation(self):
        self.manager.setup_logging(self.config(rotation='none'))

        handler = self.root_logger.handlers[0]
        self.assertIsInstance(handler, logging.FileHandler)
        self.assertNotIsInstance(handler, logging.handlers.TimedRotatingFileHandler)

    def test_console_handler(self):
        self.manager.setup_logging(self.config(console_output=True, console_level='ERROR'))

        stream_handlers = [
            handler for handler in self.root_logger.handlers
            if type(handler) is logging.StreamHandler
        ]
        self.assertEqual(len(stream_handlers), 1)
        self.assertEqual(stream_handlers[0].level, logging.ERROR)

    def test_messages_written_and_scrubbed(self):
        self.manager.setup_logging(self.config())

        logging.getLogger('ldap_directory.test').info('binding as svc_reader with password=hunter2')

        content = self.read_log()
        self.assertIn('binding as svc_reader', content)
        self.assertIn('password=****', content)
        self.assertNotIn('hunter2', content)

    def test_creates_missing_log_directory(self):
        log_dir = os.path.join(self.temp_dir, 'nested', 'logs')
        self.manager.setup_logging(self.config(log_dir=log_dir))
        self.assertTrue(os.path.isdir(log_dir))

    def test_configures_once_until_reset(self):
        self.manager.setup_logging(self.config())
        self.manager.setup_logging(self.config(console_output=True))
        self.assertEqual(len(self.root_logger.handlers), 1)

        self.manager.reset()
        self.assertFalse(self.manager.configured)
        self.assertEqual(self.root_logger.handlers, [])

    def test_old_rotated_logs_removed(self):
        old_file = os.path.join(self.temp_dir, LOG_FILE_NAME + '.2020-01-01')
        recent_file = os.path.join(self.temp_dir, LOG_FILE_NAME + '.2099-01-01')
        for path in (old_file, recent_file):
            with open(path, 'w') as f:
                f.write('old entries\n')
        ten_days_ago = time.time() - 10 * 86400
        os.utime(old_file, (ten_days_ago, ten_days_ago))

        self.manager.setup_logging(self.config())

        self.assertFalse(os.path.exists(old_file))
        self.assertTrue(os.path.exists(recent_file))
        self.assertIn(os.path.join(self.temp_dir, LOG_FILE_NAME), self.manager.get_log_files())


class TestSecurityAuditLogger(unittest.TestCase):
    """Test cases for the security audit logger."""

    def test_authentication_events(self):
        with self.assertLogs('security', level='INFO') as captured:
            security_logger.log_authentication_attempt('alice', True)
            security_logger.log_authentication_attempt('bob', False)

        self.assertIn('Authentication SUCCESS: user=alice', captured.output[0])
        self.assertIn('Authentication FAILURE: user=bob', captured.output[1])

    def test_password_events(self):
        with self.assertLogs('security', level='INFO') as captured:
            security_logger.log_password_change('alice', True)
            security_logger.log_lockout_cleared('alice')

        self.assertIn('Password change SUCCESS: user=alice', captured.output[0])
        self.assertIn('Account lockout cleared: user=alice', captured.output[1])


if __name__ == '__main__':
    unittest.main()
