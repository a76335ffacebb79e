"""
Tests for structured logging, PII masking and security events.
"""
import json
import logging
from unittest.mock import patch

from django.test import SimpleTestCase

from apps.core.logging import JSONFormatter, PIIMasker, SecurityLogger
from apps.core.middleware import LoggingFilter, _request_context


class PIIMaskerTestCase(SimpleTestCase):
    """Test PII masking functionality."""

    def test_mask_email_addresses(self):
        masked = PIIMasker.mask_email("Contact nurse@hospital.test or admin@hospital.test")

        self.assertIn("n****@hospital.test", masked)
        self.assertNotIn("nurse@hospital.test", masked)
        self.assertIn("a****@hospital.test", masked)

    def test_mask_phone_numbers(self):
        masked = PIIMasker.mask_phone("Call +254712345678")
        self.assertIn("+25", masked)
        self.assertNotIn("+254712345678", masked)

    def test_mask_secrets(self):
        masked = PIIMasker.mask_secrets('password="hunter2" token: abc.def')
        self.assertNotIn("hunter2", masked)
        self.assertNotIn("abc.def", masked)

    def test_mask_dict_sensitive_fields(self):
        data = {
            'role': 'Pharmacy Admin',
            'password': 'SecurePass123!',
            'medical_record_number': 'MRN-0001',
            'nested': {'token': 'jwt-value', 'email': 'doc@hospital.test'},
            'count': 3,
        }
        masked = PIIMasker.mask_dict(data)

        self.assertEqual(masked['role'], 'Pharmacy Admin')
        self.assertEqual(masked['password'], '********')
        self.assertEqual(masked['medical_record_number'], '********')
        self.assertEqual(masked['nested']['token'], '********')
        self.assertEqual(masked['nested']['email'], 'd**@hospital.test')
        self.assertEqual(masked['count'], 3)


class JSONFormatterTestCase(SimpleTestCase):
    """Test JSON log formatting."""

    def _record(self, msg, **extra):
        record = logging.LogRecord(
            name='apps.rbac.services', level=logging.INFO, pathname=__file__,
            lineno=10, msg=msg, args=(), exc_info=None,
        )
        for key, value in extra.items():
            setattr(record, key, value)
        return record

    def test_output_is_json_with_standard_fields(self):
        output = json.loads(JSONFormatter().format(self._record("Role created")))

        self.assertEqual(output['level'], 'INFO')
        self.assertEqual(output['logger'], 'apps.rbac.services')
        self.assertEqual(output['message'], 'Role created')
        self.assertTrue(output['timestamp'].endswith('Z'))

    def test_extra_fields_are_included_and_masked(self):
        record = self._record(
            "Login by admin@hospital.test",
            request_id='req-1',
            role_id='r-1',
            password='secret-value',
        )
        output = json.loads(JSONFormatter().format(record))

        self.assertEqual(output['request_id'], 'req-1')
        self.assertEqual(output['role_id'], 'r-1')
        self.assertNotIn('admin@hospital.test', output['message'])

    def test_unserializable_extra_is_stringified(self):
        output = json.loads(JSONFormatter().format(self._record("x", target=object())))
        self.assertIsInstance(output['target'], str)


class LoggingFilterTestCase(SimpleTestCase):

    def tearDown(self):
        _request_context.request_id = None

    def test_adds_request_id_from_thread_local(self):
        _request_context.request_id = 'req-42'
        record = logging.LogRecord('x', logging.INFO, __file__, 1, 'msg', (), None)

        self.assertTrue(LoggingFilter().filter(record))
        self.assertEqual(record.request_id, 'req-42')

    def test_keeps_explicit_request_id(self):
        _request_context.request_id = 'req-42'
        record = logging.LogRecord('x', logging.INFO, __file__, 1, 'msg', (), None)
        record.request_id = 'explicit'

        LoggingFilter().filter(record)
        self.assertEqual(record.request_id, 'explicit')


class SecurityLoggerTestCase(SimpleTestCase):

    def test_log_event_writes_to_security_logger(self):
        with self.assertLogs('security', level='WARNING') as captured:
            SecurityLogger.log_event('permission_denied', path='/v1/rbac/export')

        self.assertIn('Security event: permission_denied', captured.output[0])

    def test_critical_events_are_sent_to_sentry(self):
        with patch('apps.core.logging.sentry_sdk.capture_message') as capture, \
                self.assertLogs('security', level='ERROR'):
            SecurityLogger.log_protected_role_violation(None, 'Super Admin', 'create_role')

        capture.assert_called_once()
        self.assertIn('protected_role_violation', capture.call_args[0][0])

    def test_non_critical_events_are_not_sent_to_sentry(self):
        with patch('apps.core.logging.sentry_sdk.capture_message') as capture, \
                self.assertLogs('security', level='WARNING'):
            SecurityLogger.log_failed_login('nurse@hospital.test', '127.0.0.1', reason='Invalid credentials')

        capture.assert_not_called()
