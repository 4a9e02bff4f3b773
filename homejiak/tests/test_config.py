"""
Tests for the settings layer.
"""
import configparser
import os
import tempfile
import unittest
from decimal import Decimal
from pathlib import Path
from unittest.mock import patch

from homejiak.config import config


class TestConfig(unittest.TestCase):
    def tearDown(self):
        config._config.remove_section('TEST_SECTION')

    def test_defaults(self):
        self.assertEqual(config.get('APP', 'auth_path'), '/auth')
        self.assertEqual(config.checkout_config['gst_rate'], Decimal('0.09'))
        self.assertEqual(config.stream_config['poll_interval_seconds'], 5.0)
        self.assertEqual(config.get('NOPE', 'missing', 'fallback'), 'fallback')

    def test_typed_getters(self):
        config.set('TEST_SECTION', 'count', 7)
        config.set('TEST_SECTION', 'flag', 'yes')
        config.set('TEST_SECTION', 'amount', 'abc')

        self.assertEqual(config.get_int('TEST_SECTION', 'count'), 7)
        self.assertEqual(config.get_float('TEST_SECTION', 'count'), 7.0)
        self.assertTrue(config.get_boolean('TEST_SECTION', 'flag'))
        self.assertEqual(config.get_decimal('TEST_SECTION', 'amount', Decimal('1')), Decimal('1'))
        self.assertEqual(config.get_int('TEST_SECTION', 'amount', 3), 3)

    def test_environment_override(self):
        with patch.dict(os.environ, {'LOG_LEVEL': 'DEBUG'}):
            self.assertEqual(config.get('LOGGING', 'level'), 'DEBUG')

    def test_save(self):
        config.set('TEST_SECTION', 'saved', 'value')
        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / 'nested' / 'settings.ini'
            with patch.object(config, '_config_path', path):
                self.assertEqual(config.save(), path)

            written = configparser.ConfigParser(interpolation=None)
            written.read(path)
            self.assertEqual(written.get('TEST_SECTION', 'saved'), 'value')


if __name__ == '__main__':
    unittest.main()
