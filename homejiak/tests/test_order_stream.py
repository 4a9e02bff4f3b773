"""
Tests for the live order feed: server-side polling and the reconnecting client.
"""
import unittest
from datetime import datetime
from unittest.mock import MagicMock, patch

import requests

from homejiak.db import db
from homejiak.services.order_stream import (
    OrderStreamClient, OrderStreamPoller, ReconnectBackoff, format_sse, parse_sse_lines
)
from homejiak.tests.base import DatabaseTestCase

SINCE = datetime(2024, 5, 9, 0, 0)
NOW = datetime(2024, 5, 9, 0, 5)


class FakeTime:
    """Monotonic clock that only advances when sleep is called."""

    def __init__(self):
        self.now = 0.0
        self.sleeps = []

    def clock(self):
        return self.now

    def sleep(self, seconds):
        self.sleeps.append(seconds)
        self.now += seconds


class TestSSEFormat(unittest.TestCase):
    def test_format(self):
        self.assertEqual(format_sse({'type': 'heartbeat'}), 'data: {"type": "heartbeat"}\n\n')

    def test_parse(self):
        lines = [
            ': keep-alive comment',
            'data: {"type": "connected"}',
            '',
            'data: {not json',
            '',
            'event: ignored',
            'data: {"type":',
            'data: "new_order"}',
            '',
            b'data: {"type": "heartbeat"}',
        ]
        self.assertEqual(list(parse_sse_lines(lines)),
                         [{'type': 'connected'}, {'type': 'new_order'}, {'type': 'heartbeat'}])


class TestOrderStreamPoller(DatabaseTestCase):
    def setUp(self):
        super().setUp()
        self.merchant = self.make_merchant()
        self.poller = OrderStreamPoller(db.session_factory, self.merchant.id, poll_interval=5,
                                        backoff_factor=2, clock=lambda: NOW, sleep=MagicMock())

    def test_poll_once_splits_new_and_updated(self):
        new = self.make_order(self.merchant, created_at=datetime(2024, 5, 9, 0, 1))
        updated = self.make_order(self.merchant, created_at=datetime(2024, 5, 8, 9, 0),
                                  updated_at=datetime(2024, 5, 9, 0, 2))
        self.make_order(self.merchant, created_at=datetime(2024, 5, 8, 9, 0), updated_at=datetime(2024, 5, 8, 9, 0))
        self.make_order(self.make_merchant(), created_at=datetime(2024, 5, 9, 0, 1))

        events, checkpoint = self.poller.poll_once(SINCE)

        self.assertEqual(checkpoint, NOW)
        self.assertEqual([e['type'] for e in events], ['new_order', 'order_updated', 'heartbeat'])
        self.assertEqual(events[0]['order']['id'], new.id)
        self.assertEqual(events[1]['order']['id'], updated.id)
        self.assertEqual(events[2]['timestamp'], NOW.isoformat())

    @patch('homejiak.services.order_stream.log_exception')
    def test_stream_backs_off_after_failed_poll(self, log_exception):
        sleeps = []
        poller = OrderStreamPoller(db.session_factory, self.merchant.id, poll_interval=5, backoff_factor=2,
                                   clock=lambda: NOW, sleep=sleeps.append)
        poller.poll_once = MagicMock(side_effect=[
            RuntimeError('database unavailable'),
            ([{'type': 'heartbeat'}], NOW),
            ([{'type': 'heartbeat'}], NOW),
        ])

        events = list(poller.stream(max_polls=3))

        self.assertEqual(events[0]['type'], 'connected')
        self.assertEqual(events[0]['merchantId'], self.merchant.id)
        self.assertEqual([e['type'] for e in events[1:]], ['heartbeat', 'heartbeat'])
        self.assertEqual(sleeps, [5, 10, 5])
        log_exception.assert_called_once()
        self.assertIn('database unavailable', str(log_exception.call_args.args[1]))

    def test_stream_with_no_polls(self):
        self.assertEqual([e['type'] for e in self.poller.stream(max_polls=0)], ['connected'])


class TestReconnectBackoff(unittest.TestCase):
    def test_exponential_then_fallback(self):
        backoff = ReconnectBackoff(base=1, max_delay=30, max_attempts=7, fallback=60)
        delays = [backoff.next_delay() for _ in range(9)]
        self.assertEqual(delays, [1, 2, 4, 8, 16, 30, 30, 60, 60])
        self.assertTrue(backoff.exhausted)
        backoff.reset()
        self.assertEqual(backoff.next_delay(), 1)

    def test_defaults_from_config(self):
        backoff = ReconnectBackoff()
        self.assertEqual([backoff.next_delay() for _ in range(6)], [1, 2, 4, 8, 16, 30])


class TestOrderStreamClient(unittest.TestCase):
    def setUp(self):
        self.time = FakeTime()
        self.http = MagicMock()
        self.events = []
        self.fallback = MagicMock()

    def make_client(self, **kwargs):
        return OrderStreamClient(
            'https://shop.example.com/', 'token-1', self.events.append,
            fallback_fetch=self.fallback,
            backoff=ReconnectBackoff(base=1, max_delay=30, max_attempts=3, fallback=30),
            http=self.http, sleep=self.time.sleep, clock=self.time.clock, **kwargs)

    def stream_response(self, *lines):
        response = MagicMock()
        response.iter_lines.return_value = list(lines)
        return response

    def test_dispatches_events_and_sends_token(self):
        self.http.get.return_value = self.stream_response('data: {"type": "connected"}', '',
                                                          'data: {"type": "new_order"}', '')
        client = self.make_client()
        client.run(max_connections=1)

        self.assertEqual([e['type'] for e in self.events], ['connected', 'new_order'])
        args, kwargs = self.http.get.call_args
        self.assertEqual(args[0], 'https://shop.example.com/api/orders/stream')
        self.assertEqual(kwargs['headers']['Authorization'], 'Bearer token-1')
        self.assertTrue(kwargs['stream'])
        self.assertFalse(client.connected)

    def test_reconnect_delays_and_fallback_polling(self):
        self.http.get.side_effect = requests.ConnectionError('connection refused')
        client = self.make_client()
        client.run(max_connections=5)

        self.assertEqual(self.time.sleeps, [1, 2, 4, 30, 30])
        # Fallback runs at most once per fallback interval while disconnected
        self.assertEqual(self.fallback.call_count, 2)

    def test_successful_connection_resets_backoff(self):
        self.http.get.side_effect = [
            requests.ConnectionError('refused'),
            requests.ConnectionError('refused'),
            self.stream_response('data: {"type": "heartbeat"}', ''),
        ]
        client = self.make_client()
        client.run(max_connections=3)

        self.assertEqual(self.time.sleeps, [1, 2, 1])
        self.assertEqual(self.events, [{'type': 'heartbeat'}])

    def test_fallback_errors_are_logged(self):
        self.fallback.side_effect = requests.Timeout('slow')
        self.http.get.side_effect = requests.ConnectionError('refused')
        client = self.make_client()
        client.run(max_connections=1)
        self.assertEqual(self.time.sleeps, [1])

    def test_stop_from_handler(self):
        self.http.get.return_value = self.stream_response('data: {"type": "a"}', '', 'data: {"type": "b"}', '')
        client = self.make_client()

        def handle(event):
            self.events.append(event)
            client.stop()

        client.on_event = handle
        client.run()

        self.assertEqual(self.events, [{'type': 'a'}])
        self.assertEqual(self.time.sleeps, [])
        self.fallback.assert_not_called()


if __name__ == '__main__':
    unittest.main()
