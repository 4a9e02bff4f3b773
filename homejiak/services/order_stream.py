# homejiak/services/order_stream.py

"""
Live order feed for the merchant dashboard.

The server side polls the database for orders created or updated since the
previous poll and emits them as Server-Sent Events. The client side keeps a
streaming connection open, reconnecting with capped exponential backoff and
polling a fallback endpoint while the stream is down.
"""

import json
import logging
import time
from datetime import datetime
from typing import Callable, Dict, Iterable, Iterator, List, Optional, Tuple

import requests
from sqlalchemy.orm import selectinload

from homejiak.config import config
from homejiak.logging_setup import log_exception
from homejiak.models import Order
from homejiak.utils.date_utils import utcnow

logger = logging.getLogger(__name__)

STREAM_PATH = '/api/orders/stream'


def format_sse(data: Dict) -> str:
    """Encode one SSE message."""
    return f"data: {json.dumps(data, default=str)}\n\n"


def parse_sse_lines(lines: Iterable[str]) -> Iterator[Dict]:
    """Decode SSE ``data:`` messages from a line iterator.

    Multi-line data fields are joined with newlines; comments and other
    fields are ignored.
    """
    buffer: List[str] = []
    for line in lines:
        if line is None:
            continue
        if isinstance(line, bytes):
            line = line.decode('utf-8')
        if line == '':
            if buffer:
                payload = '\n'.join(buffer)
                buffer = []
                try:
                    yield json.loads(payload)
                except ValueError:
                    logger.warning(f"Skipping malformed stream message: {payload[:80]}")
            continue
        if line.startswith('data:'):
            buffer.append(line[5:].lstrip())
    if buffer:
        try:
            yield json.loads('\n'.join(buffer))
        except ValueError:
            logger.warning("Skipping malformed trailing stream message")


def _event(event_type: str, now: datetime, **fields) -> Dict:
    return dict(fields, type=event_type, timestamp=now.isoformat())


class OrderStreamPoller:
    """Poll a merchant's orders and turn changes into stream events."""

    def __init__(self, session_factory: Callable, merchant_id: str,
                 poll_interval: Optional[float] = None, backoff_factor: Optional[float] = None,
                 clock: Callable[[], datetime] = utcnow, sleep: Callable[[float], None] = time.sleep):
        """Initialize the poller.

        Args:
            session_factory: Callable returning a new database session
            merchant_id: Merchant whose orders are watched
            poll_interval: Seconds between polls
            backoff_factor: Multiplier applied to the interval after a failed poll
            clock: Returns the current naive UTC time
            sleep: Sleep function
        """
        settings = config.stream_config
        self.session_factory = session_factory
        self.merchant_id = merchant_id
        self.poll_interval = poll_interval if poll_interval is not None else settings['poll_interval_seconds']
        self.backoff_factor = backoff_factor if backoff_factor is not None else settings['error_backoff_factor']
        self._clock = clock
        self._sleep = sleep

    def poll_once(self, since: datetime) -> Tuple[List[Dict], datetime]:
        """Collect events for orders changed after ``since``.

        Returns:
            Tuple of (events ending with a heartbeat, checkpoint for the next poll)
        """
        checkpoint = self._clock()
        session = self.session_factory()
        try:
            base = session.query(Order) \
                .filter(Order.merchant_id == self.merchant_id) \
                .options(selectinload(Order.items), selectinload(Order.payment))

            created = base.filter(Order.created_at > since) \
                .order_by(Order.created_at.desc()).all()
            updated = base.filter(Order.updated_at > since, Order.created_at <= since) \
                .order_by(Order.updated_at.desc()).all()

            events = [_event('new_order', checkpoint, order=o.to_dict()) for o in created]
            events.extend(_event('order_updated', checkpoint, order=o.to_dict()) for o in updated)
        finally:
            session.close()

        events.append(_event('heartbeat', checkpoint))
        return events, checkpoint

    def stream(self, max_polls: Optional[int] = None) -> Iterator[Dict]:
        """Yield a ``connected`` event, then poll forever (or ``max_polls`` times).

        A failed poll is logged and retried after ``interval x backoff_factor``.
        """
        since = self._clock()
        yield _event('connected', since, merchantId=self.merchant_id)

        polls = 0
        delay = self.poll_interval
        while max_polls is None or polls < max_polls:
            self._sleep(delay)
            polls += 1
            try:
                events, since = self.poll_once(since)
            except Exception as e:
                log_exception(__name__, e, f"Order stream poll failed for merchant {self.merchant_id}")
                delay = self.poll_interval * self.backoff_factor
                continue

            delay = self.poll_interval
            for event in events:
                yield event


class ReconnectBackoff:
    """Reconnect delays: exponential up to a cap, then a fixed retry interval."""

    def __init__(self, base: Optional[float] = None, max_delay: Optional[float] = None,
                 max_attempts: Optional[int] = None, fallback: Optional[float] = None):
        settings = config.stream_config
        self.base = base if base is not None else settings['reconnect_base_seconds']
        self.max_delay = max_delay if max_delay is not None else settings['reconnect_max_seconds']
        self.max_attempts = max_attempts if max_attempts is not None else settings['reconnect_max_attempts']
        self.fallback = fallback if fallback is not None else settings['fallback_poll_seconds']
        self.attempts = 0

    @property
    def exhausted(self) -> bool:
        return self.attempts >= self.max_attempts

    def next_delay(self) -> float:
        if self.exhausted:
            delay = self.fallback
        else:
            delay = min(self.base * (2 ** self.attempts), self.max_delay)
        self.attempts += 1
        return delay

    def reset(self):
        self.attempts = 0


class OrderStreamClient:
    """Consume the order stream over HTTP.

    While the stream is down, ``fallback_fetch`` (if given) is called every
    fallback interval so no orders are missed.
    """

    def __init__(self, base_url: str, access_token: str, on_event: Callable[[Dict], None],
                 fallback_fetch: Optional[Callable[[], None]] = None,
                 backoff: Optional[ReconnectBackoff] = None, http: Optional[requests.Session] = None,
                 sleep: Callable[[float], None] = time.sleep, clock: Callable[[], float] = time.monotonic):
        self.url = base_url.rstrip('/') + STREAM_PATH
        self.access_token = access_token
        self.on_event = on_event
        self.fallback_fetch = fallback_fetch
        self.backoff = backoff or ReconnectBackoff()
        self.http = http or requests.Session()
        self.connected = False
        self._sleep = sleep
        self._clock = clock
        self._stopped = False
        self._last_fallback: Optional[float] = None

    def stop(self):
        self._stopped = True

    def _open(self) -> requests.Response:
        response = self.http.get(
            self.url,
            headers={'Authorization': f"Bearer {self.access_token}", 'Accept': 'text/event-stream'},
            stream=True,
            timeout=(5, 60),
        )
        response.raise_for_status()
        return response

    def _consume(self, response: requests.Response):
        with response:
            for event in parse_sse_lines(response.iter_lines(decode_unicode=True)):
                if self._stopped:
                    return
                self.on_event(event)

    def _wait(self, delay: float):
        """Sleep before reconnecting, running the fallback poll when it is due."""
        if self.fallback_fetch is not None:
            now = self._clock()
            if self._last_fallback is None or now - self._last_fallback >= self.backoff.fallback:
                self._last_fallback = now
                try:
                    self.fallback_fetch()
                except requests.RequestException as e:
                    logger.warning(f"Fallback order poll failed: {e}")
        self._sleep(delay)

    def run(self, max_connections: Optional[int] = None):
        """Connect and dispatch events until stopped.

        Args:
            max_connections: Give up after this many connection attempts
        """
        connections = 0
        while not self._stopped and (max_connections is None or connections < max_connections):
            connections += 1
            try:
                response = self._open()
                self.connected = True
                self.backoff.reset()
                self._last_fallback = None
                logger.info(f"Order stream connected: {self.url}")
                self._consume(response)
                logger.info("Order stream closed by server")
            except requests.RequestException as e:
                logger.warning(f"Order stream connection error: {e}")
            finally:
                self.connected = False

            if self._stopped:
                break
            delay = self.backoff.next_delay()
            logger.info(f"Reconnecting in {delay:.0f}s (attempt {self.backoff.attempts})")
            self._wait(delay)
