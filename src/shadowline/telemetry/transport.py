"""Push transports feeding raw message text to a StreamConnection.

Two transports are provided:

* :class:`SSETransport`: HTTP server-sent events, read with ``httpx``.
* :class:`ReplayTransport`: offline replay of a recorded log file, paced by
  the timestamps at the start of each line.

Both run a single daemon reader thread and report back through three
callbacks: ``on_open()``, ``on_message(text)`` and ``on_error(reason)``.
Transport failures are never raised to the caller.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Iterable, Iterator
from pathlib import Path
from typing import Protocol

import httpx

from shadowline.telemetry.normalizer import parse_iso_ms

_logger = logging.getLogger(__name__)

_REPLAY_SUFFIXES = (".txt", ".csv", ".log", ".jsonl")
_DEFAULT_REPLAY_GAP_MS = 100.0  # 10 Hz
_MIN_REPLAY_GAP_MS = 10.0

_READ_ERRORS = (httpx.HTTPError, httpx.StreamError, httpx.InvalidURL, OSError, UnicodeDecodeError)

OpenHandler = Callable[[], None]
MessageHandler = Callable[[str], None]
ErrorHandler = Callable[[str], None]


class Transport(Protocol):
    def start(self) -> None: ...

    def close(self) -> None: ...


TransportFactory = Callable[[str, OpenHandler, MessageHandler, ErrorHandler], Transport]


class Cancellable(Protocol):
    def cancel(self) -> None: ...


class Scheduler(Protocol):
    def call_later(self, delay_s: float, callback: Callable[[], None]) -> Cancellable: ...


def _deliver(on_message: MessageHandler, text: str) -> None:
    """Hand *text* to *on_message*; a failing message is logged and skipped."""
    try:
        on_message(text)
    except Exception:
        _logger.exception("Message handler failed, skipping: %.80s", text)


class ThreadingScheduler:
    """Runs delayed callbacks on :class:`threading.Timer` daemon threads."""

    def call_later(self, delay_s: float, callback: Callable[[], None]) -> threading.Timer:
        timer = threading.Timer(delay_s, callback)
        timer.daemon = True
        timer.start()
        return timer


# ---------------------------------------------------------------------------
# Server-sent events
# ---------------------------------------------------------------------------


def iter_sse_data(lines: Iterable[str]) -> Iterator[str]:
    """Yield the ``data`` payload of each complete event in an SSE line stream.

    Multiple ``data:`` lines are joined with newlines. Comment lines and the
    ``event``/``id``/``retry`` fields are ignored; an event left unterminated
    when the stream ends is discarded.
    """
    data: list[str] = []
    for line in lines:
        line = line.rstrip("\r\n")
        if not line:
            if data:
                yield "\n".join(data)
                data = []
            continue
        if line.startswith(":"):
            continue
        field, _, value = line.partition(":")
        if field == "data":
            data.append(value[1:] if value.startswith(" ") else value)


class SSETransport:
    """Subscribes to a ``text/event-stream`` endpoint over HTTP.

    Parameters
    ----------
    url:
        Stream endpoint.
    on_open, on_message, on_error:
        Transport callbacks, invoked from the reader thread.
    client:
        An ``httpx.Client``. Injected for testability; a fresh client with no
        read timeout is created per connection when not provided.
    connect_timeout:
        Seconds allowed for establishing the connection.
    """

    def __init__(
        self,
        url: str,
        on_open: OpenHandler,
        on_message: MessageHandler,
        on_error: ErrorHandler,
        client: httpx.Client | None = None,
        connect_timeout: float = 10.0,
    ) -> None:
        self.url = url
        self._on_open = on_open
        self._on_message = on_message
        self._on_error = on_error
        self._client = client
        self._timeout = httpx.Timeout(connect_timeout, read=None)
        self._closed = threading.Event()
        self._response: httpx.Response | None = None
        self._thread: threading.Thread | None = None

    def start(self) -> None:
        """Start the background reader thread."""
        self._closed.clear()
        self._thread = threading.Thread(target=self._run, daemon=True, name="SSETransport")
        self._thread.start()

    def close(self) -> None:
        """Stop reading. No callbacks are delivered after this returns."""
        self._closed.set()
        response = self._response
        if response is not None:
            try:
                response.close()
            except (httpx.HTTPError, httpx.StreamError, OSError):
                pass

    def _run(self) -> None:
        owns_client = self._client is None
        client = self._client or httpx.Client(timeout=self._timeout)
        try:
            self._read(client)
        finally:
            if owns_client:
                client.close()

    def _read(self, client: httpx.Client) -> None:
        headers = {"Accept": "text/event-stream", "Cache-Control": "no-cache"}
        try:
            with client.stream("GET", self.url, headers=headers) as response:
                if not response.is_success:
                    self._fail(f"HTTP {response.status_code}")
                    return
                self._response = response
                if self._closed.is_set():
                    return
                _logger.info("SSE stream opened: %s", self.url)
                self._on_open()
                for data in iter_sse_data(response.iter_lines()):
                    if self._closed.is_set():
                        return
                    _deliver(self._on_message, data)
        except _READ_ERRORS as exc:
            self._fail(f"{type(exc).__name__}: {exc}")
            return
        finally:
            self._response = None
        self._fail("stream ended")

    def _fail(self, reason: str) -> None:
        if self._closed.is_set():
            return
        _logger.warning("SSE transport error on %s: %s", self.url, reason)
        self._on_error(reason)


# ---------------------------------------------------------------------------
# Offline replay
# ---------------------------------------------------------------------------


def _strip_data_prefix(line: str) -> str:
    line = line.strip()
    if line.startswith("data:"):
        line = line[5:].lstrip()
    return line


def _leading_time_ms(line: str) -> float | None:
    return parse_iso_ms(line.split(",", 1)[0])


def replay_delays_ms(lines: list[str]) -> list[float]:
    """Delay to wait after each line before sending the next one.

    Uses the difference between consecutive leading timestamps; lines without
    a readable timestamp fall back to 100 ms, duplicates to 10 ms.
    """
    times = [_leading_time_ms(line) for line in lines]
    delays: list[float] = []
    for t1, t2 in zip(times, times[1:]):
        if t1 is None or t2 is None:
            delays.append(_DEFAULT_REPLAY_GAP_MS)
        else:
            delays.append(t2 - t1 if t2 > t1 else _MIN_REPLAY_GAP_MS)
    if lines:
        delays.append(_DEFAULT_REPLAY_GAP_MS)  # before looping back to the start
    return delays


class ReplayTransport:
    """Replays a recorded stream file line by line in (scaled) real time.

    Parameters
    ----------
    path:
        File to replay; a ``file://`` prefix is accepted.
    on_open, on_message, on_error:
        Transport callbacks, invoked from the replay thread.
    loop:
        Restart from the first line after the last one.
    speed:
        Playback rate multiplier (2.0 = twice real time).
    """

    def __init__(
        self,
        path: str,
        on_open: OpenHandler,
        on_message: MessageHandler,
        on_error: ErrorHandler,
        loop: bool = True,
        speed: float = 1.0,
    ) -> None:
        self.path = Path(path.removeprefix("file://"))
        self._on_open = on_open
        self._on_message = on_message
        self._on_error = on_error
        self._loop = loop
        self._speed = speed
        self._closed = threading.Event()
        self._thread: threading.Thread | None = None

    def start(self) -> None:
        """Start the background replay thread."""
        self._closed.clear()
        self._thread = threading.Thread(target=self._run, daemon=True, name="ReplayTransport")
        self._thread.start()

    def close(self) -> None:
        """Stop the replay."""
        self._closed.set()

    def _run(self) -> None:
        try:
            text = self.path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as exc:
            self._fail(f"cannot read {self.path}: {exc}")
            return

        lines = [_strip_data_prefix(line) for line in text.splitlines() if line.strip()]
        if not lines:
            self._fail(f"replay file is empty: {self.path}")
            return

        delays = replay_delays_ms(lines)
        _logger.info("Replaying %d lines from %s", len(lines), self.path)
        self._on_open()

        while not self._closed.is_set():
            for line, delay in zip(lines, delays):
                if self._closed.is_set():
                    return
                _deliver(self._on_message, line)
                if self._closed.wait(delay / 1000.0 / self._speed):
                    return
            if not self._loop:
                break
        self._fail("replay finished")

    def _fail(self, reason: str) -> None:
        if self._closed.is_set():
            return
        _logger.warning("Replay transport error: %s", reason)
        self._on_error(reason)


def is_replay_endpoint(endpoint: str) -> bool:
    """True when *endpoint* names a local recording rather than a live stream."""
    return endpoint.startswith("file://") or endpoint.lower().endswith(_REPLAY_SUFFIXES)


def open_transport(
    endpoint: str,
    on_open: OpenHandler,
    on_message: MessageHandler,
    on_error: ErrorHandler,
) -> Transport:
    """Default :data:`TransportFactory`: pick replay or SSE from the endpoint."""
    if is_replay_endpoint(endpoint):
        return ReplayTransport(endpoint, on_open, on_message, on_error)
    return SSETransport(endpoint, on_open, on_message, on_error)
