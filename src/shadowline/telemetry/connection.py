"""StreamConnection — owns one telemetry subscription and its recovery state machine."""

from __future__ import annotations

import functools
import logging
import threading
from collections.abc import Callable

from shadowline.telemetry.backoff import FibonacciBackoff
from shadowline.telemetry.models import ConnectionState, TelemetryFrame
from shadowline.telemetry.normalizer import MessageNormalizer
from shadowline.telemetry.transport import (
    Cancellable,
    Scheduler,
    ThreadingScheduler,
    Transport,
    TransportFactory,
    open_transport,
)

_logger = logging.getLogger(__name__)

DEAD_INFO = "Max recovery attempts exceeded"

FrameListener = Callable[[TelemetryFrame], None]
StateListener = Callable[[ConnectionState, str | None], None]


class StreamConnection:
    """Manages a single logical subscription to a push telemetry source.

    State machine::

        idle → connecting → live ⇄ paused
        live/connecting → recovering → connecting   (transport error)
        recovering → dead                           (retry budget exhausted)

    Transport errors never raise; they schedule a reconnection after a
    Fibonacci backoff and are only surfaced through the ``dead`` state.

    Parameters
    ----------
    normalizer:
        Decoder for raw message text. A fresh :class:`MessageNormalizer` by default.
    transport_factory:
        ``factory(endpoint, on_open, on_message, on_error) -> Transport``.
        Injected for testability; defaults to SSE or file replay by endpoint.
    scheduler:
        Provides ``call_later(delay_s, callback)`` for retry timers.
    max_retries:
        Reconnection attempts allowed before giving up.
    backoff:
        Delay sequence between attempts.
    """

    def __init__(
        self,
        normalizer: MessageNormalizer | None = None,
        transport_factory: TransportFactory | None = None,
        scheduler: Scheduler | None = None,
        max_retries: int = 10,
        backoff: FibonacciBackoff | None = None,
    ) -> None:
        self._normalizer = normalizer or MessageNormalizer()
        self._transport_factory = transport_factory or open_transport
        self._scheduler = scheduler or ThreadingScheduler()
        self._max_retries = max_retries
        self._backoff = backoff or FibonacciBackoff()

        self._lock = threading.RLock()
        self._state = ConnectionState.IDLE
        self._endpoint: str | None = None
        self._transport: Transport | None = None
        self._recovery_timer: Cancellable | None = None
        self._recovery_attempts = 0
        # Bumped on every (re)establish; callbacks from older transports are ignored.
        self._generation = 0

        self._frame_listeners: list[FrameListener] = []
        self._state_listeners: list[StateListener] = []

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    @property
    def state(self) -> ConnectionState:
        """Current connection state."""
        return self._state

    @property
    def endpoint(self) -> str | None:
        """Endpoint of the current (or last) subscription."""
        return self._endpoint

    @property
    def recovery_attempts(self) -> int:
        """Reconnection attempts made since the last successful open."""
        return self._recovery_attempts

    def subscribe(self, listener: FrameListener) -> Callable[[], None]:
        """Register *listener* for decoded frames. Returns an unsubscribe function."""
        self._frame_listeners.append(listener)
        return functools.partial(_discard, self._frame_listeners, listener)

    def on_state_change(self, listener: StateListener) -> Callable[[], None]:
        """Register *listener(state, info)* and immediately replay the current state."""
        self._state_listeners.append(listener)
        listener(self._state, None)
        return functools.partial(_discard, self._state_listeners, listener)

    def connect(self, endpoint: str) -> None:
        """(Re)establish a subscription to *endpoint*.

        A no-op when already live on the same endpoint.
        """
        with self._lock:
            if self._endpoint == endpoint and self._state is ConnectionState.LIVE:
                return

            self._teardown()
            self._endpoint = endpoint
            self._normalizer.reset()
            self._backoff.reset()
            self._recovery_attempts = 0
            self._establish()

    def disconnect(self) -> None:
        """Tear down any transport or pending retry and return to ``idle``."""
        with self._lock:
            self._teardown()
            self._transition(ConnectionState.IDLE)

    def pause(self) -> None:
        """Stop forwarding messages without closing the transport."""
        with self._lock:
            if self._state is ConnectionState.LIVE:
                self._transition(ConnectionState.PAUSED)

    def resume(self) -> None:
        """Resume forwarding messages after :meth:`pause`."""
        with self._lock:
            if self._state is ConnectionState.PAUSED:
                self._transition(ConnectionState.LIVE)

    # ------------------------------------------------------------------
    # Connection management
    # ------------------------------------------------------------------

    def _establish(self) -> None:
        if self._endpoint is None:
            return

        self._generation += 1
        generation = self._generation
        self._transition(ConnectionState.CONNECTING)

        try:
            transport = self._transport_factory(
                self._endpoint,
                functools.partial(self._handle_open, generation),
                functools.partial(self._handle_message, generation),
                functools.partial(self._handle_error, generation),
            )
            self._transport = transport
            transport.start()
        except Exception as exc:
            _logger.warning("Could not open %s: %s", self._endpoint, exc)
            self._close_transport()
            self._schedule_recovery()

    def _schedule_recovery(self) -> None:
        if self._recovery_attempts >= self._max_retries:
            _logger.warning(
                "Giving up on %s after %d attempts", self._endpoint, self._recovery_attempts
            )
            self._transition(ConnectionState.DEAD, DEAD_INFO)
            return

        self._transition(ConnectionState.RECOVERING)
        self._recovery_attempts += 1
        delay_ms = self._backoff.next_delay_ms()
        _logger.info(
            "Reconnecting to %s in %d ms (attempt %d/%d)",
            self._endpoint,
            delay_ms,
            self._recovery_attempts,
            self._max_retries,
        )

        self._cancel_recovery_timer()
        self._recovery_timer = self._scheduler.call_later(
            delay_ms / 1000.0, functools.partial(self._retry, self._generation)
        )

    def _retry(self, generation: int) -> None:
        with self._lock:
            if generation != self._generation or self._state is not ConnectionState.RECOVERING:
                return
            self._recovery_timer = None
            self._establish()

    def _teardown(self) -> None:
        self._generation += 1
        self._cancel_recovery_timer()
        self._close_transport()

    def _cancel_recovery_timer(self) -> None:
        if self._recovery_timer is not None:
            self._recovery_timer.cancel()
            self._recovery_timer = None

    def _close_transport(self) -> None:
        transport, self._transport = self._transport, None
        if transport is not None:
            transport.close()

    def _transition(self, new_state: ConnectionState, info: str | None = None) -> None:
        if self._state is new_state:
            return
        self._state = new_state
        for listener in list(self._state_listeners):
            listener(new_state, info)

    # ------------------------------------------------------------------
    # Transport callbacks
    # ------------------------------------------------------------------

    def _handle_open(self, generation: int) -> None:
        with self._lock:
            if generation != self._generation:
                return
            _logger.info("Connected to %s", self._endpoint)
            self._recovery_attempts = 0
            self._backoff.reset()
            self._transition(ConnectionState.LIVE)

    def _handle_message(self, generation: int, raw: str) -> None:
        with self._lock:
            if generation != self._generation or self._state is ConnectionState.PAUSED:
                return
            frame = self._normalizer.ingest(raw)
            if frame is None:
                return
            for listener in list(self._frame_listeners):
                listener(frame)

    def _handle_error(self, generation: int, reason: str) -> None:
        with self._lock:
            if generation != self._generation:
                return
            _logger.warning("Transport error on %s: %s", self._endpoint, reason)
            self._close_transport()
            self._schedule_recovery()


def _discard(listeners: list, listener: Callable) -> None:
    if listener in listeners:
        listeners.remove(listener)
