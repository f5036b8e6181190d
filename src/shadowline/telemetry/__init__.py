"""Telemetry acquisition and normalization.

Public API
----------
TelemetryFrame      - single normalized telemetry sample
ConnectionState     - idle / connecting / live / paused / recovering / dead
MessageNormalizer   - raw message text → TelemetryFrame
KinematicsEstimator - GPS trajectory → lateral/longitudinal G
FibonacciBackoff    - reconnection delay sequence
StreamConnection    - subscription, pause gate and reconnection state machine
SSETransport        - server-sent event stream over HTTP
ReplayTransport     - offline replay of a recorded stream file
"""

from shadowline.telemetry.backoff import FibonacciBackoff
from shadowline.telemetry.connection import StreamConnection
from shadowline.telemetry.kinematics import KinematicsEstimator
from shadowline.telemetry.models import ConnectionState, TelemetryFrame
from shadowline.telemetry.normalizer import MessageNormalizer
from shadowline.telemetry.transport import ReplayTransport, SSETransport

__all__ = [
    "ConnectionState",
    "FibonacciBackoff",
    "KinematicsEstimator",
    "MessageNormalizer",
    "ReplayTransport",
    "SSETransport",
    "StreamConnection",
    "TelemetryFrame",
]
