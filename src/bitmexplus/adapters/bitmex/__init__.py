from .auth import build_auth_headers, compute_signature
from .client import BitmexPlusClient
from .clock_sync import ClockSyncService
from .instrumentation import InMemoryMetricsSink, InstrumentationMetricsSink, MetricsSink
from .rate_limit import HeaderRateLimiter, RateLimitState
from .rest_client import BitmexRestClient, PreparedRequest, prepare_request
from .retry import PollSchedule, PollState
from .stream import DispatchCursor, StreamDispatcher, StreamTransport

__all__ = [
    "BitmexPlusClient",
    "BitmexRestClient",
    "ClockSyncService",
    "DispatchCursor",
    "HeaderRateLimiter",
    "InMemoryMetricsSink",
    "InstrumentationMetricsSink",
    "MetricsSink",
    "PollSchedule",
    "PollState",
    "PreparedRequest",
    "RateLimitState",
    "StreamDispatcher",
    "StreamTransport",
    "build_auth_headers",
    "compute_signature",
    "prepare_request",
]
