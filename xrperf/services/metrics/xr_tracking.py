"""XR session tracking: init time, XR frame rate, motion-to-photon and controller lag.

XR frame callbacks run on the compositor's cadence, which is not the main
render loop's. Callbacks therefore only post timestamped messages; the
engine's aggregation pass applies them through :meth:`XRTracker.apply`.
"""

import time
from dataclasses import dataclass, field
from typing import Any, Callable, Optional, Protocol, Union

from xrperf.core.logging_config import get_logger
from .window import CONTROLLER_WINDOW, MOTION_WINDOW, RollingWindow

logger = get_logger(__name__)

INPUT_SOURCES_CHANGE = "inputsourceschange"
SESSION_END = "end"


class XRSession(Protocol):
    """The subset of an XR session object the tracker relies on."""

    input_sources: Any

    def request_animation_frame(self, callback: Callable[[float, Any], None]) -> Any:
        ...

    def add_event_listener(self, event: str, listener: Callable[..., None]) -> None:
        ...

    def remove_event_listener(self, event: str, listener: Callable[..., None]) -> None:
        ...


@dataclass(frozen=True)
class XRFrameMessage:
    session_id: int
    frame_time: float
    processed_at: float
    has_input_sources: bool
    predicted_display_time: Optional[float] = None


@dataclass(frozen=True)
class XRInputMessage:
    session_id: int
    input_time: float


@dataclass(frozen=True)
class XRSessionEndMessage:
    session_id: int


XRMessage = Union[XRFrameMessage, XRInputMessage, XRSessionEndMessage]


@dataclass
class XRSessionContext:
    """Per-session state, discarded when the session ends."""
    session: Any
    session_id: int
    requested_at: float
    first_frame_at: Optional[float] = None
    last_frame_time: float = 0.0
    motion_history: RollingWindow = field(
        default_factory=lambda: RollingWindow(MOTION_WINDOW, name="motion_to_photon")
    )
    controller_history: RollingWindow = field(
        default_factory=lambda: RollingWindow(CONTROLLER_WINDOW, name="controller_input_lag")
    )


@dataclass
class XRMetrics:
    session_init_time: float = 0.0
    frame_rate: float = 0.0
    motion_to_photon_delay: float = 0.0
    controller_input_lag: float = 0.0
    predicted_display_time: float = 0.0


def _predicted_display_time(frame: Any) -> Optional[float]:
    if frame is None:
        return None
    value = getattr(frame, "predicted_display_time", None)
    if callable(value):
        try:
            value = value()
        except Exception:
            return None
    if isinstance(value, (int, float)):
        return float(value)
    return None


class XRTracker:
    """Tracks comfort-relevant latencies for at most one XR session at a time.

    Args:
        post: Callable used by session callbacks to hand messages to the
            aggregation pass
        clock: Millisecond clock shared with the engine
    """

    def __init__(self, post: Callable[[XRMessage], None], clock: Optional[Callable[[], float]] = None):
        self._post = post
        self._clock = clock or (lambda: time.perf_counter() * 1000.0)
        self.context: Optional[XRSessionContext] = None
        self.metrics = XRMetrics()
        self._next_session_id = 1

    @property
    def is_presenting(self) -> bool:
        return self.context is not None

    def attach(self, session: XRSession) -> None:
        """Start tracking ``session``. Any previously attached session is detached first."""
        if self.context is not None:
            self.detach()

        session_id = self._next_session_id
        self._next_session_id += 1
        self.context = XRSessionContext(session=session, session_id=session_id, requested_at=self._clock())

        try:
            session.add_event_listener(INPUT_SOURCES_CHANGE, self._on_input_sources_change)
            session.add_event_listener(SESSION_END, self._on_session_end)
            session.request_animation_frame(self._on_frame)
        except Exception as e:
            logger.warning(f"XR session hooks unavailable, XR metrics will hold last values: {e}")

        logger.info(f"XR session {session_id} attached")

    def detach(self) -> None:
        """Stop tracking the current session. Safe to call with no session attached."""
        context = self.context
        if context is None:
            return
        self.context = None

        for event, listener in (
            (INPUT_SOURCES_CHANGE, self._on_input_sources_change),
            (SESSION_END, self._on_session_end),
        ):
            try:
                context.session.remove_event_listener(event, listener)
            except Exception as e:
                logger.debug(f"Failed to remove XR '{event}' listener: {e}")

        logger.info(f"XR session {context.session_id} detached")

    # Session callbacks (XR compositor cadence)

    def _on_frame(self, frame_time: float, frame: Any = None) -> None:
        context = self.context
        if context is None:
            return

        session = context.session
        self._post(XRFrameMessage(
            session_id=context.session_id,
            frame_time=float(frame_time),
            processed_at=self._clock(),
            has_input_sources=bool(getattr(session, "input_sources", None)),
            predicted_display_time=_predicted_display_time(frame),
        ))

        # Keep the callback chain alive while the session is attached
        if self.context is context:
            try:
                session.request_animation_frame(self._on_frame)
            except Exception as e:
                logger.warning(f"XR frame request failed, stopping XR frame tracking: {e}")

    def _on_input_sources_change(self, *_args: Any) -> None:
        context = self.context
        if context is not None:
            self._post(XRInputMessage(session_id=context.session_id, input_time=self._clock()))

    def _on_session_end(self, *_args: Any) -> None:
        context = self.context
        if context is not None:
            self._post(XRSessionEndMessage(session_id=context.session_id))

    # Aggregation pass

    def apply(self, message: XRMessage) -> None:
        """Fold one session message into the XR metrics."""
        context = self.context
        if context is None or message.session_id != context.session_id:
            # Stale message from an already detached session
            return

        if isinstance(message, XRSessionEndMessage):
            self.detach()
        elif isinstance(message, XRInputMessage):
            self._apply_input(context, message)
        elif isinstance(message, XRFrameMessage):
            self._apply_frame(context, message)

    def _apply_frame(self, context: XRSessionContext, message: XRFrameMessage) -> None:
        if context.first_frame_at is None:
            context.first_frame_at = message.processed_at
            self.metrics.session_init_time = max(0.0, message.processed_at - context.requested_at)
            logger.info(f"XR session {context.session_id} first frame after {self.metrics.session_init_time:.1f}ms")

        if context.last_frame_time > 0:
            delta = message.frame_time - context.last_frame_time
            if delta > 0:
                self.metrics.frame_rate = 1000.0 / delta

            if message.has_input_sources:
                if context.motion_history.record(message.processed_at - message.frame_time):
                    self.metrics.motion_to_photon_delay = context.motion_history.average()

        context.last_frame_time = message.frame_time

        if message.predicted_display_time is not None:
            self.metrics.predicted_display_time = message.predicted_display_time

    def _apply_input(self, context: XRSessionContext, message: XRInputMessage) -> None:
        processed_at = self._clock()
        if context.controller_history.record(processed_at - message.input_time):
            self.metrics.controller_input_lag = context.controller_history.average()
