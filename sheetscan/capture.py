"""
Optical capture loop.

Single cooperative thread of control on the asyncio event loop:

    IDLE -> ALIGNING -> PROCESSING -> COOLING_DOWN -> ALIGNING ... -> IDLE (stop)

Each tick reads one frame, looks for the QR fiducial and paints alignment
guides. Only an aligned, not-yet-seen payload is handed to the processor, and
no other frame is looked at until that attempt finishes and the cool-down
runs out.
"""
from __future__ import annotations

from enum import Enum
from typing import Awaitable, Callable, Optional, Protocol

import asyncio
import time

import cv2
import numpy as np

from .config import SETTINGS
from .errors import CameraAccessError
from .fiducial import (
    AlignmentVerdict,
    AlignmentWindow,
    FiducialDetection,
    alignment_verdict,
    detect_fiducial,
    draw_guides,
    guide_color,
)
from .models import ScanAttempt


class LoopState(str, Enum):
    IDLE = "idle"
    ALIGNING = "aligning"
    PROCESSING = "processing"
    COOLING_DOWN = "cooling_down"


class FrameSource(Protocol):
    def read(self) -> Optional[np.ndarray]:
        ...

    def release(self) -> None:
        ...


class FrameProcessor(Protocol):
    def process(self, frame: np.ndarray, detection: FiducialDetection) -> Awaitable[ScanAttempt]:
        ...


class CameraStream:
    """``cv2.VideoCapture`` wrapper. The loop owns it exclusively."""

    def __init__(self, index: int = SETTINGS.camera_index) -> None:
        self.index = index
        self._capture: Optional[cv2.VideoCapture] = None

    def open(self) -> "CameraStream":
        capture = cv2.VideoCapture(self.index)
        if not capture.isOpened():
            capture.release()
            raise CameraAccessError(f"camera_unavailable:{self.index}")
        self._capture = capture
        print(f"[OMR-Scanner] Camera {self.index} opened")
        return self

    def read(self) -> Optional[np.ndarray]:
        if self._capture is None:
            return None
        ok, frame = self._capture.read()
        return frame if ok else None

    def release(self) -> None:
        if self._capture is not None:
            self._capture.release()
            self._capture = None
            print(f"[OMR-Scanner] Camera {self.index} released")


OverlayCallback = Callable[[np.ndarray, Optional[AlignmentVerdict]], None]
ResultCallback = Callable[[ScanAttempt], None]


class CaptureLoop:
    def __init__(
        self,
        processor: FrameProcessor,
        open_stream: Callable[[], FrameSource],
        *,
        detect: Callable[[np.ndarray], Optional[FiducialDetection]] = detect_fiducial,
        window: Optional[AlignmentWindow] = None,
        cooldown_seconds: float = SETTINGS.cooldown_seconds,
        frame_interval: float = SETTINGS.frame_interval,
        clock: Callable[[], float] = time.monotonic,
        on_overlay: Optional[OverlayCallback] = None,
        on_result: Optional[ResultCallback] = None,
    ) -> None:
        self._processor = processor
        self._open_stream = open_stream
        self._detect = detect
        self.window = window or AlignmentWindow.from_settings()
        self.cooldown_seconds = cooldown_seconds
        self.frame_interval = frame_interval
        self._clock = clock
        self._on_overlay = on_overlay
        self._on_result = on_result

        self.state = LoopState.IDLE
        self.last_payload: Optional[str] = None
        self._stream: Optional[FrameSource] = None
        self._cooldown_until = 0.0
        self._task: Optional[asyncio.Task] = None
        self._inflight: Optional[asyncio.Future] = None

    @property
    def running(self) -> bool:
        return self.state is not LoopState.IDLE

    def start(self) -> None:
        """Acquire the camera. CameraAccessError leaves the loop idle."""
        if self.running:
            return
        self._stream = self._open_stream()
        self.last_payload = None
        self.state = LoopState.ALIGNING

    def stop(self) -> None:
        """Release the camera and halt ticking. An in-flight submission still completes."""
        self.state = LoopState.IDLE
        if self._stream is not None:
            self._stream.release()
            self._stream = None
        if self._task is not None and not self._task.done():
            self._task.cancel()

    async def run(self) -> None:
        self.start()
        self._task = asyncio.current_task()
        try:
            while self.running:
                await self.tick()
                await asyncio.sleep(self.frame_interval)
        except asyncio.CancelledError:
            if self.running:
                raise
        finally:
            self._task = None

    async def tick(self) -> Optional[ScanAttempt]:
        if not self.running or self.state is LoopState.PROCESSING:
            return None
        if self.state is LoopState.COOLING_DOWN:
            if self._clock() < self._cooldown_until:
                return None
            self.last_payload = None
            self.state = LoopState.ALIGNING

        frame = self._stream.read() if self._stream is not None else None
        if frame is None:
            return None

        detection = self._detect(frame)
        if detection is None:
            self._show(frame, None)
            return None

        height, width = frame.shape[:2]
        verdict = alignment_verdict(detection.corners, width, height, self.window)
        self._show(frame, verdict)
        # The overlay callback may have stopped the loop.
        if not self.running or not verdict.aligned or detection.text == self.last_payload:
            return None
        return await self._process(frame, detection)

    async def _process(self, frame: np.ndarray, detection: FiducialDetection) -> ScanAttempt:
        self.state = LoopState.PROCESSING
        self.last_payload = detection.text
        inflight = asyncio.ensure_future(self._processor.process(frame, detection))
        self._inflight = inflight
        try:
            attempt = await asyncio.shield(inflight)
        except asyncio.CancelledError:
            inflight.add_done_callback(self._report_detached)
            raise
        except Exception as exc:
            print(f"[OMR-Scanner] Processing crashed for {detection.text}: {exc}")
            attempt = ScanAttempt(
                status="error", raw_payload=detection.text, aligned=True, message=str(exc)
            )
        finally:
            self._inflight = None

        self._report(attempt)
        if not self.running:
            return attempt

        if attempt.status == "mismatch":
            self.state = LoopState.ALIGNING
            return attempt
        if attempt.status != "success":
            # Allow a deliberate rescan of the same sheet.
            self.last_payload = None
        self._cooldown_until = self._clock() + self.cooldown_seconds
        self.state = LoopState.COOLING_DOWN
        return attempt

    def _show(self, frame: np.ndarray, verdict: Optional[AlignmentVerdict]) -> None:
        if self._on_overlay is not None:
            self._on_overlay(draw_guides(frame, guide_color(verdict)), verdict)

    def _report(self, attempt: ScanAttempt) -> None:
        print(f"[OMR-Scanner] Attempt {attempt.raw_payload}: {attempt.status} {attempt.message}".rstrip())
        if self._on_result is not None:
            self._on_result(attempt)

    def _report_detached(self, future: asyncio.Future) -> None:
        if future.cancelled() or future.exception() is not None:
            return
        self._report(future.result())
