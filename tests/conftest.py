"""Shared pytest fixtures for the FrameSync test suite."""

import logging
import sys
import threading
import time
from pathlib import Path

import pytest

# Ensure the project root is in the path for imports
PROJECT_ROOT = Path(__file__).parent.parent
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from frame_utils import FrameGeometry  # noqa: E402
from sync_errors import DecodeFailure  # noqa: E402


class StubDecoder:
    """
    Deterministic stand-in for the ffmpeg decoder.

    frames maps candidate index -> bytes. Candidates listed in fail are
    reported as DecodeFailure, candidates missing from frames as well.
    """

    def __init__(self, frames, fail=(), delay=0.0):
        self.frames = dict(frames)
        self.fail = set(fail)
        self.delay = delay
        self.calls = []
        self.in_flight = 0
        self.max_in_flight = 0
        self._lock = threading.Lock()

    def decode(self, source_path, geometry, candidate_index, frame_rate):
        with self._lock:
            self.calls.append(candidate_index)
            self.in_flight += 1
            self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.delay:
                time.sleep(self.delay)
            if candidate_index in self.fail or candidate_index not in self.frames:
                raise DecodeFailure(candidate_index, "FFmpeg failed with exit code 1")
            return self.frames[candidate_index]
        finally:
            with self._lock:
                self.in_flight -= 1

    def extract_frame(self, source_path, geometry, candidate_index, frame_rate, strict=True):
        frame_data = self.decode(source_path, geometry, candidate_index, frame_rate)
        if strict and len(frame_data) != geometry.frame_size:
            raise DecodeFailure(candidate_index, "Extracted frame size does not match expected size")
        return frame_data


@pytest.fixture(autouse=True)
def reset_logging_handlers():
    """Drop handlers installed by setup_colorful_logging; they hold a per-test stdout."""
    yield
    root_logger = logging.getLogger()
    for handler in root_logger.handlers[:]:
        if getattr(handler, '_frame_sync_handler', False):
            root_logger.removeHandler(handler)
            handler.close()


@pytest.fixture
def small_geometry():
    return FrameGeometry(8, 4)


@pytest.fixture
def make_yuv_file(tmp_path):
    """Write a raw YUV file made of the given frames and return its path."""

    def _make(frames, name="reference.yuv"):
        path = tmp_path / name
        path.write_bytes(b"".join(frames))
        return str(path)

    return _make


@pytest.fixture
def stub_decoder_factory():
    return StubDecoder
