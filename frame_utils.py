"""
Raw YUV Frame Utilities Module

This module provides the building blocks for pixel-by-pixel frame comparison:
- Planar 4:2:0 frame geometry
- Reading a single frame from a headerless raw YUV file
- Normalizing decoded buffers to the expected frame size
- Sum of absolute differences between two frames
- Conversion of a planar frame to a BGR image for QC output
"""

import logging

import cv2
import numpy as np

from sync_errors import FatalInputError, LengthMismatchError, TruncatedInputError

logger = logging.getLogger('frame_utils')


class FrameGeometry:
    """Width/height of a planar YUV 4:2:0 frame and the derived plane sizes"""

    def __init__(self, width, height):
        if width <= 0 or height <= 0:
            raise ValueError(f"Frame dimensions must be positive, got {width}x{height}")
        if width % 2 or height % 2:
            logger.warning(f"Odd frame dimensions {width}x{height}: chroma planes will be truncated")
        self.width = int(width)
        self.height = int(height)

    @property
    def luma_size(self):
        return self.width * self.height

    @property
    def chroma_size(self):
        return (self.width // 2) * (self.height // 2)

    @property
    def frame_size(self):
        return self.luma_size + 2 * self.chroma_size

    def __eq__(self, other):
        if not isinstance(other, FrameGeometry):
            return NotImplemented
        return (self.width, self.height) == (other.width, other.height)

    def __hash__(self):
        return hash((self.width, self.height))

    def __repr__(self):
        return f"FrameGeometry({self.width}x{self.height})"


def read_yuv_frame(file_path, geometry, frame_index):
    """
    Read one frame from a raw planar YUV file

    Parameters:
    file_path (str): Path to the headerless YUV file
    geometry (FrameGeometry): Frame dimensions
    frame_index (int): Zero-based frame number

    Returns:
    bytes: Exactly geometry.frame_size bytes

    Raises:
    TruncatedInputError: The file ends before the frame is complete
    FatalInputError: The file cannot be opened or read
    """
    if frame_index < 0:
        raise ValueError(f"Frame index must be non-negative, got {frame_index}")

    frame_size = geometry.frame_size
    frame_data = bytearray(frame_size)
    view = memoryview(frame_data)

    try:
        with open(file_path, 'rb') as f:
            f.seek(frame_index * frame_size)
            bytes_read = 0
            while bytes_read < frame_size:
                read = f.readinto(view[bytes_read:])
                if not read:
                    raise TruncatedInputError(file_path, frame_index, frame_size, bytes_read)
                bytes_read += read
    except OSError as e:
        raise FatalInputError(f"Cannot read reference file {file_path}: {e}") from e

    logger.debug(f"Read frame {frame_index} ({frame_size} bytes) from {file_path}")
    return bytes(frame_data)


def normalize_frame_size(frame, expected_size):
    """Truncate or zero-pad a decoded frame to expected_size bytes."""
    if len(frame) > expected_size:
        return bytes(frame[:expected_size])
    if len(frame) < expected_size:
        return bytes(frame) + bytes(expected_size - len(frame))
    return frame


def calculate_frame_difference(frame1, frame2):
    """
    Sum of absolute byte differences between two frames

    Every plane is weighted equally and the result is not normalized by
    length, so scores are only comparable for frames of the same geometry.

    Parameters:
    frame1 (bytes): First frame buffer
    frame2 (bytes): Second frame buffer of the same length

    Returns:
    float: Total difference, 0 for identical frames
    """
    if len(frame1) != len(frame2):
        raise LengthMismatchError(
            f"Frames must have the same size ({len(frame1)} != {len(frame2)} bytes)"
        )

    a = np.frombuffer(frame1, dtype=np.uint8).astype(np.int16)
    b = np.frombuffer(frame2, dtype=np.uint8).astype(np.int16)
    total_difference = np.abs(a - b).sum(dtype=np.int64)
    return float(total_difference)


def yuv420_to_bgr(frame, geometry):
    """Convert a planar I420 buffer to a BGR image (numpy array)."""
    if geometry.width % 2 or geometry.height % 2:
        raise ValueError(f"Cannot convert odd-sized frame {geometry} to BGR")
    data = np.frombuffer(normalize_frame_size(frame, geometry.frame_size), dtype=np.uint8)
    yuv = data.reshape((geometry.height * 3 // 2, geometry.width))
    return cv2.cvtColor(yuv, cv2.COLOR_YUV2BGR_I420)
