"""
Exception types shared by the frame synchronization modules.

Fatal errors (reference frame cannot be loaded) abort a search before any
decoding starts. Decode failures are isolated per candidate.
"""


class FrameSyncError(Exception):
    """Base class for all frame synchronization errors"""


class FatalInputError(FrameSyncError):
    """The reference file is missing, unreadable or too short"""


class TruncatedInputError(FatalInputError):
    """The reference file ended before a full frame could be read"""

    def __init__(self, path, frame_index, expected_size, bytes_read):
        self.path = path
        self.frame_index = frame_index
        self.expected_size = expected_size
        self.bytes_read = bytes_read
        super().__init__(
            f"Unexpected end of file while reading YUV frame {frame_index} from {path} "
            f"({bytes_read} of {expected_size} bytes read)"
        )


class DecodeFailure(FrameSyncError):
    """The external decoder could not produce a frame for a candidate"""

    def __init__(self, candidate_index, message):
        self.candidate_index = candidate_index
        self.message = message
        super().__init__(f"Candidate {candidate_index}: {message}")


class LengthMismatchError(FrameSyncError, ValueError):
    """Two frame buffers of different sizes were passed to the scorer"""


class EmptyResultError(FrameSyncError):
    """No candidate produced a score, so there is nothing to reduce"""
