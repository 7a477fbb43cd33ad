"""
FFmpeg Frame Decoder Module

Extracts a single raw planar frame from a video stream by seeking with
ffmpeg and capturing its rawvideo output on stdout.
"""

import logging
import shutil
import subprocess
import time

from sync_errors import DecodeFailure

logger = logging.getLogger('ffmpeg_decoder')

DEFAULT_DECODE_TIMEOUT = 60  # seconds per ffmpeg invocation
STDERR_TAIL_LINES = 20


def find_executable(name):
    """Finds an executable in the system PATH."""
    exec_path = shutil.which(name)
    if exec_path:
        logger.debug(f"Found executable '{name}' at: {exec_path}")
        return exec_path
    else:
        logger.error(f"'{name}' command not found in system PATH.")
        return None


def candidate_timestamp(candidate_index, frame_rate):
    """Seek position in seconds for a candidate frame index."""
    return candidate_index / frame_rate


def format_timestamp(seconds):
    # Fixed-point: ffmpeg's time parser rejects exponent notation such as 1e-05
    return f"{float(seconds):.6f}"


def _stderr_tail(stderr, max_lines=STDERR_TAIL_LINES):
    text = stderr.decode('utf-8', errors='ignore') if isinstance(stderr, bytes) else (stderr or "")
    lines = text.strip().splitlines()
    tail = "\n".join(lines[-max_lines:])
    if len(lines) > max_lines:
        tail = f"(Showing last {max_lines} lines)\n" + tail
    return tail


class FFmpegFrameDecoder:
    """Decodes one frame at a time from a video file using an ffmpeg subprocess"""

    def __init__(self, ffmpeg_path=None, timeout=DEFAULT_DECODE_TIMEOUT, pixel_format='yuv420p'):
        """
        Parameters:
        ffmpeg_path (str): ffmpeg executable, looked up in PATH when None
        timeout (float): Seconds before a hung ffmpeg process is killed, None to wait forever
        pixel_format (str): Raw output pixel format
        """
        self.ffmpeg_path = ffmpeg_path or find_executable("ffmpeg") or "ffmpeg"
        self.timeout = timeout
        self.pixel_format = pixel_format

    def build_command(self, source_path, geometry, timestamp):
        return [
            self.ffmpeg_path, '-v', 'error', '-nostdin',
            '-i', str(source_path),
            '-ss', format_timestamp(timestamp),
            '-frames:v', '1',
            '-s', f"{geometry.width}x{geometry.height}",
            '-pix_fmt', self.pixel_format,
            '-f', 'rawvideo', '-',
        ]

    def decode(self, source_path, geometry, candidate_index, frame_rate):
        """
        Decode the frame of source_path at candidate_index / frame_rate seconds

        Returns:
        bytes: Raw planar frame data, possibly not exactly geometry.frame_size long

        Raises:
        DecodeFailure: ffmpeg is missing, exits non-zero or times out
        """
        timestamp = candidate_timestamp(candidate_index, frame_rate)
        cmd_list = self.build_command(source_path, geometry, timestamp)
        logger.debug(f"Candidate {candidate_index}: {' '.join(cmd_list)}")
        start_time = time.time()

        try:
            process = subprocess.Popen(cmd_list, stdin=subprocess.DEVNULL,
                                       stdout=subprocess.PIPE, stderr=subprocess.PIPE)
        except FileNotFoundError as e:
            raise DecodeFailure(candidate_index, f"'{cmd_list[0]}' not found. Check installation/PATH.") from e
        except OSError as e:
            raise DecodeFailure(candidate_index, f"Could not start ffmpeg: {e}") from e

        try:
            stdout, stderr = process.communicate(timeout=self.timeout)
        except subprocess.TimeoutExpired as e:
            process.kill()
            process.communicate()
            raise DecodeFailure(candidate_index, f"ffmpeg timed out after {self.timeout}s at {timestamp:.3f}s") from e
        except OSError as e:
            process.kill()
            process.communicate()
            raise DecodeFailure(candidate_index, f"Could not read ffmpeg output: {e}") from e

        elapsed_time = time.time() - start_time
        if process.returncode != 0:
            raise DecodeFailure(
                candidate_index,
                f"FFmpeg failed (Exit code: {process.returncode}, Time: {elapsed_time:.2f}s):\n{_stderr_tail(stderr)}"
            )

        logger.debug(f"Candidate {candidate_index}: decoded {len(stdout)} bytes in {elapsed_time:.2f}s")
        return stdout

    def extract_frame(self, source_path, geometry, candidate_index, frame_rate, strict=True):
        """
        Decode a single frame outside of a search

        With strict=True a frame whose size differs from geometry.frame_size
        is rejected instead of being padded or truncated later.
        """
        frame_data = self.decode(source_path, geometry, candidate_index, frame_rate)
        if strict and len(frame_data) != geometry.frame_size:
            raise DecodeFailure(
                candidate_index,
                f"Extracted frame size ({len(frame_data)} bytes) does not match expected size ({geometry.frame_size} bytes)."
            )
        return frame_data
