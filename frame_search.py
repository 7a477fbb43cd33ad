"""
Bounded Frame Search Module

Finds the frame offset between a raw YUV reference file and an encoded
stream. One reference frame is compared against a range of candidate frames
decoded from the stream; the candidate with the smallest sum of absolute
differences is reported as the offset.
"""

import concurrent.futures
import logging
import time

from tqdm import tqdm

from ffmpeg_decoder import candidate_timestamp
from frame_utils import calculate_frame_difference, normalize_frame_size, read_yuv_frame
from sync_errors import DecodeFailure, EmptyResultError, FatalInputError

logger = logging.getLogger('frame_search')

DEFAULT_REFERENCE_INDEX = 1  # skip the first frame, it often carries encoder artifacts
DEFAULT_FIRST_CANDIDATE = 1
DEFAULT_MAX_CANDIDATE = 511
DEFAULT_MAX_WORKERS = 5

# Search states
STATE_IDLE = 'idle'
STATE_REFERENCE_LOADED = 'reference_loaded'
STATE_SEARCHING = 'searching'
STATE_REDUCED = 'reduced'
STATE_DONE = 'done'
STATE_FAILED = 'failed'


def select_best_candidate(score_table):
    """
    Return (candidate_index, score) with the lowest score

    Equal scores are resolved in favour of the lowest candidate index, so the
    result does not depend on the order in which workers finished.

    Raises:
    EmptyResultError: score_table is empty
    """
    if not score_table:
        raise EmptyResultError("No candidate frame could be decoded and scored")
    return min(score_table.items(), key=lambda item: (item[1], item[0]))


class AlignmentResult:
    """Outcome of one search"""

    def __init__(self, candidate_index, score, score_table, failures, frame_rate, elapsed_time=0.0):
        self.candidate_index = candidate_index
        self.score = score
        self.score_table = dict(score_table)
        self.failures = dict(failures)
        self.frame_rate = frame_rate
        self.elapsed_time = elapsed_time

    @property
    def offset_seconds(self):
        return candidate_timestamp(self.candidate_index, self.frame_rate)

    def summary_line(self):
        return f"Frame offset to sync: {self.candidate_index}"

    def __repr__(self):
        return (f"AlignmentResult(candidate_index={self.candidate_index}, score={self.score}, "
                f"scored={len(self.score_table)}, failed={len(self.failures)})")


class BoundedFrameSearch:
    """Concurrent search for the candidate frame that best matches a reference frame"""

    def __init__(self, reference_path, source_path, geometry, frame_rate, decoder,
                 reference_index=DEFAULT_REFERENCE_INDEX,
                 first_candidate=DEFAULT_FIRST_CANDIDATE,
                 last_candidate=DEFAULT_MAX_CANDIDATE,
                 max_workers=DEFAULT_MAX_WORKERS,
                 show_progress=True):
        """
        Parameters:
        reference_path (str): Raw planar YUV 4:2:0 reference file
        source_path (str): Encoded stream to decode candidates from
        geometry (FrameGeometry): Frame dimensions shared by both sources
        frame_rate (float): Frame rate used to turn candidate indices into seek times
        decoder: Object with decode(source_path, geometry, candidate_index, frame_rate) -> bytes
        reference_index (int): Frame of the reference file to compare against
        first_candidate (int): First candidate index (inclusive)
        last_candidate (int): Last candidate index (inclusive)
        max_workers (int): Maximum number of decodes running at once
        show_progress (bool): Show a tqdm progress bar
        """
        if frame_rate <= 0:
            raise ValueError(f"Frame rate must be positive, got {frame_rate}")
        if max_workers < 1:
            raise ValueError(f"max_workers must be at least 1, got {max_workers}")
        if first_candidate < 1 or last_candidate < first_candidate:
            raise ValueError(f"Invalid candidate range {first_candidate}..{last_candidate}")

        self.reference_path = reference_path
        self.source_path = source_path
        self.geometry = geometry
        self.frame_rate = frame_rate
        self.decoder = decoder
        self.reference_index = reference_index
        self.first_candidate = first_candidate
        self.last_candidate = last_candidate
        self.max_workers = max_workers
        self.show_progress = show_progress

        self.state = STATE_IDLE
        self.reference_frame = None

    @property
    def candidates(self):
        return range(self.first_candidate, self.last_candidate + 1)

    def load_reference(self):
        """Read the reference frame. A FatalInputError leaves the search in the failed state."""
        logger.info(f"--- Loading Reference Frame {self.reference_index} ({self.geometry.width}x{self.geometry.height}) ---")
        try:
            self.reference_frame = read_yuv_frame(self.reference_path, self.geometry, self.reference_index)
        except FatalInputError:
            self.state = STATE_FAILED
            raise
        self.state = STATE_REFERENCE_LOADED
        logger.info(f"  ✓ Loaded {len(self.reference_frame)} bytes from {self.reference_path}")
        return self.reference_frame

    def score_candidate(self, candidate_index):
        """Decode, normalize and score a single candidate. Runs on a worker thread."""
        frame_data = self.decoder.decode(self.source_path, self.geometry, candidate_index, self.frame_rate)
        frame_data = normalize_frame_size(frame_data, self.geometry.frame_size)
        return calculate_frame_difference(self.reference_frame, frame_data)

    def run_search(self):
        """
        Score every candidate with at most max_workers decodes in flight

        Returns:
        tuple: (score_table {candidate: score}, failures {candidate: message})
        """
        if self.state != STATE_REFERENCE_LOADED:
            raise RuntimeError(f"Cannot start searching from state '{self.state}'")
        self.state = STATE_SEARCHING

        score_table = {}
        failures = {}
        future_to_candidate = {}

        logger.info(f"--- Comparing {len(self.candidates)} Candidate Frames "
                    f"({self.first_candidate}..{self.last_candidate}, {self.max_workers} workers) ---")
        start_time = time.time()

        with concurrent.futures.ThreadPoolExecutor(max_workers=self.max_workers) as executor:
            for candidate_index in self.candidates:
                future = executor.submit(self.score_candidate, candidate_index)
                future_to_candidate[future] = candidate_index

            # Only this thread touches score_table and failures
            progress_bar = tqdm(total=len(future_to_candidate), desc="  Matching Frames", unit="frame",
                                ncols=100, leave=False, disable=not self.show_progress)
            try:
                for future in concurrent.futures.as_completed(future_to_candidate):
                    candidate_index = future_to_candidate[future]
                    try:
                        score_table[candidate_index] = future.result()
                        logger.debug(f"  » Candidate {candidate_index}: score {score_table[candidate_index]:.0f}")
                    except DecodeFailure as e:
                        failures[candidate_index] = e.message
                        logger.warning(f"FFmpeg could not decode candidate {candidate_index} "
                                       f"({candidate_timestamp(candidate_index, self.frame_rate):.3f}s): {e.message}")
                    progress_bar.update(1)
            except BaseException:
                for future in future_to_candidate:
                    future.cancel()
                self.state = STATE_FAILED
                raise
            finally:
                progress_bar.close()

        elapsed_time = time.time() - start_time
        logger.info(f"  -> Scored {len(score_table)} candidates, {len(failures)} failed ({elapsed_time:.2f}s)")
        return score_table, failures

    def run(self):
        """
        Run the whole search: load reference, score candidates, pick the best

        Returns:
        AlignmentResult

        Raises:
        FatalInputError: The reference frame could not be read
        EmptyResultError: Every candidate failed to decode
        """
        stage_start_time = time.time()
        logger.info("---=== Frame Alignment Search ===---")

        self.load_reference()
        score_table, failures = self.run_search()

        try:
            best_index, best_score = select_best_candidate(score_table)
        except EmptyResultError:
            self.state = STATE_FAILED
            raise
        self.state = STATE_REDUCED

        result = AlignmentResult(best_index, best_score, score_table, failures,
                                 self.frame_rate, time.time() - stage_start_time)
        self.state = STATE_DONE
        logger.info(f"---=== Frame Alignment Search Finished ({result.elapsed_time:.2f}s) ===---")
        return result
