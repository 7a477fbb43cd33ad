import pytest

from frame_search import (STATE_DONE, STATE_FAILED, STATE_IDLE, BoundedFrameSearch,
                          select_best_candidate)
from frame_utils import FrameGeometry
from sync_errors import EmptyResultError, TruncatedInputError


def _search(reference_path, decoder, geometry, last_candidate, max_workers=5, **kwargs):
    return BoundedFrameSearch(
        reference_path=reference_path,
        source_path="video.ts",
        geometry=geometry,
        frame_rate=25.0,
        decoder=decoder,
        last_candidate=last_candidate,
        max_workers=max_workers,
        show_progress=False,
        **kwargs,
    )


def _graded_frames(geometry, count):
    """Candidate i is a flat frame of value 10*i."""
    return {i: bytes([min(255, 10 * i)]) * geometry.frame_size for i in range(1, count + 1)}


def test_1080p_scenario_picks_zero_frame(make_yuv_file, stub_decoder_factory):
    geometry = FrameGeometry(1920, 1080)
    size = geometry.frame_size
    assert size == 3110400
    # frame 0 is junk, frame 1 is the reference
    path = make_yuv_file([b"\x80" * size, bytes(size)])
    decoder = stub_decoder_factory({1: b"\xff" * size, 2: bytes(size), 3: b"\xff" * size})

    search = _search(path, decoder, geometry, last_candidate=3)
    result = search.run()

    assert result.candidate_index == 2
    assert result.score == 0
    assert result.score_table == {1: 255.0 * size, 2: 0.0, 3: 255.0 * size}
    assert search.state == STATE_DONE
    assert result.summary_line() == "Frame offset to sync: 2"


def test_concurrency_cap_does_not_change_scores(make_yuv_file, stub_decoder_factory, small_geometry):
    size = small_geometry.frame_size
    path = make_yuv_file([bytes(size), bytes([30]) * size])
    frames = _graded_frames(small_geometry, 20)

    serial = _search(path, stub_decoder_factory(frames), small_geometry, 20, max_workers=1).run()
    parallel = _search(path, stub_decoder_factory(frames, delay=0.001), small_geometry, 20, max_workers=5).run()

    assert serial.score_table == parallel.score_table
    assert serial.candidate_index == parallel.candidate_index == 3


def test_concurrency_cap_is_respected(make_yuv_file, stub_decoder_factory, small_geometry):
    size = small_geometry.frame_size
    path = make_yuv_file([bytes(size), bytes(size)])
    decoder = stub_decoder_factory(_graded_frames(small_geometry, 12), delay=0.01)

    _search(path, decoder, small_geometry, 12, max_workers=2).run()

    assert decoder.max_in_flight <= 2
    assert sorted(decoder.calls) == list(range(1, 13))


def test_failed_candidate_is_excluded(make_yuv_file, stub_decoder_factory, small_geometry):
    size = small_geometry.frame_size
    path = make_yuv_file([bytes(size), bytes([70]) * size])
    # candidate 7 would be a perfect match but never decodes
    decoder = stub_decoder_factory(_graded_frames(small_geometry, 10), fail={7})

    result = _search(path, decoder, small_geometry, 10).run()

    assert len(result.score_table) == 9
    assert 7 not in result.score_table
    assert set(result.failures) == {7}
    assert result.candidate_index == 6  # equal scores resolve to the lower index


def test_short_candidate_is_zero_padded(make_yuv_file, stub_decoder_factory):
    geometry = FrameGeometry(32, 16)
    size = geometry.frame_size
    path = make_yuv_file([bytes(size), bytes(size)])
    decoder = stub_decoder_factory({1: bytes(size - 100), 2: b"\x01" * size})

    result = _search(path, decoder, geometry, 2).run()

    assert result.score_table[1] == 0
    assert result.score_table[2] == size
    assert result.candidate_index == 1


def test_long_candidate_is_truncated(make_yuv_file, stub_decoder_factory, small_geometry):
    size = small_geometry.frame_size
    path = make_yuv_file([bytes(size), bytes(size)])
    decoder = stub_decoder_factory({1: bytes(size) + b"\xff" * 64})

    result = _search(path, decoder, small_geometry, 1).run()
    assert result.score_table == {1: 0.0}


def test_truncated_reference_aborts_before_decoding(make_yuv_file, stub_decoder_factory, small_geometry):
    size = small_geometry.frame_size
    path = make_yuv_file([bytes(size), bytes(size - 1)])
    decoder = stub_decoder_factory(_graded_frames(small_geometry, 5))

    search = _search(path, decoder, small_geometry, 5)
    assert search.state == STATE_IDLE
    with pytest.raises(TruncatedInputError):
        search.run()

    assert decoder.calls == []
    assert search.state == STATE_FAILED


def test_all_candidates_failing_raises_empty_result(make_yuv_file, stub_decoder_factory, small_geometry):
    size = small_geometry.frame_size
    path = make_yuv_file([bytes(size), bytes(size)])
    decoder = stub_decoder_factory({})

    search = _search(path, decoder, small_geometry, 4)
    with pytest.raises(EmptyResultError):
        search.run()
    assert sorted(decoder.calls) == [1, 2, 3, 4]
    assert search.state == STATE_FAILED


def test_unexpected_worker_error_propagates(make_yuv_file, small_geometry):
    size = small_geometry.frame_size
    path = make_yuv_file([bytes(size), bytes(size)])

    class BrokenDecoder:
        def decode(self, source_path, geometry, candidate_index, frame_rate):
            raise RuntimeError("boom")

    search = _search(path, BrokenDecoder(), small_geometry, 3)
    with pytest.raises(RuntimeError, match="boom"):
        search.run()
    assert search.state == STATE_FAILED


def test_custom_reference_index_and_candidate_range(make_yuv_file, stub_decoder_factory, small_geometry):
    size = small_geometry.frame_size
    path = make_yuv_file([bytes([1]) * size, bytes([2]) * size, bytes([50]) * size])
    decoder = stub_decoder_factory(_graded_frames(small_geometry, 10))

    result = _search(path, decoder, small_geometry, 8, reference_index=2, first_candidate=4).run()

    assert sorted(decoder.calls) == [4, 5, 6, 7, 8]
    assert result.candidate_index == 5
    assert result.offset_seconds == pytest.approx(0.2)


def test_run_search_requires_loaded_reference(make_yuv_file, stub_decoder_factory, small_geometry):
    path = make_yuv_file([bytes(small_geometry.frame_size)])
    search = _search(path, stub_decoder_factory({}), small_geometry, 1)
    with pytest.raises(RuntimeError):
        search.run_search()


@pytest.mark.parametrize("kwargs", [
    {"max_workers": 0},
    {"first_candidate": 0},
    {"first_candidate": 10, "last_candidate": 5},
])
def test_invalid_search_parameters(kwargs, stub_decoder_factory, small_geometry):
    params = {"last_candidate": 5}
    params.update(kwargs)
    last_candidate = params.pop("last_candidate")
    with pytest.raises(ValueError):
        _search("ref.yuv", stub_decoder_factory({}), small_geometry, last_candidate, **params)


def test_select_best_candidate_tie_break_lowest_index():
    assert select_best_candidate({9: 5.0, 3: 5.0, 4: 7.0}) == (3, 5.0)
    assert select_best_candidate({2: 1.0}) == (2, 1.0)


def test_select_best_candidate_empty():
    with pytest.raises(EmptyResultError):
        select_best_candidate({})
