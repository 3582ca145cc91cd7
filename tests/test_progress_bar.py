import io
import logging
import threading

import pytest

from pbar import (
    Geometry,
    GeometryQueryError,
    LayoutTier,
    ProgressBar,
    RenderMode,
    Theme,
    UpdatePath,
)

RESERVE = '\033D\x1b7\033[0;23r\x1b8\033[1A'
CLEANUP = '\x1b7\033[0;24r\033[24;0f\033[0K\x1b8'


class FixedGeometry:
    def __init__(self, columns=80, rows=24, is_terminal=True):
        self.geometry = Geometry(columns, rows, is_terminal)

    def query(self):
        return self.geometry


class BrokenGeometry:
    def query(self):
        raise GeometryQueryError('ioctl failed')


def make_bar(total, stream, columns=80, **kwargs):
    kwargs.setdefault('theme', Theme.default())
    kwargs.setdefault('handle_signals', False)
    return ProgressBar(total, stream=stream, geometry_provider=FixedGeometry(columns), **kwargs)


def test_add_draws_one_frame_per_call():
    stream = io.StringIO()
    bar = make_bar(4, stream)
    bar.add(1)
    bar.add(1)
    assert stream.getvalue().count('\033[1000D') == 2
    assert bar.completed == 2
    assert bar.percent == 50
    assert not bar.is_finished()
    assert not bar.cleaned_up


def test_over_large_increments_are_clamped():
    stream = io.StringIO()
    bar = make_bar(10, stream)
    for _ in range(4):
        bar.add(3)
    assert bar.completed == 10
    assert bar.is_finished()
    assert bar.cleaned_up
    output = stream.getvalue()
    assert output.count('Finished: ') == 1
    assert '100%' in output
    assert '101%' not in output and '120%' not in output


def test_adds_after_finish_are_inert():
    stream = io.StringIO()
    bar = make_bar(2, stream)
    bar.add(2)
    drawn = stream.getvalue()
    bar.add(1)
    bar.add(5)
    assert stream.getvalue() == drawn
    assert bar.completed == 2


def test_negative_count_rejected():
    bar = make_bar(2, io.StringIO())
    with pytest.raises(ValueError):
        bar.add(-1)
    with pytest.raises(ValueError):
        bar.add_async(-1)


def test_tier_follows_geometry():
    assert make_bar(2, io.StringIO(), columns=5).tier == LayoutTier.MINIMAL
    assert make_bar(2, io.StringIO(), columns=15).tier == LayoutTier.COMPACT
    assert make_bar(2, io.StringIO(), columns=40).tier == LayoutTier.FULL


def test_not_a_terminal_is_a_silent_no_op():
    stream = io.StringIO()
    bar = ProgressBar.multiline(3, stream=stream)
    assert bar.geometry == Geometry.unavailable()
    assert bar.coordinator is None
    for _ in range(3):
        bar.add(1)
    bar.close()
    assert stream.getvalue() == ''
    assert bar.completed == 3
    assert bar.is_finished()


@pytest.mark.parametrize('geometry', [FixedGeometry(0, 24), FixedGeometry(80, 24, is_terminal=False)])
def test_degenerate_geometry_writes_nothing(geometry):
    stream = io.StringIO()
    bar = ProgressBar(2, mode=RenderMode.MULTI_LINE, stream=stream,
                      geometry_provider=geometry, handle_signals=False)
    bar.add(1)
    bar.add(1)
    bar.cleanup()
    assert stream.getvalue() == ''
    assert bar.completed == 2


def test_construction_survives_geometry_failure(caplog):
    stream = io.StringIO()
    with caplog.at_level(logging.ERROR, logger='pbar'):
        bar = ProgressBar(2, stream=stream, geometry_provider=BrokenGeometry())
    assert bar.geometry == Geometry.unavailable()
    assert 'Could not query the terminal size' in caplog.text
    bar.add(2)
    assert stream.getvalue() == ''


def test_multiline_reserves_draws_then_cleans_up():
    stream = io.StringIO()
    bar = make_bar(1, stream, mode=RenderMode.MULTI_LINE)
    assert stream.getvalue() == RESERVE
    bar.add(1)
    output = stream.getvalue()
    assert output.startswith(RESERVE)
    assert output.endswith(CLEANUP)
    finished_at = output.index('Finished: ')
    assert finished_at < output.index(CLEANUP)


def test_cleanup_is_idempotent():
    stream = io.StringIO()
    bar = make_bar(5, stream, mode=RenderMode.MULTI_LINE)
    bar.add(1)
    bar.cleanup()
    once = stream.getvalue()
    bar.cleanup()
    bar.close()
    assert stream.getvalue() == once
    assert once.count(CLEANUP) == 1


def test_cleanup_runs_once_across_threads():
    stream = io.StringIO()
    bar = make_bar(5, stream, mode=RenderMode.MULTI_LINE)
    barrier = threading.Barrier(8)

    def race():
        barrier.wait()
        bar.cleanup()

    threads = [threading.Thread(target=race) for _ in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert stream.getvalue().count(CLEANUP) == 1


def test_single_line_cleanup_writes_nothing():
    stream = io.StringIO()
    bar = make_bar(5, stream)
    bar.close()
    assert stream.getvalue() == ''
    assert bar.cleaned_up


def test_adds_after_close_are_inert():
    stream = io.StringIO()
    bar = make_bar(5, stream)
    bar.close()
    bar.add(1)
    assert stream.getvalue() == ''
    assert bar.completed == 0


def test_context_manager_closes():
    stream = io.StringIO()
    with make_bar(3, stream, mode=RenderMode.MULTI_LINE) as bar:
        bar.add(1)
    assert bar.cleaned_up
    assert stream.getvalue().endswith(CLEANUP)


def test_callbacks():
    updates = []
    completions = []
    bar = make_bar(4, io.StringIO(),
                   on_update=lambda completed, percent: updates.append((completed, percent)),
                   on_complete=lambda: completions.append(True))
    bar.add(1)
    bar.add(2)
    bar.add(5)
    bar.add(1)
    assert updates == [(1, 25), (3, 75), (4, 100)]
    assert completions == [True]


def test_failing_callback_is_logged(caplog):
    def explode(completed, percent):
        raise RuntimeError('boom')

    bar = make_bar(2, io.StringIO(), on_update=explode)
    with caplog.at_level(logging.ERROR, logger='pbar'):
        bar.add(1)
    assert bar.completed == 1
    assert 'on_update callback failed' in caplog.text


def test_refresh_geometry_keeps_previous_on_error():
    provider = FixedGeometry(40)
    bar = ProgressBar(2, stream=io.StringIO(), geometry_provider=provider, handle_signals=False)
    provider.query = BrokenGeometry().query
    with pytest.raises(GeometryQueryError):
        bar.refresh_geometry()
    assert bar.geometry == Geometry(40, 24, True)


def test_refresh_geometry_rereserves_bottom_row():
    stream = io.StringIO()
    provider = FixedGeometry(80, 24)
    bar = ProgressBar.multiline(2, stream=stream, geometry_provider=provider, handle_signals=False)
    provider.geometry = Geometry(30, 10, True)
    assert bar.refresh_geometry() == Geometry(30, 10, True)
    assert stream.getvalue().endswith('\033D\x1b7\033[0;9r\x1b8\033[1A')


def test_caller_lock_serializes_direct_adds():
    stream = io.StringIO()
    bar = make_bar(400, stream)

    def worker():
        for _ in range(50):
            with bar.lock():
                bar.add(1)

    threads = [threading.Thread(target=worker) for _ in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert bar.completed == 400
    assert stream.getvalue().count('Finished: ') == 1


def test_factories():
    direct = make_bar(1, io.StringIO())
    assert direct.mode == RenderMode.SINGLE_LINE
    assert direct.update_path == UpdatePath.DIRECT

    multi = ProgressBar.multiline(1, stream=io.StringIO(), handle_signals=False)
    assert multi.mode == RenderMode.MULTI_LINE
    assert multi.update_path == UpdatePath.DIRECT

    asynchronous = ProgressBar.asynchronous(1, stream=io.StringIO(), handle_signals=False)
    assert asynchronous.mode == RenderMode.SINGLE_LINE
    assert asynchronous.update_path == UpdatePath.ASYNC
    asynchronous.close()


def test_add_async_on_direct_bar_is_ignored(caplog):
    bar = make_bar(2, io.StringIO())
    with caplog.at_level(logging.WARNING, logger='pbar'):
        bar.add_async(1)
    assert bar.completed == 0
    assert 'without an update channel' in caplog.text
