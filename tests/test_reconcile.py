"""Tests for line splitting and LineReconciler."""

from __future__ import annotations

import pytest

from chatstream.reconcile import LineReconciler, read_lines, split_complete_lines


class TestSplitCompleteLines:
    def test_complete_lines(self):
        assert split_complete_lines(b'{"a":1}\n{"b":2}\n') == ['{"a":1}', '{"b":2}']

    def test_unterminated_tail_is_held_back(self):
        assert split_complete_lines(b'{"a":1}\n{"b":') == ['{"a":1}']

    def test_no_newline_yet(self):
        assert split_complete_lines(b'{"a":1}') == []
        assert split_complete_lines(b"") == []

    def test_blank_lines_dropped(self):
        assert split_complete_lines(b'\n{"a":1}\n  \n\t\n{"b":2}\n') == ['{"a":1}', '{"b":2}']

    def test_lines_kept_verbatim(self):
        data = '{"a": 1}  \r\n{"ü": "ß"}\n'.encode()
        assert split_complete_lines(data) == ['{"a": 1}  \r', '{"ü": "ß"}']

    def test_read_lines(self, tmp_path):
        path = tmp_path / "s.jsonl"
        path.write_bytes(b'{"a":1}\n{"b"')
        assert read_lines(path) == ['{"a":1}']

    def test_read_lines_missing_file(self, tmp_path):
        with pytest.raises(OSError):
            read_lines(tmp_path / "gone.jsonl")


@pytest.mark.asyncio
async def test_valid_line_confirmed_without_waiting(tmp_path, recording_sleep):
    path = tmp_path / "s.jsonl"
    path.write_text('{"a":1}\n')
    reconciler = LineReconciler(sleep=recording_sleep)
    result = await reconciler.confirm(path, 0, '{"a":1}')
    assert result.ok
    assert result.text == '{"a":1}'
    assert result.attempts == 1
    assert result.line_number == 1
    assert recording_sleep.delays == []


@pytest.mark.asyncio
async def test_confirmed_text_is_not_reserialized(tmp_path, recording_sleep):
    line = '{ "b" : [1, 2.50],   "a":"x" }'
    path = tmp_path / "s.jsonl"
    path.write_text(line + "\n")
    result = await LineReconciler(sleep=recording_sleep).confirm(path, 0, line)
    assert result.text == line


@pytest.mark.asyncio
async def test_line_completed_during_window(tmp_path, make_sleep):
    path = tmp_path / "s.jsonl"
    path.write_text('{"x":0}\n{"a":1\n')

    def finish_write(n: int) -> None:
        if n == 2:
            path.write_text('{"x":0}\n{"a":1}\n')

    sleep = make_sleep(finish_write)
    reconciler = LineReconciler(timeout=0.15, interval=0.05, sleep=sleep)
    result = await reconciler.confirm(path, 1, '{"a":1')
    assert result.ok
    assert result.text == '{"a":1}'
    assert result.attempts == 3
    assert sleep.delays == pytest.approx([0.05, 0.05])


@pytest.mark.asyncio
async def test_line_that_never_parses_is_given_up(tmp_path, recording_sleep):
    path = tmp_path / "s.jsonl"
    path.write_text('{"a":1\n')
    reconciler = LineReconciler(timeout=0.15, interval=0.05, sleep=recording_sleep)
    result = await reconciler.confirm(path, 0, '{"a":1')
    assert not result.ok
    assert result.text is None
    assert result.attempts == 4
    assert recording_sleep.delays == pytest.approx([0.05, 0.05, 0.05])


@pytest.mark.asyncio
async def test_file_vanishing_during_window_keeps_last_text(tmp_path, make_sleep):
    path = tmp_path / "s.jsonl"
    path.write_text("{\n")
    sleep = make_sleep(lambda n: path.unlink(missing_ok=True))
    result = await LineReconciler(timeout=0.1, interval=0.05, sleep=sleep).confirm(path, 0, "{")
    assert not result.ok
    assert result.attempts == 3


@pytest.mark.asyncio
async def test_zero_timeout_means_single_attempt(tmp_path, recording_sleep):
    path = tmp_path / "s.jsonl"
    path.write_text("nope\n")
    result = await LineReconciler(timeout=0, interval=0.05, sleep=recording_sleep).confirm(path, 0, "nope")
    assert not result.ok
    assert result.attempts == 1
    assert recording_sleep.delays == []


@pytest.mark.asyncio
async def test_non_standard_constants_rejected(tmp_path, recording_sleep):
    path = tmp_path / "s.jsonl"
    path.write_text('{"x": NaN}\n')
    result = await LineReconciler(timeout=0, sleep=recording_sleep).confirm(path, 0, '{"x": NaN}')
    assert not result.ok


@pytest.mark.asyncio
async def test_deeply_nested_line_is_a_parse_failure(tmp_path, recording_sleep):
    line = "[" * 100_000 + "]" * 100_000
    path = tmp_path / "s.jsonl"
    path.write_text(line + "\n")
    result = await LineReconciler(timeout=0.1, interval=0.05, sleep=recording_sleep).confirm(path, 0, line)
    assert not result.ok
    assert result.attempts == 3
