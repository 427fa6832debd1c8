"""Tests for streaming.bleed_filter."""

import pytest

from cli_adapters.response_adapter import strip_assistant_bleed
from config import BLEED_SENTINELS
from streaming.bleed_filter import BleedFilter


def run_filter(chunks):
    f = BleedFilter()
    out = [f.feed(c) for c in chunks]
    out.append(f.finish())
    return "".join(out), f


@pytest.mark.parametrize("sentinel", BLEED_SENTINELS)
def test_sentinel_split_at_every_offset(sentinel):
    full = "Here is the answer you asked for." + sentinel + " and now I pretend to be you"
    expected = strip_assistant_bleed(full)

    for i in range(len(full) + 1):
        output, f = run_filter([full[:i], full[i:]])
        assert output == expected, f"split at {i}"
        assert f.bled


@pytest.mark.parametrize("sentinel", BLEED_SENTINELS)
def test_sentinel_split_into_three(sentinel):
    full = "Short." + sentinel + "rest"
    expected = strip_assistant_bleed(full)
    for i in range(len(full) + 1):
        for j in range(i, len(full) + 1):
            output, _ = run_filter([full[:i], full[i:j], full[j:]])
            assert output == expected, f"split at {i},{j}"


def test_character_by_character():
    full = "abc\ndef\nHuman: ghi"
    output, _ = run_filter(list(full))
    assert output == "abc\ndef"


def test_clean_stream_passes_through_unchanged():
    chunks = ["Hello", ", ", "world!\n", "[Not a header]", "\nHumanity is fine."]
    output, f = run_filter(chunks)
    assert output == "".join(chunks)
    assert not f.bled


def test_tail_is_held_back_until_finish():
    f = BleedFilter()
    assert f.hold_back == max(len(s) for s in BLEED_SENTINELS) - 1

    first = f.feed("0123456789")
    assert first == "0123456789"[:10 - f.hold_back]
    assert f.finish() == "0123456789"[10 - f.hold_back:]


def test_nothing_after_bleed():
    f = BleedFilter()
    f.feed("done.\n[User] hi")
    assert f.bled
    assert f.feed("more text") == ""
    assert f.finish() == ""


def test_sentinel_at_very_start():
    output, f = run_filter(["\n[Human]", " hello"])
    assert output == ""
    assert f.bled


def test_empty_deltas_are_ignored():
    output, _ = run_filter(["", "a", "", "b", ""])
    assert output == "ab"
