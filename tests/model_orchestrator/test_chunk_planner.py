"""Pytest suite for whitespace-snapping chunk planning."""

import pytest

from model_orchestrator.chunk_planner import ChunkPlanner, reassemble


def test_short_prompt_is_single_chunk():
    chunks = ChunkPlanner(100).plan("a short prompt")
    assert len(chunks) == 1
    assert chunks[0].text == "a short prompt"
    assert chunks[0].separator == ""


def test_empty_prompt_has_no_chunks():
    assert ChunkPlanner(100).plan("") == []


def test_2400_chars_at_800_gives_three_chunks():
    prompt = "word " * 480
    assert len(prompt) == 2400
    chunks = ChunkPlanner(800).plan(prompt)
    assert len(chunks) == 3
    assert [c.index for c in chunks] == [0, 1, 2]
    assert all(len(c) <= 800 for c in chunks)
    assert reassemble(chunks) == prompt


def test_splits_snap_to_whitespace():
    prompt = "alpha beta gamma delta epsilon zeta eta theta"
    chunks = ChunkPlanner(12, lookback_chars=12).plan(prompt)
    for c in chunks[:-1]:
        assert c.separator.isspace()
        assert not c.text[-1].isspace()
        assert not c.text[0].isspace()
    assert reassemble(chunks) == prompt


def test_hard_cut_without_whitespace():
    prompt = "x" * 25
    chunks = ChunkPlanner(10).plan(prompt)
    assert [len(c) for c in chunks] == [10, 10, 5]
    assert all(c.separator == "" for c in chunks)
    assert reassemble(chunks) == prompt


def test_whitespace_beyond_lookback_is_ignored():
    prompt = "ab " + "y" * 30
    chunks = ChunkPlanner(10, lookback_chars=2).plan(prompt)
    assert chunks[0].text == "ab " + "y" * 7
    assert reassemble(chunks) == prompt


def test_whitespace_runs_are_preserved():
    prompt = "one two\n\n\nthree   four\tfive " * 20
    chunks = ChunkPlanner(17).plan(prompt)
    assert reassemble(chunks) == prompt
    assert all(len(c) <= 17 for c in chunks)
    assert all(c.text for c in chunks)


def test_offsets_match_source():
    prompt = "lorem ipsum dolor sit amet " * 10
    for c in ChunkPlanner(30).plan(prompt):
        assert prompt[c.start:c.end] == c.text


def test_per_call_chunk_size_override():
    prompt = "word " * 40
    planner = ChunkPlanner(1000)
    assert len(planner.plan(prompt)) == 1
    assert len(planner.plan(prompt, chunk_size=50)) == 4


@pytest.mark.parametrize("size", [0, -5])
def test_invalid_chunk_size(size):
    with pytest.raises(ValueError):
        ChunkPlanner(size)
    with pytest.raises(ValueError):
        ChunkPlanner(10).plan("abc", chunk_size=size)
