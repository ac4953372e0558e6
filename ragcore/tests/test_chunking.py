import pytest

from ragcore.config.settings import ChunkingConfig
from ragcore.core.chunk.chunker import TextChunker


def make_chunker(**overrides) -> TextChunker:
    params = {"chunk_size": 1000, "chunk_overlap": 200, "min_chunk_size": 100, "max_chunks": 1000}
    params.update(overrides)
    return TextChunker(ChunkingConfig(**params))


def test_2500_character_document_yields_three_overlapping_chunks():
    text = "word " * 500
    result = make_chunker().chunk(text)
    chunks = result.chunks

    print(f"Chunks: {[(c.index, c.start_char, c.end_char) for c in chunks]}")
    assert [c.index for c in chunks] == [0, 1, 2]
    assert chunks[0].start_char == 0
    assert all(len(c.text) >= 100 for c in chunks)
    for prev, cur in zip(chunks, chunks[1:]):
        assert cur.start_char < prev.end_char
    assert not result.truncated


def test_chunks_cover_input_in_order(sample_text):
    text = sample_text(60)
    chunker = make_chunker()
    result = chunker.chunk(text)
    chunks = result.chunks
    normalised = chunker.normalise_text(text)

    assert len(chunks) > 3
    assert chunks[0].start_char == 0
    assert chunks[-1].end_char == result.normalised_length == len(normalised)
    for prev, cur in zip(chunks, chunks[1:]):
        assert cur.index == prev.index + 1
        assert prev.start_char < cur.start_char <= prev.end_char
    for c in chunks:
        assert normalised[c.start_char:c.end_char].strip() == c.text


def test_prefers_sentence_boundary_in_window_tail():
    text = "x" * 84 + ". " + "Y" + "y" * 300
    chunks = make_chunker(chunk_size=100, chunk_overlap=20, min_chunk_size=10).chunk(text).chunks

    assert chunks[0].end_char == 86
    assert chunks[0].text.endswith(".")


def test_falls_back_to_paragraph_then_word_boundary():
    para_text = "a" * 85 + "\n\n" + "b" * 300
    chunks = make_chunker(chunk_size=100, chunk_overlap=20, min_chunk_size=10).chunk(para_text).chunks
    assert chunks[0].end_char == 87

    word_text = "c" * 90 + " " + "d" * 300
    chunks = make_chunker(chunk_size=100, chunk_overlap=20, min_chunk_size=10).chunk(word_text).chunks
    assert chunks[0].end_char == 91


def test_hard_cut_without_any_boundary():
    chunks = make_chunker().chunk("a" * 5000).chunks
    assert chunks[0].end_char == 1000
    assert chunks[1].start_char == 800


def test_degenerate_overlap_still_makes_progress():
    # Break point at 86 with overlap 90 would move start backwards
    chunker = make_chunker(chunk_size=100, chunk_overlap=90, min_chunk_size=10)
    text = "a" * 85 + " " + "b" * 200
    chunks = chunker.chunk(text).chunks

    assert chunks[0].end_char == 86
    assert chunks[1].start_char == 10
    starts = [c.start_char for c in chunks]
    assert starts == sorted(set(starts))
    assert chunks[-1].end_char == len(text)


def test_short_and_empty_input_produce_no_chunks():
    chunker = make_chunker()
    assert chunker.chunk("").chunks == []
    assert chunker.chunk("   \n\n  ").chunks == []
    assert chunker.chunk("Too short to embed.").chunks == []


def test_chunk_ceiling_truncates_with_warning(caplog):
    result = make_chunker(max_chunks=2).chunk("word " * 500)
    assert len(result.chunks) == 2
    assert result.truncated
    assert "Maximum chunk limit reached" in caplog.text


def test_chunking_is_deterministic(sample_text):
    chunker = make_chunker()
    text = sample_text(50)
    first = chunker.chunk(text).chunks
    second = chunker.chunk(text).chunks
    assert [(c.start_char, c.end_char, c.text) for c in first] == [(c.start_char, c.end_char, c.text) for c in second]


def test_normalise_text_collapses_blank_lines():
    assert TextChunker.normalise_text("a\r\nb\r\n\r\n\r\n\r\nc  ") == "a\nb\n\nc"


def test_chunk_stats():
    chunks = make_chunker().chunk("word " * 500).chunks
    stats = TextChunker.get_chunk_stats(chunks)
    assert stats.count == 3
    assert stats.min_size <= stats.avg_size <= stats.max_size
    assert stats.total_chars == sum(len(c.text) for c in chunks)
    assert TextChunker.get_chunk_stats([]).count == 0


def test_rejects_invalid_configuration():
    with pytest.raises(ValueError):
        make_chunker(chunk_overlap=1000)
    with pytest.raises(ValueError):
        make_chunker(min_chunk_size=0)
