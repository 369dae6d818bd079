"""Tests for the recursive text splitter."""
import pytest

from docqa.errors import ConfigurationError, EmptyContentError
from docqa.rag.splitter import RecursiveTextSplitter


def _numbered_document():
    """Paragraphs and lines of unique tokens, some paragraphs longer than 1000 chars."""
    token_counts = [5, 40, 250, 12, 180, 3, 400, 60, 1, 220, 35, 90]
    paragraphs = []
    n = 0
    for p, count in enumerate(token_counts):
        tokens = [f"tok{n + i}" for i in range(count)]
        n += count
        if p % 3 == 0:
            # Break some paragraphs into lines of 15 tokens
            lines = [" ".join(tokens[i:i + 15]) for i in range(0, len(tokens), 15)]
            paragraphs.append("\n".join(lines))
        else:
            paragraphs.append(" ".join(tokens))
    return "\n\n".join(paragraphs), n


def _reconstruct(fragments):
    """Join fragments back into a token sequence, dropping the overlapped tokens."""
    result = []
    for fragment in fragments:
        tokens = fragment.split()
        if result and tokens[0] in result:
            start = result.index(tokens[0])
            overlap = len(result) - start
            assert result[start:] == tokens[:overlap]
            tokens = tokens[overlap:]
        result.extend(tokens)
    return result


def test_fragments_reconstruct_original_text():
    """Test that unique spans of all fragments rebuild the document."""
    text, token_total = _numbered_document()
    splitter = RecursiveTextSplitter(chunk_size=1000, chunk_overlap=200)

    fragments = splitter.split_text(text)

    assert len(fragments) > 1
    assert _reconstruct(fragments) == text.split()
    assert len(text.split()) == token_total


def test_fragments_respect_chunk_size():
    """Test that no fragment exceeds the configured size."""
    text, _ = _numbered_document()
    splitter = RecursiveTextSplitter(chunk_size=300, chunk_overlap=50)

    fragments = splitter.split_text(text)

    assert all(len(f) <= 300 for f in fragments)
    assert all(f.strip() for f in fragments)


def test_consecutive_fragments_overlap():
    """Test that consecutive word-level fragments share trailing tokens."""
    text = " ".join(f"w{i}" for i in range(300))
    splitter = RecursiveTextSplitter(chunk_size=100, chunk_overlap=20)

    fragments = splitter.split_text(text)

    for previous, current in zip(fragments, fragments[1:]):
        assert previous.split()[-1] in current.split()


def test_zero_overlap_reconstructs_exactly():
    text = " ".join(f"w{i}" for i in range(300))
    splitter = RecursiveTextSplitter(chunk_size=100, chunk_overlap=0)

    fragments = splitter.split_text(text)

    assert " ".join(fragments).split() == text.split()


def test_prefers_paragraph_boundaries():
    """Test that paragraphs that fit are kept whole."""
    text = "a" * 30 + "\n\n" + "b" * 30
    splitter = RecursiveTextSplitter(chunk_size=40, chunk_overlap=0)

    assert splitter.split_text(text) == ["a" * 30, "b" * 30]


def test_short_text_is_single_fragment():
    splitter = RecursiveTextSplitter(chunk_size=1000, chunk_overlap=200)

    assert splitter.split_text("  Just one sentence.  ") == ["Just one sentence."]


def test_text_without_separators_splits_by_character():
    """Test that a single long word is cut into size-limited pieces."""
    splitter = RecursiveTextSplitter(chunk_size=100, chunk_overlap=10)

    fragments = splitter.split_text("x" * 250)

    assert len(fragments[0]) == 100
    assert all(len(f) <= 100 for f in fragments)
    assert sum(len(f) for f in fragments) >= 250


@pytest.mark.parametrize("size,overlap", [(100, 100), (100, 150), (0, 0), (10, -1)])
def test_invalid_configuration_rejected(size, overlap):
    """Test that overlap >= size and non-positive sizes are rejected."""
    with pytest.raises(ConfigurationError):
        RecursiveTextSplitter(chunk_size=size, chunk_overlap=overlap)


def test_empty_separator_list_rejected():
    with pytest.raises(ConfigurationError):
        RecursiveTextSplitter(chunk_size=100, chunk_overlap=10, separators=[])


@pytest.mark.parametrize("text", ["", "   ", "\n\n\t"])
def test_blank_text_raises(text):
    splitter = RecursiveTextSplitter(chunk_size=100, chunk_overlap=10)

    with pytest.raises(EmptyContentError):
        splitter.split_text(text)


def test_create_fragments_metadata():
    """Test that fragments carry ordered provenance metadata."""
    text = " ".join(f"w{i}" for i in range(300))
    splitter = RecursiveTextSplitter(chunk_size=100, chunk_overlap=20)

    fragments = splitter.create_fragments(
        text,
        document_id="doc-42",
        original_name="report.txt",
        mime_type="text/plain",
    )

    assert [f.metadata.fragment_index for f in fragments] == list(range(len(fragments)))
    assert all(f.metadata.fragment_count == len(fragments) for f in fragments)
    assert all(f.document_id == "doc-42" for f in fragments)
    assert all(f.metadata.length == len(f.content) for f in fragments)
    assert len({f.id for f in fragments}) == len(fragments)


def test_fragment_stats():
    splitter = RecursiveTextSplitter(chunk_size=100, chunk_overlap=20)
    fragments = splitter.create_fragments(
        " ".join(f"w{i}" for i in range(300)), "d", "d.txt", "text/plain"
    )

    stats = splitter.get_fragment_stats(fragments)

    assert stats["fragment_count"] == len(fragments)
    assert stats["max_fragment_size"] <= 100
    assert splitter.get_fragment_stats([])["fragment_count"] == 0
