import pytest

from docrag.embeddings.chunker import MAX_CHUNK_CHARS, chunk_text


def test_blank_text_yields_no_chunks():
    assert chunk_text("") == ()
    assert chunk_text("   \n\n\t ") == ()


def test_short_text_is_a_single_chunk():
    chunks = chunk_text("Hello, world.")
    assert len(chunks) == 1
    assert chunks[0].index == 0
    assert chunks[0].text == "Hello, world."


def test_default_limit_boundary():
    assert len(chunk_text("x" * MAX_CHUNK_CHARS)) == 1
    assert len(chunk_text("x" * (MAX_CHUNK_CHARS + 1))) == 2


def test_chunks_respect_limit_and_reconstruct_text():
    text = "\n\n".join(
        f"Paragraph {i}. " + "word " * 12 for i in range(30)
    )
    chunks = chunk_text(text, max_chars=100)

    assert len(chunks) > 1
    assert all(len(c.text) <= 100 for c in chunks)
    assert "".join(c.text for c in chunks) == text
    assert [c.index for c in chunks] == list(range(len(chunks)))


def test_prefers_paragraph_boundaries():
    para = "a" * 40
    text = f"{para}\n\n{para}\n\n{para}"
    chunks = chunk_text(text, max_chars=50)

    assert [c.text for c in chunks] == [f"{para}\n\n", f"{para}\n\n", para]


def test_hard_cut_without_separators():
    chunks = chunk_text("z" * 250, max_chars=100)
    assert [len(c.text) for c in chunks] == [100, 100, 50]


def test_invalid_limit():
    with pytest.raises(ValueError):
        chunk_text("text", max_chars=0)
