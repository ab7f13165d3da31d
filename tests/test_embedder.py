import asyncio
import json

import httpx
import pytest

from docrag.core.errors import EmbeddingAPIError, InvalidQueryError
from docrag.embeddings.embedder import COMBINED_QUERY_DELIMITER, Embedder, combine_questions


def _vector_for(text: str):
    return [float(len(text)), 1.0, 0.5]


def _ok(request: httpx.Request) -> httpx.Response:
    body = json.loads(request.content)
    return httpx.Response(200, json={"data": [{"embedding": _vector_for(body["input"])}]})


def make_embedder(handler, **kwargs) -> Embedder:
    return Embedder(
        api_key="test-key",
        model="test-model",
        base_url="https://embeddings.test/v1/embeddings",
        timeout=5.0,
        transport=httpx.MockTransport(handler),
        **kwargs,
    )


@pytest.mark.asyncio
async def test_vectors_align_with_inputs():
    texts = ["a", "bbb", "cc"]
    vectors = await make_embedder(_ok).embed(texts)
    assert vectors == [_vector_for(t) for t in texts]


@pytest.mark.asyncio
async def test_request_shape():
    seen = []

    def handler(request):
        seen.append(request)
        return _ok(request)

    await make_embedder(handler).embed(["hello"])

    assert seen[0].headers["Authorization"] == "Bearer test-key"
    assert json.loads(seen[0].content) == {"model": "test-model", "input": "hello"}


@pytest.mark.asyncio
async def test_empty_input_makes_no_requests():
    def handler(request):
        raise AssertionError("no request expected")

    assert await make_embedder(handler).embed([]) == []


@pytest.mark.asyncio
async def test_concurrency_is_capped():
    in_flight = 0
    peak = 0

    async def handler(request):
        nonlocal in_flight, peak
        in_flight += 1
        peak = max(peak, in_flight)
        await asyncio.sleep(0.01)
        in_flight -= 1
        return _ok(request)

    texts = [f"text {i}" for i in range(120)]
    vectors = await make_embedder(handler, max_concurrency=50).embed(texts)

    assert len(vectors) == 120
    assert 1 < peak <= 50


@pytest.mark.asyncio
async def test_partial_failure_reports_index_after_siblings_finish():
    completed = []

    async def handler(request):
        body = json.loads(request.content)
        if body["input"] == "bad":
            return httpx.Response(500, json={"error": "server"})
        await asyncio.sleep(0.01)
        completed.append(body["input"])
        return _ok(request)

    texts = ["one", "two", "three", "bad", "five"]
    with pytest.raises(EmbeddingAPIError) as exc_info:
        await make_embedder(handler).embed(texts)

    assert exc_info.value.index == 3
    assert exc_info.value.status_code == 500
    assert sorted(completed) == sorted(["one", "two", "three", "five"])


@pytest.mark.asyncio
async def test_return_exceptions_keeps_successful_vectors():
    def handler(request):
        if json.loads(request.content)["input"] == "limited":
            return httpx.Response(429, json={"error": "rate limit"})
        return _ok(request)

    results = await make_embedder(handler).embed(["ok", "limited"], return_exceptions=True)

    assert results[0] == _vector_for("ok")
    assert isinstance(results[1], EmbeddingAPIError)
    assert results[1].rate_limited


@pytest.mark.asyncio
async def test_malformed_response_is_an_embedding_error():
    def handler(request):
        return httpx.Response(200, json={"data": []})

    with pytest.raises(EmbeddingAPIError) as exc_info:
        await make_embedder(handler).embed(["x"])
    assert exc_info.value.index == 0


@pytest.mark.asyncio
async def test_combined_query_is_one_request():
    inputs = []

    def handler(request):
        inputs.append(json.loads(request.content)["input"])
        return _ok(request)

    vector = await make_embedder(handler).embed_query(["What is X?", " ", "How does Y work?"])

    assert len(inputs) == 1
    assert inputs[0] == f"What is X?{COMBINED_QUERY_DELIMITER}How does Y work?"
    assert vector == _vector_for(inputs[0])


@pytest.mark.asyncio
async def test_combined_query_failure():
    def handler(request):
        return httpx.Response(503)

    with pytest.raises(EmbeddingAPIError) as exc_info:
        await make_embedder(handler).embed_query(["q"])
    assert exc_info.value.status_code == 503
    assert exc_info.value.index is None


def test_combine_questions_requires_content():
    with pytest.raises(InvalidQueryError) as exc_info:
        combine_questions(["", "   "])
    assert exc_info.value.stage == "retrieve"
