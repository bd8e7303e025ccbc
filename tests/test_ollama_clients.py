"""Tests for the local inference clients (httpx.MockTransport and a silent loopback server)."""

import json
import socket
import threading
import time

import httpx
import pytest

from citepack.embedders import OllamaEmbedder, find_installed
from citepack.errors import (
    Cancelled,
    GenerationFailed,
    InvalidBaseUrl,
    InvalidEmbeddingPayload,
    ModelMissing,
    ModelNotFound,
    NonLocalEndpointRejected,
    RequestTimeout,
    ServiceUnreachable,
)
from citepack.generators import OllamaChat
from citepack.utils.cancel import CancelToken
from citepack.utils.http import assert_local_base_url


def embed_handler(request: httpx.Request) -> httpx.Response:
    if request.url.path == "/api/tags":
        return httpx.Response(200, json={"models": [{"name": "bge-m3:latest"}, {"name": "qwen3:4b"}]})
    body = json.loads(request.content)
    return httpx.Response(200, json={"embedding": [float(len(body["prompt"])), 1.0]})


def embedder_with(handler) -> OllamaEmbedder:
    return OllamaEmbedder(transport=httpx.MockTransport(handler), availability_cache_s=0)


class TestBaseUrl:
    def test_local_hosts_allowed(self):
        assert assert_local_base_url("http://localhost:11434/") == "http://localhost:11434"
        assert assert_local_base_url("http://127.0.0.1:8080/api") == "http://127.0.0.1:8080"

    @pytest.mark.parametrize("url", ["http://example.com:11434", "http://10.0.0.5:11434", "http://0.0.0.0"])
    def test_remote_hosts_rejected(self, url):
        with pytest.raises(NonLocalEndpointRejected) as exc:
            OllamaEmbedder(url)
        assert exc.value.code == "OLLAMA_NON_LOCAL_BASE_URL"

    @pytest.mark.parametrize("url", ["", "not a url", "ftp://localhost", "http://localhost:notaport"])
    def test_invalid_urls(self, url):
        with pytest.raises(InvalidBaseUrl):
            OllamaChat(url)


class TestEmbedder:
    def test_list_models(self):
        assert embedder_with(embed_handler).list_models() == ["bge-m3:latest", "qwen3:4b"]

    def test_embed_one(self):
        assert embedder_with(embed_handler).embed_one("bge-m3", "abcd") == [4.0, 1.0]

    def test_embed_many_preserves_order(self):
        texts = ["a" * n for n in range(1, 12)]
        seen = []
        vectors = embedder_with(embed_handler).embed_many(texts, "bge-m3", concurrency=4, on_embedded=seen.append)
        assert [v[0] for v in vectors] == [float(n) for n in range(1, 12)]
        assert sorted(seen) == list(range(11))

    def test_embed_many_raises_first_failure(self):
        def handler(request):
            if b"bad" in request.content:
                return httpx.Response(200, json={"embedding": []})
            return embed_handler(request)

        with pytest.raises(InvalidEmbeddingPayload):
            embedder_with(handler).embed_many(["ok", "bad", "ok"], "bge-m3", concurrency=2)

    def test_empty_model_name(self):
        with pytest.raises(ModelMissing):
            embedder_with(embed_handler).embed_one("  ", "x")

    def test_model_not_found_detected_from_body(self):
        def handler(request):
            return httpx.Response(200, json={"error": 'model "nope" not found, try pulling it first'})

        with pytest.raises(ModelNotFound) as exc:
            embedder_with(handler).embed_one("nope", "x")
        assert exc.value.code == "MODEL_NOT_FOUND"
        assert not exc.value.retryable

    def test_model_not_found_from_error_status(self):
        def handler(request):
            return httpx.Response(404, json={"error": "model 'nope' not found"})

        with pytest.raises(ModelNotFound):
            embedder_with(handler).embed_one("nope", "x")

    def test_unreachable_is_retryable(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        embedder = embedder_with(handler)
        with pytest.raises(ServiceUnreachable) as exc:
            embedder.embed_one("bge-m3", "x")
        assert exc.value.retryable
        assert embedder.is_reachable() is False

    def test_timeout(self):
        def handler(request):
            raise httpx.ReadTimeout("slow", request=request)

        with pytest.raises(RequestTimeout):
            embedder_with(handler).embed_one("bge-m3", "x")

    def test_cancelled_token_stops_before_request(self):
        calls = []

        def handler(request):
            calls.append(request)
            return embed_handler(request)

        token = CancelToken()
        token.cancel()
        with pytest.raises(Cancelled):
            embedder_with(handler).embed_one("bge-m3", "x", token=token)
        assert calls == []


class TestModelResolution:
    def test_tag_insensitive_match(self):
        assert find_installed("bge-m3", ["bge-m3:latest"]) == "bge-m3:latest"
        assert find_installed("bge-m3:567m", ["bge-m3:latest"]) is None
        assert find_installed("", ["bge-m3:latest"]) is None

    def test_configured_model_selected(self):
        result = embedder_with(embed_handler).resolve_model("bge-m3", "nomic-embed-text")
        assert (result.model_ready, result.selected_model, result.fallback_used) == (True, "bge-m3:latest", False)

    def test_fallback_model_selected(self):
        def handler(request):
            return httpx.Response(200, json={"models": [{"name": "nomic-embed-text:latest"}]})

        result = embedder_with(handler).resolve_model("bge-m3", "nomic-embed-text")
        assert result.fallback_used is True
        assert result.selected_model == "nomic-embed-text:latest"

    def test_unreachable_reported_not_raised(self):
        def handler(request):
            raise httpx.ConnectError("down", request=request)

        result = embedder_with(handler).resolve_model("bge-m3")
        assert result.reachable is False
        assert result.error


def chat_with(handler) -> OllamaChat:
    return OllamaChat(transport=httpx.MockTransport(handler))


class TestChat:
    def test_non_streaming(self):
        captured = {}

        def handler(request):
            captured.update(json.loads(request.content))
            return httpx.Response(200, json={"message": {"content": '{"answer":[]}'}})

        out = chat_with(handler).chat("qwen3:4b", "sys", "user", json_mode=True, num_ctx=512)
        assert out == '{"answer":[]}'
        assert captured["format"] == "json"
        assert captured["options"]["num_ctx"] == 1024
        assert [m["role"] for m in captured["messages"]] == ["system", "user"]

    def test_streaming_concatenates_deltas(self):
        lines = [{"message": {"content": part}, "done": False} for part in ["Hel", "lo ", "world"]]
        lines.append({"message": {"content": ""}, "done": True})
        body = "\n".join(json.dumps(line) for line in lines) + "\n"

        def handler(request):
            return httpx.Response(200, content=body.encode("utf-8"))

        deltas = []
        out = chat_with(handler).chat("m", "s", "u", stream=True, on_token=deltas.append)
        assert out == "Hello world"
        assert deltas == ["Hel", "lo ", "world"]

    def test_retries_without_format_when_rejected(self):
        payloads = []

        def handler(request):
            payload = json.loads(request.content)
            payloads.append(payload)
            if "format" in payload:
                return httpx.Response(400, json={"error": "invalid format option"})
            return httpx.Response(200, json={"message": {"content": "ok"}})

        assert chat_with(handler).chat("m", "s", "u", json_mode=True) == "ok"
        assert ["format" in p for p in payloads] == [True, False]

    def test_http_error_becomes_generation_failed(self):
        def handler(request):
            return httpx.Response(500, json={"error": "out of memory"})

        with pytest.raises(GenerationFailed):
            chat_with(handler).chat("m", "s", "u")

    def test_missing_model(self):
        with pytest.raises(ModelMissing):
            chat_with(lambda r: httpx.Response(200, json={})).chat("", "s", "u")

    def test_cancel_between_stream_lines(self):
        token = CancelToken()
        started = threading.Event()

        async def stream_body():
            yield b'{"message":{"content":"first"}}\n'
            started.set()
            token.cancel()
            yield b'{"message":{"content":"second"}}\n'

        def handler(request):
            return httpx.Response(200, content=stream_body())

        deltas = []
        with pytest.raises(Cancelled):
            chat_with(handler).chat("m", "s", "u", stream=True, on_token=deltas.append, token=token)
        assert started.is_set()
        assert deltas == ["first"]


@pytest.fixture
def silent_server():
    """A loopback server that accepts connections and never replies."""
    server = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    server.bind(("127.0.0.1", 0))
    server.listen(4)
    accepted = []
    stop = threading.Event()

    def accept_loop():
        server.settimeout(0.1)
        while not stop.is_set():
            try:
                conn, _ = server.accept()
            except OSError:
                continue
            accepted.append(conn)

    thread = threading.Thread(target=accept_loop, daemon=True)
    thread.start()
    yield f"http://127.0.0.1:{server.getsockname()[1]}"
    stop.set()
    thread.join(2)
    for conn in accepted:
        conn.close()
    server.close()


class TestCancelBlockedRead:
    def cancel_soon(self, token: CancelToken, delay: float = 0.3) -> threading.Timer:
        timer = threading.Timer(delay, token.cancel)
        timer.start()
        return timer

    def test_embed_request_aborts_promptly(self, silent_server):
        token = CancelToken()
        embedder = OllamaEmbedder(silent_server, timeout=20)
        self.cancel_soon(token)
        started = time.monotonic()
        with pytest.raises(Cancelled):
            embedder.embed_one("bge-m3", "x", token=token)
        assert time.monotonic() - started < 5

    def test_chat_stream_aborts_promptly(self, silent_server):
        token = CancelToken()
        chat = OllamaChat(silent_server, timeout=20)
        self.cancel_soon(token)
        started = time.monotonic()
        with pytest.raises(Cancelled):
            chat.chat("m", "s", "u", stream=True, token=token)
        assert time.monotonic() - started < 5

    def test_timeout_still_applies_without_cancel(self, silent_server):
        with pytest.raises(RequestTimeout):
            OllamaEmbedder(silent_server, timeout=0.3).embed_one("bge-m3", "x")
