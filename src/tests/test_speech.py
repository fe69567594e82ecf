"""
Tests for speech provider adapters.
"""

import asyncio
from types import SimpleNamespace

import httpx
import pytest

from storyreel import speech
from storyreel.errors import GenerationError
from storyreel.speech import make_synth_elevenlabs, make_synth_openai


def test_openai_synth_requests_pcm():
    seen = {}

    async def create(**kwargs):
        seen.update(kwargs)
        return SimpleNamespace(content=b"\x00\x01" * 10)

    client = SimpleNamespace(audio=SimpleNamespace(speech=SimpleNamespace(create=create)))
    synth = make_synth_openai(client, "tts-test")

    assert asyncio.run(synth("Hello.", "nova")) == b"\x00\x01" * 10
    assert seen["response_format"] == "pcm"
    assert seen["voice"] == "nova"
    assert "instructions" not in seen


def test_elevenlabs_synth_maps_voice(monkeypatch):
    requests = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(200, content=b"\x00\x00", headers={"content-type": "audio/pcm"})

    real_client = httpx.AsyncClient
    monkeypatch.setattr(
        speech.httpx,
        "AsyncClient",
        lambda **kw: real_client(transport=httpx.MockTransport(handler), **kw),
    )
    synth = make_synth_elevenlabs("key", {"nova": "voice-nova"}, "voice-default")

    assert asyncio.run(synth("Hi.", "nova")) == b"\x00\x00"
    assert asyncio.run(synth("Hi.", "onyx")) == b"\x00\x00"
    assert requests[0].url.path.endswith("/voice-nova")
    assert requests[1].url.path.endswith("/voice-default")
    assert requests[0].url.params["output_format"] == "pcm_24000"


def test_elevenlabs_error_status(monkeypatch):
    def handler(request):
        return httpx.Response(401, json={"detail": "bad key"})

    real_client = httpx.AsyncClient
    monkeypatch.setattr(
        speech.httpx,
        "AsyncClient",
        lambda **kw: real_client(transport=httpx.MockTransport(handler), **kw),
    )
    synth = make_synth_elevenlabs("key", {}, "voice-default")

    with pytest.raises(GenerationError, match="401"):
        asyncio.run(synth("Hi.", "alloy"))
