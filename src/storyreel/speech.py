"""
Asynchronous per-sentence speech synthesis with OpenAI and ElevenLabs.

Both providers return raw 16-bit mono PCM at 24 kHz so sentences can be
concatenated sample-exactly.
"""

import logging
from collections.abc import Awaitable, Callable

import httpx

from .errors import GenerationError

logger = logging.getLogger("storyreel")

# Optional OpenAI SDK
try:
    from openai import AsyncOpenAI
except ImportError:
    AsyncOpenAI = None

ELEVENLABS_URL = "https://api.elevenlabs.io/v1/text-to-speech/{voice_id}"


async def tts_speak_openai_async(
    client: AsyncOpenAI,
    text: str,
    model: str,
    voice: str,
    instructions: str | None = None,
) -> bytes:
    """Synthesize one sentence with OpenAI TTS and return PCM bytes."""
    if client is None:
        raise RuntimeError("OpenAI client is not initialized (missing OPENAI_API_KEY)")

    kwargs = {"instructions": instructions} if instructions else {}
    try:
        response = await client.audio.speech.create(
            model=model,
            voice=voice,
            input=text,
            response_format="pcm",
            **kwargs,
        )
    except Exception as e:
        logger.error(f"OpenAI TTS failed for text '{text[:50]}...': {e}")
        raise GenerationError(f"OpenAI TTS failed: {e}") from e
    return response.content


async def elevenlabs_tts_speak_async(
    api_key: str,
    voice_id: str,
    text: str,
    model_id: str = "eleven_multilingual_v2",
    timeout: float = 60.0,
) -> bytes:
    """Synthesize one sentence with ElevenLabs and return PCM bytes."""
    if not api_key:
        raise RuntimeError("ELEVENLABS_API_KEY is not set.")
    if not voice_id:
        raise RuntimeError("ElevenLabs voice_id is required (use --elevenlabs-voice-id).")

    headers = {
        "xi-api-key": api_key,
        "accept": "audio/pcm",
        "Content-Type": "application/json",
        "User-Agent": "storyreel/0.1",
    }
    payload = {
        "text": text,
        "model_id": model_id,
        "voice_settings": {"stability": 0.5, "similarity_boost": 0.75},
    }
    async with httpx.AsyncClient(follow_redirects=True, timeout=timeout) as client:
        r = await client.post(
            ELEVENLABS_URL.format(voice_id=voice_id),
            params={"output_format": "pcm_24000"},
            json=payload,
            headers=headers,
        )
    ctype = r.headers.get("content-type", "")
    if r.status_code != 200 or not ctype.startswith(("audio/", "application/octet-stream")):
        raise GenerationError(f"ElevenLabs TTS failed: {r.status_code} {r.text[:300]}")
    return r.content


def make_synth_openai(
    client: AsyncOpenAI, tts_model: str = "gpt-4o-mini-tts", instructions: str | None = None
) -> Callable[[str, str], Awaitable[bytes]]:
    """Create an OpenAI synth function taking (text, voice)."""

    async def _synth(text: str, voice: str) -> bytes:
        return await tts_speak_openai_async(client, text, tts_model, voice, instructions)

    return _synth


def make_synth_elevenlabs(
    api_key: str,
    voice_map: dict[str, str],
    default_voice_id: str,
    model_id: str = "eleven_multilingual_v2",
) -> Callable[[str, str], Awaitable[bytes]]:
    """Create an ElevenLabs synth function; voice names are mapped to voice ids."""

    async def _synth(text: str, voice: str) -> bytes:
        voice_id = voice_map.get(voice, default_voice_id)
        return await elevenlabs_tts_speak_async(api_key, voice_id, text, model_id=model_id)

    return _synth
