"""
Narration synthesis: sentence splitting, mood-based voice choice and
cumulative subtitle timing over concatenated PCM audio.
"""

import io
import logging
import re
from collections.abc import Awaitable, Callable

from pydub import AudioSegment

from .errors import GenerationError
from .models import Narration, SubtitleLine

logger = logging.getLogger("storyreel")

SAMPLE_RATE = 24000
SAMPLE_WIDTH = 2  # 16-bit PCM
CHANNELS = 1

_EN_SENTENCE_RE = re.compile(r"[^.!?]+[.!?]+")
_ZH_SENTENCE_RE = re.compile(r"[^。！？]+[。！？]+")

# Ordered (keywords, voice) pairs; the first entry with a keyword contained in
# the mood wins.
VOICE_TABLE: tuple[tuple[tuple[str, ...], str], ...] = (
    (("suspense",), "onyx"),
    (("calm", "sad"), "fable"),
    (("happy", "excited"), "nova"),
)
DEFAULT_VOICE = "alloy"

SynthFunc = Callable[[str, str], Awaitable[bytes]]


def split_sentences(text: str, pattern: re.Pattern = _EN_SENTENCE_RE) -> list[str]:
    """Split text on terminal punctuation; the whole text is one sentence if none matches."""
    parts = pattern.findall(text or "")
    if not parts:
        parts = [text or ""]
    return [p.strip() for p in parts if p.strip()]


def split_sentences_zh(text: str) -> list[str]:
    return split_sentences(text, _ZH_SENTENCE_RE)


def pick_voice(
    mood: str,
    table: tuple[tuple[tuple[str, ...], str], ...] = VOICE_TABLE,
    default: str = DEFAULT_VOICE,
) -> str:
    """Map a free-form mood to a voice: case-insensitive substring, first match wins."""
    m = (mood or "").lower()
    for keywords, voice in table:
        if any(k in m for k in keywords):
            return voice
    return default


def pair_captions(en: list[str], zh: list[str]) -> list[str]:
    """Target-language caption for each source sentence.

    When there are more target sentences than source ones, the surplus is
    joined onto the last source sentence's caption.
    """
    out: list[str] = []
    for i in range(len(en)):
        if i == len(en) - 1 and len(zh) > len(en):
            out.append(" ".join(zh[i:]))
        elif i < len(zh):
            out.append(zh[i])
        else:
            out.append("")
    return out


def pcm_duration(pcm: bytes, sample_rate: int = SAMPLE_RATE) -> float:
    return len(pcm) / (SAMPLE_WIDTH * CHANNELS) / sample_rate


def pcm_to_wav(pcm: bytes, sample_rate: int = SAMPLE_RATE) -> bytes:
    clip = AudioSegment(
        data=pcm, sample_width=SAMPLE_WIDTH, frame_rate=sample_rate, channels=CHANNELS
    )
    buf = io.BytesIO()
    clip.export(buf, format="wav")
    return buf.getvalue()


async def synthesize_narration(
    text_en: str,
    text_zh: str,
    mood: str,
    synth: SynthFunc,
    *,
    sample_rate: int = SAMPLE_RATE,
    voice_table: tuple[tuple[tuple[str, ...], str], ...] = VOICE_TABLE,
    default_voice: str = DEFAULT_VOICE,
) -> Narration:
    """Synthesize narration sentence by sentence and time one caption per sentence."""
    voice = pick_voice(mood, voice_table, default_voice)
    en_sentences = split_sentences(text_en)
    zh_captions = pair_captions(en_sentences, split_sentences_zh(text_zh))

    chunks: list[bytes] = []
    subtitles: list[SubtitleLine] = []
    offset = 0.0
    for en_line, zh_line in zip(en_sentences, zh_captions):
        pcm = await synth(en_line, voice)
        # Keep whole samples so chunk boundaries stay aligned.
        pcm = pcm[: len(pcm) - len(pcm) % (SAMPLE_WIDTH * CHANNELS)]
        if not pcm:
            raise GenerationError(f"No audio data returned for sentence: {en_line[:50]!r}")
        chunks.append(pcm)
        duration = pcm_duration(pcm, sample_rate)
        subtitles.append(
            SubtitleLine(
                text_en=en_line, text_zh=zh_line, start_time=offset, end_time=offset + duration
            )
        )
        offset += duration

    full = b"".join(chunks)
    if not full:
        raise GenerationError("Narration text is empty")
    logger.debug("Narration: %d sentences, %.2fs, voice=%s", len(subtitles), offset, voice)
    return Narration(audio=pcm_to_wav(full, sample_rate), duration=offset, subtitles=tuple(subtitles))
