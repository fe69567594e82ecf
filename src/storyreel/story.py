"""
Story adaptation with GPT: book title -> story metadata and scenes.
"""

import json
import logging
import random
import re

from .errors import StoryParseError
from .models import Scene, Story

logger = logging.getLogger("storyreel")

# Optional OpenAI SDK
try:
    from openai import AsyncOpenAI
except ImportError:
    AsyncOpenAI = None

DEFAULT_BOOKS = (
    "The Very Hungry Caterpillar",
    "Where the Wild Things Are",
    "The Cat in the Hat",
    "Goodnight Moon",
    "The Little Prince",
    "Corduroy",
)

_FENCE_RE = re.compile(r"^```(?:json)?\s*|\s*```$", re.I)

_METADATA_KEYS = {
    "title": "title",
    "summary": "summary",
    "visualStyle": "visual_style",
    "characterDescription": "character_description",
}
_SCENE_KEYS = {
    "textEn": "text_en",
    "textZh": "text_zh",
    "visualPrompt": "visual_prompt",
    "voiceMood": "voice_mood",
}

ADAPTER_PROMPT = """
You are an expert children's book adapter.
1. Recall the children's book "{title}".
2. Summarize the plot.
3. Create a video script with exactly {scene_count} distinct scenes that tell the core story.
4. For each scene, provide:
   - English narration text (very short, simple sentences suitable for young children. Max 3 sentences per scene).
   - Chinese translation of the narration.
   - A highly detailed visual description for video generation.
   - The mood of the voice (e.g., 'cheerful', 'calm', 'suspenseful').
5. Also provide a "visualStyle" and "characterDescription" to ensure consistency across the video.

Output the result as a valid, parsable JSON object matching this structure:
{{
  "metadata": {{
    "title": "string",
    "summary": "string",
    "visualStyle": "string description",
    "characterDescription": "string description"
  }},
  "scenes": [
    {{"id": 1, "textEn": "string", "textZh": "string", "visualPrompt": "string", "voiceMood": "string"}}
  ]
}}
""".strip()


def pick_title(title: str | None) -> str:
    """Use the given title, or a random default book when it is blank."""
    title = (title or "").strip()
    return title or random.choice(DEFAULT_BOOKS)


def _extract_json(text: str) -> dict:
    raw = _FENCE_RE.sub("", (text or "").strip())
    try:
        data = json.loads(raw)
    except json.JSONDecodeError:
        start = raw.find("{")
        end = raw.rfind("}")
        if start == -1 or end <= start:
            raise StoryParseError("Failed to parse story data from AI") from None
        try:
            data = json.loads(raw[start : end + 1])
        except json.JSONDecodeError as e:
            raise StoryParseError("Failed to parse story data from AI") from e
    if not isinstance(data, dict):
        raise StoryParseError("Story data must be a JSON object")
    return data


def _pick(obj: dict, camel: str, snake: str, what: str) -> str:
    value = obj.get(camel, obj.get(snake))
    if not isinstance(value, str):
        raise StoryParseError(f"Missing or invalid {what} field: {camel}")
    return value


def parse_story_payload(text: str, sources: list[str] | None = None) -> tuple[Story, list[Scene]]:
    """Parse the adapter's reply into a Story and pending scenes numbered 1..N."""
    data = _extract_json(text)
    meta = data.get("metadata")
    if not isinstance(meta, dict):
        raise StoryParseError("Story data has no metadata object")
    raw_scenes = data.get("scenes")
    if not isinstance(raw_scenes, list) or not raw_scenes:
        raise StoryParseError("Story data has no scenes")

    fields = {snake: _pick(meta, camel, snake, "metadata") for camel, snake in _METADATA_KEYS.items()}
    story = Story(**fields, sources=tuple(sources or meta.get("sources") or ()))

    scenes: list[Scene] = []
    for i, raw in enumerate(raw_scenes, 1):
        if not isinstance(raw, dict):
            raise StoryParseError(f"Scene {i} is not an object")
        values = {snake: _pick(raw, camel, snake, f"scene {i}") for camel, snake in _SCENE_KEYS.items()}
        scenes.append(Scene(id=i, status="pending", **values))
    return story, scenes


def _grounding_sources(response) -> list[str]:
    """Collect cited URLs, if the model returned any annotations."""
    sources: list[str] = []
    try:
        annotations = response.choices[0].message.annotations or []
    except (AttributeError, IndexError):
        return sources
    for ann in annotations:
        citation = getattr(ann, "url_citation", None)
        url = getattr(citation, "url", None)
        if url and url not in sources:
            sources.append(url)
    return sources


async def adapt_story(
    client: AsyncOpenAI, title: str, model: str = "gpt-4o-mini", scene_count: int = 3
) -> tuple[Story, list[Scene]]:
    """Adapt a book into story metadata and scenes with GPT."""
    if client is None:
        raise RuntimeError("OpenAI client is not initialized (missing OPENAI_API_KEY)")

    logger.info(f"Adapting \"{title}\" with {model} …")
    chat = await client.chat.completions.create(
        model=model,
        messages=[
            {"role": "system", "content": "Return ONLY a JSON object, no prose."},
            {"role": "user", "content": ADAPTER_PROMPT.format(title=title, scene_count=scene_count)},
        ],
        temperature=0.7,
    )
    content = chat.choices[0].message.content
    if not content:
        raise StoryParseError("No response from AI")
    return parse_story_payload(content, _grounding_sources(chat))
