"""
Command-line interface for the storyreel pipeline.
"""

import argparse
import asyncio
import logging
import os
from pathlib import Path

from dotenv import load_dotenv
from tqdm import tqdm

from .compositor import SubtitleStyle, export_movie
from .controller import SessionStore
from .errors import GenerationError, PreconditionError, StoryreelError
from .imagery import OpenAIVideoRenderer
from .invalidation import (
    add_scene,
    delete_scene,
    on_scene_field_edited,
    on_story_field_edited,
    reference_ready,
    replace_settings,
    story_loaded,
)
from .models import SCENE_FIELDS, STEPS, STORY_FIELDS, VideoSettings, validate_scene
from .orchestrator import SceneGenerator
from .services import MediaStore, OpenAIBackend
from .session_io import load_state, save_state
from .speech import make_synth_elevenlabs, make_synth_openai
from .story import pick_title

logger = logging.getLogger("storyreel")

# Optional OpenAI SDK
try:
    from openai import AsyncOpenAI
except ImportError:
    AsyncOpenAI = None


def setup_logging(verbose: bool = False) -> None:
    """Setup logging configuration."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(level=level, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s")


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command line arguments."""
    ap = argparse.ArgumentParser(description="Book title to narrated movie pipeline")

    ap.add_argument(
        "--stage",
        choices=["story", "reference", "scenes", "regenerate", "edit", "export", "status"],
        default="status",
        help="story: adapt book; reference: character sheet; scenes: generate all scenes; "
        "regenerate: one scene; edit: apply edits; export: final movie; status: print session",
    )

    # IO
    ap.add_argument("--workdir", default=".work")
    ap.add_argument("--output-dir", default="out")
    ap.add_argument("--title", default="", help="Book title (random classic if empty)")

    # Models
    ap.add_argument("--gpt-model", default="gpt-4o-mini")
    ap.add_argument("--image-model", default="gpt-image-1")
    ap.add_argument("--video-model", default="sora-2")
    ap.add_argument("--scene-count", type=int, default=3)
    ap.add_argument("--poll-interval", type=float, default=5.0, help="Video job poll interval (sec)")
    ap.add_argument("--video-timeout", type=float, default=600.0, help="Max wait per video job (sec)")

    # TTS provider & voices
    ap.add_argument("--tts-provider", choices=["openai", "elevenlabs"], default="openai")
    ap.add_argument("--tts-model", default="gpt-4o-mini-tts", help="Used when --tts-provider=openai")
    ap.add_argument(
        "--voice-instructions",
        default=os.getenv("OPENAI_TTS_INSTRUCTIONS"),
        help="Optional TTS style instructions for OpenAI (not read aloud)",
    )
    ap.add_argument(
        "--elevenlabs-voice-id",
        default=os.getenv("ELEVENLABS_VOICE_ID"),
        help="ElevenLabs voice_id used for every mood",
    )
    ap.add_argument(
        "--elevenlabs-voice-map",
        default=os.getenv("ELEVENLABS_VOICE_MAP", ""),
        metavar="VOICE=ID,...",
        help="ElevenLabs voice_id per mood voice (onyx, fable, nova, alloy); "
        "unmapped voices use --elevenlabs-voice-id",
    )
    ap.add_argument("--elevenlabs-model-id", default="eleven_multilingual_v2")

    # Settings & edits
    ap.add_argument("--resolution", choices=["720p", "1080p"], default=None)
    ap.add_argument("--aspect-ratio", choices=["16:9", "9:16"], default=None)
    ap.add_argument("--scene", type=int, default=None, help="1-based scene id")
    ap.add_argument(
        "--set-story", action="append", default=[], metavar="FIELD=VALUE",
        help=f"Edit a story field ({', '.join(STORY_FIELDS)})",
    )
    ap.add_argument(
        "--set-scene", action="append", default=[], metavar="FIELD=VALUE",
        help=f"Edit a field of --scene ({', '.join(SCENE_FIELDS)})",
    )
    ap.add_argument("--add-scene", action="store_true")
    ap.add_argument("--delete-scene", action="store_true", help="Delete --scene")
    ap.add_argument("--goto", choices=STEPS, default=None, help="Jump to a pipeline step")

    # Export
    ap.add_argument("--fps", type=int, default=30)
    ap.add_argument("--font-file", default=os.getenv("STORYREEL_FONT_FILE"))
    ap.add_argument("--zh-font-file", default=os.getenv("STORYREEL_ZH_FONT_FILE"))

    # Logging
    ap.add_argument("--verbose", "-v", action="store_true", help="Enable verbose logging")

    return ap.parse_args(argv)


def _split_assignment(raw: str) -> tuple[str, str]:
    field, sep, value = raw.partition("=")
    if not sep:
        raise SystemExit(f"Expected FIELD=VALUE, got {raw!r}")
    return field.strip(), value


def parse_voice_map(raw: str) -> dict[str, str]:
    """Parse "onyx=ID,nova=ID" into a voice name -> ElevenLabs voice_id map."""
    voice_map: dict[str, str] = {}
    for item in filter(None, (part.strip() for part in (raw or "").split(","))):
        voice, sep, voice_id = item.partition("=")
        if not sep or not voice.strip() or not voice_id.strip():
            raise SystemExit(f"Expected VOICE=ID in --elevenlabs-voice-map, got {item!r}")
        voice_map[voice.strip().lower()] = voice_id.strip()
    return voice_map


def _scene_index(store: SessionStore, scene_id: int | None) -> int:
    if scene_id is None:
        raise SystemExit("--scene is required for this stage")
    if not 1 <= scene_id <= len(store.state.scenes):
        raise SystemExit(f"No scene {scene_id} (have {len(store.state.scenes)})")
    return scene_id - 1


def build_backend(args: argparse.Namespace) -> OpenAIBackend:
    """Create the OpenAI-backed services."""
    openai_key = os.getenv("OPENAI_API_KEY")
    if not AsyncOpenAI:
        raise PreconditionError("openai package not installed. Install with: pip install openai")
    if not openai_key:
        raise PreconditionError("OPENAI_API_KEY is not set. Put it in .env or environment.")
    client = AsyncOpenAI(api_key=openai_key)

    if args.tts_provider == "openai":
        synth = make_synth_openai(client, args.tts_model, args.voice_instructions)
    else:
        synth = make_synth_elevenlabs(
            os.getenv("ELEVENLABS_API_KEY", ""),
            voice_map=parse_voice_map(args.elevenlabs_voice_map),
            default_voice_id=args.elevenlabs_voice_id or "",
            model_id=args.elevenlabs_model_id,
        )
    renderer = OpenAIVideoRenderer(
        client,
        model=args.video_model,
        poll_interval=args.poll_interval,
        timeout=args.video_timeout,
    )
    return OpenAIBackend(
        client,
        synth,
        text_model=args.gpt_model,
        image_model=args.image_model,
        video_renderer=renderer,
        scene_count=args.scene_count,
    )


def apply_edits(store: SessionStore, args: argparse.Namespace) -> None:
    """Apply settings and content edits through the invalidation reducers."""
    if args.resolution or args.aspect_ratio:
        current = store.state.settings
        wanted = VideoSettings(
            args.resolution or current.resolution, args.aspect_ratio or current.aspect_ratio
        )
        store.update(replace_settings, wanted)
    for raw in args.set_story:
        field, value = _split_assignment(raw)
        store.update(on_story_field_edited, field, value)
    if args.set_scene:
        index = _scene_index(store, args.scene)
        for raw in args.set_scene:
            field, value = _split_assignment(raw)
            store.update(on_scene_field_edited, index, field, value)
    if args.add_scene:
        store.update(add_scene)
        store.log(f"Added Scene {len(store.state.scenes)}.")
    if args.delete_scene:
        index = _scene_index(store, args.scene)
        store.update(lambda s: delete_scene(s, index)[0])
        store.log(f"Deleted Scene {index + 1}.")
    if args.goto:
        before = store.state.step
        after = store.jump_to(args.goto).step
        if after != args.goto:
            logger.warning(f"Cannot jump from {before} to {args.goto}: prerequisites missing")


def print_status(store: SessionStore) -> None:
    state = store.state
    print(f"Step: {state.step}")
    print(f"Settings: {state.settings.resolution} {state.settings.aspect_ratio}")
    if state.story:
        print(f"Story: {state.story.title}")
        print(f"  style: {state.story.visual_style}")
        print(f"  characters: {state.story.character_description}")
    print(f"Reference image: {state.reference_image or '-'}")
    for scene in state.scenes:
        dur = f"{scene.audio_duration:.2f}s" if scene.audio_duration is not None else "-"
        print(f"  Scene {scene.id}: {scene.status:<10} {dur:>7}  {scene.text_en[:60]}")
        for problem in validate_scene(scene):
            print(f"    ! {problem}")
    for line in state.logs[-10:]:
        print(line)


async def run_stage(store: SessionStore, args: argparse.Namespace) -> None:
    media = MediaStore(os.path.join(args.workdir, "media"))

    if args.stage == "story":
        title = pick_title(args.title or store.state.book_name)
        backend = build_backend(args)
        store.log(f'Searching and adapting "{title}"...')
        with store.busy("story adaptation"):
            try:
                story, scenes = await backend.adapt(title)
            except Exception as e:
                store.log(f"Error generating story: {e}", logging.ERROR)
                if isinstance(e, StoryreelError):
                    raise
                raise GenerationError(f"Story adaptation failed: {e}") from e
            store.update(story_loaded, story, scenes, title)
        store.log("Story adapted successfully.")

    elif args.stage == "reference":
        if store.state.story is None:
            raise SystemExit("No story yet: run --stage story first")
        backend = build_backend(args)
        store.log("Generating consistent character reference sheet...")
        with store.busy("reference generation"):
            try:
                data = await backend.render_reference(store.state.story, store.state.settings)
            except Exception as e:
                store.log(f"Error generating reference image: {e}", logging.ERROR)
                if isinstance(e, StoryreelError):
                    raise
                raise GenerationError(f"Reference image generation failed: {e}") from e
            store.update(reference_ready, media.save_reference(data))
        store.log("Reference image generated.")

    elif args.stage == "scenes":
        await SceneGenerator(store, build_backend(args), media).generate_all()

    elif args.stage == "regenerate":
        index = _scene_index(store, args.scene)
        await SceneGenerator(store, build_backend(args), media).regenerate_one(index)

    elif args.stage == "export":
        style = SubtitleStyle(font_file=args.font_file, zh_font_file=args.zh_font_file)
        title = store.state.story.title if store.state.story else None
        with store.busy("export"), tqdm(total=100, desc="Export", unit="%") as bar:

            def on_progress(pct: int) -> None:
                bar.update(pct - bar.n)

            try:
                path = export_movie(
                    store.state.scenes,
                    store.state.settings,
                    args.output_dir,
                    title=title,
                    on_progress=on_progress,
                    fps=args.fps,
                    style=style,
                )
            except StoryreelError as e:
                store.log(f"Export failed: {e}", logging.ERROR)
                raise
            bar.update(100 - bar.n)
        store.log(f"Movie exported -> {path}")


def main(argv: list[str] | None = None) -> None:
    """Main CLI entry point."""
    # Load environment variables from .env file
    load_dotenv()

    args = parse_args(argv)
    setup_logging(args.verbose)

    manifest = os.path.join(args.workdir, "session.json")
    store = SessionStore(load_state(manifest))
    Path(args.workdir).mkdir(parents=True, exist_ok=True)

    try:
        apply_edits(store, args)
        if args.stage not in ("edit", "status"):
            asyncio.run(run_stage(store, args))
    except StoryreelError as e:
        logger.error(f"Stage '{args.stage}' failed: {e}")
        raise SystemExit(1) from e
    finally:
        save_state(store.state, manifest)
    print_status(store)


if __name__ == "__main__":
    main()
