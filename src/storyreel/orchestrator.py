"""
Per-scene asynchronous generation: video and narration for each scene,
scenes processed one after another in index order.
"""

import asyncio
import logging
from dataclasses import replace

from .controller import SessionStore
from .errors import GenerationError, PreconditionError
from .invalidation import set_scene, set_step
from .models import Scene
from .services import Backend, MediaStore

logger = logging.getLogger("storyreel")


class SceneGenerator:
    """Drives scene generation against a backend and publishes through the store."""

    def __init__(self, store: SessionStore, backend: Backend, media: MediaStore) -> None:
        self.store = store
        self.backend = backend
        self.media = media

    def _require_reference(self, action: str) -> str:
        ref = self.store.state.reference_image
        if not ref:
            msg = f"Cannot {action}: Missing reference image."
            self.store.log(msg, logging.WARNING)
            raise PreconditionError(msg)
        return ref

    async def _produce(self, scene: Scene, reference_image: str) -> Scene:
        """Generate video and narration for one scene in parallel; both must succeed."""
        settings = self.store.state.settings
        video, narration = await asyncio.gather(
            self.backend.render_video(scene, reference_image, settings),
            self.backend.synthesize(scene.text_en, scene.text_zh, scene.voice_mood),
            return_exceptions=True,
        )
        # Both requests have settled here; report the first failure
        for result in (video, narration):
            if isinstance(result, BaseException):
                raise result
        return replace(
            scene,
            status="completed",
            video_ref=self.media.save_video(scene.id, video),
            audio_ref=self.media.save_audio(scene.id, narration.audio),
            audio_duration=narration.duration,
            subtitles=narration.subtitles,
        )

    async def _run_scene(self, index: int, reference_image: str) -> Scene:
        scene = self.store.state.scenes[index].cleared("generating")
        self.store.update(set_scene, index, scene)
        try:
            done = await self._produce(scene, reference_image)
        except Exception:
            self.store.update(set_scene, index, scene.cleared("error"))
            raise
        self.store.update(set_scene, index, done)
        return done

    async def generate_all(self) -> tuple[Scene, ...]:
        """Fill every scene that is not yet completed; failures do not stop the batch."""
        reference_image = self._require_reference("generate scenes")
        with self.store.busy("scene generation"):
            self.store.update(set_step, "video-gen")
            has_updates = False
            for index in range(len(self.store.state.scenes)):
                if index >= len(self.store.state.scenes):
                    break
                scene = self.store.state.scenes[index]
                if scene.is_completed:
                    continue
                has_updates = True
                self.store.log(f"Processing Scene {scene.id}...")
                try:
                    await self._run_scene(index, reference_image)
                except Exception as e:
                    self.store.log(f"Error on Scene {scene.id}: {e}", logging.ERROR)
                    continue
                self.store.log(f"Scene {scene.id} completed.")

            if not has_updates:
                self.store.log("All scenes are already up to date.")
            self.store.update(set_step, "finished")
        return self.store.state.scenes

    async def regenerate_one(self, index: int) -> Scene:
        """Regenerate a single scene regardless of its current status."""
        reference_image = self._require_reference("regenerate")
        scenes = self.store.state.scenes
        if not 0 <= index < len(scenes):
            raise IndexError(f"Scene index out of range: {index}")
        if scenes[index].status == "generating":
            raise PreconditionError(f"Scene {scenes[index].id} is already generating")

        scene_id = scenes[index].id
        with self.store.busy("scene regeneration"):
            self.store.log(f"Regenerating Scene {scene_id}...")
            try:
                done = await self._run_scene(index, reference_image)
            except Exception as e:
                self.store.log(f"Error regenerating Scene {scene_id}: {e}", logging.ERROR)
                raise GenerationError(f"Scene {scene_id} failed: {e}") from e
            self.store.log(f"Scene {scene_id} regenerated.")
        return done
