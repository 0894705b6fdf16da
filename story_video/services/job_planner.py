"""Job Planner - selects the shots and characters that still need an asset."""

from typing import Any, Optional

from story_video.core.config import Settings
from story_video.models.schemas import Character, GenerationJob, JobKind, Shot
from story_video.services.story_store import StoryStore


class JobPlanner:
    """Builds independent GenerationJobs from the current story state."""

    def __init__(self, settings: Settings, logger: Any):
        self.settings = settings
        self.logger = logger

    def plan(self, store: StoryStore, kind: JobKind, shot_ids: Optional[list[str]] = None) -> list[GenerationJob]:
        """
        Build the worklist for one job kind.

        Args:
            store: Story store to read
            kind: Job kind to plan
            shot_ids: Optional restriction to these shots (ignored for characters)

        Returns:
            One job per entity that lacks the asset and is not in progress
        """
        if kind == JobKind.CHARACTER_IMAGE:
            jobs = [self._character_job(store, c) for c in store.story.characters if self._needs_character(c)]
        elif kind == JobKind.AUDIO and not self.settings.enable_audio:
            self.logger.info("Audio generation disabled, no speech jobs planned")
            jobs = []
        else:
            wanted = set(shot_ids) if shot_ids is not None else None
            jobs = []
            for scene, shot in store.iter_shots():
                if wanted is not None and shot.id not in wanted:
                    continue
                job = self._shot_job(store, kind, scene.id, shot)
                if job is not None:
                    jobs.append(job)

        self.logger.info(f"Planned {len(jobs)} {kind.value} job(s)")
        return jobs

    def _shot_job(self, store: StoryStore, kind: JobKind, scene_id: str, shot: Shot) -> Optional[GenerationJob]:
        if kind == JobKind.IMAGE:
            if shot.image_ref or shot.image_in_progress:
                return None
            return self.image_job(store, scene_id, shot)

        if kind == JobKind.VIDEO:
            if not shot.image_ref or shot.video_ref or shot.video_in_progress:
                return None
            return GenerationJob(
                kind=JobKind.VIDEO,
                target_id=shot.id,
                scene_id=scene_id,
                backend_id=self.settings.video_backend,
                input_refs={"image": shot.image_ref},
            )

        if kind == JobKind.AUDIO:
            if not shot.narration.strip() or shot.speech_ref or shot.audio_in_progress:
                return None
            return GenerationJob(
                kind=JobKind.AUDIO,
                target_id=shot.id,
                scene_id=scene_id,
                backend_id=self.settings.audio_backend,
                parameters={
                    "text": shot.narration,
                    "voice_id": self.settings.voice_id,
                    "model": self.settings.voice_model,
                    "speed": self.settings.voice_speed,
                    "stability": self.settings.voice_stability,
                    "similarity_boost": self.settings.voice_similarity_boost,
                },
            )

        raise ValueError(f"{kind.value} jobs do not target shots")

    def image_job(self, store: StoryStore, scene_id: str, shot: Shot) -> GenerationJob:
        """Image job for a shot, routed to the character-reference backend when one applies."""
        references = store.get_character_references()
        parameters: dict[str, Any] = {
            "prompt": f"{shot.location}. {shot.content}",
            "style": store.story.style,
            "aspect_ratio": store.story.aspect_ratio,
            "characters": [
                {"name": c.name, "prompt": c.prompt, "description": c.description} for c in references
            ],
        }
        backend_id = self.settings.image_backend
        input_refs: dict[str, str] = {}
        if references and self.settings.character_reference_backend:
            backend_id = self.settings.character_reference_backend
            input_refs["character_image"] = references[0].reference_image_ref
        return GenerationJob(
            kind=JobKind.IMAGE,
            target_id=shot.id,
            scene_id=scene_id,
            backend_id=backend_id,
            input_refs=input_refs,
            parameters=parameters,
        )

    @staticmethod
    def _needs_character(character: Character) -> bool:
        return bool(character.prompt) and not character.reference_image_ref and not character.in_progress

    def _character_job(self, store: StoryStore, character: Character) -> GenerationJob:
        return GenerationJob(
            kind=JobKind.CHARACTER_IMAGE,
            target_id=character.name,
            backend_id=self.settings.character_image_backend,
            parameters={"prompt": character.prompt, "style": store.story.style, "aspect_ratio": "1:1"},
        )
