"""Story Store - explicit mutations over the story tree with an event log."""

from threading import Lock
from typing import Any, Callable, Iterator, Optional

from story_video.models.schemas import Character, JobKind, Scene, Shot, Story, StoryEvent

# Job kind -> (asset reference field, in-progress flag field) on a Shot
SHOT_FIELDS: dict[JobKind, tuple[str, str]] = {
    JobKind.IMAGE: ("image_ref", "image_in_progress"),
    JobKind.VIDEO: ("video_ref", "video_in_progress"),
    JobKind.AUDIO: ("speech_ref", "audio_in_progress"),
}
CHARACTER_FIELDS: tuple[str, str] = ("reference_image_ref", "in_progress")

StoryListener = Callable[[StoryEvent], None]


class StoryStore:
    """
    Owner of one Story's mutable state.

    Every change goes through a mutation method that returns the updated
    entity and appends a StoryEvent, so observers can follow entity state
    without holding references into the tree.
    """

    def __init__(self, story: Story, logger: Any):
        """
        Initialize the store.

        Args:
            story: Story to own
            logger: Logger instance
        """
        self.story = story
        self.logger = logger
        self._events: list[StoryEvent] = []
        self._listeners: list[StoryListener] = []
        self._lock = Lock()

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def iter_shots(self) -> Iterator[tuple[Scene, Shot]]:
        """Yield (scene, shot) pairs in screen-time order."""
        for scene in self.story.scenes:
            for shot in scene.shots:
                yield scene, shot

    def get_shot(self, shot_id: str) -> Shot:
        for _, shot in self.iter_shots():
            if shot.id == shot_id:
                return shot
        raise KeyError(f"Unknown shot: {shot_id}")

    def get_character(self, name: str) -> Character:
        for character in self.story.characters:
            if character.name == name:
                return character
        raise KeyError(f"Unknown character: {name}")

    def get_character_references(self) -> list[Character]:
        """Characters that already have a reference image."""
        return [c for c in self.story.characters if c.reference_image_ref]

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def update_shot(self, shot_id: str, **changes: Any) -> Shot:
        """
        Apply field changes to a shot.

        Args:
            shot_id: Shot identifier
            **changes: Shot field values to set

        Returns:
            The updated shot

        Raises:
            KeyError: Unknown shot id
            ValueError: Unknown field name
        """
        shot = self.get_shot(shot_id)
        self._apply(shot, changes)
        self._record("shot_updated", shot_id, changes)
        return shot

    def update_character(self, name: str, **changes: Any) -> Character:
        """Apply field changes to a character and return it."""
        character = self.get_character(name)
        self._apply(character, changes)
        self._record("character_updated", name, changes)
        return character

    def begin_job(self, kind: JobKind, target_id: str) -> None:
        """Mark the target entity as having a job of ``kind`` in progress."""
        if kind == JobKind.CHARACTER_IMAGE:
            self.update_character(target_id, **{CHARACTER_FIELDS[1]: True})
        else:
            self.update_shot(target_id, **{SHOT_FIELDS[kind][1]: True})

    def complete_job(self, kind: JobKind, target_id: str, asset_ref: Optional[str]) -> Shot | Character:
        """
        Clear the in-progress flag and, on success, store the asset reference.

        Args:
            kind: Job kind
            target_id: Shot id or character name
            asset_ref: Produced asset reference, or None when the job failed

        Returns:
            The updated entity
        """
        if kind == JobKind.CHARACTER_IMAGE:
            ref_field, flag_field = CHARACTER_FIELDS
        else:
            ref_field, flag_field = SHOT_FIELDS[kind]
        changes: dict[str, Any] = {flag_field: False}
        if asset_ref:
            changes[ref_field] = asset_ref
        if kind == JobKind.CHARACTER_IMAGE:
            return self.update_character(target_id, **changes)
        return self.update_shot(target_id, **changes)

    def reset_stale_flags(self) -> list[str]:
        """
        Clear in-progress flags left behind by an interrupted run.

        A flag is stale when it is set but the matching asset reference is
        empty. Returns the ids/names of the entities that were reset.
        """
        cleared: list[str] = []
        for _, shot in self.iter_shots():
            for ref_field, flag_field in SHOT_FIELDS.values():
                if getattr(shot, flag_field) and not getattr(shot, ref_field):
                    setattr(shot, flag_field, False)
                    self._record("stale_flag_cleared", shot.id, {flag_field: False})
                    cleared.append(shot.id)
        ref_field, flag_field = CHARACTER_FIELDS
        for character in self.story.characters:
            if getattr(character, flag_field) and not getattr(character, ref_field):
                setattr(character, flag_field, False)
                self._record("stale_flag_cleared", character.name, {flag_field: False})
                cleared.append(character.name)

        if cleared:
            self.logger.warning(f"Cleared {len(cleared)} stale in-progress flag(s): {', '.join(cleared)}")
        return cleared

    # ------------------------------------------------------------------
    # Event channel
    # ------------------------------------------------------------------

    def subscribe(self, listener: StoryListener) -> None:
        """Register a callable invoked with each new StoryEvent."""
        self._listeners.append(listener)

    @property
    def events(self) -> list[StoryEvent]:
        with self._lock:
            return list(self._events)

    def _apply(self, entity: Shot | Character, changes: dict[str, Any]) -> None:
        for field_name, value in changes.items():
            if field_name not in type(entity).model_fields:
                raise ValueError(f"{type(entity).__name__} has no field '{field_name}'")
            setattr(entity, field_name, value)

    def _record(self, event: str, target_id: str, changes: dict[str, Any]) -> None:
        with self._lock:
            entry = StoryEvent(sequence=len(self._events) + 1, event=event, target_id=target_id, changes=changes)
            self._events.append(entry)
        self.logger.debug(f"{event}: {target_id} {changes}")
        for listener in self._listeners:
            listener(entry)
