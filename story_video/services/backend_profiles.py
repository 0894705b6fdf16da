"""Backend parameter shapes - maps a backend id to the request it expects."""

from typing import Any, Optional

from pydantic import BaseModel, Field

from story_video.models.schemas import JobKind

DEFAULT_MOTION_PROMPT = "Animate this image with smooth, natural motion"
CINEMATIC_MOTION_PROMPT = f"{DEFAULT_MOTION_PROMPT}, cinematic camera movement"

CHARACTER_SHEET_SUFFIX = (
    "Full body character sheet, front view, clean white background, "
    "professional character design, highly detailed, consistent style, "
    "consistent proportions and height, accurate body measurements, "
    "character turnaround reference, character model sheet"
)


class VideoProfile(BaseModel):
    """Request template for one image-to-video backend family."""

    image_keys: list[str] = Field(default_factory=lambda: ["image"], description="Input keys receiving the image")
    params: dict[str, Any] = Field(default_factory=dict, description="Fixed parameters")
    prompt: Optional[str] = Field(default=None, description="Motion prompt, when the backend takes one")


# Ordered: the first key contained in the backend id wins
VIDEO_PROFILES: dict[str, VideoProfile] = {
    "stability-ai/stable-video-diffusion": VideoProfile(
        image_keys=["input_image"],
        params={
            "motion_bucket_id": 127,
            "cond_aug": 0.02,
            "video_length": "25_frames_with_svd_xt",
            "sizing_strategy": "maintain_aspect_ratio",
            "frames_per_second": 6,
        },
    ),
    "lightricks/ltx-video": VideoProfile(
        params={"num_frames": 161, "num_inference_steps": 30},
        prompt="Animate this image with smooth, natural camera motion",
    ),
    "google/veo": VideoProfile(params={"duration": 5, "aspect_ratio": "16:9"}, prompt=DEFAULT_MOTION_PROMPT),
    "wan-video/wan": VideoProfile(params={"duration": 5}, prompt=DEFAULT_MOTION_PROMPT),
    "minimax/hailuo": VideoProfile(params={"duration": 5}, prompt=DEFAULT_MOTION_PROMPT),
    "minimax/video-01": VideoProfile(params={"duration": 5}, prompt=DEFAULT_MOTION_PROMPT),
    "bytedance/seedance": VideoProfile(params={"duration": 5}, prompt=CINEMATIC_MOTION_PROMPT),
    "kwaivgi/kling": VideoProfile(params={"duration": 5}, prompt=DEFAULT_MOTION_PROMPT),
    "luma/ray": VideoProfile(params={"extend": False, "duration": 5}, prompt=DEFAULT_MOTION_PROMPT),
    "luma/modify-video": VideoProfile(params={"duration": 5}, prompt=DEFAULT_MOTION_PROMPT),
    "fofr/tooncrafter": VideoProfile(params={"duration": 5}),
    "open-mmlab/pia": VideoProfile(params={"duration": 5}, prompt=DEFAULT_MOTION_PROMPT),
}

# Superset for unknown backends: both image keys and the common fields
SUPERSET_VIDEO_PROFILE = VideoProfile(
    image_keys=["input_image", "image"],
    params={"duration": 5, "motion_bucket_id": 127, "frames_per_second": 6},
    prompt=DEFAULT_MOTION_PROMPT,
)

CHARACTER_REFERENCE_BACKENDS = ("ideogram-ai/ideogram-character",)

OPENAI_VOICES = ("alloy", "echo", "fable", "onyx", "nova", "shimmer")
DEFAULT_ELEVENLABS_VOICE = "EXAVITQu4vr4xnSDxMaL"


def video_profile(backend_id: str) -> VideoProfile:
    """Look up the request template for a video backend by substring match."""
    for key, profile in VIDEO_PROFILES.items():
        if key in backend_id:
            return profile
    return SUPERSET_VIDEO_PROFILE


def is_character_reference_backend(backend_id: str) -> bool:
    return any(key in backend_id for key in CHARACTER_REFERENCE_BACKENDS)


def character_prompt_lines(characters: list[dict[str, Any]]) -> str:
    """``name: prompt-or-description`` for each character, joined by '. '."""
    return ". ".join(f"{c.get('name')}: {c.get('prompt') or c.get('description') or ''}" for c in characters)


def build_request(
    kind: JobKind,
    backend_id: str,
    input_refs: dict[str, str],
    parameters: dict[str, Any],
) -> dict[str, Any]:
    """
    Shape semantic job parameters into the input a backend expects.

    The same job can be shaped for its configured backend and for the
    known-good default; the semantic parameters and input references are
    identical in both cases.

    Args:
        kind: Job kind
        backend_id: Target backend identifier
        input_refs: Input asset references (``image``, ``character_image``)
        parameters: Semantic parameters (prompt, style, aspect_ratio, characters,
            text, voice settings)

    Returns:
        Backend-specific request input
    """
    if kind == JobKind.VIDEO:
        return _video_request(backend_id, input_refs, parameters)
    if kind == JobKind.IMAGE:
        return _image_request(backend_id, input_refs, parameters)
    if kind == JobKind.CHARACTER_IMAGE:
        return _character_request(parameters)
    if kind == JobKind.AUDIO:
        return _speech_request(backend_id, parameters)
    raise ValueError(f"Unsupported job kind: {kind}")


def _video_request(backend_id: str, input_refs: dict[str, str], parameters: dict[str, Any]) -> dict[str, Any]:
    image_ref = input_refs.get("image")
    if not image_ref:
        raise ValueError("Video jobs require an 'image' input reference")
    profile = video_profile(backend_id)
    request: dict[str, Any] = dict(profile.params)
    if profile.prompt is not None:
        request["prompt"] = parameters.get("motion_prompt") or profile.prompt
    for key in profile.image_keys:
        request[key] = image_ref
    return request


def _image_request(backend_id: str, input_refs: dict[str, str], parameters: dict[str, Any]) -> dict[str, Any]:
    style = parameters.get("style", "")
    prompt = f"{style} style: {parameters.get('prompt', '')}"
    aspect_ratio = parameters.get("aspect_ratio") or "16:9"
    characters = parameters.get("characters") or []

    if is_character_reference_backend(backend_id):
        reference = input_refs.get("character_image")
        if not reference:
            raise ValueError("Character reference backend requires a 'character_image' input reference")
        if characters:
            prompt = (
                f"{prompt}. Characters: {character_prompt_lines(characters)}. "
                "Maintain character appearance and height consistency."
            )
        return {
            "prompt": prompt,
            "character_reference_image": reference,
            "aspect_ratio": aspect_ratio,
            "style_type": "Realistic" if "realistic" in style.lower() else "Fiction",
            "magic_prompt_option": "On",
        }

    if characters:
        prompt = (
            f"{prompt}. Characters: {character_prompt_lines(characters)}. "
            "Maintain consistent character appearance, facial features, clothing, and height throughout all scenes."
        )
    return {
        "prompt": prompt,
        "aspect_ratio": aspect_ratio,
        "output_format": "png",
        "output_quality": 80,
    }


def _character_request(parameters: dict[str, Any]) -> dict[str, Any]:
    return {
        "prompt": (
            f"{parameters.get('style', '')} style character design: {parameters.get('prompt', '')}. "
            f"{CHARACTER_SHEET_SUFFIX}"
        ),
        "aspect_ratio": parameters.get("aspect_ratio") or "1:1",
        "output_format": "png",
        "output_quality": 90,
    }


def _speech_request(backend_id: str, parameters: dict[str, Any]) -> dict[str, Any]:
    text = parameters.get("text") or ""
    if not text.strip():
        raise ValueError("Speech jobs require non-empty 'text'")
    voice_id = parameters.get("voice_id")
    model = parameters.get("model")
    if backend_id == "elevenlabs":
        if not voice_id or voice_id in OPENAI_VOICES:
            voice_id = DEFAULT_ELEVENLABS_VOICE
        return {
            "voice_id": voice_id,
            "text": text,
            "model_id": model if model and model.startswith("eleven") else "eleven_monolingual_v1",
            "voice_settings": {
                "stability": parameters.get("stability", 0.5),
                "similarity_boost": parameters.get("similarity_boost", 0.75),
            },
        }
    # Voice and model ids are provider-specific; foreign ones fall back to defaults
    return {
        "model": model if model and not model.startswith("eleven") else "tts-1",
        "voice": voice_id if voice_id in OPENAI_VOICES else "alloy",
        "input": text,
        "speed": parameters.get("speed", 1.0),
        "response_format": "mp3",
    }
