"""Application configuration using pydantic-settings."""

from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    All settings can be configured via environment variables or a .env file.
    See .env.example for a template.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ========================================================================
    # Application Settings
    # ========================================================================
    app_name: str = Field(default="Story Video Pipeline", description="Application name")
    app_version: str = Field(default="1.0.0", description="Application version")
    debug: bool = Field(default=False, description="Debug mode")
    log_level: str = Field(default="INFO", description="Logging level (DEBUG, INFO, WARNING, ERROR)")
    log_file: Optional[str] = Field(default=None, description="Optional log file path (rotated and zipped)")

    # ========================================================================
    # Provider Credentials
    # ========================================================================
    replicate_api_token: Optional[str] = Field(default=None, description="Replicate API token")
    replicate_api_url: str = Field(default="https://api.replicate.com/v1", description="Replicate API base URL")
    openai_api_key: Optional[str] = Field(default=None, description="OpenAI API key (speech synthesis)")
    elevenlabs_api_key: Optional[str] = Field(default=None, description="ElevenLabs API key (speech synthesis)")
    elevenlabs_api_url: str = Field(default="https://api.elevenlabs.io/v1", description="ElevenLabs API base URL")
    openrouter_api_key: Optional[str] = Field(default=None, description="OpenRouter API key (story writing)")
    openrouter_api_url: str = Field(default="https://openrouter.ai/api/v1", description="OpenRouter API base URL")

    # ========================================================================
    # Backend Selection (per job kind)
    # ========================================================================
    image_backend: str = Field(
        default="tencent/hunyuan-image-3", description="Preferred backend for shot image generation"
    )
    character_image_backend: str = Field(
        default="tencent/hunyuan-image-3", description="Preferred backend for character reference images"
    )
    video_backend: str = Field(
        default="bytedance/seedance-1-lite", description="Preferred backend for image-to-video generation"
    )
    audio_backend: str = Field(default="openai", description="Preferred speech provider: 'openai' or 'elevenlabs'")

    default_image_backend: str = Field(
        default="black-forest-labs/flux-schnell", description="Known-good fallback backend for shot images"
    )
    default_character_image_backend: str = Field(
        default="black-forest-labs/flux-schnell", description="Known-good fallback backend for character images"
    )
    default_video_backend: str = Field(
        default="stability-ai/stable-video-diffusion:3f0457e4619daac51203dedb472816fd4af51f3149fa7a9e0b5ffcf1b8172438",
        description="Known-good fallback backend for image-to-video",
    )
    default_audio_backend: str = Field(default="openai", description="Known-good fallback speech provider")
    character_reference_backend: str = Field(
        default="ideogram-ai/ideogram-character:5e79783fdb5bb4b1bf267212e64bb28a60cd3bdde00fbf6a1be28df0f55cc4b7",
        description="Backend used for shot images when a character reference image exists (empty to disable)",
    )

    # ========================================================================
    # Speech Settings
    # ========================================================================
    enable_audio: bool = Field(default=True, description="Enable speech generation for shots")
    voice_id: str = Field(default="alloy", description="Voice identifier (OpenAI voice name or ElevenLabs voice id)")
    voice_model: Optional[str] = Field(default=None, description="Speech model (defaults per provider)")
    voice_speed: float = Field(default=1.0, description="OpenAI speech speed")
    voice_stability: float = Field(default=0.5, description="ElevenLabs voice stability")
    voice_similarity_boost: float = Field(default=0.75, description="ElevenLabs similarity boost")
    speech_target_duration: float = Field(
        default=5.0, description="Target speech duration in seconds (matches generated clip length)"
    )
    pad_speech_on_generation: bool = Field(
        default=True, description="Pad generated speech with trailing silence up to speech_target_duration"
    )

    # ========================================================================
    # Parallelism Settings
    # ========================================================================
    image_concurrency: int = Field(default=5, description="Concurrent image jobs per wave (default: 5)")
    video_concurrency: int = Field(default=3, description="Concurrent video jobs per wave (default: 3)")
    audio_concurrency: int = Field(default=10, description="Concurrent audio jobs per wave (default: 10)")
    character_concurrency: int = Field(default=1, description="Concurrent character-image jobs per wave (default: 1)")
    image_wave_delay: float = Field(default=0.5, description="Delay between image waves in seconds")
    video_wave_delay: float = Field(default=1.0, description="Delay between video waves in seconds")
    audio_wave_delay: float = Field(default=0.2, description="Delay between audio waves in seconds")
    character_wave_delay: float = Field(default=1.0, description="Delay between character-image waves in seconds")
    retry_attempts: int = Field(
        default=0,
        description="Extra scheduler-level attempts for generic job failures (on top of the backend fallback)",
    )

    # ========================================================================
    # Provider Timeouts & Rate Limiting
    # ========================================================================
    provider_timeout_seconds: float = Field(default=600.0, description="Maximum time to wait for one prediction")
    provider_poll_interval: float = Field(default=2.0, description="Polling interval for pending predictions")
    http_timeout_seconds: float = Field(default=60.0, description="Timeout for a single HTTP request")
    enable_rate_limiting: bool = Field(default=True, description="Throttle provider API calls")
    replicate_rate_limit: int = Field(default=60, description="Replicate API calls per minute (default: 60)")
    cdn_proxy_domain: Optional[str] = Field(
        default=None, description="Optional CDN domain used to proxy short-lived provider delivery URLs"
    )

    # ========================================================================
    # Export Settings
    # ========================================================================
    export_quality: str = Field(default="high", description="Default quality preset: low, medium, high, ultra")
    export_resolution: str = Field(default="original", description="Default resolution: 480p, 720p, 1080p, original")
    burn_captions_by_default: bool = Field(
        default=False, description="Burn captions into clips that have no speech (preview-only otherwise)"
    )
    ffmpeg_binary: Optional[str] = Field(
        default=None, description="Path to ffmpeg (defaults to the binary bundled with imageio-ffmpeg)"
    )
    export_work_dir: Optional[str] = Field(default=None, description="Parent directory for export scratch space")

    # ========================================================================
    # Story Writing Settings
    # ========================================================================
    story_model: str = Field(
        default="meta-llama/llama-3.1-405b-instruct", description="OpenRouter model used to write stories"
    )
    story_temperature: float = Field(default=0.7, description="Sampling temperature for story writing")
    story_max_tokens: int = Field(default=4000, description="Maximum tokens in a generated story")

    # ========================================================================
    # Catalog Cache Settings
    # ========================================================================
    replicate_catalog_ttl: float = Field(default=6 * 60 * 60, description="Replicate model list TTL in seconds")
    openrouter_catalog_ttl: float = Field(default=60 * 60, description="OpenRouter model list TTL in seconds")
    voice_catalog_ttl: float = Field(default=60 * 60, description="Voice list TTL in seconds")
    catalog_max_pages: int = Field(default=20, description="Maximum catalog pages fetched per refresh")

    # ========================================================================
    # Storage Settings
    # ========================================================================
    storage_path: str = Field(default="storage/projects", description="Storage path for project files")


# Global settings instance
settings = Settings()
