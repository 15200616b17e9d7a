from pydantic_settings import BaseSettings


class TranscriptSettings(BaseSettings):
    host: str = "0.0.0.0"
    port: int = 8000
    max_sessions: int = 10

    # Echo gating for the microphone while system audio is captured
    vad_threshold: float = 0.06
    system_bias_ms: int = 300

    # Display
    row_cap: int = 300
    tick_ms: int = 16

    # Per-source event channels
    queue_maxsize: int = 256

    # Raw mic PCM used for the level meter
    sample_rate: int = 16000
    mic_level_max_age_ms: int = 250

    model_config = {"env_prefix": "TRANSCRIPT_"}
