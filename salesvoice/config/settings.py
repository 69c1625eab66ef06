"""
Application configuration for the salesvoice service.

Pydantic v2 models for every configurable block plus the phased loader that
turns config/salesvoice.yaml and the process environment into an AppConfig.
"""

import os
from typing import Optional

import structlog
from pydantic import BaseModel, Field

from ..core.scenario import ScenarioConfig, default_scenario
from .defaults import apply_conversation_defaults, apply_logging_defaults, apply_server_defaults
from .loaders import load_yaml_with_env_expansion, resolve_config_path
from .security import expand_scenario_tokens, inject_provider_api_keys

logger = structlog.get_logger(__name__)

DEFAULT_CONFIG_PATH = "config/salesvoice.yaml"


class ServerConfig(BaseModel):
    host: str = Field(default="0.0.0.0")
    port: int = Field(default=3000, ge=1, le=65535)
    ws_path: str = Field(default="/ws")
    # Largest accepted inbound frame (audio chunks are small, scenarios smaller)
    max_message_bytes: int = Field(default=4 * 1024 * 1024)
    heartbeat_sec: Optional[float] = Field(default=30.0)


class DeepgramConfig(BaseModel):
    api_key: Optional[str] = None
    base_url: str = Field(default="wss://api.deepgram.com")
    model: str = Field(default="nova-2")
    language: str = Field(default="en-US")
    encoding: str = Field(default="linear16")
    sample_rate_hz: int = Field(default=16000)
    channels: int = Field(default=1)
    interim_results: bool = Field(default=True)
    smart_format: bool = Field(default=True)
    connect_timeout_sec: float = Field(default=10.0)


class OpenAIConfig(BaseModel):
    api_key: Optional[str] = None
    organization: Optional[str] = None
    chat_base_url: str = Field(default="https://api.openai.com/v1")
    chat_model: str = Field(default="gpt-4")
    temperature: float = Field(default=0.7, ge=0.0, le=2.0)
    max_tokens: Optional[int] = None
    timeout_sec: float = Field(default=30.0)
    tts_base_url: str = Field(default="https://api.openai.com/v1/audio/speech")
    tts_model: str = Field(default="tts-1")
    voice: str = Field(default="alloy")
    tts_response_format: str = Field(default="mp3")


class ConversationConfig(BaseModel):
    question_threshold: int = Field(default=6, ge=1)
    words_per_second: float = Field(default=2.5, gt=0)
    fallback_reply: str = Field(default="⚠️ Sorry, there was an issue generating a response.")
    closing_instruction: str = Field(
        default="Please now switch out of character and provide your detailed feedback as per the system prompt."
    )
    transcription_failed_text: str = Field(default="⚠️ Transcription failed.")
    # Finalized transcripts are submitted as human turns without a separate user_message
    auto_submit_transcripts: bool = Field(default=True)
    resume_after_failed_synthesis: bool = Field(default=True)
    transcription_stop_timeout_sec: float = Field(default=5.0, gt=0)


class LoggingConfig(BaseModel):
    level: str = Field(default="info")
    log_to_file: bool = Field(default=False)
    log_file_path: str = Field(default="salesvoice.log")


class AppConfig(BaseModel):
    server: ServerConfig = Field(default_factory=ServerConfig)
    deepgram: DeepgramConfig = Field(default_factory=DeepgramConfig)
    openai: OpenAIConfig = Field(default_factory=OpenAIConfig)
    conversation: ConversationConfig = Field(default_factory=ConversationConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    default_scenario: ScenarioConfig = Field(default_factory=default_scenario)


def load_config(path: str = DEFAULT_CONFIG_PATH) -> AppConfig:
    """
    Load and validate configuration from YAML file.

    A missing file is not fatal: the service starts from model defaults plus
    environment overrides.

    Args:
        path: Path to YAML configuration file (absolute or relative to project root)

    Returns:
        Validated AppConfig instance

    Raises:
        yaml.YAMLError: If YAML parsing fails
        pydantic.ValidationError: If a block fails validation
    """
    # Phase 1: Load YAML file with environment variable expansion
    path = resolve_config_path(path)
    try:
        config_data = load_yaml_with_env_expansion(path)
    except FileNotFoundError:
        logger.warning("Configuration file not found; using defaults", path=path)
        config_data = {}

    # Phase 2: Security - Inject credentials from environment variables only
    inject_provider_api_keys(config_data)
    expand_scenario_tokens(config_data)

    # Phase 3: Apply default values
    apply_server_defaults(config_data)
    apply_conversation_defaults(config_data)
    apply_logging_defaults(config_data)

    # Phase 4: Validate and return
    return AppConfig(**config_data)


def validate_runtime_config(config: AppConfig) -> tuple[list[str], list[str]]:
    """Check a loaded config before serving.

    Returns:
        (errors, warnings): errors block startup, warnings are logged.
    """
    errors = []
    warnings = []

    if not config.openai.api_key:
        errors.append("OPENAI_API_KEY is not set (needed for replies and speech synthesis)")
    if not config.deepgram.api_key:
        errors.append("DEEPGRAM_API_KEY is not set (needed for speech recognition)")

    if config.deepgram.encoding == "linear16" and config.deepgram.sample_rate_hz != 16000:
        warnings.append(
            f"deepgram.sample_rate_hz is {config.deepgram.sample_rate_hz}; clients capture 16 kHz PCM"
        )
    if not config.server.ws_path.startswith("/"):
        errors.append(f"server.ws_path must start with '/': {config.server.ws_path}")
    if config.conversation.question_threshold > 20:
        warnings.append(
            f"conversation.question_threshold={config.conversation.question_threshold} is unusually long"
        )
    if os.getenv("LOG_FORMAT", "json").lower() not in ("console", "json"):
        warnings.append("LOG_FORMAT should be 'console' or 'json'")

    return errors, warnings
