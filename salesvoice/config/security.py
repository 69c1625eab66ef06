"""
Security-critical configuration injection.

This module handles:
- Provider API key injection (ONLY from environment variables)
- Environment variable token expansion

SECURITY POLICY:
- API keys MUST NEVER be in YAML files
- All credentials MUST come from environment variables only
"""

import os
from typing import Any, Dict

# config block -> environment variable holding its API key
PROVIDER_KEY_ENV = {
    "openai": "OPENAI_API_KEY",
    "deepgram": "DEEPGRAM_API_KEY",
}


def _is_nonempty_string(val: Any) -> bool:
    """True if val is a string with non-whitespace content."""
    return isinstance(val, str) and val.strip() != ""


def expand_string_tokens(value: str) -> str:
    """
    Expand environment variable tokens in a string.

    Supports ${VAR} and $VAR syntax. If variable is undefined,
    it is left unchanged.
    """
    return os.path.expandvars(value or "")


def inject_provider_api_keys(config_data: Dict[str, Any]) -> None:
    """
    Inject provider API keys from environment variables ONLY.

    Any api_key present in YAML is discarded. Empty or whitespace-only
    environment values count as unset.

    Environment variables:
    - OPENAI_API_KEY: chat completion and speech synthesis
    - DEEPGRAM_API_KEY: streaming speech recognition

    Args:
        config_data: Configuration dictionary to modify in-place
    """
    for block_name, env_name in PROVIDER_KEY_ENV.items():
        block = config_data.get(block_name)
        if not isinstance(block, dict):
            block = {}
        env_value = os.getenv(env_name)
        block["api_key"] = env_value.strip() if _is_nonempty_string(env_value) else None
        config_data[block_name] = block


def expand_scenario_tokens(config_data: Dict[str, Any]) -> None:
    """Expand ${VAR} tokens in the default scenario's free-text fields."""
    scenario = config_data.get("default_scenario")
    if not isinstance(scenario, dict):
        return
    for key in ("product", "industry"):
        if _is_nonempty_string(scenario.get(key)):
            scenario[key] = expand_string_tokens(scenario[key])
