"""
Default value application for configuration.

This module handles:
- Server bind defaults with environment overrides
- Conversation tuning defaults with environment overrides
- Logging level default
"""

import os
from typing import Any, Dict


def _block(config_data: Dict[str, Any], name: str) -> Dict[str, Any]:
    block = config_data.get(name)
    if not isinstance(block, dict):
        block = {}
    config_data[name] = block
    return block


def apply_server_defaults(config_data: Dict[str, Any]) -> None:
    """
    Apply server bind defaults.

    Precedence: env > YAML server.* > model defaults

    Environment variables:
    - SALESVOICE_HOST: Override bind address
    - SALESVOICE_PORT: Override port (ignored when not an integer)

    Args:
        config_data: Configuration dictionary to modify in-place
    """
    server_cfg = _block(config_data, "server")

    host = os.getenv("SALESVOICE_HOST", "").strip()
    if host:
        server_cfg["host"] = host

    port = os.getenv("SALESVOICE_PORT", "").strip()
    if port:
        try:
            server_cfg["port"] = int(port)
        except ValueError:
            pass


def apply_conversation_defaults(config_data: Dict[str, Any]) -> None:
    """
    Apply conversation tuning overrides.

    Environment variables:
    - QUESTION_THRESHOLD: exchanges before the feedback turn
    - WORDS_PER_SECOND: speaking rate assumed by the playback pacer

    Args:
        config_data: Configuration dictionary to modify in-place
    """
    conversation_cfg = _block(config_data, "conversation")

    threshold = os.getenv("QUESTION_THRESHOLD", "").strip()
    if threshold:
        try:
            conversation_cfg["question_threshold"] = int(threshold)
        except ValueError:
            pass

    rate = os.getenv("WORDS_PER_SECOND", "").strip()
    if rate:
        try:
            conversation_cfg["words_per_second"] = float(rate)
        except ValueError:
            pass


def apply_logging_defaults(config_data: Dict[str, Any]) -> None:
    """Default logging.level to LOG_LEVEL (or info) when YAML does not set it."""
    logging_cfg = _block(config_data, "logging")
    logging_cfg.setdefault("level", os.getenv("LOG_LEVEL", "info").lower())
