"""Error kinds raised across the conversation pipeline."""


class SalesVoiceError(Exception):
    """Base class for all salesvoice errors."""


class ConfigurationError(SalesVoiceError):
    """A scenario or application configuration is malformed or incomplete."""


class TranscriptionStreamError(SalesVoiceError):
    """The streaming speech-recognition service failed mid-stream."""


class GenerationError(SalesVoiceError):
    """The completion service could not produce the next turn."""


class SynthesisError(SalesVoiceError):
    """The speech-synthesis service could not produce audio."""
