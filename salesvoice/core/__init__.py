"""Conversation core: sessions, turn processing, transcription and playback pacing."""
