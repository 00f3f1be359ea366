"""
Protokoll: live voice-channel transcription and meeting minutes.

Speech from each speaker is cut into utterances, transcribed, collected per
session and summarized when the session ends.
"""

__version__ = "0.1.0"
