from .session import PreviewSession, jittered_latency, no_latency
from .transcript import Transcript, TranscriptEntry

__all__ = ["PreviewSession", "Transcript", "TranscriptEntry", "jittered_latency", "no_latency"]
