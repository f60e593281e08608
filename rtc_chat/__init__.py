"""Two-party WebRTC text chat with a small signaling relay."""

__version__ = "0.1.0"
