"""Command-line client for the Gemini Live bidirectional streaming API.

This package provides the duplex session manager, WebSocket channel, wire
protocol models, and microphone capture used to stream speech to Gemini and
print its incremental text responses.
"""

__version__ = "0.1.0"
