"""TV Agent.

A small daemon that runs on an Android TV box (under Termux) and keeps a
persistent WebSocket link to the control server. It registers the device,
sends heartbeats, survives network drops with capped exponential backoff,
and turns remote commands into ADB key events.

Usage:
    tv-agent --ws-url wss://example.com/ws --register-url https://example.com/api/registertv
"""

__version__ = "0.1.0"
