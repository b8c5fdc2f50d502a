"""devicelink - remote control protocol for a device's touch screen.

A controller sends JSON commands (tap, swipe, type, screenshot, ...) over a
WebSocket and receives one JSON result per command. Two topologies:

- Listening: the device runs a WebSocket server (``devicelink serve``)
- Relay: the device dials out to a relay (``devicelink relay``)
"""

__version__ = "0.1.0"
