"""Capability providers: the only code that touches the device."""

from .base import Capabilities, FrameCapture, GlobalAction, InputInjector, ScrollDirection

__all__ = [
    "Capabilities",
    "FrameCapture",
    "GlobalAction",
    "InputInjector",
    "ScrollDirection",
]
