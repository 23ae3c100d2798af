"""AuthBridge - PKCE credential exchange and token lifecycle bridge."""

from importlib.metadata import version

from authbridge.settings import Settings

settings = Settings()

from authbridge.bridge import Bridge
from authbridge.exceptions import AuthBridgeError
from authbridge.grants import GrantProcessor
from authbridge.flows import FlowOrchestrator

__version__ = version("authbridge")
__all__ = [
    "AuthBridgeError",
    "Bridge",
    "FlowOrchestrator",
    "GrantProcessor",
    "Settings",
    "settings",
]
