"""
vapor_gateway package - Core application modules
"""

from .config import settings, get_settings
from .helpers import debug_log, configure_structlog
from .errors import GatewayError
from .schemas import ChatCompletionRequest, ModelsResponse, Model, Message, ContentPart, VendorType

__version__ = "1.0.0"

__all__ = [
    "settings",
    "get_settings",
    "debug_log",
    "configure_structlog",
    "GatewayError",
    "ChatCompletionRequest",
    "ModelsResponse",
    "Model",
    "Message",
    "ContentPart",
    "VendorType",
]
