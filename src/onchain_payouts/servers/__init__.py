from .apps import PayoutServer
from .flows import setup_event_bus

__all__ = [
    "PayoutServer",
    "setup_event_bus",
]
