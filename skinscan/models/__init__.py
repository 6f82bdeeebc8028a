from .base import Base
from .detection import Detection

__all__ = [
    "Base",
    "Detection",
]
