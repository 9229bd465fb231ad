from ..types import BackendError
from .base import BaseBackend
from .client import TutorBackend

__all__ = ["BackendError", "BaseBackend", "TutorBackend"]
