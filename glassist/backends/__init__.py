"""
Completion backends for glassist.
"""
from glassist.backends.base import BaseBackend
from glassist.backends.openai_compat import OpenAICompatibleBackend

__all__ = [
    "BaseBackend",
    "OpenAICompatibleBackend",
]
