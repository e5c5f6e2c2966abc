"""Outbound HTTP clients."""
from .generative import GenerationCall, GenerativeClient

__all__ = ["GenerationCall", "GenerativeClient"]
