"""Pydantic schemas for API request/response models."""
from .envelope import ApiResponse, ResponseMeta
from .jobs import StartJobRequest, resume_request

__all__ = ["ApiResponse", "ResponseMeta", "StartJobRequest", "resume_request"]
