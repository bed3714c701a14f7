"""Pydantic models for API request payloads."""

from uuid import UUID

from pydantic import BaseModel, Field


class SubjectCreate(BaseModel):
    """Registers an already processed image."""

    processed_path: str
    original_filename: str | None = None


class QueueRequest(BaseModel):
    image_ids: list[UUID] = Field(min_length=1)
