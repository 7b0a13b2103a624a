"""Pydantic response models for the alignment HTTP API.

WHY: FastAPI derives the OpenAPI schema from these models, so every
field carries a description a client can read from /docs.

RULES:
- Status strings are JobStatus values
- summary maps unit kind → status → count, as AlignmentReport.summary()
"""

from __future__ import annotations

from typing import Dict, List, Optional

from pydantic import BaseModel, Field


class JobCreatedResponse(BaseModel):
    """Returned when an alignment job is accepted."""

    id: str = Field(description="Unique job identifier for polling.")
    status: str = Field(description="Initial job status (always 'pending').")
    book_id: str = Field(description="Id of the book being aligned.")
    audio_files: List[str] = Field(description="Stored audio filenames, in playback order.")

    model_config = {"json_schema_extra": {
        "examples": [
            {
                "id": "550e8400e29b41d4a716446655440000",
                "status": "pending",
                "book_id": "moby-dick",
                "audio_files": ["part1.mp3", "part2.mp3"],
            }
        ]
    }}


class JobResponse(BaseModel):
    """Alignment job status.

    RULES:
    - error is only set when status is 'failed'
    - summary is only set when status is 'completed'
    """

    id: str = Field(description="Unique job identifier.")
    status: str = Field(description="Current job status.")
    book_id: str = Field(description="Id of the book being aligned.")
    audio_files: List[str] = Field(description="Stored audio filenames, in playback order.")
    created_at: float = Field(description="Job creation timestamp (Unix epoch seconds).")
    provider: str = Field(description="Transcription provider used for this job.")
    tolerance: float = Field(description="Match tolerance used for this job.")
    progress: Optional[str] = Field(
        default=None,
        description="Latest progress message from the pipeline.",
    )
    error: Optional[str] = Field(
        default=None,
        description="Error message, only present when status is 'failed'.",
    )
    summary: Optional[Dict[str, Dict[str, int]]] = Field(
        default=None,
        description="Outcome counts per unit kind and status, when completed.",
    )


class ProviderInfo(BaseModel):
    """A transcription provider the server can use."""

    key: str = Field(description="Provider identifier used in requests.")
    name: str = Field(description="Adapter class name.")
    configured: bool = Field(description="Whether the provider's API key is set.")


class ErrorResponse(BaseModel):
    """Standard error body."""

    detail: str = Field(description="Human-readable error description.")


class HealthResponse(BaseModel):
    status: str = Field(description="Service health status.", json_schema_extra={"example": "ok"})
    version: str = Field(description="API version string.", json_schema_extra={"example": "0.1.0"})
