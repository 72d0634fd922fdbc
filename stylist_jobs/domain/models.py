"""Domain models for the stylist job watcher.

Jobs and generation payloads use Pydantic v2 for validation and serialization.
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import AliasChoices, BaseModel, Field

DEFAULT_IMAGE_MIME_TYPE = "image/jpeg"


class JobStatus(str, Enum):
    """Lifecycle status of a server-tracked AI job."""

    QUEUED = "queued"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.SUCCEEDED, JobStatus.FAILED)


class JobType(str, Enum):
    """Kinds of AI generation work the app submits."""

    AUTO_TAG = "auto_tag"
    PRODUCT_SHOT = "product_shot"
    HEADSHOT_GENERATE = "headshot_generate"
    BODY_SHOT_GENERATE = "body_shot_generate"
    OUTFIT_SUGGEST = "outfit_suggest"
    REFERENCE_MATCH = "reference_match"
    OUTFIT_RENDER = "outfit_render"
    OUTFIT_MANNEQUIN = "outfit_mannequin"
    LOOKBOOK_GENERATE = "lookbook_generate"
    BATCH = "batch"
    WARDROBE_ITEM_RENDER = "wardrobe_item_render"
    WARDROBE_ITEM_TAG = "wardrobe_item_tag"
    WARDROBE_ITEM_GENERATE = "wardrobe_item_generate"


class Job(BaseModel):
    """Snapshot of an ``ai_jobs`` row as seen by a status check."""

    id: str = Field(..., description="Backend-assigned job identifier")
    status: JobStatus = Field(..., description="Current job status")
    job_type: JobType | None = Field(default=None, description="Generation kind")
    owner_user_id: str | None = Field(default=None, description="Submitting user")
    input: dict[str, Any] = Field(default_factory=dict, description="Job input")
    result: dict[str, Any] | None = Field(
        default=None, description="Opaque result payload (succeeded only)"
    )
    error_message: str | None = Field(
        default=None,
        validation_alias=AliasChoices("error_message", "error"),
        description="Failure reason (failed only)",
    )
    created_at: datetime | None = Field(default=None, description="Creation time")
    updated_at: datetime | None = Field(default=None, description="Last update time")

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal


class GenerationPayload(BaseModel):
    """Decoded generation result ready for immediate rendering."""

    data_uri: str = Field(..., description="Renderable image reference")
    title: str | None = Field(default=None, description="Generated title")
    description: str | None = Field(default=None, description="Generated description")
    image_id: str | None = Field(default=None, description="Stored image record id")

    @classmethod
    def from_job_result(cls, result: dict[str, Any] | None) -> "GenerationPayload":
        """Build a payload from a succeeded job's result.

        Accepts a ready ``data:`` URI or URL, or raw base64 image bytes which are
        wrapped into a data URI using ``mime_type`` (JPEG when absent).

        Raises:
            ValueError: If the result carries no image reference
        """
        if not result:
            raise ValueError("Job result is empty")

        image_ref = (
            result.get("data_uri")
            or result.get("base64_result")
            or result.get("image_base64")
            or result.get("image_url")
        )
        if not image_ref or not isinstance(image_ref, str):
            raise ValueError("Job result has no image reference")

        if not image_ref.startswith(("data:", "http://", "https://")):
            mime_type = result.get("mime_type") or DEFAULT_IMAGE_MIME_TYPE
            image_ref = f"data:{mime_type};base64,{image_ref}"

        image_id = result.get("image_id") or result.get("generated_image_id")
        return cls(
            data_uri=image_ref,
            title=result.get("title") or result.get("suggested_title"),
            description=result.get("description") or result.get("suggested_notes"),
            image_id=str(image_id) if image_id is not None else None,
        )


@dataclass(frozen=True)
class CacheEntry:
    """Pending generation result held until its first matching read."""

    subject_id: str
    job_id: str
    payload: GenerationPayload
    created_at: float
    trace_id: str | None = None
