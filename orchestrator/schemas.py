"""Pydantic schemas for storage server responses."""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from common.types import Blob, BlobMetadata, ServerAvailability, is_content_hash


class BlobDescriptor(BaseModel):
    """Descriptor returned by a storage server for a stored blob."""
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    url: str = ""
    hash: str = Field(alias="sha256")
    size: int = 0
    mime_type: str = Field(default="application/octet-stream", alias="type")
    uploaded_at: int = Field(default=0, alias="uploaded")
    filename: Optional[str] = Field(default=None, alias="name")

    @field_validator("hash")
    @classmethod
    def _check_hash(cls, value: str) -> str:
        value = value.lower()
        if not is_content_hash(value):
            raise ValueError(f"not a content hash: {value!r}")
        return value

    @field_validator("mime_type", mode="before")
    @classmethod
    def _default_type(cls, value):
        return value or "application/octet-stream"

    def to_blob(self, server: str, checked_at: float, filename: Optional[str] = None) -> Blob:
        """Convert to a Blob observed on one server."""
        name = filename or self.filename
        return Blob(
            hash=self.hash,
            size=self.size,
            mime_type=self.mime_type,
            uploaded_at=self.uploaded_at,
            url=self.url,
            metadata=BlobMetadata(filename=name) if name else None,
            availability=(ServerAvailability(server=server, present=True, checked_at=checked_at),),
        )

