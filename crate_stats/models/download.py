"""Pydantic models for download observations and the package dimension."""
from pydantic import BaseModel, ConfigDict, Field, field_validator


class DownloadObservation(BaseModel):
    """One completed download as reported by the proxy request path."""

    model_config = ConfigDict(frozen=True)

    package_name: str = Field(min_length=1)
    version: str = Field(min_length=1)
    hit: bool
    size: int = Field(ge=0)

    @field_validator("package_name", "version")
    @classmethod
    def must_not_be_blank(cls, v):
        """Reject names that are only whitespace."""
        if not v.strip():
            raise ValueError("must not be blank")
        return v


class Package(BaseModel):
    """Row of the packages table."""

    model_config = ConfigDict(frozen=True)

    id: int
    name: str
