"""
Typed artifacts exchanged between pipeline stages and their collaborators.
"""

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, Field


class FetchedContent(BaseModel):
    """Page content returned by a content fetcher."""

    url: str
    title: str = ""
    text: str = ""
    links: list[str] = Field(default_factory=list)
    metadata: dict[str, Any] = Field(default_factory=dict)


class StructuredAnalysis(BaseModel):
    """Business attributes derived from fetched content."""

    business_name: str
    business_type: str
    target_audience: str
    content_focus: str
    brand_voice: str
    description: str = ""
    keywords: list[str] = Field(default_factory=list)


class BusinessValue(BaseModel):
    search_volume: str = "medium"
    conversion_potential: str = "medium"
    competition: str = "medium"


class Scenario(BaseModel):
    """An audience segment; pitch and image are filled in by later stages."""

    segment: str
    customer_problem: str
    demographics: str = ""
    search_behavior: list[str] = Field(default_factory=list)
    business_value: BusinessValue = Field(default_factory=BusinessValue)
    priority: int = Field(default=1, ge=1)
    pitch: str | None = None
    image_url: str | None = None


class Narrative(BaseModel):
    narrative: str
    confidence: float = Field(ge=0.0, le=1.0)
    key_insights: list[str] = Field(default_factory=list)


class GeneratedPost(BaseModel):
    title: str
    outline: list[str] = Field(default_factory=list)
    body: str
    keywords: list[str] = Field(default_factory=list)


class TenantRecord(BaseModel):
    """Read-only view of a tenant's persisted analysis record."""

    organization_id: UUID
    tenant_key: str
    website_url: str | None = None
    analysis: StructuredAnalysis
    narrative: str | None = None
    updated_at: datetime | None = None
