from pydantic import BaseModel, Field


class AdoptSessionRequest(BaseModel):
    """Schema for adopting an anonymous session's work."""

    session_id: str = Field(..., min_length=1, description="Anonymous session id")


class AdoptionSummary(BaseModel):
    """Counts of rows moved, merged or discarded by one adoption."""

    session_id: str
    user_id: str
    jobs_moved: int = 0
    jobs_superseded: int = 0
    organizations_moved: int = 0
    organizations_merged: int = 0
    audiences_moved: int = 0
    audiences_discarded: int = 0

    @property
    def changed(self) -> bool:
        return any(
            (
                self.jobs_moved,
                self.jobs_superseded,
                self.organizations_moved,
                self.organizations_merged,
                self.audiences_moved,
                self.audiences_discarded,
            )
        )
