from pydantic import BaseModel, Field

from breach_registry.schemas.incident import UtcDatetime


class VerificationOut(BaseModel):
    """
    Public answer for a verification token. Deliberately minimal: nothing
    about the breach itself is disclosed.
    """

    valid: bool = True
    organization_name: str
    internal_id: int = Field(..., description="Organization-facing incident number")
    version_number: int
    created_at: UtcDatetime = Field(..., description="When this version was recorded (UTC)")
