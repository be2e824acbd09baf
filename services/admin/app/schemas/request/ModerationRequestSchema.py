from pydantic import BaseModel, Field

from libs.schemas import DurationUnit, ModerationReason


class ModerationRequestSchema(BaseModel):
    reason: ModerationReason = Field(default=ModerationReason.ADMIN_DECISION, description="moderation reason")
    details: str | None = Field(default=None, max_length=1000, description="free text shown to the target")


class SuspendRequestSchema(ModerationRequestSchema):
    durationValue: int = Field(default=0, ge=0, description="duration amount, 0 with permanent")
    durationUnit: DurationUnit = Field(default=DurationUnit.PERMANENT, description="hours | days | weeks | months | permanent")
