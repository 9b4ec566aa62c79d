from pydantic import BaseModel, Field

from assessment_recorder.prompts import TargetType


class FileReference(BaseModel):
    fileId: str = Field(..., min_length=1, max_length=80)


class AssessmentCreateRequest(BaseModel):
    targetType: TargetType
    name: str = Field(..., min_length=1, max_length=200)
    version: str | None = Field(default=None, max_length=80)
    provider: str | None = Field(default=None, max_length=200)
    notes: str | None = Field(default=None, max_length=2000)
    files: list[FileReference] = Field(..., min_length=1, max_length=20)
