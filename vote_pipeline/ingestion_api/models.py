"""Pydantic models for request/response validation."""
from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationInfo, field_validator

from ..shared.models import validate_id


class VoteRequest(BaseModel):
    """Vote submission request model."""

    model_config = ConfigDict(
        populate_by_name=True,
        json_schema_extra={
            "example": {
                "voterId": "3f1c9a2e-7b7d-4d55-9e0e-1a2b3c4d5e6f",
                "candidateId": "candA"
            }
        }
    )

    voter_id: str = Field(..., alias="voterId", description="Authenticated voter identity")
    candidate_id: str = Field(..., alias="candidateId", description="Candidate identifier")

    @field_validator("voter_id", "candidate_id", mode="before")
    @classmethod
    def check_id(cls, v, info: ValidationInfo) -> str:
        """Validate ids are non-empty strings of bounded length."""
        alias = "voterId" if info.field_name == "voter_id" else "candidateId"
        return validate_id(v, alias)


class VoteResponse(BaseModel):
    """Vote submission response model."""

    status: Literal["queued", "accepted"] = Field(..., description="Status of the submission")
    message: str = Field(default="Vote submitted successfully", description="Response message")

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "status": "queued",
                "message": "Vote queued for processing"
            }
        }
    )


class CandidateResult(BaseModel):
    """One candidate with its vote total."""

    candidateId: str
    name: str
    description: str = ""
    imageUrl: str = ""
    votes: int


class ResultsResponse(BaseModel):
    """Aggregated results, as published in the latest snapshot."""

    candidates: list[CandidateResult]
    lastUpdated: datetime
    timestamp: int
    totalVotes: int


class HealthResponse(BaseModel):
    """Health check response model."""

    status: Literal["healthy", "unhealthy"] = Field(..., description="Overall health status")
    services: dict = Field(..., description="Status of individual services")
    timestamp: datetime = Field(..., description="Health check timestamp")


class ErrorResponse(BaseModel):
    """Error response model."""

    error: str = Field(..., description="Error type")
    message: str = Field(..., description="Error message")
    details: Optional[list] = Field(default=None, description="Additional error details")
