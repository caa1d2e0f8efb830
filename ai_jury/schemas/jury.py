"""
AI Jury API Schemas (Pydantic)
"""
from pydantic import BaseModel, Field, validator
from typing import Optional, List, Dict, Any


class EligibilityCriteriaSchema(BaseModel):
    """Layer 1 flags. camelCase keys are accepted for older clients."""
    submission_deadline: bool = Field(default=False, alias="submissionDeadline")
    repository_access: bool = Field(default=False, alias="repositoryAccess")
    repository_public: bool = Field(default=False, alias="repositoryPublic")

    class Config:
        populate_by_name = True


class CreateSessionRequest(BaseModel):
    """Request schema for creating a jury session."""
    event_id: int = Field(..., ge=1, alias="eventId")
    eligibility_criteria: EligibilityCriteriaSchema = Field(
        default_factory=EligibilityCriteriaSchema,
        alias="eligibilityCriteria"
    )

    class Config:
        populate_by_name = True


class ExecuteLayerRequest(BaseModel):
    """Request schema for executing a layer."""
    layer: int = Field(..., ge=1, le=4)


class ResetRequest(BaseModel):
    mode: str = "soft"

    @validator("mode")
    def validate_mode(cls, v):
        v = v.strip().lower()
        if v not in ("soft", "hard"):
            raise ValueError("mode must be 'soft' or 'hard'")
        return v


class JurySessionResponse(BaseModel):
    """Response schema for a jury session."""
    id: int
    event_id: int
    status: str
    current_layer: int
    total_layers: int
    total_projects: int
    eliminated_projects: int
    eligibility_criteria: Dict[str, Any] = {}
    final_results: Optional[Dict[str, Any]] = None
    failure_reason: Optional[str] = None
    completed_at: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


class LayerResultResponse(BaseModel):
    project_id: int
    layer: Optional[int] = None
    project_name: Optional[str] = None
    eliminated: bool
    score: Optional[float] = None
    reason: Optional[str] = None
    evidence: Dict[str, Any] = {}
    processed_at: Optional[str] = None


class JurySessionDetailResponse(JurySessionResponse):
    """Session with every persisted result, keyed by layer number."""
    layer_results: Dict[str, List[LayerResultResponse]] = {}


class LayerExecutionResponse(BaseModel):
    session_id: int
    layer: int
    processed: int
    eliminated: int
    advanced: int
    replayed: bool = False
    results: List[LayerResultResponse] = []
    final_results: Optional[Dict[str, Any]] = None


class LayerCounts(BaseModel):
    total: int
    processed: int
    eliminated: int


class SessionProgressResponse(BaseModel):
    """Progress derived from persisted rows."""
    session_id: int
    status: str
    current_layer: int
    total_layers: int
    total_projects: int
    eliminated_projects: int
    layer_progress: Dict[str, LayerCounts]


class FinalResultsResponse(BaseModel):
    session_id: int
    status: str
    completed_at: Optional[str] = None
    final_results: Optional[Dict[str, Any]] = None
    ranking: List[LayerResultResponse] = []


class ResetResponse(BaseModel):
    session_id: int
    mode: str
    message: str
