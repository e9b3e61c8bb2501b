"""Pydantic schemas for API request/response models."""

from pydantic import BaseModel, Field, field_validator
from typing import Optional, List


# ============================================================================
# Chat Schemas
# ============================================================================

class ChatMessageRequest(BaseModel):
    """Schema for sending a chat message."""
    text: str = Field(..., min_length=1, max_length=50000)


class ChatMessageResponse(BaseModel):
    """Schema for a successful chat reply."""
    text: str
    actual_tokens: int
    model: str
    provider: str
    over_budget: bool = False


class ErrorResponse(BaseModel):
    """Classified error detail."""
    kind: str
    detail: str
    message: str


# ============================================================================
# Provider Schemas
# ============================================================================

class ModelsResponse(BaseModel):
    """Active and available models of the configured provider."""
    current_model: str
    available_models: List[str]


class ConnectionStatus(BaseModel):
    """Result of the cheap reachability probe."""
    provider: str
    connected: bool


class CredentialUpdate(BaseModel):
    """Schema for storing the active provider's secret."""
    secret: str

    @field_validator('secret')
    @classmethod
    def strip_secret(cls, v: str) -> str:
        return v.strip()


class CredentialStatus(BaseModel):
    """Masked view of the stored secret."""
    provider_id: str
    masked_secret: str


class ValidationRequest(BaseModel):
    """Optional secret to validate instead of the stored one."""
    secret: Optional[str] = None


class ValidationResponse(BaseModel):
    """Credential validation verdict."""
    ok: bool
    message: str


# ============================================================================
# Usage Schemas
# ============================================================================

class UsageStatistics(BaseModel):
    """Token usage for the current day."""
    tokens_used_today: int = Field(..., ge=0)
    daily_limit: int = Field(..., gt=0)
    percent_used: float
    total_requests: int
    failed_requests: int
    last_reset_date: str
    approaching_limit: bool


class DailyLimitUpdate(BaseModel):
    """Schema for changing the daily token limit."""
    daily_limit: int = Field(..., gt=0)
