"""Caller-facing endpoints: chat, models, credentials and usage."""

from fastapi import APIRouter, Depends, HTTPException, Request, status

from gateway.context import GatewayContext
from gateway.errors import ErrorKind
from gateway.orchestrator import ChatFailure
from gateway.schemas import (
    ChatMessageRequest,
    ChatMessageResponse,
    ConnectionStatus,
    CredentialStatus,
    CredentialUpdate,
    DailyLimitUpdate,
    ErrorResponse,
    ModelsResponse,
    UsageStatistics,
    ValidationRequest,
    ValidationResponse,
)

router = APIRouter(tags=["gateway"])

ERROR_STATUS_CODES = {
    ErrorKind.INVALID_CREDENTIAL: status.HTTP_401_UNAUTHORIZED,
    ErrorKind.QUOTA_EXCEEDED: status.HTTP_429_TOO_MANY_REQUESTS,
    ErrorKind.RATE_LIMITED: status.HTTP_429_TOO_MANY_REQUESTS,
    ErrorKind.TIMEOUT: status.HTTP_504_GATEWAY_TIMEOUT,
    ErrorKind.NETWORK_UNREACHABLE: status.HTTP_502_BAD_GATEWAY,
    ErrorKind.PROTOCOL_ERROR: status.HTTP_502_BAD_GATEWAY,
    ErrorKind.ENDPOINT_MISCONFIGURED: status.HTTP_502_BAD_GATEWAY,
    ErrorKind.UPSTREAM_ERROR: status.HTTP_502_BAD_GATEWAY,
    ErrorKind.UNKNOWN_PROVIDER_FAMILY: status.HTTP_400_BAD_REQUEST,
}


def get_gateway(request: Request) -> GatewayContext:
    """Dependency returning the application's gateway context."""
    return request.app.state.gateway


def _usage_statistics(gateway: GatewayContext) -> UsageStatistics:
    return UsageStatistics(
        **gateway.get_usage_statistics(),
        approaching_limit=gateway.governor.is_approaching_limit(),
    )


@router.post("/chat", response_model=ChatMessageResponse)
async def send_message(
    message: ChatMessageRequest,
    gateway: GatewayContext = Depends(get_gateway),
):
    """Send a message to the configured provider."""
    result = await gateway.send_message(message.text)

    if isinstance(result, ChatFailure):
        raise HTTPException(
            status_code=ERROR_STATUS_CODES[result.kind],
            detail=ErrorResponse(
                kind=result.kind.value,
                detail=result.detail,
                message=result.message,
            ).model_dump(),
        )

    return ChatMessageResponse(
        text=result.text,
        actual_tokens=result.actual_tokens,
        model=result.model,
        provider=result.provider,
        over_budget=result.over_budget,
    )


@router.get("/models", response_model=ModelsResponse)
async def get_models(gateway: GatewayContext = Depends(get_gateway)):
    """Get the active model and the models the provider offers."""
    return ModelsResponse(
        current_model=await gateway.get_current_model(),
        available_models=await gateway.get_available_models(),
    )


@router.get("/connection", response_model=ConnectionStatus)
async def check_connection(gateway: GatewayContext = Depends(get_gateway)):
    """Cheap reachability check of the active provider."""
    return ConnectionStatus(
        provider=gateway.config.id,
        connected=await gateway.validate_connection(),
    )


@router.get("/credentials", response_model=CredentialStatus)
async def get_credentials(gateway: GatewayContext = Depends(get_gateway)):
    """Get the masked secret of the active provider."""
    return CredentialStatus(
        provider_id=gateway.config.id,
        masked_secret=gateway.masked_secret(),
    )


@router.put("/credentials", response_model=CredentialStatus)
async def update_credentials(
    update: CredentialUpdate,
    gateway: GatewayContext = Depends(get_gateway),
):
    """Store the active provider's secret."""
    return CredentialStatus(
        provider_id=gateway.config.id,
        masked_secret=gateway.set_secret(update.secret),
    )


@router.post("/credentials/validate", response_model=ValidationResponse)
async def validate_credentials(
    request: ValidationRequest,
    gateway: GatewayContext = Depends(get_gateway),
):
    """Validate a secret, or the stored one, against the active provider."""
    result = await gateway.validate_credentials(request.secret)
    return ValidationResponse(ok=result.ok, message=result.message)


@router.get("/usage", response_model=UsageStatistics)
async def get_usage(gateway: GatewayContext = Depends(get_gateway)):
    """Get today's token usage."""
    return _usage_statistics(gateway)


@router.put("/usage/limit", response_model=UsageStatistics)
async def update_daily_limit(
    update: DailyLimitUpdate,
    gateway: GatewayContext = Depends(get_gateway),
):
    """Change the daily token limit."""
    gateway.set_daily_limit(update.daily_limit)
    await gateway.persist_usage()
    return _usage_statistics(gateway)
