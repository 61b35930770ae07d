from __future__ import annotations

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from .. import repository
from ..orchestrator import GenerationOrchestrator
from ..providers import ADAPTERS
from ..schemas import (
    FanOutRequest,
    FanOutResult,
    GenerationSessionDetail,
    GenerationSessionRead,
    SubmissionResult,
    SubmitRequest,
    TaskStatusResult,
)
from .dependencies import (
    get_current_user_id,
    get_db_session,
    get_orchestrator,
    get_provider_api_key,
)
from .schemas import (
    ProviderRead,
    StatusCheckRequest,
    ValidateKeyRequest,
    ValidateKeyResponse,
)

router = APIRouter(prefix="/api/v1", tags=["generation"])
logger = structlog.get_logger(__name__)


@router.get("/providers", response_model=list[ProviderRead])
async def list_providers() -> list[ProviderRead]:
    return [
        ProviderRead(
            id=provider,
            name=adapter.info.name,
            description=adapter.info.description,
            pricing=adapter.info.pricing,
        )
        for provider, adapter in ADAPTERS.items()
    ]


@router.post("/providers/validate-key", response_model=ValidateKeyResponse)
async def validate_provider_key(
    payload: ValidateKeyRequest,
    orchestrator: GenerationOrchestrator = Depends(get_orchestrator),
) -> ValidateKeyResponse:
    valid, error = await orchestrator.provider_client.validate_api_key(
        payload.api_key.strip()
    )
    return ValidateKeyResponse(valid=valid, error=error)


@router.post(
    "/generations",
    status_code=status.HTTP_202_ACCEPTED,
    response_model=SubmissionResult,
    summary="Submit one or more images to a single provider",
)
async def submit_generation(
    payload: SubmitRequest,
    user_id: int = Depends(get_current_user_id),
    api_key: str | None = Depends(get_provider_api_key),
    orchestrator: GenerationOrchestrator = Depends(get_orchestrator),
) -> SubmissionResult:
    result = await orchestrator.submit(user_id, payload, api_key=api_key)
    if not result.tasks:
        logger.warning(
            "generation_submission_rejected",
            user_id=user_id,
            provider=payload.provider.value,
            session_id=result.session_id,
        )
    return result


@router.post(
    "/generations/fan-out",
    status_code=status.HTTP_202_ACCEPTED,
    response_model=FanOutResult,
    summary="Submit the same prompt to several providers",
)
async def fan_out_generation(
    payload: FanOutRequest,
    user_id: int = Depends(get_current_user_id),
    api_key: str | None = Depends(get_provider_api_key),
    orchestrator: GenerationOrchestrator = Depends(get_orchestrator),
) -> FanOutResult:
    return await orchestrator.fan_out(user_id, payload, api_key=api_key)


@router.post("/generations/status", response_model=list[TaskStatusResult])
async def check_generation_status(
    payload: StatusCheckRequest,
    user_id: int = Depends(get_current_user_id),
    api_key: str | None = Depends(get_provider_api_key),
    orchestrator: GenerationOrchestrator = Depends(get_orchestrator),
) -> list[TaskStatusResult]:
    return await orchestrator.check_status(
        payload.task_ids, payload.provider, user_id=user_id, api_key=api_key
    )


@router.get("/sessions", response_model=list[GenerationSessionRead])
async def list_sessions(
    offset: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=100),
    user_id: int = Depends(get_current_user_id),
    session: AsyncSession = Depends(get_db_session),
) -> list[GenerationSessionRead]:
    records = await repository.list_sessions_for_user(
        session, user_id, offset=offset, limit=limit
    )
    return [GenerationSessionRead.model_validate(record) for record in records]


@router.get("/sessions/{session_id}", response_model=GenerationSessionDetail)
async def get_session_detail(
    session_id: int,
    user_id: int = Depends(get_current_user_id),
    session: AsyncSession = Depends(get_db_session),
) -> GenerationSessionDetail:
    record = await repository.get_session(session, session_id, user_id=user_id)
    if record is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail="Session not found"
        )
    return GenerationSessionDetail.model_validate(record)
