"""Upscale endpoints: anonymous guest trial and credit-metered processing."""

from fastapi import APIRouter, Depends, Request

from imagegate.core.config import settings
from imagegate.core.dependencies import (
    Identity,
    get_admission,
    get_client_ip,
    get_identity,
    get_orchestrator,
)
from imagegate.core.rate_limit import limiter, user_or_ip_key
from imagegate.gateway.admission import AdmissionController
from imagegate.schemas.upscale import (
    GuestUpscaleRequest,
    GuestUpscaleResponse,
    GuestUsageResponse,
    ProcessingInfo,
    UpscaleRequest,
    UpscaleResponse,
)
from imagegate.services.orchestrator import RequestOrchestrator

router = APIRouter(prefix="/upscale", tags=["upscale"])


@router.post("/guest", response_model=GuestUpscaleResponse)
async def guest_upscale(
    body: GuestUpscaleRequest,
    client_ip: str = Depends(get_client_ip),
    orchestrator: RequestOrchestrator = Depends(get_orchestrator),
):
    """Free trial upscale for visitors without an account. No credits involved."""
    outcome = await orchestrator.run_guest(body.image_data, body.mime_type, client_ip, body.visitor_id)
    return GuestUpscaleResponse(
        image_url=outcome.result.output_ref,
        expires_at=outcome.result.expires_at_ms,
        mime_type=outcome.result.mime_type,
        processing=ProcessingInfo(
            model_used=outcome.model_id,
            scale=outcome.scale,
            processing_time_ms=outcome.processing_time_ms,
        ),
    )


@router.get("/guest/usage", response_model=GuestUsageResponse)
async def guest_usage(admission: AdmissionController = Depends(get_admission)):
    """Today's global guest usage against the daily cap."""
    return GuestUsageResponse(**await admission.global_usage())


@router.post("", response_model=UpscaleResponse)
@limiter.limit(settings.upscale_rate_limit, key_func=user_or_ip_key)
async def upscale(
    request: Request,
    body: UpscaleRequest,
    identity: Identity = Depends(get_identity),
    orchestrator: RequestOrchestrator = Depends(get_orchestrator),
):
    outcome = await orchestrator.run_authenticated(
        identity.user_id,
        identity.tier,
        body.image_data,
        body.mime_type,
        body.config.to_config(),
    )
    return UpscaleResponse(
        image_data=outcome.result.output_ref,
        mime_type=outcome.result.mime_type,
        expires_at=outcome.result.expires_at_ms,
        credits_remaining=outcome.credits_remaining,
    )
