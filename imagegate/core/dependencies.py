from dataclasses import dataclass

from fastapi import Header, Request

from imagegate.core.exceptions import UnauthorizedError
from imagegate.gateway.admission import AdmissionController
from imagegate.gateway.model_registry import ModelRegistry
from imagegate.gateway.types import Tier
from imagegate.services.credit_ledger import CreditLedger
from imagegate.services.orchestrator import RequestOrchestrator


@dataclass(frozen=True)
class Identity:
    user_id: str
    tier: Tier


async def get_identity(
    x_user_id: str | None = Header(None, description="Set by the upstream auth layer"),
    x_subscription_tier: str | None = Header(None),
) -> Identity:
    if not x_user_id or not x_user_id.strip():
        raise UnauthorizedError()
    return Identity(user_id=x_user_id.strip(), tier=Tier.parse(x_subscription_tier))


def get_client_ip(request: Request) -> str:
    """Client IP: Cloudflare header, then first X-Forwarded-For hop, then the peer."""
    cf_ip = request.headers.get("cf-connecting-ip")
    if cf_ip:
        return cf_ip.strip()
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    return request.client.host if request.client else "unknown"


# Services are built once in the app lifespan and kept on app.state


def get_orchestrator(request: Request) -> RequestOrchestrator:
    return request.app.state.orchestrator


def get_ledger(request: Request) -> CreditLedger:
    return request.app.state.ledger


def get_admission(request: Request) -> AdmissionController:
    return request.app.state.admission


def get_registry(request: Request) -> ModelRegistry:
    return request.app.state.registry
