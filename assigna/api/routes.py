from __future__ import annotations

import asyncio
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Path, Query

from assigna.api.schemas import (
    Envelope,
    ExternalLoginRequest,
    ForgotPasswordRequest,
    LoginRequest,
    MemberResponse,
    RegisterRequest,
    ResetPasswordRequest,
    TaskCountResponse,
    TaskResponse,
    TokenPairResponse,
    TokenRefreshRequest,
)
from assigna.logging import get_logger
from assigna.service.runtime import get_runtime
from assigna.service.sessions import TokenPair
from assigna.service.tokens import Claims

logger = get_logger(__name__)

router = APIRouter(prefix="/v1")


def _http_error(
    code: str, message: str, status_code: int, details: Optional[dict | str] = None
) -> HTTPException:
    payload: dict[str, object] = {
        "success": False,
        "error": {"code": code, "message": message},
    }
    if details is not None:
        payload["error"]["details"] = details  # type: ignore[index]
    return HTTPException(status_code=status_code, detail=payload)


def _token_envelope(pair: TokenPair) -> Envelope:
    data = TokenPairResponse(token=pair.token, refresh_token=pair.refresh_token)
    return Envelope(data=data.model_dump(by_alias=True))


async def get_claims(authorization: Optional[str] = Header(None)) -> Claims:
    runtime = get_runtime()
    return runtime.sessions.authenticate(authorization)


async def get_lead_claims(claims: Claims = Depends(get_claims)) -> Claims:
    if not claims.is_lead:
        raise _http_error("forbidden", "team lead access required", status_code=403)
    return claims


# account endpoints


@router.post("/user/register", response_model=Envelope, status_code=201, tags=["user"])
async def register(body: RegisterRequest):
    """Create a password account and return its first token pair.

    Raises:
        400: If the role is not ``team-lead`` or ``team-member``
        409: If the email or username is already registered
    """
    runtime = get_runtime()
    _, pair = runtime.sessions.register(
        body.username,
        body.first_name,
        body.email,
        body.password,
        body.role,
    )
    return _token_envelope(pair)


@router.post("/user/login", response_model=Envelope, tags=["user"])
async def login(body: LoginRequest):
    runtime = get_runtime()
    pair = runtime.sessions.login(body.username, body.password)
    return _token_envelope(pair)


@router.post("/user/refresh-token", response_model=Envelope, tags=["user"])
async def refresh_token(body: TokenRefreshRequest):
    """Rotate both tokens once the bearer token has expired.

    Raises:
        401: If the refresh token itself has expired
        404: If no account holds the refresh token
        409: If the bearer token is still valid
    """
    runtime = get_runtime()
    pair = runtime.sessions.refresh(body.refresh_token)
    return _token_envelope(pair)


@router.post("/user/forgot-password", response_model=Envelope, tags=["user"])
async def forgot_password(body: ForgotPasswordRequest):
    runtime = get_runtime()
    # blocking SMTP stays off the event loop
    await asyncio.to_thread(runtime.password_reset.request_reset, body.email)
    return Envelope(message="Reset link sent to your email.")


@router.post("/user/reset-password", response_model=Envelope, tags=["user"])
async def reset_password(body: ResetPasswordRequest):
    runtime = get_runtime()
    await asyncio.to_thread(
        runtime.password_reset.complete_reset, body.reset_token, body.password
    )
    return Envelope(message="Password reset successfully.")


@router.post("/user/external-login", response_model=Envelope, tags=["user"])
async def external_login(body: ExternalLoginRequest):
    """Sign in with a Google access token, provisioning an account on first use.

    ``role`` is only consulted when the email has no account yet.
    """
    runtime = get_runtime()
    pair = await runtime.external.external_login(
        body.provider, body.access_token, body.role
    )
    return _token_envelope(pair)


@router.get("/user/members", response_model=Envelope, tags=["user"])
async def list_members(claims: Claims = Depends(get_lead_claims)):
    runtime = get_runtime()
    members = [
        MemberResponse(
            id=user.id,
            username=user.username,
            display_name=user.display_name,
            email=user.email,
            picture=user.picture,
        )
        for user in runtime.tasks.team_members()
    ]
    return Envelope(data=members)


# task endpoints


@router.get("/tasks", response_model=Envelope, tags=["tasks"])
async def list_tasks(
    status: Optional[str] = Query(None, max_length=16),
    priority: Optional[str] = Query(None, max_length=16),
    claims: Claims = Depends(get_claims),
):
    """List the tasks visible to the caller, optionally filtered.

    ``status`` is ``pending`` or ``complete``; ``priority`` is ``high``,
    ``medium`` or ``low``.
    """
    runtime = get_runtime()
    tasks = runtime.tasks.list_tasks(claims, status=status, priority=priority)
    return Envelope(data=[TaskResponse.model_validate(task) for task in tasks])


@router.get("/tasks/count", response_model=Envelope, tags=["tasks"])
async def task_counts(claims: Claims = Depends(get_claims)):
    runtime = get_runtime()
    return Envelope(data=TaskCountResponse(**runtime.tasks.task_counts(claims)))


@router.get("/tasks/{task_id}", response_model=Envelope, tags=["tasks"])
async def task_info(
    task_id: int = Path(..., ge=1),
    claims: Claims = Depends(get_claims),
):
    runtime = get_runtime()
    task = runtime.tasks.task_info(claims, task_id)
    return Envelope(data=TaskResponse.model_validate(task))
