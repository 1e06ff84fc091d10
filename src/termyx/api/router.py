from __future__ import annotations

import logging
from typing import Any, Optional

from fastapi import APIRouter, Body, Depends, Request, status
from fastapi.responses import JSONResponse

from ..errors import UserNotFoundError, ValidationError
from ..models.api_models import DocumentRequest, FraudCheckRequest, FraudRecordRequest
from ..models.results import DenialCode
from ..services.rate_limiter import rate_limit_headers
from ..services.registry import Services
from .dependencies import (
    client_ip,
    client_key,
    enforce_rate_limit,
    get_current_user,
    get_current_user_id,
    get_services,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["gating"])


@router.get("/health")
async def health() -> dict[str, str]:
    return {"status": "ok"}


@router.post("/fraud-check")
async def fraud_check(
    request: Request,
    payload: FraudCheckRequest,
    services: Services = Depends(get_services),
) -> JSONResponse:
    if not payload.email:
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"error": "Email is required", "allowed": False},
        )

    ip_address = client_ip(request)
    enforce_rate_limit(
        services.rate_limiter.auth(client_key(request)),
        "Muitas tentativas. Tente novamente mais tarde.",
    )

    try:
        result = await services.fraud.check_signup_fraud_safely(
            email=payload.email,
            ip_address=ip_address,
            fingerprint_hash=payload.fingerprint_hash,
        )
    except ValidationError as exc:
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"error": str(exc), "allowed": False},
        )

    if not result.allowed:
        return JSONResponse(
            status_code=status.HTTP_403_FORBIDDEN,
            content={
                "allowed": False,
                "reason": result.reason,
                "code": result.code.value if result.code else None,
            },
        )
    return JSONResponse(content={"allowed": True})


@router.post("/fraud-record")
async def fraud_record(
    request: Request,
    payload: FraudRecordRequest,
    services: Services = Depends(get_services),
) -> JSONResponse:
    if not payload.user_id:
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"error": "userId is required"},
        )

    # Recording never fails the signup it accompanies
    try:
        await services.fraud.record_signup(
            user_id=payload.user_id,
            ip_address=client_ip(request),
            fingerprint_hash=payload.fingerprint_hash,
            user_agent=request.headers.get("user-agent"),
        )
    except Exception:
        logger.exception("Fraud record error")
    return JSONResponse(content={"success": True})


@router.get("/user/credits")
async def user_credits(
    page: int = 1,
    limit: int = 20,
    user_id: str = Depends(get_current_user_id),
    services: Services = Depends(get_services),
) -> JSONResponse:
    try:
        history = await services.credits.get_credit_history(user_id, page=page, limit=limit)
    except UserNotFoundError:
        return JSONResponse(
            status_code=status.HTTP_404_NOT_FOUND,
            content={"error": "Usuario nao encontrado"},
        )
    except Exception:
        logger.exception("Credits GET error for user %s", user_id)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"error": "Failed to fetch credits"},
        )

    return JSONResponse(
        content={
            "balance": history.balance,
            "stats": {
                "totalEarned": history.stats.total_earned,
                "totalSpent": history.stats.total_spent,
                "transactionCount": history.stats.transaction_count,
            },
            "transactions": [
                tx.model_dump(mode="json") for tx in history.transactions
            ],
            "pagination": {
                "page": history.pagination.page,
                "limit": history.pagination.limit,
                "totalCount": history.pagination.total_count,
                "totalPages": history.pagination.total_pages,
                "hasNextPage": history.pagination.has_next_page,
                "hasPrevPage": history.pagination.has_prev_page,
            },
        }
    )


@router.post("/credits/deduct", dependencies=[Depends(get_current_user)])
async def deduct_credit(
    payload: Optional[DocumentRequest] = Body(default=None),
    user_id: str = Depends(get_current_user_id),
    services: Services = Depends(get_services),
) -> JSONResponse:
    enforce_rate_limit(
        services.rate_limiter.strict(user_id),
        "Muitas requisicoes. Tente novamente mais tarde.",
    )
    document_id = payload.document_id if payload else None

    result = await services.credits.deduct_credit(user_id, document_id=document_id)
    if not result.success:
        if result.code is DenialCode.NO_CREDITS:
            return JSONResponse(
                status_code=status.HTTP_402_PAYMENT_REQUIRED,
                content={
                    "error": "Creditos insuficientes",
                    "code": DenialCode.NO_CREDITS.value,
                    "credits": 0,
                },
            )
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"error": "Erro ao deduzir credito"},
        )

    return JSONResponse(
        content={
            "success": True,
            "newBalance": result.new_balance,
            "previousBalance": result.previous_balance,
        }
    )


@router.get("/documents/validate-eligibility", dependencies=[Depends(get_current_user)])
async def validate_eligibility(
    user_id: str = Depends(get_current_user_id),
    services: Services = Depends(get_services),
) -> JSONResponse:
    check = await services.credits.check_credits(user_id)
    content: dict[str, Any] = {
        "canCreate": check.has_credits,
        "credits": check.credits,
        "plan": check.plan,
        "planName": check.plan_name,
    }
    if not check.has_credits:
        content["reason"] = DenialCode.NO_CREDITS.value
    return JSONResponse(content=content)


@router.post("/documents/authorize")
async def authorize_document(
    payload: Optional[DocumentRequest] = Body(default=None),
    user_id: str = Depends(get_current_user_id),
    services: Services = Depends(get_services),
) -> JSONResponse:
    rate = services.rate_limiter.pdf(user_id)
    enforce_rate_limit(
        rate, "Limite de geracao de PDFs excedido. Tente novamente mais tarde."
    )
    document_id = payload.document_id if payload else None

    try:
        result = await services.documents.authorize(user_id, document_id=document_id)
    except UserNotFoundError:
        return JSONResponse(
            status_code=status.HTTP_404_NOT_FOUND,
            content={"error": "Usuario nao encontrado"},
        )

    headers = rate_limit_headers(rate)
    content: dict[str, Any]
    if not result.allowed:
        if result.code is None:
            return JSONResponse(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                content={"error": result.reason},
                headers=headers,
            )
        content = {"error": result.reason, "code": result.code.value}
        if result.code is DenialCode.TRIAL_EXHAUSTED:
            content["trialLimit"] = services.trials.trial_limit
        return JSONResponse(
            status_code=status.HTTP_402_PAYMENT_REQUIRED,
            content=content,
            headers=headers,
        )

    content = {"success": True, "plan": result.plan}
    if result.trial is not None:
        content["trial"] = {
            "documentsUsed": result.trial.documents_used,
            "documentsRemaining": result.trial.documents_remaining,
            "limit": result.trial.limit,
            "exhausted": result.trial.exhausted,
        }
    if result.new_balance is not None:
        content["newBalance"] = result.new_balance
    return JSONResponse(content=content, headers=headers)
