"""Usage API routes

``check``, ``record`` and ``alert`` are service-to-service endpoints guarded
by the internal token; ``current`` and ``logs`` serve the signed-in user.
"""
from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from tokenguard.api.deps import get_quota_ledger
from tokenguard.core.security import require_auth, require_internal
from tokenguard.db.session import get_db
from tokenguard.schemas.usage import UsageAlertRequest, UsageCheckRequest, UsageRecordRequest
from tokenguard.services.notification_service import UsageAlertNotifier
from tokenguard.services.quota_service import QuotaLedger
from tokenguard.services.usage_service import get_usage_logs, get_usage_summary

router = APIRouter(prefix="/api/usage", tags=["usage"])


@router.post("/check", dependencies=[Depends(require_internal)])
def check_usage(request_data: UsageCheckRequest, ledger: QuotaLedger = Depends(get_quota_ledger)):
    """Would a call of tokensToUse tokens be admitted?"""
    result = ledger.check(request_data.user_id, request_data.tokens_to_use)
    response = {
        "allowed": result.allowed,
        "currentUsage": result.current_usage,
        "limit": result.limit,
        "percentUsed": result.percent_used,
        "shouldWarn": result.should_warn,
    }
    if result.reason:
        response["reason"] = result.reason
    return response


@router.post("/record", dependencies=[Depends(require_internal)])
def record_usage(request_data: UsageRecordRequest, ledger: QuotaLedger = Depends(get_quota_ledger)):
    """Commit usage for a completed call"""
    result = ledger.commit(
        request_data.user_id,
        request_data.tokens_used,
        request_data.cost_usd,
        model=request_data.model,
        endpoint=request_data.endpoint,
        api_key_id=str(request_data.api_key_id) if request_data.api_key_id else None,
    )
    if result.blocked:
        return JSONResponse(
            status_code=403,
            content={"success": False, "error": result.reason, "blocked": True}
        )
    return {
        "success": True,
        "shouldWarn": result.should_warn,
        "percentUsed": result.percent_used,
    }


@router.post("/alert", dependencies=[Depends(require_internal)])
def send_usage_alert(request_data: UsageAlertRequest, db: Session = Depends(get_db)):
    """Deliver a threshold alert synchronously (idempotent per month)"""
    sent = UsageAlertNotifier(db).notify(
        request_data.user_id,
        request_data.current_tokens,
        request_data.max_tokens,
        request_data.threshold,
    )
    return {"success": True, "alreadySent": not sent}


@router.get("/current")
def current_usage(user_id: int = Depends(require_auth), db: Session = Depends(get_db)):
    """Current month's usage summary"""
    return get_usage_summary(user_id, db)


@router.get("/logs")
def usage_logs(
    limit: int = Query(50, ge=1, le=500),
    user_id: int = Depends(require_auth),
    db: Session = Depends(get_db)
):
    """Usage history, newest first"""
    return {"logs": get_usage_logs(user_id, limit, db)}
