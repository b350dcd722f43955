"""Proxy API routes"""
import httpx
from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from tokenguard.api.deps import get_http_client, get_key_vault, get_quota_ledger
from tokenguard.core.security import require_auth
from tokenguard.db.session import get_db
from tokenguard.schemas.proxy import ProxyRequest
from tokenguard.services.key_vault import KeyVault
from tokenguard.services.proxy_service import ProxyService
from tokenguard.services.quota_service import QuotaLedger

router = APIRouter(prefix="/api", tags=["proxy"])


@router.post("/proxy")
async def proxy_request(
    request_data: ProxyRequest,
    user_id: int = Depends(require_auth),
    db: Session = Depends(get_db),
    ledger: QuotaLedger = Depends(get_quota_ledger),
    vault: KeyVault = Depends(get_key_vault),
    http_client: httpx.AsyncClient = Depends(get_http_client)
):
    """Forward a metered call to an allowlisted AI provider"""
    service = ProxyService(db, ledger, vault, http_client)
    result = await service.forward(user_id, request_data)
    return JSONResponse(status_code=result.status_code, content=result.payload)
