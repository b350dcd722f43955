"""Shared FastAPI dependencies for metering routes"""
import httpx
from fastapi import Depends, Request
from sqlalchemy.orm import Session

from tokenguard.db.session import get_db
from tokenguard.services.key_vault import KeyVault
from tokenguard.services.notification_service import enqueue_usage_alert
from tokenguard.services.quota_service import AlertDispatcher, QuotaLedger


def get_alert_dispatcher() -> AlertDispatcher:
    return enqueue_usage_alert


def get_quota_ledger(
    db: Session = Depends(get_db),
    alert_dispatcher: AlertDispatcher = Depends(get_alert_dispatcher)
) -> QuotaLedger:
    return QuotaLedger(db, alert_dispatcher=alert_dispatcher)


def get_key_vault(request: Request) -> KeyVault:
    """Vault built at startup (lifespan); constructed lazily otherwise"""
    vault = getattr(request.app.state, "key_vault", None)
    if vault is None:
        vault = KeyVault()
        request.app.state.key_vault = vault
    return vault


def get_http_client(request: Request) -> httpx.AsyncClient:
    return request.app.state.http_client
