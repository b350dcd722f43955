"""API key routes (store and reveal provider keys)"""
from fastapi import APIRouter, Body, Depends
from sqlalchemy.orm import Session

from tokenguard.api.deps import get_key_vault
from tokenguard.core.security import require_auth
from tokenguard.db.session import get_db
from tokenguard.schemas.keys import EncryptKeyRequest, KeyActionRequest
from tokenguard.services.api_key_service import create_api_key, decrypt_api_key_for_user
from tokenguard.services.key_vault import KeyVault

router = APIRouter(prefix="/api/keys", tags=["keys"])


@router.post("")
def key_action(
    request_data: KeyActionRequest = Body(..., discriminator="action"),
    user_id: int = Depends(require_auth),
    db: Session = Depends(get_db),
    vault: KeyVault = Depends(get_key_vault)
):
    """Encrypt and store a new key, or decrypt one of the caller's keys"""
    if isinstance(request_data, EncryptKeyRequest):
        api_key = create_api_key(
            user_id,
            request_data.name,
            request_data.api_key,
            db,
            vault,
            provider=request_data.provider
        )
        return {
            "success": True,
            "key": {
                "id": api_key.id,
                "name": api_key.name,
                "provider": api_key.provider,
                "key_hint": api_key.key_hint,
            }
        }

    return {"apiKey": decrypt_api_key_for_user(user_id, str(request_data.key_id), db, vault)}
