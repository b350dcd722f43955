"""API key service - stored provider credentials"""
from sqlalchemy.orm import Session
from sqlalchemy.exc import SQLAlchemyError
from datetime import datetime, timezone
from typing import Optional
import logging

from tokenguard.core.errors import (
    KeyDecryptionError, KeyLimitError, KeyResolutionError, NotFoundError
)
from tokenguard.models.api_key import ApiKey
from tokenguard.services.key_vault import KeyVault, DecryptionError, key_hint
from tokenguard.services.subscription_service import (
    DEFAULT_PLAN, DEFAULT_PLAN_LIMITS, get_plan_limit, get_subscription
)

logger = logging.getLogger(__name__)
security_logger = logging.getLogger("security")


def get_max_api_keys(user_id: int, db: Session) -> int:
    """Number of stored keys the user's plan allows"""
    subscription = get_subscription(user_id, db)
    plan = subscription.plan if subscription else DEFAULT_PLAN
    plan_limit = get_plan_limit(plan, db)
    if plan_limit and plan_limit.max_api_keys is not None:
        return plan_limit.max_api_keys
    defaults = DEFAULT_PLAN_LIMITS.get(plan, DEFAULT_PLAN_LIMITS[DEFAULT_PLAN])
    return defaults["max_api_keys"]


def create_api_key(
    user_id: int,
    name: str,
    plaintext_key: str,
    db: Session,
    vault: KeyVault,
    provider: str = "openai"
) -> ApiKey:
    """Encrypt and store a provider key for the user

    Raises:
        KeyLimitError: The plan's key count is already reached
        VaultConfigurationError: No master key configured
    """
    max_keys = get_max_api_keys(user_id, db)
    count = db.query(ApiKey).filter(ApiKey.user_id == user_id).count()
    if count >= max_keys:
        logger.info(f"User {user_id} hit API key limit ({count}/{max_keys})")
        raise KeyLimitError()

    api_key = ApiKey(
        user_id=user_id,
        name=name,
        provider=provider or "openai",
        encrypted_key=vault.encrypt(plaintext_key),
        key_hint=key_hint(plaintext_key),
    )
    db.add(api_key)
    db.commit()
    db.refresh(api_key)

    logger.info(f"API key {api_key.id} saved for user {user_id} (provider={api_key.provider})")
    return api_key


def _touch_last_used(api_key: ApiKey, db: Session) -> None:
    """Best-effort last_used_at refresh; failures never block key use"""
    try:
        api_key.last_used_at = datetime.now(timezone.utc)
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.warning(f"Failed to update last_used_at for API key {api_key.id}: {e}")


def _decrypt(api_key: ApiKey, vault: KeyVault) -> str:
    try:
        return vault.decrypt(api_key.encrypted_key)
    except DecryptionError:
        security_logger.error(
            f"Stored API key {api_key.id} for user {api_key.user_id} failed to decrypt"
        )
        raise KeyDecryptionError()


def resolve_api_key_for_use(user_id: int, key_id: str, db: Session, vault: KeyVault) -> str:
    """Plaintext of an active key owned by the user, for an outbound call

    Raises:
        KeyResolutionError: Key missing, inactive or owned by someone else
        KeyDecryptionError: Stored record failed to decrypt
    """
    api_key = db.query(ApiKey).filter(
        ApiKey.id == str(key_id),
        ApiKey.user_id == user_id,
        ApiKey.is_active.is_(True)
    ).first()
    if not api_key:
        logger.info(f"User {user_id} referenced unusable API key {key_id}")
        raise KeyResolutionError()

    plaintext = _decrypt(api_key, vault)
    _touch_last_used(api_key, db)
    return plaintext


def decrypt_api_key_for_user(user_id: int, key_id: str, db: Session, vault: KeyVault) -> str:
    """Plaintext of one of the user's stored keys (reveal in the UI)

    Raises:
        NotFoundError: No such key for this user
        KeyDecryptionError: Stored record failed to decrypt
    """
    api_key = get_user_api_key(user_id, key_id, db)
    if not api_key:
        raise NotFoundError("API key not found")

    plaintext = _decrypt(api_key, vault)
    _touch_last_used(api_key, db)
    return plaintext


def get_user_api_key(user_id: int, key_id: str, db: Session) -> Optional[ApiKey]:
    return db.query(ApiKey).filter(ApiKey.id == str(key_id), ApiKey.user_id == user_id).first()
