"""Proxy orchestrator - one metered outbound call per request

Lifecycle: validate target -> admission check -> resolve key -> forward ->
estimate -> commit -> respond. Nothing touches the ledger before a response
is in hand, and a failed or timed-out call is never charged.
"""
import json
import logging
import time
from dataclasses import dataclass
from typing import Any, Dict, Optional

import httpx
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from tokenguard.core.config import settings as default_settings
from tokenguard.core.errors import (
    ForbiddenTargetError, QuotaExceededError, UpstreamUnavailableError
)
from tokenguard.core.metrics import (
    proxy_requests_counter, upstream_latency_histogram, commit_anomalies_counter
)
from tokenguard.schemas.proxy import ProxyRequest, UsageSummary
from tokenguard.services.allowlist import ensure_target_allowed
from tokenguard.services.api_key_service import resolve_api_key_for_use
from tokenguard.services.key_vault import KeyVault
from tokenguard.services.quota_service import QuotaLedger, CommitResult
from tokenguard.services.usage_estimator import (
    estimate_tokens, estimate_cost, extract_reported_tokens
)

logger = logging.getLogger(__name__)
proxy_logger = logging.getLogger("proxy")
usage_logger = logging.getLogger("usage")

# Set by the HTTP client for the outbound request
_STRIPPED_HEADERS = {"host", "content-length", "transfer-encoding", "connection"}


@dataclass
class ProxyResult:
    status_code: int
    payload: Dict[str, Any]


def serialize_body(body: Any) -> str:
    """Compact JSON text of the request body, the basis of input estimation"""
    return json.dumps({} if body is None else body, separators=(",", ":"), ensure_ascii=False)


def parse_upstream_body(text: str) -> Any:
    try:
        return json.loads(text)
    except ValueError:
        return {"raw": text}


def model_from_body(body: Any) -> Optional[str]:
    if isinstance(body, dict) and isinstance(body.get("model"), str):
        return body["model"]
    return None


class ProxyService:
    def __init__(
        self,
        db: Session,
        ledger: QuotaLedger,
        vault: KeyVault,
        http_client: httpx.AsyncClient,
        settings=default_settings
    ):
        self.db = db
        self.ledger = ledger
        self.vault = vault
        self.http_client = http_client
        self.settings = settings

    def _outbound_headers(self, request: ProxyRequest, api_key: Optional[str]) -> httpx.Headers:
        headers = httpx.Headers({"Content-Type": "application/json"})
        headers.update({
            name: value for name, value in (request.headers or {}).items()
            if name.lower() not in _STRIPPED_HEADERS
        })
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"
        return headers

    async def forward(self, user_id: int, request: ProxyRequest) -> ProxyResult:
        """Run one proxied call for an authenticated user

        Raises:
            ForbiddenTargetError: Target rejected by the allowlist guard (403)
            QuotaExceededError: Admission control refused the call (429)
            KeyResolutionError / KeyDecryptionError: apiKeyId unusable (400 / 500)
            UpstreamUnavailableError: Timeout (504) or transport failure (502)
        """
        try:
            hostname = ensure_target_allowed(request.target_url)
        except ForbiddenTargetError:
            proxy_requests_counter.labels(outcome="forbidden").inc()
            raise

        input_tokens = estimate_tokens(serialize_body(request.body))
        verdict = self.ledger.check(user_id, input_tokens)
        if not verdict.allowed:
            proxy_requests_counter.labels(outcome="quota_rejected").inc()
            proxy_logger.info(f"Request from user {user_id} blocked: {verdict.reason}")
            raise QuotaExceededError(
                verdict.reason, verdict.percent_used, verdict.limit, verdict.current_usage
            )

        api_key = None
        if request.api_key_id:
            api_key = resolve_api_key_for_use(user_id, str(request.api_key_id), self.db, self.vault)

        proxy_logger.info(f"Proxying {request.method} for user {user_id} to {hostname}")
        started = time.monotonic()
        try:
            response = await self.http_client.request(
                request.method,
                request.target_url,
                headers=self._outbound_headers(request, api_key),
                content=json.dumps(request.body) if request.body is not None else None,
                timeout=self.settings.PROXY_TIMEOUT_SECONDS,
            )
        except httpx.TimeoutException:
            proxy_requests_counter.labels(outcome="upstream_timeout").inc()
            proxy_logger.warning(
                f"Upstream {hostname} timed out after {self.settings.PROXY_TIMEOUT_SECONDS}s"
            )
            raise UpstreamUnavailableError("Upstream provider timed out", status_code=504)
        except httpx.HTTPError as e:
            proxy_requests_counter.labels(outcome="upstream_error").inc()
            proxy_logger.warning(f"Upstream {hostname} unreachable: {type(e).__name__}")
            raise UpstreamUnavailableError()

        duration = time.monotonic() - started
        upstream_latency_histogram.labels(host=hostname).observe(duration)
        response_text = response.text
        proxy_logger.info(
            f"Upstream {hostname} responded in {duration * 1000:.0f}ms with status {response.status_code}"
        )

        data = parse_upstream_body(response_text)
        total_tokens = input_tokens + estimate_tokens(response_text)
        if self.settings.PREFER_PROVIDER_USAGE:
            reported = extract_reported_tokens(data)
            if reported is not None:
                total_tokens = reported

        model = model_from_body(request.body)
        cost = estimate_cost(total_tokens, model)

        commit = self._commit(user_id, total_tokens, cost, model, request)

        proxy_requests_counter.labels(outcome="forwarded").inc()
        usage = UsageSummary(
            tokens_used=total_tokens,
            estimated_cost=cost,
            percent_used=commit.percent_used,
            should_warn=commit.should_warn,
            recorded=commit.success,
        )
        return ProxyResult(
            status_code=response.status_code,
            payload={"data": data, "usage": usage.model_dump(by_alias=True)},
        )

    def _commit(
        self,
        user_id: int,
        total_tokens: int,
        cost: float,
        model: Optional[str],
        request: ProxyRequest
    ) -> CommitResult:
        """Commit usage for a call that already happened; refusals become anomalies"""
        try:
            result = self.ledger.commit(
                user_id,
                total_tokens,
                cost,
                model=model or "unknown",
                endpoint=request.target_url,
                api_key_id=str(request.api_key_id) if request.api_key_id else None,
            )
        except SQLAlchemyError:
            commit_anomalies_counter.inc()
            usage_logger.error(
                f"Usage commit failed for user {user_id} after upstream call ({total_tokens} tokens)",
                exc_info=True
            )
            return CommitResult(success=False)

        if result.blocked:
            commit_anomalies_counter.inc()
            usage_logger.warning(
                f"Usage commit refused for user {user_id} after upstream call: "
                f"{result.reason} ({total_tokens} tokens unrecorded)"
            )
        return result
