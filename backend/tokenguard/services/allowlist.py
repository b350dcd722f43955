"""Outbound target validation for the proxy (SSRF guard)

Validation is purely lexical: the hostname is never resolved, so the check
stays synchronous and side-effect free. DNS rebinding after validation is an
accepted limitation.
"""
import ipaddress
import logging
from dataclasses import dataclass
from typing import Iterable, Optional
from urllib.parse import urlsplit

from tokenguard.core.config import settings
from tokenguard.core.errors import ForbiddenTargetError

security_logger = logging.getLogger("security")

ALLOWED_DOMAINS = (
    # OpenAI
    "api.openai.com",
    # Anthropic
    "api.anthropic.com",
    # Cohere
    "api.cohere.ai",
    "api.cohere.com",
    # Google
    "generativelanguage.googleapis.com",
    "aiplatform.googleapis.com",
    # Together AI
    "api.together.xyz",
    # Replicate
    "api.replicate.com",
    # Mistral
    "api.mistral.ai",
    # Groq
    "api.groq.com",
    # Perplexity
    "api.perplexity.ai",
    # Fireworks
    "api.fireworks.ai",
    # DeepInfra
    "api.deepinfra.com",
    # Anyscale
    "api.anyscale.com",
    # Hugging Face
    "api-inference.huggingface.co",
    "huggingface.co",
    # Azure OpenAI
    "openai.azure.com",
    # AWS Bedrock
    "bedrock-runtime.us-east-1.amazonaws.com",
    "bedrock-runtime.us-west-2.amazonaws.com",
    "bedrock-runtime.eu-west-1.amazonaws.com",
    # Stability AI
    "api.stability.ai",
    # AI21
    "api.ai21.com",
    # Voyage AI
    "api.voyageai.com",
    # Cerebras
    "api.cerebras.ai",
    # Lovable AI Gateway
    "ai.gateway.lovable.dev",
)

# Loopback and cloud metadata endpoints
BLOCKED_HOSTNAMES = frozenset({
    "169.254.169.254",
    "metadata.google.internal",
    "metadata.goog",
    "localhost",
    "0.0.0.0",
})

BLOCKED_NETWORKS = tuple(ipaddress.ip_network(net) for net in (
    "0.0.0.0/8",        # Current network
    "10.0.0.0/8",       # Private Class A
    "100.64.0.0/10",    # Carrier-grade NAT
    "127.0.0.0/8",      # Loopback
    "169.254.0.0/16",   # Link-local
    "172.16.0.0/12",    # Private Class B
    "192.168.0.0/16",   # Private Class C
    "::1/128",          # IPv6 loopback
    "fc00::/7",         # IPv6 unique local
    "fe80::/10",        # IPv6 link-local
))

REASON_INVALID_URL = "Invalid URL format"
REASON_SCHEME = "scheme not allowed"
REASON_HOSTNAME = "hostname not allowed"
REASON_ADDRESS = "address not allowed"
REASON_DOMAIN = "domain not allowed"


@dataclass(frozen=True)
class TargetValidation:
    allowed: bool
    reason: Optional[str] = None
    hostname: Optional[str] = None


def _is_blocked_address(hostname: str) -> Optional[bool]:
    """True/False for IP literals, None when the hostname is not an IP address"""
    try:
        address = ipaddress.ip_address(hostname)
    except ValueError:
        return None

    # ::ffff:10.0.0.1 must be judged as the IPv4 address it wraps
    if isinstance(address, ipaddress.IPv6Address) and address.ipv4_mapped:
        address = address.ipv4_mapped

    return any(address.version == net.version and address in net for net in BLOCKED_NETWORKS)


def is_allowed_domain(hostname: str, allowed_domains: Iterable[str] = ALLOWED_DOMAINS) -> bool:
    """Exact match or a subdomain of an allowed domain (dot boundary)"""
    return any(
        hostname == domain or hostname.endswith(f".{domain}")
        for domain in allowed_domains
    )


def validate_target_url(target_url: str) -> TargetValidation:
    """Validate an outbound URL against the scheme, denylist and domain allowlist"""
    try:
        parts = urlsplit(target_url)
        # Out-of-range ports only surface when .port is read
        _ = parts.port
    except ValueError:
        return TargetValidation(False, REASON_INVALID_URL)

    hostname = (parts.hostname or "").lower().rstrip(".")
    if not parts.scheme or not hostname:
        return TargetValidation(False, REASON_INVALID_URL, hostname or None)

    if parts.scheme.lower() != "https":
        return TargetValidation(False, REASON_SCHEME, hostname)

    if hostname in BLOCKED_HOSTNAMES:
        return TargetValidation(False, REASON_HOSTNAME, hostname)

    blocked = _is_blocked_address(hostname)
    if blocked:
        return TargetValidation(False, REASON_ADDRESS, hostname)

    allowed_domains = tuple(ALLOWED_DOMAINS) + tuple(
        domain.lower() for domain in settings.PROXY_EXTRA_ALLOWED_DOMAINS
    )
    if not is_allowed_domain(hostname, allowed_domains):
        return TargetValidation(False, REASON_DOMAIN, hostname)

    return TargetValidation(True, hostname=hostname)


def ensure_target_allowed(target_url: str) -> str:
    """Raise ForbiddenTargetError unless the URL is allowed; returns the hostname"""
    result = validate_target_url(target_url)
    if not result.allowed:
        security_logger.warning(
            f"Blocked proxy target - Hostname: {result.hostname or 'unparseable'}, Reason: {result.reason}"
        )
        raise ForbiddenTargetError(
            f"Target URL rejected: {result.reason}",
            hostname=result.hostname
        )
    return result.hostname
