"""
forge-server — Security Header Middleware
===========================================

What:  One adapter per hardening header, plus the cascade that installs them.
How:   Each adapter appends exactly one HeaderPolicyMiddleware entry to the
       middleware stack being assembled for the app. The cascade calls the
       adapters in a fixed order and skips any the configuration disables.

Cascade order (outermost first):
    CSP → Cross-Origin-Embedder-Policy → HSTS → X-Content-Type-Options →
    Origin-Agent-Cluster → X-DNS-Prefetch-Control → X-Download-Options →
    hide X-Powered-By → X-XSS-Protection

Default header values:
    Content-Security-Policy        default-src 'self';base-uri 'self';...
    Cross-Origin-Embedder-Policy   require-corp
    Strict-Transport-Security      max-age=15552000; includeSubDomains
    X-Content-Type-Options         nosniff
    Origin-Agent-Cluster           ?1
    X-DNS-Prefetch-Control         off
    X-Download-Options             noopen
    X-Powered-By                   (removed)
    X-XSS-Protection               0

Each middleware touches headers only; none inspects or short-circuits the
request, so every installed protection applies to every response.
"""

import logging
import re
from typing import Dict, List, Mapping, Optional, Sequence, Union

from starlette.datastructures import MutableHeaders
from starlette.middleware import Middleware
from starlette.types import ASGIApp, Message, Receive, Scope, Send

from forge_server.schemas.options import (
    ContentSecurityPolicyOptions,
    DnsPrefetchControlOptions,
    SecurityHeadersOptions,
    StrictTransportSecurityOptions,
)

logger = logging.getLogger(__name__)

DEFAULT_CSP_DIRECTIVES: Dict[str, List[str]] = {
    "default-src": ["'self'"],
    "base-uri": ["'self'"],
    "font-src": ["'self'", "https:", "data:"],
    "form-action": ["'self'"],
    "frame-ancestors": ["'self'"],
    "img-src": ["'self'", "data:"],
    "object-src": ["'none'"],
    "script-src": ["'self'"],
    "script-src-attr": ["'none'"],
    "style-src": ["'self'", "https:", "'unsafe-inline'"],
    "upgrade-insecure-requests": [],
}


class HeaderPolicyMiddleware:
    """
    Pure ASGI middleware that sets and removes response headers.

    Args:
        app:     the wrapped ASGI app
        name:    protection name, used for logs and introspection
        set_headers:     headers to set on every HTTP response (overwrites)
        remove_headers:  header names to strip from every HTTP response
    """

    def __init__(
        self,
        app: ASGIApp,
        name: str,
        set_headers: Optional[Mapping[str, str]] = None,
        remove_headers: Sequence[str] = (),
    ) -> None:
        self.app = app
        self.name = name
        self.set_headers = dict(set_headers or {})
        self.remove_headers = tuple(remove_headers)

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        async def send_with_headers(message: Message) -> None:
            if message["type"] == "http.response.start":
                headers = MutableHeaders(scope=message)
                for header in self.remove_headers:
                    del headers[header]
                for header, value in self.set_headers.items():
                    headers[header] = value
            await send(message)

        await self.app(scope, receive, send_with_headers)


def _install(stack: List[Middleware], name: str, **kwargs) -> str:
    stack.append(Middleware(HeaderPolicyMiddleware, name=name, **kwargs))
    logger.info("%s enabled.", name)
    return name


# ══════════════════════════════════════════════════════════════════════════
# Header value builders
# ══════════════════════════════════════════════════════════════════════════


def _kebab(name: str) -> str:
    return re.sub(r"(?<!^)(?=[A-Z])", "-", name).lower()


def build_csp(options: Optional[ContentSecurityPolicyOptions] = None) -> str:
    options = options or ContentSecurityPolicyOptions()
    directives: Dict[str, Union[List[str], str, None]] = (
        dict(DEFAULT_CSP_DIRECTIVES) if options.use_defaults else {}
    )
    for name, value in options.directives.items():
        directives[_kebab(name)] = value

    parts = []
    for name, value in directives.items():
        if value is None:
            continue
        sources = [value] if isinstance(value, str) else list(value)
        parts.append(" ".join([name, *sources]))
    return ";".join(parts)


def build_hsts(options: Optional[StrictTransportSecurityOptions] = None) -> str:
    options = options or StrictTransportSecurityOptions()
    value = f"max-age={options.max_age}"
    if options.include_sub_domains:
        value += "; includeSubDomains"
    if options.preload:
        value += "; preload"
    return value


# ══════════════════════════════════════════════════════════════════════════
# Adapters
# ══════════════════════════════════════════════════════════════════════════


def enable_csp(stack: List[Middleware], options: Optional[ContentSecurityPolicyOptions] = None) -> str:
    header = (
        "Content-Security-Policy-Report-Only"
        if options and options.report_only
        else "Content-Security-Policy"
    )
    return _install(stack, "ContentSecurityPolicy", set_headers={header: build_csp(options)})


def enable_coep(stack: List[Middleware]) -> str:
    return _install(stack, "CrossOriginEmbedderPolicy", set_headers={"Cross-Origin-Embedder-Policy": "require-corp"})


def enable_hsts(stack: List[Middleware], options: Optional[StrictTransportSecurityOptions] = None) -> str:
    return _install(stack, "StrictTransportSecurity", set_headers={"Strict-Transport-Security": build_hsts(options)})


def enable_no_sniff(stack: List[Middleware]) -> str:
    return _install(stack, "NoSniff", set_headers={"X-Content-Type-Options": "nosniff"})


def enable_oac(stack: List[Middleware]) -> str:
    return _install(stack, "OriginAgentCluster", set_headers={"Origin-Agent-Cluster": "?1"})


def enable_dpc(stack: List[Middleware], options: Optional[DnsPrefetchControlOptions] = None) -> str:
    allow = bool(options and options.allow)
    return _install(stack, "DNSPrefetchControl", set_headers={"X-DNS-Prefetch-Control": "on" if allow else "off"})


def enable_ie_no_open(stack: List[Middleware]) -> str:
    return _install(stack, "IENoOpen", set_headers={"X-Download-Options": "noopen"})


def enable_hpb(stack: List[Middleware]) -> str:
    return _install(stack, "HidePoweredBy", remove_headers=("X-Powered-By",))


def enable_xss_filter(stack: List[Middleware]) -> str:
    return _install(stack, "XssFilter", set_headers={"X-XSS-Protection": "0"})


def apply_security_headers(
    stack: List[Middleware],
    options: Optional[SecurityHeadersOptions] = None,
) -> List[str]:
    """
    Install the security cascade onto `stack`.

    Returns:
        Names of the protections installed, in installation order. Empty when
        `disable_all` is set.
    """
    options = options or SecurityHeadersOptions()
    if options.disable_all:
        logger.info("Security headers are disabled")
        return []

    installed: List[str] = []
    csp = options.content_security_policy
    if not csp.disable:
        installed.append(enable_csp(stack, csp.options))
    if not options.remove_cross_origin_embedder_policy:
        installed.append(enable_coep(stack))
    hsts = options.strict_transport_security
    if not hsts.disable:
        installed.append(enable_hsts(stack, hsts.options))
    if not options.remove_no_sniff:
        installed.append(enable_no_sniff(stack))
    if not options.remove_origin_agent_cluster:
        installed.append(enable_oac(stack))
    dpc = options.dns_prefetch_control
    if not dpc.disable:
        installed.append(enable_dpc(stack, dpc.options))
    if not options.remove_ie_no_open:
        installed.append(enable_ie_no_open(stack))
    if not options.remove_hide_powered_by:
        installed.append(enable_hpb(stack))
    if not options.remove_xss_filter:
        installed.append(enable_xss_filter(stack))
    return installed
