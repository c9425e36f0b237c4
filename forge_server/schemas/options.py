"""
forge-server — Server Configuration Models
============================================

What:  Typed, immutable description of everything a ServerApp can be told.
How:   Pydantic models validated once at construction. Every toggle defaults
       to the protective setting, so an empty `security_headers` block means
       "install everything". Keys are accepted in snake_case or in the
       camelCase spelling used by JSON config files
       (`enableGlobalRateLimiter`, `securityHeaders.disableAll`, ...).

Option tree:
    ServerOptions
    ├── global_rate_limiter_options: RateLimitOptions
    ├── file_upload: FileUploadOptions
    ├── cors: CorsSettings{disable, options: CorsOptions}
    ├── security_headers: SecurityHeadersOptions
    │   ├── content_security_policy{disable, options}
    │   ├── strict_transport_security{disable, options}
    │   ├── dns_prefetch_control{disable, options}
    │   └── remove_* flags
    └── health_check: HealthCheckOptions{disable, route_path}
"""

from typing import Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, PositiveInt, field_validator
from pydantic.alias_generators import to_camel

from forge_server import __version__

DEFAULT_HEALTH_CHECK_PATH = "/health"


class OptionsModel(BaseModel):
    """Common config: frozen, no unknown keys, snake_case or camelCase input."""

    model_config = ConfigDict(
        frozen=True,
        extra="forbid",
        alias_generator=to_camel,
        populate_by_name=True,
    )


# ══════════════════════════════════════════════════════════════════════════
# Rate limiting
# ══════════════════════════════════════════════════════════════════════════


class RateLimitOptions(OptionsModel):
    """
    Window and ceiling for one limiter (global or per-route).

    `max` requests are allowed per client within any `window_ms` span.
    Header flags control which informational headers responses carry:
        standard_headers → RateLimit-Limit / RateLimit-Remaining / RateLimit-Reset
        legacy_headers   → X-RateLimit-Limit / X-RateLimit-Remaining / X-RateLimit-Reset
    """

    window_ms: PositiveInt = 60_000
    max: PositiveInt = 5
    standard_headers: bool = False
    legacy_headers: bool = True
    message: str = "Too many requests, please try again later."
    status_code: int = Field(default=429, ge=400, le=599)


# Applied when the global limiter is on and no options were given:
# 10 hits per second per client, no informational headers.
DEFAULT_GLOBAL_RATE_LIMIT = RateLimitOptions(
    window_ms=1_000,
    max=10,
    standard_headers=False,
    legacy_headers=False,
)


# ══════════════════════════════════════════════════════════════════════════
# CORS
# ══════════════════════════════════════════════════════════════════════════


class CorsOptions(OptionsModel):
    """Arguments for Starlette's CORSMiddleware. Defaults allow any origin."""

    allow_origins: List[str] = Field(default_factory=lambda: ["*"])
    allow_origin_regex: Optional[str] = None
    allow_methods: List[str] = Field(
        default_factory=lambda: ["GET", "HEAD", "PUT", "PATCH", "POST", "DELETE"]
    )
    allow_headers: List[str] = Field(default_factory=lambda: ["*"])
    expose_headers: List[str] = Field(default_factory=list)
    allow_credentials: bool = False
    max_age: int = Field(default=600, ge=0)


class CorsSettings(OptionsModel):
    disable: bool = False
    options: Optional[CorsOptions] = None


# ══════════════════════════════════════════════════════════════════════════
# Security headers
# ══════════════════════════════════════════════════════════════════════════


class ContentSecurityPolicyOptions(OptionsModel):
    """
    Content-Security-Policy settings.

    directives:   directive name → sources. camelCase names are converted to
                  kebab-case (`defaultSrc` → `default-src`). A `None` value
                  removes a default directive.
    use_defaults: merge `directives` over the default policy.
    report_only:  send Content-Security-Policy-Report-Only instead.
    """

    use_defaults: bool = True
    directives: Dict[str, Union[List[str], str, None]] = Field(default_factory=dict)
    report_only: bool = False


class StrictTransportSecurityOptions(OptionsModel):
    max_age: int = Field(default=15_552_000, ge=0)  # 180 days
    include_sub_domains: bool = True
    preload: bool = False


class DnsPrefetchControlOptions(OptionsModel):
    allow: bool = False


class ContentSecurityPolicyToggle(OptionsModel):
    disable: bool = False
    options: Optional[ContentSecurityPolicyOptions] = None


class StrictTransportSecurityToggle(OptionsModel):
    disable: bool = False
    options: Optional[StrictTransportSecurityOptions] = None


class DnsPrefetchControlToggle(OptionsModel):
    disable: bool = False
    options: Optional[DnsPrefetchControlOptions] = None


class SecurityHeadersOptions(OptionsModel):
    """
    Opt-out switches for the security header cascade.

    `disable_all` skips the whole cascade. Otherwise each protection is
    installed unless its own `disable` / `remove_*` flag is set.
    """

    disable_all: bool = False
    content_security_policy: ContentSecurityPolicyToggle = Field(
        default_factory=ContentSecurityPolicyToggle
    )
    remove_cross_origin_embedder_policy: bool = False
    strict_transport_security: StrictTransportSecurityToggle = Field(
        default_factory=StrictTransportSecurityToggle
    )
    remove_no_sniff: bool = False
    remove_origin_agent_cluster: bool = False
    dns_prefetch_control: DnsPrefetchControlToggle = Field(
        default_factory=DnsPrefetchControlToggle
    )
    remove_ie_no_open: bool = False
    remove_hide_powered_by: bool = False
    remove_xss_filter: bool = Field(default=False, alias="removeXSSFilter")


# ══════════════════════════════════════════════════════════════════════════
# Health check and uploads
# ══════════════════════════════════════════════════════════════════════════


class HealthCheckOptions(OptionsModel):
    disable: bool = False
    route_path: Optional[str] = None

    @field_validator("route_path")
    @classmethod
    def normalize_route_path(cls, v: Optional[str]) -> Optional[str]:
        """Paths are normalized to start with '/', never rejected."""
        if v is None:
            return v
        return v if v.startswith("/") else f"/{v}"

    @property
    def resolved_path(self) -> str:
        return self.route_path or DEFAULT_HEALTH_CHECK_PATH


class FileUploadOptions(OptionsModel):
    """
    create_parent_path: save_upload() creates missing directories.
    max_file_size:      per-file ceiling in bytes; None means no ceiling.
    """

    create_parent_path: bool = True
    max_file_size: Optional[PositiveInt] = None


# ══════════════════════════════════════════════════════════════════════════
# Server
# ══════════════════════════════════════════════════════════════════════════


class ServerOptions(OptionsModel):
    """
    Full server configuration.

    Only `enable_global_rate_limiter` is required. `port=0` asks the OS for a
    free port; the bound port is available from ServerApp.port once started.
    """

    enable_global_rate_limiter: bool
    port: int = Field(default=5000, ge=0, le=65535)
    host: str = "0.0.0.0"
    server_name: str = Field(default="Server", min_length=1)
    version: str = __version__
    global_rate_limiter_options: Optional[RateLimitOptions] = None
    enable_file_upload: bool = False
    file_upload: FileUploadOptions = Field(default_factory=FileUploadOptions)
    json_body_limit: PositiveInt = 102_400  # 100kb
    cors: CorsSettings = Field(default_factory=CorsSettings)
    security_headers: SecurityHeadersOptions = Field(default_factory=SecurityHeadersOptions)
    health_check: HealthCheckOptions = Field(default_factory=HealthCheckOptions)

    @property
    def resolved_global_rate_limit(self) -> RateLimitOptions:
        return self.global_rate_limiter_options or DEFAULT_GLOBAL_RATE_LIMIT
