import logging
from dataclasses import dataclass, field
from datetime import timedelta

from pydantic_settings import BaseSettings
from pydantic import ConfigDict
from typing import Optional, Tuple

class Settings(BaseSettings):
    # Environment
    ENV: str = "development"
    CONFIG_STRICT: bool = False

    # Supabase (projections live in its Postgres, sessions are its JWTs)
    DATABASE_URL: Optional[str] = None
    TEST_DATABASE_URL: Optional[str] = None
    NEXT_PUBLIC_SUPABASE_URL: Optional[str] = None
    NEXT_PUBLIC_SUPABASE_ANON_KEY: Optional[str] = None
    SUPABASE_SERVICE_ROLE_KEY: Optional[str] = None
    SUPABASE_JWT_SECRET: Optional[str] = None
    SUPABASE_JWT_AUDIENCE: str = "authenticated"

    # Stripe
    STRIPE_SECRET_KEY: Optional[str] = None
    STRIPE_WEBHOOK_SECRET: Optional[str] = None
    NEXT_PUBLIC_STRIPE_PUBLISHABLE_KEY: Optional[str] = None
    STRIPE_CURRENCY: str = "brl"
    STRIPE_DEFAULT_AMOUNT: int = 2499  # R$ 24,99 in cents
    STRIPE_PRODUCT_DESCRIPTION: str = "Análise de Cabelos com IA - Curlara"

    # Entitlement
    ENTITLEMENT_PERIOD_DAYS: int = 30

    # Access gate
    ACCESS_GATE_PROTECTED_PREFIXES: str = "/dashboard"  # comma-separated
    ACCESS_GATE_ENTRY_POINT: str = "/"
    # Pending product-owner sign-off: a bare local session cookie skips the
    # payment check when enabled.
    ACCESS_GATE_LOCAL_SESSION_BYPASS: bool = True

    # Operator access to follow-up records
    ADMIN_KEY: Optional[str] = None

    # App URLs
    BASE_URL: str = "http://localhost:3000"

    model_config = ConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )
settings = Settings()


REQUIRED_KEYS = [
    "DATABASE_URL",
    "STRIPE_SECRET_KEY",
    "STRIPE_WEBHOOK_SECRET",
    "SUPABASE_JWT_SECRET",
]


def missing_config_keys(settings_obj: Optional[Settings] = None) -> list[str]:
    cfg = settings_obj or settings
    return [key for key in REQUIRED_KEYS if not getattr(cfg, key, None)]


def validate_config(strict: Optional[bool] = None, settings_obj: Optional[Settings] = None, logger: Optional[logging.Logger] = None) -> bool:
    """Validate required configuration.

    In strict mode raise RuntimeError; otherwise emit warnings only.
    Secrets are not logged, only missing keys.
    """
    cfg = settings_obj or settings
    log = logger or logging.getLogger("curlara")
    strict_mode = strict if strict is not None else getattr(cfg, "CONFIG_STRICT", False)

    missing = missing_config_keys(cfg)
    if missing:
        message = f"Missing required configuration: {', '.join(missing)}"
        if strict_mode:
            raise RuntimeError(message)
        log.warning(message)

    return True


@dataclass(frozen=True)
class ReconcilerConfig:
    """Credentials and policy handed to each reconciler component.

    Built once from Settings so components never read the environment
    themselves; tests construct it directly with fake secrets.
    """
    stripe_secret_key: Optional[str] = None
    webhook_secret: Optional[str] = None
    session_jwt_secret: Optional[str] = None
    session_jwt_audience: str = "authenticated"
    entitlement_period: timedelta = timedelta(days=30)
    currency: str = "brl"
    default_amount: int = 2499
    product_description: str = "Análise de Cabelos com IA - Curlara"
    protected_prefixes: Tuple[str, ...] = ("/dashboard",)
    entry_point: str = "/"
    local_session_bypass: bool = True
    admin_key: Optional[str] = None
    environment: str = field(default="development")
    base_url: str = "http://localhost:3000"

    @classmethod
    def from_settings(cls, settings_obj: Optional[Settings] = None) -> "ReconcilerConfig":
        cfg = settings_obj or settings
        prefixes = tuple(
            p.strip() for p in cfg.ACCESS_GATE_PROTECTED_PREFIXES.split(",") if p.strip()
        )
        return cls(
            stripe_secret_key=cfg.STRIPE_SECRET_KEY,
            webhook_secret=cfg.STRIPE_WEBHOOK_SECRET,
            session_jwt_secret=cfg.SUPABASE_JWT_SECRET,
            session_jwt_audience=cfg.SUPABASE_JWT_AUDIENCE,
            entitlement_period=timedelta(days=cfg.ENTITLEMENT_PERIOD_DAYS),
            currency=cfg.STRIPE_CURRENCY,
            default_amount=cfg.STRIPE_DEFAULT_AMOUNT,
            product_description=cfg.STRIPE_PRODUCT_DESCRIPTION,
            protected_prefixes=prefixes,
            entry_point=cfg.ACCESS_GATE_ENTRY_POINT,
            local_session_bypass=cfg.ACCESS_GATE_LOCAL_SESSION_BYPASS,
            admin_key=cfg.ADMIN_KEY,
            environment=cfg.ENV,
            base_url=cfg.BASE_URL,
        )
