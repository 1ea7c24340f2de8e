import os
from dataclasses import dataclass
from datetime import timedelta


_TRUTHY = ("1", "true", "yes", "on")


@dataclass(frozen=True)
class Settings:
    secret_key: str
    env: str
    database_url: str

    restaurant_mode: bool
    company_name: str
    local_currency_code: str
    local_currency_symbol: str
    foreign_currency_code: str
    foreign_currency_symbol: str
    default_sales_warehouse_code: str
    session_ttl_hours: int


def _getenv(name: str, default: str = "") -> str:
    return (os.environ.get(name) or default).strip()


def _getflag(name: str, default: bool) -> bool:
    raw = _getenv(name)
    if not raw:
        return default
    return raw.lower() in _TRUTHY


def _getint(name: str, default: int) -> int:
    raw = _getenv(name)
    try:
        value = int(raw)
    except ValueError:
        return default
    return value if value > 0 else default


def load_settings() -> Settings:
    return Settings(
        secret_key=_getenv("SESSION_SECRET") or _getenv("SECRET_KEY", "change-me"),
        env=_getenv("ENV", "development"),
        database_url=_getenv("DATABASE_URL", "sqlite:///facturador.db"),
        restaurant_mode=_getflag("ES_RESTAURANTE", True),
        company_name=_getenv("COMPANY_NAME", "Facturador"),
        local_currency_code=_getenv("LOCAL_CURRENCY_CODE", "MXN").upper(),
        local_currency_symbol=_getenv("LOCAL_CURRENCY_SYMBOL", "$"),
        foreign_currency_code=_getenv("FOREIGN_CURRENCY_CODE", "USD").upper(),
        foreign_currency_symbol=_getenv("FOREIGN_CURRENCY_SYMBOL", "$"),
        default_sales_warehouse_code=_getenv("DEFAULT_SALES_WAREHOUSE_CODE").upper(),
        session_ttl_hours=_getint("SESSION_TTL_HOURS", 12),
    )


def load_config() -> dict:
    s = load_settings()
    is_production = s.env in ("prod", "production")
    return {
        "SECRET_KEY": s.secret_key,
        "ENV": s.env,
        "DATABASE_URL": s.database_url,
        "RESTAURANT_MODE": s.restaurant_mode,
        "COMPANY_NAME": s.company_name,
        "LOCAL_CURRENCY_CODE": s.local_currency_code,
        "LOCAL_CURRENCY_SYMBOL": s.local_currency_symbol,
        "FOREIGN_CURRENCY_CODE": s.foreign_currency_code,
        "FOREIGN_CURRENCY_SYMBOL": s.foreign_currency_symbol,
        "DEFAULT_SALES_WAREHOUSE_CODE": s.default_sales_warehouse_code or None,
        "SESSION_TTL_HOURS": s.session_ttl_hours,
        # session cookie
        "SESSION_COOKIE_NAME": "facturador_session",
        "SESSION_COOKIE_HTTPONLY": True,
        "SESSION_COOKIE_SAMESITE": "Lax",
        "SESSION_COOKIE_SECURE": is_production,
        "PERMANENT_SESSION_LIFETIME": timedelta(hours=s.session_ttl_hours),
        "JSON_SORT_KEYS": False,
        "MAX_CONTENT_LENGTH": 2 * 1024 * 1024,
    }
