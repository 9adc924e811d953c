"""Runtime configuration and payout arithmetic helpers"""
import logging
import os
from decimal import Decimal, ROUND_HALF_UP
from urllib.parse import quote_plus

import dotenv

dotenv.load_dotenv(dotenv.find_dotenv())

logger = logging.getLogger(__name__)


def _env_value(key: str, default: str | None = None) -> str | None:
    raw = os.getenv(key)
    if raw is None:
        return default
    value = raw.strip()
    return value or default


def _split_csv(value: str | None) -> list[str]:
    return [item.strip() for item in (value or '').split(',') if item.strip()]


# Pi Network gateway
PI_API_KEY = _env_value('PI_API_KEY')
PI_API_BASE_URL = _env_value('PI_API_BASE_URL', 'https://api.minepi.com/v2')
PI_GATEWAY_TIMEOUT = float(_env_value('PI_GATEWAY_TIMEOUT', '15'))

# DER/SPKI Ed25519 key used by the Pi Browser to sign login payloads
PI_LOGIN_PUBLIC_KEY = _env_value(
    'PI_LOGIN_PUBLIC_KEY',
    '302a300506032b6570032100c7c716f5e3bbf579cc0fa7ff61d1b4f60e3546cfab580093df1fa3dc7f9ef6d6',
)

# Object storage
S3_BUCKET_NAME = _env_value('S3_BUCKET_NAME')
AWS_REGION = _env_value('AWS_REGION', 'us-east-2')
AWS_ACCESS_KEY_ID = _env_value('AWS_ACCESS_KEY_ID')
AWS_SECRET_ACCESS_KEY = _env_value('AWS_SECRET_ACCESS_KEY')
STORAGE_TIMEOUT = float(_env_value('STORAGE_TIMEOUT', '10'))

# HTTP surface
CORS_ORIGINS = _split_csv(_env_value(
    'CORS_ORIGINS',
    'https://vocal-nasturtium-3ab892.netlify.app,https://vocalcast.minepi.com',
))
PORT = int(_env_value('PORT', '5000'))

# Platform fee (10% of each payout covers hosting and operations)
PLATFORM_FEE_RATE = Decimal(_env_value('PLATFORM_FEE_RATE', '0.10'))
MIN_PAYOUT = Decimal(_env_value('MIN_PAYOUT', '3'))
WALLET_MIN_LENGTH = int(_env_value('WALLET_MIN_LENGTH', '20'))
PAYOUT_LOCK_TTL_SECONDS = int(_env_value('PAYOUT_LOCK_TTL_SECONDS', '600'))

# Moderation thresholds
HIDE_THRESHOLD = int(_env_value('HIDE_THRESHOLD', '5'))
BAN_THRESHOLD = int(_env_value('BAN_THRESHOLD', '3'))

AMOUNT_QUANTUM = Decimal('0.000001')

if not PI_API_KEY:
    logger.warning("PI_API_KEY not set in environment variables")


def normalize_database_url(url: str) -> str:
    """Hosted Postgres providers hand out postgres:// URLs; SQLAlchemy wants a driver name."""
    if url.startswith('postgres://'):
        return url.replace('postgres://', 'postgresql+psycopg://', 1)
    if url.startswith('postgresql://'):
        return url.replace('postgresql://', 'postgresql+psycopg://', 1)
    return url


def database_uri() -> str:
    """Resolve the database URI from DATABASE_URL or the DB_* components."""
    database_url = _env_value('DATABASE_URL')
    if database_url:
        return normalize_database_url(database_url)

    password = quote_plus(_env_value('DB_PASSWORD', '') or '')
    user = _env_value('DB_USER', 'postgres')
    host = _env_value('DB_HOST', 'localhost')
    port = _env_value('DB_PORT', '5432')
    name = _env_value('DB_NAME', 'vocalcast')
    return f"postgresql+psycopg://{user}:{password}@{host}:{port}/{name}"


def quantize_amount(value: Decimal) -> Decimal:
    """Round an amount to six decimal places, half away from zero."""
    return Decimal(value).quantize(AMOUNT_QUANTUM, rounding=ROUND_HALF_UP)


def calculate_platform_fee(gross: Decimal, fee_rate: Decimal | None = None) -> tuple[Decimal, Decimal]:
    """Split a gross payout into (platform fee, net amount).

    Args:
        gross: Total of the tips being paid out
        fee_rate: Override for PLATFORM_FEE_RATE

    Returns:
        Tuple of (fee, net), both rounded to six decimal places
    """
    rate = PLATFORM_FEE_RATE if fee_rate is None else Decimal(fee_rate)
    fee = quantize_amount(Decimal(gross) * rate)
    net = quantize_amount(Decimal(gross) - fee)
    return fee, net


def validate_pi_config() -> tuple[bool, str | None]:
    """Validate that the Pi gateway is usable

    Returns:
        Tuple of (is_valid, error_message)
    """
    if not PI_API_KEY:
        return False, "PI_API_KEY not configured"
    if not PI_API_BASE_URL:
        return False, "PI_API_BASE_URL not configured"
    return True, None
