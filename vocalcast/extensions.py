import os
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address

# In-memory storage works for a single instance; point RATELIMIT_STORAGE_URL at redis when scaling out
_limiter_storage = os.getenv("RATELIMIT_STORAGE_URL", "memory://")

limiter = Limiter(
    key_func=get_remote_address,
    default_limits=[],
    storage_uri=_limiter_storage,
)

# Keys under app.extensions holding the external clients
GATEWAY_KEY = 'vocalcast.gateway'
STORAGE_KEY = 'vocalcast.storage'
MAILER_KEY = 'vocalcast.mailer'

__all__ = ["limiter", "GATEWAY_KEY", "STORAGE_KEY", "MAILER_KEY"]
