from slowapi import Limiter
from slowapi.util import get_remote_address

from .config import settings

# Applied through deps.strava_quota, ahead of the token check
limiter = Limiter(key_func=get_remote_address, enabled=settings.RATE_LIMIT_ENABLED)
