"""
Rate limiter shared by the app and the routes that write.
"""
from slowapi import Limiter
from slowapi.util import get_remote_address

from internhub.config.feature_flags import get_bool_env

limiter = Limiter(
    key_func=get_remote_address,
    enabled=get_bool_env("RATE_LIMIT_ENABLED", True),
)
