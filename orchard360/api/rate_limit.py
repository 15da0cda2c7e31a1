"""
Rate limiter shared by the application and its routers.
"""
from slowapi import Limiter
from slowapi.util import get_remote_address

from orchard360.config import settings

limiter = Limiter(key_func=get_remote_address)

# Limit applied to bulk CSV transfer endpoints
TRANSFER_RATE_LIMIT = f"{settings.rate_limit_requests}/minute"
