"""Rate limiter singleton - import from here to avoid circular deps."""
from slowapi import Limiter
from slowapi.util import get_remote_address

from app.core.config import settings

limiter = Limiter(key_func=get_remote_address, enabled=settings.RATE_LIMIT_ENABLED)

# Manual SLA sweeps scan every open inquiry; keep operators from hammering it.
SWEEP_TRIGGER_LIMIT = settings.SLA_SWEEP_TRIGGER_RATE_LIMIT
