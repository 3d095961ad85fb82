"""Rate limiter instance for SlowAPI.

Shared so both main (app.state.limiter) and the admin route modules use the
same instance without circular imports. Central limit strings and decorators
keep rate limits DRY.
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

limiter = Limiter(key_func=get_remote_address)

# Admin writes touch every key of a layer or tag (flush, invalidation, sweeps).
ADMIN_WRITE_LIMIT = "30/minute"
IMAGE_UPLOAD_LIMIT = "60/minute"

limit_admin_writes = limiter.limit(ADMIN_WRITE_LIMIT)
limit_image_uploads = limiter.limit(IMAGE_UPLOAD_LIMIT)
