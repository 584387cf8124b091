# Overview: Request decorators for API routes.

from functools import wraps
from flask import request, g

from .errors import ValidationError
from .services.tenant_service import require_org

ORG_HEADER = "X-Organization-Id"
ACTOR_HEADER = "X-Actor-Id"


def _header_int(name: str) -> int | None:
    raw = request.headers.get(name)
    if raw is None or not raw.strip():
        return None
    try:
        return int(raw.strip())
    except ValueError:
        raise ValidationError(f"{name} must be an integer", details={"header": name})


def require_tenant(f):
    """
    Establish tenant context from gateway headers.

    Identity is resolved upstream; this service trusts the gateway.
    Sets the following Flask g attributes:
    - g.org_id: Organization ID from X-Organization-Id - REQUIRED
    - g.actor_id: Acting user ID from X-Actor-Id (None if absent)

    A missing or malformed header raises ValidationError (400); an unknown
    or inactive organization raises NotFoundError (404). Both are rendered
    by the app-level error handler.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        org_id = _header_int(ORG_HEADER)
        if org_id is None:
            raise ValidationError(f"{ORG_HEADER} header is required", details={"header": ORG_HEADER})
        actor_id = _header_int(ACTOR_HEADER)

        require_org(org_id)

        g.org_id = org_id
        g.actor_id = actor_id
        return f(*args, **kwargs)

    return decorated_function
