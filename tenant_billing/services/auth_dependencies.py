from dataclasses import dataclass, field

from fastapi import Depends, Header, HTTPException, Request
from jose import JWTError, jwt

from tenant_billing.config import settings
from tenant_billing.db import LedgerStore


@dataclass(frozen=True)
class Principal:
    user_id: str
    tenant_id: str | None = None
    roles: frozenset[str] = field(default_factory=frozenset)

    @property
    def is_super_admin(self) -> bool:
        return settings.super_admin_role in self.roles


def get_store(request: Request) -> LedgerStore:
    store = getattr(request.app.state, "store", None)
    if store is None:
        raise HTTPException(status_code=503, detail="Ledger store is not available")
    return store


def _extract_bearer_token(authorization: str | None) -> str | None:
    if not authorization:
        return None
    parts = authorization.split(" ", 1)
    if len(parts) == 2 and parts[0].lower() == "bearer":
        return parts[1].strip()
    return None


def _roles_from_claims(payload: dict) -> frozenset[str]:
    roles: set[str] = set()
    role_value = payload.get("role")
    roles_value = payload.get("roles")
    if isinstance(role_value, str):
        roles.add(role_value)
    if isinstance(roles_value, list):
        roles.update(str(item) for item in roles_value)
    return frozenset(roles)


def decode_principal(token: str) -> Principal:
    if not settings.jwt_secret:
        raise HTTPException(status_code=401, detail="Unauthorized")
    try:
        payload = jwt.decode(
            token, settings.jwt_secret, algorithms=[settings.jwt_algorithm]
        )
    except JWTError as exc:
        raise HTTPException(status_code=401, detail="Invalid token") from exc
    subject = payload.get("sub")
    if not subject:
        raise HTTPException(status_code=401, detail="Unauthorized")
    tenant_id = payload.get("tenant_id")
    return Principal(
        user_id=str(subject),
        tenant_id=str(tenant_id) if tenant_id else None,
        roles=_roles_from_claims(payload),
    )


def require_principal(
    authorization: str | None = Header(default=None),
    request: Request = None,
) -> Principal:
    token = _extract_bearer_token(authorization)
    if not token:
        raise HTTPException(status_code=401, detail="Unauthorized")
    principal = decode_principal(token)
    if request is not None:
        request.state.actor_id = principal.user_id
    return principal


def require_tenant_principal(
    principal: Principal = Depends(require_principal),
) -> Principal:
    if not principal.tenant_id:
        raise HTTPException(status_code=403, detail="No tenant associated with user")
    return principal


def require_super_admin(
    principal: Principal = Depends(require_principal),
) -> Principal:
    if not principal.is_super_admin:
        raise HTTPException(status_code=403, detail="Forbidden")
    return principal
