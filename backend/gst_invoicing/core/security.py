"""
Password hashing, bearer tokens and the capability table.

Capabilities are ``"{MODULE}:{action}"`` strings resolved once at login from the
user's role plus explicit department grants, then carried inside the JWT so
route checks never look at role names again.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Iterable, Optional

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt
from loguru import logger
from passlib.context import CryptContext

from gst_invoicing.core.config import settings
from gst_invoicing.core.errors import Forbidden, Unauthorized

pwd_context = CryptContext(
    schemes=["bcrypt"],
    deprecated="auto",
    bcrypt__rounds=settings.BCRYPT_ROUNDS,
)

_bearer = HTTPBearer(auto_error=False)


class Module(str, Enum):
    SALES = "SALES"
    PURCHASE = "PURCHASE"
    INVENTORY = "INVENTORY"
    MASTERS = "MASTERS"
    REPORTS = "REPORTS"


class Action(str, Enum):
    READ = "read"
    WRITE = "write"
    DELETE = "delete"


def capability(module: Module | str, action: Action | str) -> str:
    module = module.value if isinstance(module, Module) else str(module).upper()
    action = action.value if isinstance(action, Action) else str(action).lower()
    return f"{module}:{action}"


# Role → (modules, actions) granted wholesale
_ROLE_GRANTS: dict[str, tuple[tuple[Module, ...], tuple[Action, ...]]] = {
    "admin": (tuple(Module), tuple(Action)),
    "manager": (
        (Module.SALES, Module.INVENTORY, Module.REPORTS),
        (Action.READ, Action.WRITE),
    ),
}
_DEFAULT_GRANT = ((Module.SALES,), (Action.READ,))


def resolve_capabilities(role: str, departments: Iterable[str] = ()) -> list[str]:
    """
    Build the sorted capability list for a user.

    Department grants give read+write on the department's module; names that
    are not a known module are ignored.
    """
    modules, actions = _ROLE_GRANTS.get((role or "").lower(), _DEFAULT_GRANT)
    caps = {capability(m, a) for m in modules for a in actions}

    known = {m.value for m in Module}
    for dept in departments:
        name = (dept or "").strip().upper()
        if name in known:
            caps.add(capability(name, Action.READ))
            caps.add(capability(name, Action.WRITE))
        else:
            logger.debug(f"Ignoring department grant '{dept}' – not a module")
    return sorted(caps)


# ── Passwords ────────────────────────────────────────────────────────────────


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    try:
        return pwd_context.verify(plain_password, hashed_password)
    except (ValueError, TypeError):
        return False


# ── Tokens ───────────────────────────────────────────────────────────────────


@dataclass
class CurrentUser:
    id: int
    username: str
    role: str
    capabilities: list[str] = field(default_factory=list)

    def can(self, module: Module | str, action: Action | str) -> bool:
        return capability(module, action) in self.capabilities


def create_access_token(
    user_id: int,
    username: str,
    role: str,
    capabilities: list[str],
    expires_delta: Optional[timedelta] = None,
) -> str:
    now = datetime.now(timezone.utc)
    expire = now + (expires_delta or timedelta(minutes=settings.JWT_EXPIRE_MINUTES))
    claims = {
        "sub": str(user_id),
        "username": username,
        "role": role,
        "caps": capabilities,
        "iat": now,
        "exp": expire,
    }
    return jwt.encode(claims, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)


def decode_access_token(token: str) -> CurrentUser:
    """Decode a bearer token or raise ``Unauthorized``."""
    try:
        payload = jwt.decode(token, settings.JWT_SECRET, algorithms=[settings.JWT_ALGORITHM])
    except JWTError as exc:
        logger.info(f"Rejected bearer token: {exc}")
        raise Unauthorized("Unauthorized")

    sub = payload.get("sub")
    if not sub or not str(sub).isdigit():
        raise Unauthorized("Unauthorized")
    return CurrentUser(
        id=int(sub),
        username=payload.get("username", ""),
        role=payload.get("role", ""),
        capabilities=list(payload.get("caps") or []),
    )


# ── FastAPI dependencies ─────────────────────────────────────────────────────


def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(_bearer),
) -> CurrentUser:
    if credentials is None or credentials.scheme.lower() != "bearer":
        raise Unauthorized("Unauthorized")
    return decode_access_token(credentials.credentials)


def require(module: Module, action: Action):
    """Dependency factory: ``user = Depends(require(Module.SALES, Action.READ))``."""

    def _checker(user: CurrentUser = Depends(get_current_user)) -> CurrentUser:
        if not user.can(module, action):
            logger.info(
                f"User '{user.username}' lacks {capability(module, action)}"
            )
            raise Forbidden("Forbidden")
        return user

    return _checker
