"""
Route policy enforcement.

For an authenticated caller and a matched route:

1. no policy for the route: allowed unless ROUTE_POLICY_DEFAULT is "deny"
2. the policy names a group path parameter: allowed if the caller's
   access types in that group cover the required set
3. otherwise: allowed if the caller's global access types cover it

Anything else is Forbidden.
"""
from typing import Dict, FrozenSet, Mapping, Optional, Set, Tuple

from fastapi import Depends, Request
from pydantic import BaseModel, ConfigDict
from sqlalchemy.ext.asyncio import AsyncSession

from app.core import config
from app.core.database.engine import get_db
from app.core.exceptions import Forbidden, PreconditionFailed
from app.features.capabilities.models import AccessType
from app.features.permissions.store import ScopeMatching, has_permission
from app.features.policies.binder import RoutePolicyBinder, RoutePolicyEntry
from app.features.users.dependencies import get_current_user
from app.features.users.models import User
from app.utils import get_logger


log = get_logger(__name__)

POLICY_ALLOW = "allow"
POLICY_DENY = "deny"

# Unmatched routes already reported, so each is logged once per process.
# Holds at most MAX_REPORTED_UNMATCHED_ROUTES entries.
MAX_REPORTED_UNMATCHED_ROUTES = 1024
_unmatched_routes: Set[Tuple[str, str]] = set()


def _report_unmatched(method: str, path: str, default: str) -> None:
    route = (method, path)
    if route in _unmatched_routes:
        return
    if len(_unmatched_routes) >= MAX_REPORTED_UNMATCHED_ROUTES:
        log.debug(f"No route policy for {method} {path}, default is {default!r}")
        return
    _unmatched_routes.add(route)
    log.warning(f"No route policy for {method} {path}, default is {default!r}")


class EnforcementResult(BaseModel):
    """Outcome of an allowed request."""
    model_config = ConfigDict(frozen=True)

    user_id: str
    policy: Optional[RoutePolicyEntry] = None
    group_id: Optional[str] = None
    granted_access_types: FrozenSet[AccessType] = frozenset()

    def has(self, access_type: AccessType) -> bool:
        return access_type in self.granted_access_types


async def enforce(
    db: AsyncSession,
    binder: RoutePolicyBinder,
    user_id: Optional[str],
    method: str,
    path_pattern: str,
    path_params: Optional[Mapping[str, str]] = None,
    *,
    default: Optional[str] = None,
    scope_matching: Optional[ScopeMatching] = None,
) -> EnforcementResult:
    """
    Decide whether `user_id` may call the route.

    Raises:
        PreconditionFailed: no identity in context
        Forbidden: the caller lacks the required access types
    """
    if not user_id:
        raise PreconditionFailed("No identity in context")

    policy = binder.lookup(method, path_pattern)
    if policy is None:
        default = (default or config.ROUTE_POLICY_DEFAULT).lower()
        _report_unmatched(method.upper(), path_pattern, default)
        if default == POLICY_DENY:
            raise Forbidden(f"Forbidden access to {method.upper()} {path_pattern}")
        return EnforcementResult(user_id=user_id)

    required = policy.required_access_types
    path_params = path_params or {}

    group_id = path_params.get(policy.group_path_param) if policy.group_path_param else None
    if group_id:
        scoped = await has_permission(db, user_id, policy.resource_key, group_id, scope_matching=scope_matching)
        if required <= scoped:
            log.debug(f"User {user_id} allowed {method.upper()} {path_pattern} in group {group_id}")
            return EnforcementResult(
                user_id=user_id,
                policy=policy,
                group_id=group_id,
                granted_access_types=frozenset(scoped),
            )

    global_ = await has_permission(db, user_id, policy.resource_key, None, scope_matching=scope_matching)
    if required <= global_:
        log.debug(f"User {user_id} allowed {method.upper()} {path_pattern} globally")
        return EnforcementResult(user_id=user_id, policy=policy, granted_access_types=frozenset(global_))

    log.warning(
        f"User {user_id} denied {method.upper()} {path_pattern}: requires "
        f"{sorted(a.value for a in required)} on {policy.resource_key!r}"
    )
    raise Forbidden(f"Forbidden access to {method.upper()} {path_pattern}")


async def enforce_request(
    db: AsyncSession,
    binder: RoutePolicyBinder,
    user_id: Optional[str],
    method: str,
    path: str,
    *,
    default: Optional[str] = None,
    scope_matching: Optional[ScopeMatching] = None,
) -> EnforcementResult:
    """Same as enforce, for a concrete request path instead of a matched route pattern."""
    policy = binder.lookup_request(method, path)
    path_pattern = policy.path_pattern if policy else path
    path_params: Dict[str, str] = binder.match_params(policy, path) if policy else {}
    return await enforce(
        db, binder, user_id, method, path_pattern, path_params,
        default=default, scope_matching=scope_matching,
    )


def get_route_policies(request: Request) -> RoutePolicyBinder:
    """Binder loaded at startup. An app without one has no policies."""
    binder = getattr(request.app.state, "route_policies", None)
    if binder is None:
        binder = RoutePolicyBinder()
        request.app.state.route_policies = binder
    return binder


async def require_route_policy(
    request: Request,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
    binder: RoutePolicyBinder = Depends(get_route_policies),
) -> EnforcementResult:
    """
    FastAPI dependency enforcing the policy of the requested path.

    The policy is resolved from the full request path, so router prefixes
    added by include_router are always part of the lookup.

    Usage:
        router = APIRouter(dependencies=[Depends(require_route_policy)])

        @router.get("/{group_id}/users/{user_id}/permissions")
        async def handler(access: EnforcementResult = Depends(require_route_policy)):
            if access.has(AccessType.OTHER):
                ...
    """
    return await enforce_request(db, binder, user.id, request.method, request.url.path)
