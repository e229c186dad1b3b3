"""
Route policy binder.

Maps (HTTP method, route pattern) to the resource and access types a caller
must hold. The table is loaded once from YAML at startup:

```yaml
resources:
  - resource: group_member
    routes:
      - path: /groups/{group_id}/members
        method: POST
        group_path_param: group_id
        required_access_types: [Write]
```

An empty `required_access_types` list only requires an authenticated caller.
"""
from pathlib import Path
from typing import Any, Dict, FrozenSet, Iterable, Iterator, List, Optional, Pattern, Tuple, Union

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator
from starlette.routing import compile_path

from app.core.exceptions import InvalidRoutePolicy
from app.features.capabilities.models import AccessType
from app.utils import get_logger


log = get_logger(__name__)

HTTP_METHODS = {"GET", "POST", "PUT", "PATCH", "DELETE", "HEAD", "OPTIONS"}


def normalize_path(path: str) -> str:
    """Drop the trailing slash so '/resources/' and '/resources' bind the same policy."""
    return path.rstrip("/") or "/"


# ============================================================================
# Configuration Schema
# ============================================================================

class RouteConfig(BaseModel):
    """One route of a resource in the policy file."""
    path: str = Field(..., min_length=1)
    method: str
    group_path_param: Optional[str] = None
    required_access_types: List[AccessType] = []

    @field_validator('method')
    @classmethod
    def method_upper(cls, v: str) -> str:
        method = v.upper()
        if method not in HTTP_METHODS:
            raise ValueError(f"Unsupported HTTP method: {v}")
        return method

    @field_validator('path')
    @classmethod
    def path_absolute(cls, v: str) -> str:
        if not v.startswith("/"):
            raise ValueError("Route path must start with '/'")
        return v

    @model_validator(mode='after')
    def group_param_in_path(self):
        if self.group_path_param and f"{{{self.group_path_param}" not in self.path:
            raise ValueError(f"Path parameter '{self.group_path_param}' does not appear in {self.path}")
        return self


class ResourceRoutesConfig(BaseModel):
    resource: str = Field(..., min_length=1)
    routes: List[RouteConfig] = []


class RoutePolicyConfig(BaseModel):
    resources: List[ResourceRoutesConfig] = []


class RoutePolicyEntry(BaseModel):
    """Compiled policy of one route."""
    model_config = ConfigDict(frozen=True)

    method: str
    path_pattern: str
    resource_key: str
    group_path_param: Optional[str] = None
    required_access_types: FrozenSet[AccessType] = frozenset()


# ============================================================================
# Binder
# ============================================================================

class RoutePolicyBinder:
    """
    Read-only lookup table of route policies.

    Usage:
        binder = RoutePolicyBinder.from_file("app/assets/route_policies.yaml")
        policy = binder.lookup("POST", "/groups/{group_id}/members")
    """

    def __init__(self, entries: Iterable[RoutePolicyEntry] = ()):
        self._table: Dict[Tuple[str, str], RoutePolicyEntry] = {}
        self._compiled: List[Tuple[Pattern, RoutePolicyEntry]] = []
        for entry in entries:
            key = (entry.method.upper(), normalize_path(entry.path_pattern))
            if key in self._table:
                raise InvalidRoutePolicy(f"Duplicate route policy for {key[0]} {key[1]}")
            self._table[key] = entry
            regex, _, _ = compile_path(key[1])
            self._compiled.append((regex, entry))

    @classmethod
    def from_config(cls, config: RoutePolicyConfig) -> "RoutePolicyBinder":
        entries = [
            RoutePolicyEntry(
                method=route.method,
                path_pattern=normalize_path(route.path),
                resource_key=resource.resource,
                group_path_param=route.group_path_param,
                required_access_types=frozenset(route.required_access_types),
            )
            for resource in config.resources
            for route in resource.routes
        ]
        return cls(entries)

    @classmethod
    def from_entries(cls, resources: Iterable[Union[ResourceRoutesConfig, Dict[str, Any]]]) -> "RoutePolicyBinder":
        """Build from the declarative list of `{resource, routes}` entries."""
        try:
            config = RoutePolicyConfig(resources=list(resources))
        except ValidationError as exc:
            raise InvalidRoutePolicy(f"Invalid route policy configuration: {exc}") from exc
        return cls.from_config(config)

    @classmethod
    def from_file(cls, path: Union[str, Path]) -> "RoutePolicyBinder":
        """
        Load the table from a YAML file.

        Raises:
            FileNotFoundError: if the file doesn't exist
            InvalidRoutePolicy: if the file is malformed or has duplicate routes
        """
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Route policy file not found: {path}")

        log.info(f"Loading route policies from {path}")
        with open(path, "r") as f:
            try:
                raw = yaml.safe_load(f) or {}
            except yaml.YAMLError as exc:
                raise InvalidRoutePolicy(f"Malformed route policy file {path}: {exc}") from exc

        if not isinstance(raw, dict):
            raise InvalidRoutePolicy(f"Route policy file {path} must contain a mapping with a 'resources' list")

        binder = cls.from_entries(raw.get("resources") or [])
        log.info(f"Loaded {len(binder)} route policies")
        return binder

    def lookup(self, method: str, path: str) -> Optional[RoutePolicyEntry]:
        """Return the policy bound to a route pattern, if any."""
        return self._table.get((method.upper(), normalize_path(path)))

    def lookup_request(self, method: str, path: str) -> Optional[RoutePolicyEntry]:
        """
        Return the policy for a concrete request path, e.g. '/groups/01H.../members'.

        An exact pattern match wins over a parameterized one.
        """
        method = method.upper()
        path = normalize_path(path)
        entry = self._table.get((method, path))
        if entry is not None:
            return entry
        for regex, candidate in self._compiled:
            if candidate.method == method and regex.match(path):
                return candidate
        return None

    def match_params(self, entry: RoutePolicyEntry, path: str) -> Dict[str, str]:
        """Extract the path parameters of a concrete path matched by `entry`."""
        regex, _, _ = compile_path(normalize_path(entry.path_pattern))
        match = regex.match(normalize_path(path))
        return match.groupdict() if match else {}

    def __len__(self) -> int:
        return len(self._table)

    def __iter__(self) -> Iterator[RoutePolicyEntry]:
        return iter(self._table.values())

