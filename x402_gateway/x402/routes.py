# x402_gateway/x402/routes.py
"""
Per-route payment configuration.

Configuration maps path -> method -> {"x402": PaymentRequirement}. A route
without an "x402" entry is unmetered. Lookups are exact: no wildcards and no
prefix matching.
"""
import json
import logging
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from x402_gateway.x402.models import PaymentRequirement

logger = logging.getLogger(__name__)


class MethodConfig(BaseModel):
    """Configuration of one method on one path."""
    model_config = ConfigDict(frozen=True, extra="ignore")

    x402: Optional[PaymentRequirement] = None


class RouteConfig(BaseModel):
    """All configured routes, keyed by exact path then lower-case method."""
    model_config = ConfigDict(frozen=True, extra="ignore")

    paths: Dict[str, Dict[str, MethodConfig]] = Field(default_factory=dict)

    @field_validator("paths", mode="before")
    @classmethod
    def lowercase_methods(cls, value: Any) -> Any:
        if not isinstance(value, Mapping):
            return value
        return {
            path: (
                {str(method).lower(): config for method, config in methods.items()}
                if isinstance(methods, Mapping) else methods
            )
            for path, methods in value.items()
        }


def load_route_config(data: Optional[Mapping[str, Any]]) -> RouteConfig:
    """
    Validate a route configuration mapping.

    Accepts either {"paths": {...}} or the bare path mapping.

    Raises:
        pydantic.ValidationError: If a payment requirement is malformed
    """
    if not data:
        return RouteConfig()
    if "paths" not in data:
        data = {"paths": data}
    return RouteConfig.model_validate(data)


def load_route_config_file(path: str) -> RouteConfig:
    """Load and validate route configuration from a JSON file."""
    with open(Path(path)) as f:
        data = json.load(f)
    config = load_route_config(data)
    metered = sum(
        1 for methods in config.paths.values() for method in methods.values() if method.x402
    )
    logger.info(f"x402: Loaded {len(config.paths)} routes ({metered} metered) from {path}")
    return config


def resolve_payment_requirement(
    path: str,
    method: str,
    route_config: RouteConfig
) -> Optional[PaymentRequirement]:
    """
    Find the payment requirement for a request.

    Args:
        path: Request path, matched exactly
        method: HTTP method, matched case-insensitively
        route_config: The configured routes

    Returns:
        The PaymentRequirement, or None if the route is unmetered
    """
    methods = route_config.paths.get(path)
    if not methods:
        return None
    method_config = methods.get(method.lower())
    if method_config is None:
        return None
    return method_config.x402
