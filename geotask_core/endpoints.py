"""GeoTask REST endpoint paths."""

from __future__ import annotations

from typing import Final

# Auth
LOGIN: Final = "/auth/login"
REGISTER: Final = "/auth/register"
LOGOUT: Final = "/auth/logout"
REFRESH: Final = "/auth/refresh"

# User
PROFILE: Final = "/user/profile"

# Tasks
TASKS: Final = "/tasks"
TASK: Final = "/tasks/{id}"

# Orders
ORDERS: Final = "/orders"
ORDER: Final = "/orders/{id}"
CANCEL_ORDER: Final = "/orders/{id}/cancel"
ACCEPT_ORDER: Final = "/orders/{id}/accept"

# Contractors
CONTRACTORS: Final = "/contractors"
CONTRACTOR: Final = "/contractors/{id}"
CONTRACTOR_REQUESTS: Final = "/contractors/requests"
ACCEPT_CONTRACTOR: Final = "/contractors/{id}/accept"

# Locations
LOCATIONS: Final = "/locations"
LOCATION: Final = "/locations/{id}"
NEARBY_LOCATIONS: Final = "/locations/nearby"


def resolve(template: str, resource_id: str) -> str:
    """Fill the ``{id}`` placeholder of an endpoint template."""
    if not resource_id or "/" in resource_id:
        raise ValueError(f"Invalid resource id: {resource_id!r}")
    return template.replace("{id}", resource_id)
