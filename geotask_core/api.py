"""Typed GeoTask API calls built on the HTTP client."""

from __future__ import annotations

from typing import Protocol

from . import endpoints
from .errors import InvalidRequestError
from .http import GeoTaskHttpClient
from .models import (
    Contractor,
    ContractorRequest,
    CreateOrderRequest,
    CreateTaskRequest,
    EmptyResponse,
    GeoTask,
    Location,
    LoginRequest,
    LoginResponse,
    Order,
    RefreshTokenRequest,
    RegisterRequest,
    User,
)


class AuthApi(Protocol):
    """Auth calls the session manager depends on."""

    async def login(self, email: str, password: str) -> LoginResponse: ...

    async def register(self, email: str, password: str, name: str) -> LoginResponse: ...

    async def logout(self) -> EmptyResponse: ...

    async def refresh_token(self, refresh_token: str) -> LoginResponse: ...


def _path(template: str, resource_id: str) -> str:
    try:
        return endpoints.resolve(template, resource_id)
    except ValueError as err:
        raise InvalidRequestError(str(err)) from err


class GeoTaskApiService:
    """GeoTask REST API.

    Methods return the decoded payload and raise ``APIError`` subclasses on
    failure.
    """

    def __init__(self, http_client: GeoTaskHttpClient) -> None:
        self._http = http_client

    # -------------------------------------------------------------------------
    # Authentication
    # -------------------------------------------------------------------------

    async def login(self, email: str, password: str) -> LoginResponse:
        response = await self._http.post(
            endpoints.LOGIN,
            LoginRequest(email=email, password=password),
            response_type=LoginResponse,
        )
        return response.data

    async def register(self, email: str, password: str, name: str) -> LoginResponse:
        response = await self._http.post(
            endpoints.REGISTER,
            RegisterRequest(email=email, password=password, name=name),
            response_type=LoginResponse,
        )
        return response.data

    async def logout(self) -> EmptyResponse:
        response = await self._http.post(
            endpoints.LOGOUT, EmptyResponse(), response_type=EmptyResponse
        )
        return response.data

    async def refresh_token(self, refresh_token: str) -> LoginResponse:
        response = await self._http.post(
            endpoints.REFRESH,
            RefreshTokenRequest(refresh_token=refresh_token),
            response_type=LoginResponse,
        )
        return response.data

    # -------------------------------------------------------------------------
    # Profile
    # -------------------------------------------------------------------------

    async def get_profile(self) -> User:
        return (await self._http.get(endpoints.PROFILE, response_type=User)).data

    async def update_profile(self, user: User) -> User:
        return (await self._http.put(endpoints.PROFILE, user, response_type=User)).data

    # -------------------------------------------------------------------------
    # Tasks
    # -------------------------------------------------------------------------

    async def get_tasks(self) -> list[GeoTask]:
        return (await self._http.get(endpoints.TASKS, response_type=list[GeoTask])).data

    async def get_task(self, task_id: str) -> GeoTask:
        path = _path(endpoints.TASK, task_id)
        return (await self._http.get(path, response_type=GeoTask)).data

    async def create_task(self, task: CreateTaskRequest) -> GeoTask:
        return (await self._http.post(endpoints.TASKS, task, response_type=GeoTask)).data

    async def update_task(self, task_id: str, task: CreateTaskRequest) -> GeoTask:
        path = _path(endpoints.TASK, task_id)
        return (await self._http.put(path, task, response_type=GeoTask)).data

    async def delete_task(self, task_id: str) -> EmptyResponse:
        path = _path(endpoints.TASK, task_id)
        return (await self._http.delete(path, response_type=EmptyResponse)).data

    # -------------------------------------------------------------------------
    # Orders
    # -------------------------------------------------------------------------

    async def get_orders(self) -> list[Order]:
        return (await self._http.get(endpoints.ORDERS, response_type=list[Order])).data

    async def get_order(self, order_id: str) -> Order:
        path = _path(endpoints.ORDER, order_id)
        return (await self._http.get(path, response_type=Order)).data

    async def create_order(self, order: CreateOrderRequest) -> Order:
        return (await self._http.post(endpoints.ORDERS, order, response_type=Order)).data

    async def cancel_order(self, order_id: str) -> EmptyResponse:
        path = _path(endpoints.CANCEL_ORDER, order_id)
        return (await self._http.post(path, EmptyResponse(), response_type=EmptyResponse)).data

    async def accept_order(self, order_id: str) -> EmptyResponse:
        path = _path(endpoints.ACCEPT_ORDER, order_id)
        return (await self._http.post(path, EmptyResponse(), response_type=EmptyResponse)).data

    # -------------------------------------------------------------------------
    # Contractors
    # -------------------------------------------------------------------------

    async def get_contractors(self) -> list[Contractor]:
        return (
            await self._http.get(endpoints.CONTRACTORS, response_type=list[Contractor])
        ).data

    async def get_contractor(self, contractor_id: str) -> Contractor:
        path = _path(endpoints.CONTRACTOR, contractor_id)
        return (await self._http.get(path, response_type=Contractor)).data

    async def get_contractor_requests(self) -> list[ContractorRequest]:
        return (
            await self._http.get(
                endpoints.CONTRACTOR_REQUESTS, response_type=list[ContractorRequest]
            )
        ).data

    async def accept_contractor(self, contractor_id: str) -> EmptyResponse:
        path = _path(endpoints.ACCEPT_CONTRACTOR, contractor_id)
        return (await self._http.post(path, EmptyResponse(), response_type=EmptyResponse)).data

    # -------------------------------------------------------------------------
    # Locations
    # -------------------------------------------------------------------------

    async def get_locations(self) -> list[Location]:
        return (await self._http.get(endpoints.LOCATIONS, response_type=list[Location])).data

    async def get_location(self, location_id: str) -> Location:
        path = _path(endpoints.LOCATION, location_id)
        return (await self._http.get(path, response_type=Location)).data

    async def get_nearby_locations(
        self, latitude: float, longitude: float, radius: float
    ) -> list[Location]:
        response = await self._http.get(
            endpoints.NEARBY_LOCATIONS,
            query_params={"latitude": latitude, "longitude": longitude, "radius": radius},
            response_type=list[Location],
        )
        return response.data
