# quickbite/services/orders/routes.py
"""
HTTP-маршруты сервиса заказов (префикс /api).
"""

from __future__ import annotations

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, Query

from quickbite.common.exceptions import QuickBiteError
from quickbite.services.errors import to_http_exception
from quickbite.services.orders.dependencies import get_order_service
from quickbite.services.orders.service import OrderService
from quickbite.shared.models.common import ErrorResponse, PaginatedResponse, PaginationParams
from quickbite.shared.models.enums import OrderStatus
from quickbite.shared.models.order import (
    AssignDriverRequest,
    CancelOrderRequest,
    CreateOrderRequest,
    DriverAssignmentResult,
    OrderDTO,
    OrderStats,
    OrderStatusHistoryDTO,
    PaymentStatusUpdate,
    RefundStatusUpdate,
    UpdateOrderStatusRequest,
)

router = APIRouter(prefix="/orders", tags=["Orders"])

Service = Annotated[OrderService, Depends(get_order_service)]

_ERRORS = {
    400: {"model": ErrorResponse},
    404: {"model": ErrorResponse},
    409: {"model": ErrorResponse},
    502: {"model": ErrorResponse},
}


@router.post("", response_model=OrderDTO, status_code=201, responses=_ERRORS, summary="Создать заказ")
async def create_order(request: CreateOrderRequest, service: Service) -> OrderDTO:
    """
    Создать заказ.

    Цены и названия позиций берутся из каталога на момент заказа.
    Если хоть одна позиция не найдена, заказ не создаётся.
    """
    try:
        return await service.create_order(request)
    except QuickBiteError as e:
        raise to_http_exception(e)


@router.get("/customer/{customer_id}", response_model=PaginatedResponse[OrderDTO], summary="Заказы клиента")
async def get_customer_orders(
    customer_id: str,
    service: Service,
    page: int = Query(default=1, ge=1),
    page_size: int = Query(default=10, ge=1, le=100),
) -> PaginatedResponse[OrderDTO]:
    return await service.get_orders_by_customer(customer_id, PaginationParams(page=page, page_size=page_size))


@router.get("/restaurant/{restaurant_id}", response_model=PaginatedResponse[OrderDTO], summary="Заказы ресторана")
async def get_restaurant_orders(
    restaurant_id: str,
    service: Service,
    status: OrderStatus | None = None,
    page: int = Query(default=1, ge=1),
    page_size: int = Query(default=10, ge=1, le=100),
) -> PaginatedResponse[OrderDTO]:
    return await service.get_orders_by_restaurant(
        restaurant_id, PaginationParams(page=page, page_size=page_size), status
    )


@router.get("/driver/available", response_model=list[OrderDTO], summary="Заказы без водителя")
async def get_available_orders(service: Service) -> list[OrderDTO]:
    return await service.get_available_orders()


@router.get("/stats", response_model=OrderStats, summary="Статистика заказов")
async def get_order_stats(service: Service, restaurant_id: str | None = None) -> OrderStats:
    return await service.get_order_stats(restaurant_id)


@router.get("/{order_id}", response_model=OrderDTO, responses=_ERRORS, summary="Получить заказ")
async def get_order(order_id: UUID, service: Service) -> OrderDTO:
    try:
        return await service.get_order(str(order_id))
    except QuickBiteError as e:
        raise to_http_exception(e)


@router.get(
    "/{order_id}/history",
    response_model=list[OrderStatusHistoryDTO],
    responses=_ERRORS,
    summary="История статусов",
)
async def get_order_history(order_id: UUID, service: Service) -> list[OrderStatusHistoryDTO]:
    try:
        return await service.get_order_history(str(order_id))
    except QuickBiteError as e:
        raise to_http_exception(e)


@router.patch("/{order_id}/status", response_model=OrderDTO, responses=_ERRORS, summary="Сменить статус")
async def update_order_status(order_id: UUID, request: UpdateOrderStatusRequest, service: Service) -> OrderDTO:
    """Недопустимый переход → 409."""
    try:
        return await service.update_order_status(str(order_id), request)
    except QuickBiteError as e:
        raise to_http_exception(e)


@router.post(
    "/{order_id}/accept",
    response_model=DriverAssignmentResult,
    responses=_ERRORS,
    summary="Водитель принимает заказ",
)
async def accept_order(order_id: UUID, request: AssignDriverRequest, service: Service) -> DriverAssignmentResult:
    """Если водитель уже назначен → 409."""
    try:
        return await service.assign_driver(str(order_id), request.driver_id)
    except QuickBiteError as e:
        raise to_http_exception(e)


@router.patch("/{order_id}/cancel", response_model=OrderDTO, responses=_ERRORS, summary="Отменить заказ")
async def cancel_order(order_id: UUID, service: Service, request: CancelOrderRequest | None = None) -> OrderDTO:
    try:
        return await service.cancel_order(str(order_id), request.reason if request else None)
    except QuickBiteError as e:
        raise to_http_exception(e)


@router.put("/{order_id}/payment-status", response_model=OrderDTO, responses=_ERRORS, summary="Статус оплаты")
async def update_payment_status(order_id: UUID, request: PaymentStatusUpdate, service: Service) -> OrderDTO:
    """Вызывается сервисом платежей."""
    try:
        return await service.update_payment_status(str(order_id), request.event, request.timestamp)
    except QuickBiteError as e:
        raise to_http_exception(e)


@router.put("/{order_id}/refund-status", response_model=OrderDTO, responses=_ERRORS, summary="Статус возврата")
async def update_refund_status(order_id: UUID, request: RefundStatusUpdate, service: Service) -> OrderDTO:
    """Вызывается сервисом платежей; amount — накопленная сумма успешных возвратов."""
    try:
        return await service.update_refund_status(str(order_id), request.event, request.amount, request.timestamp)
    except QuickBiteError as e:
        raise to_http_exception(e)
