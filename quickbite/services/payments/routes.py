# quickbite/services/payments/routes.py
"""
HTTP-маршруты сервиса платежей: платежи, выплаты, вебхук и возвраты.
"""

from __future__ import annotations

from datetime import datetime
from typing import Annotated

from fastapi import APIRouter, Depends, Header, Request

from quickbite.common.constants import STRIPE_SIGNATURE_HEADER
from quickbite.common.exceptions import QuickBiteError
from quickbite.services.errors import to_http_exception
from quickbite.services.payments.dependencies import (
    get_payment_service,
    get_payout_service,
    get_refund_service,
    get_webhook_reconciler,
)
from quickbite.services.payments.payout_service import PayoutService
from quickbite.services.payments.refund_service import RefundService
from quickbite.services.payments.service import PaymentService
from quickbite.services.payments.webhooks import WebhookReconciler
from quickbite.shared.models.common import ErrorResponse
from quickbite.shared.models.payment import (
    AutomaticRefundResult,
    AutoRefundRequest,
    CheckoutResult,
    ConfirmPaymentRequest,
    CreateCheckoutRequest,
    CreateDriverEarningRequest,
    CreatePaymentLinkRequest,
    CreatePaymentRequest,
    CreateRefundRequest,
    CreateSettlementRequest,
    DriverEarningDTO,
    PaymentDTO,
    PaymentIntentResult,
    PaymentLinkResult,
    PayoutRequest,
    RefundDTO,
    RefundStats,
    RestaurantSettlementDTO,
)

router = APIRouter(prefix="/payments", tags=["Payments"])
refunds_router = APIRouter(prefix="/refunds", tags=["Refunds"])

Payments = Annotated[PaymentService, Depends(get_payment_service)]
Refunds = Annotated[RefundService, Depends(get_refund_service)]
Payouts = Annotated[PayoutService, Depends(get_payout_service)]
Reconciler = Annotated[WebhookReconciler, Depends(get_webhook_reconciler)]

_ERRORS = {
    400: {"model": ErrorResponse},
    404: {"model": ErrorResponse},
    409: {"model": ErrorResponse},
    502: {"model": ErrorResponse},
}


# =============================================================================
# ПЛАТЕЖИ
# =============================================================================

@router.post("/create", response_model=PaymentIntentResult, status_code=201, responses=_ERRORS)
async def create_payment(request: CreatePaymentRequest, service: Payments) -> PaymentIntentResult:
    """Создать PaymentIntent. Второй живой платёж по заказу → 409."""
    try:
        return await service.create_payment(request)
    except QuickBiteError as e:
        raise to_http_exception(e)


@router.post("/create-checkout", response_model=CheckoutResult, status_code=201, responses=_ERRORS)
async def create_checkout(request: CreateCheckoutRequest, service: Payments) -> CheckoutResult:
    try:
        return await service.create_payment_with_checkout(request)
    except QuickBiteError as e:
        raise to_http_exception(e)


@router.post("/create-payment-link", response_model=PaymentLinkResult, status_code=201, responses=_ERRORS)
async def create_payment_link(request: CreatePaymentLinkRequest, service: Payments) -> PaymentLinkResult:
    try:
        return await service.create_payment_link(request)
    except QuickBiteError as e:
        raise to_http_exception(e)


@router.post("/confirm", response_model=PaymentDTO, responses=_ERRORS)
async def confirm_payment(request: ConfirmPaymentRequest, service: Payments) -> PaymentDTO:
    try:
        return await service.confirm_payment(request.payment_intent_id, request.payment_method_id)
    except QuickBiteError as e:
        raise to_http_exception(e)


@router.post("/{intent_id}/cancel", response_model=PaymentDTO, responses=_ERRORS)
async def cancel_payment(intent_id: str, service: Payments) -> PaymentDTO:
    try:
        return await service.cancel_payment(intent_id)
    except QuickBiteError as e:
        raise to_http_exception(e)


@router.patch("/sessions/{session_id}/cancel", response_model=PaymentDTO, responses=_ERRORS)
async def cancel_checkout_session(session_id: str, service: Payments) -> PaymentDTO:
    try:
        return await service.cancel_checkout_session(session_id)
    except QuickBiteError as e:
        raise to_http_exception(e)


@router.get("/order/{order_id}", response_model=PaymentDTO, responses=_ERRORS)
async def get_payment_by_order(order_id: str, service: Payments) -> PaymentDTO:
    try:
        return await service.get_payment_by_order(order_id)
    except QuickBiteError as e:
        raise to_http_exception(e)


# =============================================================================
# ВЫПЛАТЫ
# =============================================================================

@router.post("/driver-earnings", response_model=DriverEarningDTO, status_code=201, responses=_ERRORS)
async def create_driver_earning(request: CreateDriverEarningRequest, service: Payouts) -> DriverEarningDTO:
    try:
        return await service.create_driver_earning(request)
    except QuickBiteError as e:
        raise to_http_exception(e)


@router.post("/driver-earnings/{earning_id}/payout", response_model=DriverEarningDTO, responses=_ERRORS)
async def process_driver_payout(earning_id: str, request: PayoutRequest, service: Payouts) -> DriverEarningDTO:
    """Повторная выплата того же начисления → 409."""
    try:
        return await service.process_driver_payout(earning_id, request.destination_account)
    except QuickBiteError as e:
        raise to_http_exception(e)


@router.get("/driver-earnings/driver/{driver_id}", response_model=list[DriverEarningDTO])
async def get_driver_earnings(driver_id: str, service: Payouts) -> list[DriverEarningDTO]:
    return await service.get_driver_earnings(driver_id)


@router.post("/settlements", response_model=RestaurantSettlementDTO, status_code=201, responses=_ERRORS)
async def create_settlement(request: CreateSettlementRequest, service: Payouts) -> RestaurantSettlementDTO:
    try:
        return await service.create_restaurant_settlement(request)
    except QuickBiteError as e:
        raise to_http_exception(e)


@router.post("/settlements/{settlement_id}/payout", response_model=RestaurantSettlementDTO, responses=_ERRORS)
async def process_settlement(
    settlement_id: str,
    request: PayoutRequest,
    service: Payouts,
) -> RestaurantSettlementDTO:
    try:
        return await service.process_restaurant_settlement(settlement_id, request.destination_account)
    except QuickBiteError as e:
        raise to_http_exception(e)


@router.get("/settlements/restaurant/{restaurant_id}", response_model=list[RestaurantSettlementDTO])
async def get_restaurant_settlements(restaurant_id: str, service: Payouts) -> list[RestaurantSettlementDTO]:
    return await service.get_restaurant_settlements(restaurant_id)


# =============================================================================
# ВЕБХУК
# =============================================================================

@router.post("/webhook", responses={400: {"model": ErrorResponse}})
async def stripe_webhook(
    request: Request,
    reconciler: Reconciler,
    stripe_signature: Annotated[str | None, Header(alias=STRIPE_SIGNATURE_HEADER)] = None,
) -> dict:
    """
    Вебхук провайдера. Тело читается как есть, чтобы подпись сошлась.
    Неверная подпись → 400, неприменимое событие → 200.
    """
    payload = await request.body()
    try:
        return await reconciler.handle(payload, stripe_signature)
    except QuickBiteError as e:
        raise to_http_exception(e)


# Должен идти после статических путей
@router.get("/{payment_id}", response_model=PaymentDTO, responses=_ERRORS)
async def get_payment(payment_id: str, service: Payments) -> PaymentDTO:
    try:
        return await service.get_payment(payment_id)
    except QuickBiteError as e:
        raise to_http_exception(e)


# =============================================================================
# ВОЗВРАТЫ
# =============================================================================

@refunds_router.post("/", response_model=RefundDTO, status_code=201, responses=_ERRORS)
async def create_refund(request: CreateRefundRequest, service: Refunds) -> RefundDTO:
    """Сумма сверх остатка платежа → 409."""
    try:
        return await service.create_refund(request)
    except QuickBiteError as e:
        raise to_http_exception(e)


@refunds_router.post("/auto", response_model=AutomaticRefundResult | None, responses=_ERRORS)
async def create_automatic_refund(request: AutoRefundRequest, service: Refunds) -> AutomaticRefundResult | None:
    """Вызывается сервисом заказов при отмене оплаченного заказа."""
    try:
        return await service.process_automatic_refund(request.order_id, request.reason)
    except QuickBiteError as e:
        raise to_http_exception(e)


@refunds_router.get("/order/{order_id}", response_model=list[RefundDTO], responses=_ERRORS)
async def get_refunds_by_order(order_id: str, service: Refunds) -> list[RefundDTO]:
    try:
        return await service.get_refunds_by_order(order_id)
    except QuickBiteError as e:
        raise to_http_exception(e)


@refunds_router.get("/stats", response_model=RefundStats, responses=_ERRORS)
async def get_refund_stats(
    service: Refunds,
    restaurant_id: str | None = None,
    date_from: datetime | None = None,
    date_to: datetime | None = None,
) -> RefundStats:
    try:
        return await service.get_refund_stats(restaurant_id, date_from, date_to)
    except QuickBiteError as e:
        raise to_http_exception(e)


@refunds_router.get("/{refund_id}", response_model=RefundDTO, responses=_ERRORS)
async def get_refund(refund_id: str, service: Refunds) -> RefundDTO:
    try:
        return await service.get_refund(refund_id)
    except QuickBiteError as e:
        raise to_http_exception(e)


@refunds_router.post("/{refund_id}/retry", response_model=RefundDTO, responses=_ERRORS)
async def retry_refund(refund_id: str, service: Refunds) -> RefundDTO:
    """Повтор после неизвестного исхода (502 provider_outcome_unknown). Уже отправленный → 409."""
    try:
        return await service.retry_refund(refund_id)
    except QuickBiteError as e:
        raise to_http_exception(e)
