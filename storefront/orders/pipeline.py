"""
Order Pipeline - checkout orchestration.

Checkout order of operations:
    validate selection -> price coupon -> quarantine screenshot -> OCR ->
    fraud scoring -> persist -> record coupon usage -> auto-complete gate ->
    notify operator channel (background)

Everything that can refuse a checkout runs before the screenshot is written.
"""

import asyncio
from collections import defaultdict
from collections.abc import Coroutine
from dataclasses import dataclass
from datetime import timedelta
from decimal import Decimal
from typing import Any

from pydantic import BaseModel, Field

from storefront.config import PipelineSettings
from storefront.errors import (
    ERROR_CART_TOO_LARGE,
    ERROR_COUPON_PREVIEW_INPUT,
    ERROR_COUPON_RECORD_FAILED,
    ERROR_EMPTY_CART,
    ERROR_INVALID_PAYMENT_METHOD,
    ERROR_INVALID_QUANTITY,
    ERROR_ORDER_NOT_FOUND,
    ERROR_PRODUCT_NOT_FOUND,
    ERROR_SCREENSHOT_REQUIRED,
    ERROR_VPN_ORDER_NOT_FOUND,
    InsufficientStock,
    NotFound,
    StorageFailure,
    StorefrontError,
    ValidationError,
)
from storefront.logging import get_logger, order_ref, sanitize_id_for_logging
from storefront.orders.status_service import BulkResult, OrderStatusService, TransitionResult
from storefront.orders.vpn import VpnProvisioner
from storefront.services.database import Database
from storefront.services.domains import CouponQuote, FraudResult
from storefront.services.integrations.ocr import OcrAdapter, OcrResult
from storefront.services.integrations.telegram import (
    ApprovePrompt,
    NotificationDispatcher,
    build_screenshot_caption,
)
from storefront.services.models import (
    Order,
    OrderStatus,
    OrderType,
    PaymentMethod,
    Product,
    VerificationChecklist,
)
from storefront.services.money import (
    parse_amount,
    proportional_share,
    to_float,
    within_tolerance,
)
from storefront.services.quarantine import (
    QuarantineStore,
    compute_screenshot_hash,
    new_screenshot_path,
)
from storefront.services.repositories.base import iso, utc_now

logger = get_logger(__name__)

MIN_QUANTITY = 1
MAX_QUANTITY = 10
MAX_CART_LINES = 20


# ==================== INPUT TYPES ====================

class ProductSelection(BaseModel):
    product_id: str
    quantity: int = 1


class VpnSelection(BaseModel):
    server_id: str
    plan_id: str
    protocol: str = "trojan"


class Screenshot(BaseModel):
    content: bytes = Field(repr=False)
    filename: str = "screenshot.jpg"


@dataclass
class _PricedLine:
    """A validated cart line before coupon distribution."""

    order_type: OrderType
    subtotal: Decimal
    label: str
    category: str | None
    quantity: int = 1
    product: Product | None = None
    vpn_plan: dict | None = None


@dataclass
class _Evidence:
    screenshot_path: str
    screenshot_hash: str
    ocr: OcrResult | None
    transaction_id: str | None
    fraud: FraudResult


# ==================== PIPELINE ====================

class OrderPipeline:
    """Creates orders and routes admin actions to the status service."""

    def __init__(
        self,
        db: Database,
        quarantine: QuarantineStore,
        ocr: OcrAdapter,
        notifier: NotificationDispatcher,
        provisioner: VpnProvisioner,
        base_settings: PipelineSettings | None = None,
    ):
        self.db = db
        self.quarantine = quarantine
        self.ocr = ocr
        self.notifier = notifier
        self.provisioner = provisioner
        self.status = OrderStatusService(db, quarantine, provisioner)
        self.base_settings = base_settings or PipelineSettings.from_env()
        self._background: set[asyncio.Task] = set()

    async def load_settings(self) -> PipelineSettings:
        return await self.db.settings.load(self.base_settings)

    # ---------- background notifications ----------

    def _spawn(self, coro: Coroutine[Any, Any, Any], label: str) -> None:
        async def runner():
            try:
                await coro
            except Exception as e:
                logger.warning(f"Background task {label} failed (non-blocking): {e}")

        task = asyncio.create_task(runner())
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def drain(self) -> None:
        """Wait for pending background notifications (shutdown, tests)."""
        if self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    # ---------- validation ----------

    @staticmethod
    def _check_payment_method(payment_method: str) -> str:
        try:
            return PaymentMethod((payment_method or "").strip().lower()).value
        except ValueError:
            raise ValidationError(ERROR_INVALID_PAYMENT_METHOD)

    @staticmethod
    def _check_screenshot(screenshot: Screenshot | None) -> Screenshot:
        if screenshot is None or not screenshot.content:
            raise ValidationError(ERROR_SCREENSHOT_REQUIRED)
        return screenshot

    async def _price_product(self, selection: ProductSelection, reserved: int = 0) -> _PricedLine:
        if not MIN_QUANTITY <= selection.quantity <= MAX_QUANTITY:
            raise ValidationError(ERROR_INVALID_QUANTITY)
        product = await self.db.products.get_by_id(selection.product_id)
        if not product or not product.active:
            raise NotFound(ERROR_PRODUCT_NOT_FOUND)
        available = await self.db.inventory.available(product.id) - reserved
        if available < selection.quantity:
            raise InsufficientStock(f"Only {max(available, 0)} items in stock", available=max(available, 0))
        return _PricedLine(
            order_type=OrderType.PRODUCT,
            subtotal=product.price * selection.quantity,
            label=product.name,
            category=product.category,
            quantity=selection.quantity,
            product=product,
        )

    async def _price_vpn(self, selection: VpnSelection) -> _PricedLine:
        plan, server, protocol = await self.provisioner.resolve_selection(
            selection.server_id, selection.plan_id, selection.protocol
        )
        return _PricedLine(
            order_type=OrderType.VPN,
            subtotal=plan.price,
            label=f"VPN {plan.name} ({server.name})",
            category="vpn",
            vpn_plan={
                "serverId": server.id,
                "planId": plan.id,
                "devices": plan.devices,
                "months": plan.months,
                "protocol": protocol,
            },
        )

    async def _quote_coupon(
        self, coupon_code: str | None, user_id: str, amount: Decimal, category: str | None
    ) -> CouponQuote | None:
        if not coupon_code or not coupon_code.strip():
            return None
        return await self.db.coupon_ledger.validate(coupon_code, user_id, amount, category)

    # ---------- evidence ----------

    async def _run_ocr(self, image_path: str, settings: PipelineSettings) -> OcrResult | None:
        try:
            return await asyncio.wait_for(self.ocr.extract(image_path), timeout=settings.ocr_timeout_seconds)
        except TimeoutError:
            logger.error(f"OCR timed out after {settings.ocr_timeout_seconds}s")
        except Exception as e:
            logger.error(f"OCR processing failed: {e}")
        return None

    async def _gather_evidence(
        self,
        user_id: str,
        screenshot: Screenshot,
        transaction_id: str | None,
        total: Decimal,
        payment_method: str,
        settings: PipelineSettings,
    ) -> _Evidence:
        saved = await self.quarantine.save(screenshot.content, new_screenshot_path(screenshot.filename))
        screenshot_hash = compute_screenshot_hash(screenshot.content)

        ocr = await self._run_ocr(saved.full_path, settings) if settings.ocr_enabled else None
        best_txid = (transaction_id or "").strip() or (ocr.transaction_id if ocr else None)

        fraud = await self.db.fraud.detect(
            user_id, best_txid, screenshot_hash, total, payment_method, settings
        )
        return _Evidence(
            screenshot_path=saved.public_path,
            screenshot_hash=screenshot_hash,
            ocr=ocr,
            transaction_id=best_txid,
            fraud=fraud,
        )

    def _order_row(
        self,
        user_id: str,
        line: _PricedLine,
        total: Decimal,
        discount: Decimal,
        coupon: CouponQuote | None,
        payment_method: str,
        evidence: _Evidence,
        settings: PipelineSettings,
    ) -> dict[str, Any]:
        ocr = evidence.ocr
        row: dict[str, Any] = {
            "user": user_id,
            "orderType": line.order_type.value,
            "quantity": line.quantity,
            "totalAmount": to_float(total),
            "paymentMethod": payment_method,
            "discountAmount": to_float(discount),
            "paymentScreenshot": evidence.screenshot_path,
            "screenshotHash": evidence.screenshot_hash,
            "transactionId": evidence.transaction_id or "",
            "ocrVerified": bool(
                settings.ocr_enabled and ocr
                and ocr.confidence > settings.ocr_verified_min_confidence
                and ocr.transaction_id
            ),
            "ocrExtractedData": (
                {"amount": ocr.amount, "transactionId": ocr.transaction_id, "confidence": ocr.confidence}
                if ocr else None
            ),
            "fraudFlags": evidence.fraud.flags,
            "requiresManualReview": evidence.fraud.requires_manual_review,
            "reviewReason": evidence.fraud.review_reason,
            "status": (OrderStatus.VERIFYING if settings.ocr_enabled else OrderStatus.PENDING).value,
            "paymentExpiresAt": iso(utc_now() + timedelta(minutes=settings.payment_window_minutes)),
            "deliveredKeys": [],
        }
        if coupon:
            row["couponCode"] = coupon.coupon.code
        if line.order_type == OrderType.VPN:
            row["vpnPlan"] = line.vpn_plan
            row["vpnProvisionStatus"] = "pending"
        else:
            row["product"] = line.product.id
        return row

    # ---------- coupon usage ----------

    async def _record_coupon(
        self, coupon: CouponQuote | None, user_id: str, orders: list[Order], screenshot_path: str
    ) -> None:
        """
        Record usage once, keyed to the first order.

        If usage cannot be recorded (a limit was hit meanwhile, or the ledger
        write failed) the checkout is undone: its orders are rejected and the
        screenshot deleted, so no discount is ever granted uncounted.
        """
        if not coupon or not orders:
            return
        try:
            await self.db.coupon_ledger.record_usage(coupon.coupon.id, user_id, orders[0].id)
        except StorefrontError as e:
            logger.warning(
                f"Coupon usage rejected after order {order_ref(orders[0].id, orders[0].order_number)} "
                f"was created: {e.message}"
            )
            await self._undo_checkout(orders, screenshot_path, e.message)
            raise
        except Exception as e:
            logger.error(
                f"Coupon usage could not be recorded for order "
                f"{order_ref(orders[0].id, orders[0].order_number)}: {e}",
                exc_info=True,
            )
            await self._undo_checkout(orders, screenshot_path, ERROR_COUPON_RECORD_FAILED)
            raise StorageFailure(ERROR_COUPON_RECORD_FAILED) from e

    async def _undo_checkout(self, orders: list[Order], screenshot_path: str, reason: str) -> None:
        for order in orders:
            try:
                await self.db.orders.cas_status(order.id, order.status.value, {
                    "status": OrderStatus.REJECTED.value,
                    "rejectReason": reason,
                })
            except Exception as e:
                logger.error(f"Failed to reject {order_ref(order.id, order.order_number)} after coupon failure: {e}")
        await self.quarantine.delete(screenshot_path.lstrip("/"))

    # ---------- auto-completion ----------

    def _qualifies_for_auto_complete(
        self, order: Order, evidence: _Evidence, settings: PipelineSettings
    ) -> bool:
        ocr = evidence.ocr
        if not settings.ocr_enabled or ocr is None:
            return False
        if evidence.fraud.has_strict_flag or evidence.fraud.requires_manual_review:
            return False
        if ocr.confidence <= settings.auto_complete_min_confidence:
            return False
        if not ocr.transaction_id or not ocr.amount:
            return False
        extracted = parse_amount(ocr.amount)
        if extracted is None:
            return False
        return within_tolerance(extracted, order.total_amount, settings.amount_tolerance_ratio)

    async def _auto_complete(self, order: Order) -> Order:
        try:
            details = await self.db.inventory.allocate(order.product, order.quantity, order.user)
        except InsufficientStock:
            logger.warning(f"Auto-complete skipped for {order_ref(order.id, order.order_number)}: stock ran out")
            return order

        updated = await self.db.orders.cas_status(order.id, order.status.value, {
            "status": OrderStatus.COMPLETED.value,
            "deliveredKeys": [d.to_delivered_key().model_dump(by_alias=True) for d in details],
        })
        if not updated:
            await self.db.inventory.release(order.product, [d.id for d in details])
            return await self.db.orders.get_by_id(order.id) or order

        await self.quarantine.release(updated.screenshot_relative_path)
        logger.info(f"Order {order_ref(updated.id, updated.order_number)} auto-completed")
        return updated

    # ---------- notifications ----------

    async def _notify(
        self,
        orders: list[Order],
        screenshot: Screenshot,
        label: str,
        settings: PipelineSettings,
    ) -> None:
        async def send():
            first = orders[0]
            user = await self.db.users.get_by_id(first.user)
            user_name = user.display_name if user else first.user
            total = sum((o.total_amount for o in orders), Decimal("0"))
            caption = build_screenshot_caption(
                order_number=", ".join(o.order_number or "" for o in orders),
                user_name=user_name,
                product_name=label,
                amount=total,
                payment_method=first.payment_method,
                transaction_id=first.transaction_id or None,
            )
            await self.notifier.send_screenshot(screenshot.content, screenshot.filename, caption)
            for order in orders:
                if order.status == OrderStatus.COMPLETED:
                    continue
                await self.notifier.send_approve_buttons(ApprovePrompt(
                    order_id=order.id,
                    order_number=order.order_number or "",
                    user_name=user_name,
                    product_name=label,
                    amount=order.total_amount,
                    payment_method=order.payment_method,
                    order_type=order.order_type.value,
                ))

        self._spawn(asyncio.wait_for(send(), timeout=settings.notify_timeout_seconds), "notify")

    # ==================== CHECKOUT ====================

    async def create_order(
        self,
        user_id: str,
        selection: ProductSelection | VpnSelection,
        payment_method: str,
        screenshot: Screenshot | None,
        coupon_code: str | None = None,
        transaction_id: str | None = None,
        settings: PipelineSettings | None = None,
    ) -> Order:
        """
        Single product or VPN plan checkout.

        Raises:
            ValidationError, NotFound, InsufficientStock, coupon errors: nothing written
            StorageFailure: screenshot could not be quarantined
        """
        settings = settings or await self.load_settings()
        payment_method = self._check_payment_method(payment_method)
        screenshot = self._check_screenshot(screenshot)

        if isinstance(selection, VpnSelection):
            line = await self._price_vpn(selection)
        else:
            line = await self._price_product(selection)

        coupon = await self._quote_coupon(coupon_code, user_id, line.subtotal, line.category)
        discount = coupon.discount_amount if coupon else Decimal("0")
        total = max(Decimal("0"), line.subtotal - discount)

        evidence = await self._gather_evidence(
            user_id, screenshot, transaction_id, total, payment_method, settings
        )

        try:
            order = await self.db.orders.create(self._order_row(
                user_id, line, total, discount, coupon, payment_method, evidence, settings
            ))
        except Exception:
            await self.quarantine.delete(evidence.screenshot_path.lstrip("/"))
            raise
        logger.info(
            f"Order {order_ref(order.id, order.order_number)} created for user "
            f"{sanitize_id_for_logging(user_id)}: {order.status.value}, flags={order.fraud_flags}"
        )

        await self._record_coupon(coupon, user_id, [order], evidence.screenshot_path)

        if line.order_type == OrderType.PRODUCT and self._qualifies_for_auto_complete(order, evidence, settings):
            order = await self._auto_complete(order)

        self._notify([order], screenshot, line.label, settings)
        return order

    async def create_cart_order(
        self,
        user_id: str,
        lines: list[ProductSelection],
        payment_method: str,
        screenshot: Screenshot | None,
        coupon_code: str | None = None,
        transaction_id: str | None = None,
        settings: PipelineSettings | None = None,
    ) -> list[Order]:
        """
        Multi-product checkout: one order per line, one shared screenshot.

        The coupon is priced on the cart subtotal (first line's category) and
        split across lines by their share of the subtotal, each share rounded
        on its own. Cart orders always wait for an operator.
        """
        settings = settings or await self.load_settings()
        if not lines:
            raise ValidationError(ERROR_EMPTY_CART)
        if len(lines) > MAX_CART_LINES:
            raise ValidationError(ERROR_CART_TOO_LARGE)
        payment_method = self._check_payment_method(payment_method)
        screenshot = self._check_screenshot(screenshot)

        reserved: dict[str, int] = defaultdict(int)
        priced: list[_PricedLine] = []
        for selection in lines:
            line = await self._price_product(selection, reserved=reserved[selection.product_id])
            reserved[selection.product_id] += selection.quantity
            priced.append(line)

        grand_subtotal = sum((line.subtotal for line in priced), Decimal("0"))
        coupon = await self._quote_coupon(coupon_code, user_id, grand_subtotal, priced[0].category)
        discount = coupon.discount_amount if coupon else Decimal("0")
        grand_total = max(Decimal("0"), grand_subtotal - discount)

        evidence = await self._gather_evidence(
            user_id, screenshot, transaction_id, grand_total, payment_method, settings
        )

        orders: list[Order] = []
        for line in priced:
            share = proportional_share(discount, line.subtotal, grand_subtotal)
            line_total = max(Decimal("0"), line.subtotal - share)
            try:
                order = await self.db.orders.create(self._order_row(
                    user_id, line, line_total, share, coupon, payment_method, evidence, settings
                ))
            except Exception:
                if not orders:
                    await self.quarantine.delete(evidence.screenshot_path.lstrip("/"))
                raise
            orders.append(order)

        logger.info(
            f"Cart checkout for user {sanitize_id_for_logging(user_id)}: "
            f"{', '.join(order_ref(o.id, o.order_number) for o in orders)}"
        )

        await self._record_coupon(coupon, user_id, orders, evidence.screenshot_path)

        label = ", ".join(f"{line.label} x{line.quantity}" for line in priced)
        self._notify(orders, screenshot, label, settings)
        return orders

    # ==================== CUSTOMER READS ====================

    async def preview_coupon(
        self, coupon_code: str, user_id: str, amount: Decimal, category: str | None = None
    ) -> CouponQuote:
        """Price a coupon for the checkout form without recording any usage."""
        if not coupon_code or not coupon_code.strip() or amount <= 0:
            raise ValidationError(ERROR_COUPON_PREVIEW_INPUT)
        return await self.db.coupon_ledger.validate(coupon_code, user_id, amount, category)

    async def get_customer_order(self, order_id: str, user_id: str) -> Order:
        """The order, only if it belongs to `user_id`; anyone else sees NotFound."""
        order = await self.db.orders.get_by_id(order_id)
        if not order or order.user != user_id:
            raise NotFound(ERROR_ORDER_NOT_FOUND)
        return order

    async def get_vpn_order(self, order_id: str, user_id: str) -> Order:
        order = await self.db.orders.get_by_id(order_id)
        if not order or order.user != user_id or not order.is_vpn:
            raise NotFound(ERROR_VPN_ORDER_NOT_FOUND)
        return order

    # ==================== ADMIN ====================

    async def admin_transition(
        self,
        order_id: str,
        target_status: str,
        admin_id: str,
        admin_note: str | None = None,
        reject_reason: str | None = None,
        checklist: VerificationChecklist | dict | None = None,
        settings: PipelineSettings | None = None,
    ) -> TransitionResult:
        settings = settings or await self.load_settings()
        return await self.status.admin_transition(
            order_id, target_status, admin_id, settings,
            admin_note=admin_note, reject_reason=reject_reason, checklist=checklist,
        )

    async def admin_vpn_action(
        self, order_id: str, action: str, admin_id: str, settings: PipelineSettings | None = None
    ) -> TransitionResult:
        settings = settings or await self.load_settings()
        return await self.status.admin_vpn_action(order_id, action, admin_id, settings)

    async def bulk_transition(
        self,
        order_ids: list[str],
        action: str,
        admin_id: str,
        reject_reason: str | None = None,
        checklist: VerificationChecklist | dict | None = None,
        settings: PipelineSettings | None = None,
    ) -> BulkResult:
        settings = settings or await self.load_settings()
        return await self.status.bulk_transition(
            order_ids, action, admin_id, settings, reject_reason=reject_reason, checklist=checklist
        )

    async def sweep_expired(self, settings: PipelineSettings | None = None) -> int:
        """Expiry sweep; never raises, settings failures included."""
        try:
            settings = settings or await self.load_settings()
        except Exception as e:
            logger.warning(f"Auto-expire skipped, settings unavailable: {e}")
            return 0
        return await self.status.sweep_expired(settings)


__all__ = [
    "OrderPipeline",
    "ProductSelection",
    "Screenshot",
    "VpnSelection",
]
