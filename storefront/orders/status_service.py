"""
Admin-driven order transitions and the payment-window expiry sweep.

Every status write is conditional on the status that was read, so a racing
sweep, Telegram callback or second admin makes the later writer fail with
Conflict instead of silently overwriting.
"""

from dataclasses import dataclass, field
from typing import Any

from storefront.config import PipelineSettings
from storefront.errors import (
    ERROR_BULK_EMPTY,
    ERROR_BULK_INVALID_ACTION,
    ERROR_BULK_REJECT_REASON_REQUIRED,
    ERROR_BULK_TOO_MANY,
    ERROR_INVALID_TRANSITION,
    ERROR_ORDER_NOT_FOUND,
    ERROR_PRODUCT_NOT_FOUND,
    ERROR_REJECT_REASON_REQUIRED,
    ERROR_STATUS_CHANGED,
    ERROR_VPN_ALREADY_PROVISIONED,
    ERROR_VPN_ORDER_NOT_FOUND,
    Conflict,
    NotFound,
    StorefrontError,
    ValidationError,
)
from storefront.logging import get_logger, order_ref, sanitize_string_for_logging
from storefront.orders.vpn import VpnProvisioner, is_provisioned
from storefront.services.database import Database
from storefront.services.models import (
    OPEN_STATUSES,
    BulkAction,
    Order,
    OrderStatus,
    VerificationChecklist,
    VpnAction,
)
from storefront.services.quarantine import QuarantineStore
from storefront.services.repositories.base import iso

logger = get_logger(__name__)

EXPIRED_REJECT_REASON = "Payment window expired"
EXPIRED_ADMIN_NOTE = "Auto-rejected: Payment window expired"
MAX_BULK_ORDERS = 50

ALLOWED_TRANSITIONS: dict[str, frozenset[str]] = {
    OrderStatus.PENDING.value: frozenset({"verifying", "completed", "rejected"}),
    OrderStatus.VERIFYING.value: frozenset({"completed", "rejected"}),
    OrderStatus.COMPLETED.value: frozenset({"refunded"}),
    OrderStatus.REJECTED.value: frozenset(),
    OrderStatus.REFUNDED.value: frozenset(),
}


@dataclass
class TransitionResult:
    order: Order
    message: str


@dataclass
class BulkItemResult:
    order_id: str
    success: bool
    order_number: str | None = None
    error: str | None = None


@dataclass
class BulkResult:
    action: str
    total_orders: int
    results: list[BulkItemResult] = field(default_factory=list)
    success_count: int = 0
    fail_count: int = 0

    def add(self, item: BulkItemResult) -> None:
        self.results.append(item)
        if item.success:
            self.success_count += 1
        else:
            self.fail_count += 1


def can_transition(current: str, target: str) -> bool:
    return target in ALLOWED_TRANSITIONS.get(current, frozenset())


class OrderStatusService:
    """Applies admin decisions and the expiry sweep to persisted orders."""

    def __init__(self, db: Database, quarantine: QuarantineStore, provisioner: VpnProvisioner):
        self.db = db
        self.quarantine = quarantine
        self.provisioner = provisioner

    async def _get(self, order_id: str) -> Order:
        order = await self.db.orders.get_by_id(order_id)
        if not order:
            raise NotFound(ERROR_ORDER_NOT_FOUND)
        return order

    async def _revoke_quietly(self, order_id: str, settings: PipelineSettings) -> None:
        try:
            await self.provisioner.revoke(order_id, settings)
        except Exception as e:
            logger.error(f"Compensating revoke failed for order {order_ref(order_id)}: {e}")

    async def _release_screenshot(self, order: Order) -> None:
        if order.payment_screenshot:
            await self.quarantine.release(order.screenshot_relative_path)

    async def _delete_screenshot(self, order: Order) -> None:
        if order.payment_screenshot:
            await self.quarantine.delete(order.screenshot_relative_path)

    # ==================== ADMIN TRANSITION ====================

    async def admin_transition(
        self,
        order_id: str,
        target_status: str,
        admin_id: str,
        settings: PipelineSettings,
        admin_note: str | None = None,
        reject_reason: str | None = None,
        checklist: VerificationChecklist | dict | None = None,
    ) -> TransitionResult:
        """
        Move an order to `target_status` with its fulfillment side effects.

        completed: allocate keys / provision VPN, release the screenshot.
        rejected: needs a reason; revokes a provisioned key, deletes the screenshot.
        refunded: revokes a provisioned key; keys and screenshot stay as they are.
        """
        try:
            target = OrderStatus(target_status).value
        except ValueError:
            raise ValidationError("Invalid order status")

        if target == OrderStatus.REJECTED.value and not (reject_reason or admin_note):
            raise ValidationError(ERROR_REJECT_REASON_REQUIRED)

        order = await self._get(order_id)
        current = order.status.value
        ref = order_ref(order.id, order.order_number)

        if current == target:
            return TransitionResult(order=order, message=f"Order already {target}")
        if not can_transition(current, target):
            raise Conflict(f"{ERROR_INVALID_TRANSITION}: {current} -> {target}")

        fields: dict[str, Any] = {"status": target}
        if admin_note:
            fields["adminNote"] = admin_note
        if reject_reason:
            fields["rejectReason"] = reject_reason

        message = f"Order {target} successfully"
        claimed_keys: list[str] = []
        provisioned_here = False

        if target == OrderStatus.COMPLETED.value:
            if order.is_vpn:
                outcome = await self.provisioner.provision(order.id, settings)
                provisioned_here = not outcome.already_provisioned
                if outcome.already_provisioned:
                    message = ERROR_VPN_ALREADY_PROVISIONED
            else:
                if not order.product:
                    raise NotFound(ERROR_PRODUCT_NOT_FOUND)
                details = await self.db.inventory.allocate(order.product, order.quantity, order.user)
                claimed_keys = [d.id for d in details]
                fields["deliveredKeys"] = [
                    d.to_delivered_key().model_dump(by_alias=True) for d in details
                ]

            if checklist is not None:
                if isinstance(checklist, dict):
                    checklist = VerificationChecklist.model_validate(checklist)
                fields["verificationChecklist"] = {
                    **checklist.model_dump(
                        by_alias=True, exclude={"completed_at", "completed_by"}
                    ),
                    "completedAt": iso(),
                    "completedBy": admin_id,
                }

        if target in (OrderStatus.REJECTED.value, OrderStatus.REFUNDED.value) and is_provisioned(order):
            # Revoke failure aborts the transition
            await self.provisioner.revoke(order.id, settings)

        updated = await self.db.orders.cas_status(order.id, current, fields)
        if not updated:
            logger.warning(f"Status race on {ref}: expected {current}, transition to {target} dropped")
            if claimed_keys:
                await self.db.inventory.release(order.product, claimed_keys)
            if provisioned_here:
                await self._revoke_quietly(order.id, settings)
            raise Conflict(ERROR_STATUS_CHANGED)

        if target == OrderStatus.COMPLETED.value:
            await self._release_screenshot(updated)
        elif target == OrderStatus.REJECTED.value:
            await self._delete_screenshot(updated)

        logger.info(
            f"Order {ref} {current} -> {target} by {sanitize_string_for_logging(admin_id, 36)}"
        )
        return TransitionResult(order=updated, message=message)

    # ==================== VPN ACTIONS ====================

    async def admin_vpn_action(
        self, order_id: str, action: str, admin_id: str, settings: PipelineSettings
    ) -> TransitionResult:
        """retry_provision or revoke_key on a VPN order."""
        try:
            action = VpnAction(action)
        except ValueError:
            raise ValidationError("Invalid action. Use retry_provision or revoke_key")

        order = await self.db.orders.get_by_id(order_id)
        if not order or not order.is_vpn:
            raise NotFound(ERROR_VPN_ORDER_NOT_FOUND)

        if action == VpnAction.REVOKE_KEY:
            updated = await self.provisioner.revoke(order.id, settings)
            logger.info(f"VPN key revoked on {order_ref(order.id, order.order_number)} by admin")
            return TransitionResult(order=updated, message="VPN key revoked successfully")

        if is_provisioned(order):
            raise Conflict(ERROR_VPN_ALREADY_PROVISIONED)
        if order.status.value not in (*OPEN_STATUSES, OrderStatus.COMPLETED.value):
            raise Conflict(f"{ERROR_INVALID_TRANSITION}: {order.status.value} -> completed")

        outcome = await self.provisioner.provision(order.id, settings)
        if outcome.already_provisioned:
            raise Conflict(ERROR_VPN_ALREADY_PROVISIONED)

        provisioned = outcome.order
        if provisioned.status == OrderStatus.COMPLETED:
            updated = provisioned
        else:
            updated = await self.db.orders.cas_status(
                order.id, provisioned.status.value, {"status": OrderStatus.COMPLETED.value}
            )
            if not updated:
                await self._revoke_quietly(order.id, settings)
                raise Conflict(ERROR_STATUS_CHANGED)
            await self._release_screenshot(updated)

        logger.info(f"VPN re-provisioned for {order_ref(order.id, order.order_number)} by admin")
        return TransitionResult(order=updated, message="VPN key provisioned successfully")

    # ==================== BULK ====================

    async def bulk_transition(
        self,
        order_ids: list[str],
        action: str,
        admin_id: str,
        settings: PipelineSettings,
        reject_reason: str | None = None,
        checklist: VerificationChecklist | dict | None = None,
    ) -> BulkResult:
        """
        Approve or reject several open orders, one admin_transition each.

        A failing order is reported in its result and never stops the batch.
        """
        try:
            action = BulkAction(action)
        except ValueError:
            raise ValidationError(ERROR_BULK_INVALID_ACTION)
        if not order_ids:
            raise ValidationError(ERROR_BULK_EMPTY)
        if len(order_ids) > MAX_BULK_ORDERS:
            raise ValidationError(ERROR_BULK_TOO_MANY)
        if action == BulkAction.BULK_REJECT and not (reject_reason and reject_reason.strip()):
            raise ValidationError(ERROR_BULK_REJECT_REASON_REQUIRED)

        approve = action == BulkAction.BULK_APPROVE
        target = OrderStatus.COMPLETED.value if approve else OrderStatus.REJECTED.value
        verb = "approve" if approve else "reject"
        unique_ids = list(dict.fromkeys(order_ids))
        result = BulkResult(action=action.value, total_orders=len(unique_ids))

        for order_id in unique_ids:
            order = await self.db.orders.get_by_id(order_id)
            if not order:
                result.add(BulkItemResult(order_id=order_id, success=False, error=ERROR_ORDER_NOT_FOUND))
                continue
            item = BulkItemResult(order_id=order.id, success=False, order_number=order.order_number)
            if order.status.value not in OPEN_STATUSES:
                item.error = f"Order {order.order_number or order.id} is {order.status.value}, cannot {verb}"
                result.add(item)
                continue
            try:
                await self.admin_transition(
                    order.id, target, admin_id, settings,
                    reject_reason=None if approve else reject_reason.strip(),
                    checklist=checklist if approve else None,
                )
                item.success = True
            except StorefrontError as e:
                item.error = e.message
            except Exception as e:
                logger.error(
                    f"Bulk {verb} failed on {order_ref(order.id, order.order_number)}: {e}", exc_info=True
                )
                item.error = "Internal error"
            result.add(item)

        logger.info(
            f"Bulk {action.value} by {sanitize_string_for_logging(admin_id, 36)}: "
            f"{result.success_count} ok, {result.fail_count} failed of {result.total_orders}"
        )
        return result

    # ==================== EXPIRY SWEEP ====================

    async def sweep_expired(self, settings: PipelineSettings) -> int:
        """
        Reject open orders past their payment window. Never raises.

        Screenshots are left in quarantine; nothing is allocated or provisioned.
        """
        if not settings.auto_expire_enabled:
            return 0

        expired = 0
        try:
            overdue = await self.db.orders.get_overdue()
            for order in overdue:
                updated = await self.db.orders.cas_status(order.id, order.status.value, {
                    "status": OrderStatus.REJECTED.value,
                    "rejectReason": EXPIRED_REJECT_REASON,
                    "adminNote": EXPIRED_ADMIN_NOTE,
                })
                if updated:
                    expired += 1
        except Exception as e:
            logger.warning(f"Auto-expire check failed: {e}")

        if expired:
            logger.info(f"Auto-expired {expired} overdue orders")
        return expired

