"""
VPN provisioning orchestration.

The provisioned/credential check on a freshly read order is always the first
step, so approve, retry and double clicks never issue a second panel client.
Concurrent provisioners are serialized by a claim on `vpnProvisionClaimedAt`.
"""

import asyncio
from dataclasses import dataclass
from datetime import timedelta

from storefront.config import PipelineSettings
from storefront.errors import (
    ERROR_ORDER_NOT_FOUND,
    ERROR_VPN_NO_ACTIVE_KEY,
    ERROR_VPN_PLAN_NOT_FOUND,
    ERROR_VPN_PROTOCOL_UNSUPPORTED,
    ERROR_VPN_PROVISION_FAILED,
    ERROR_VPN_PROVISION_IN_PROGRESS,
    ERROR_VPN_REVOKE_FAILED,
    ERROR_VPN_SERVER_NOT_FOUND,
    Conflict,
    ExternalServiceFailure,
    NotFound,
    ValidationError,
)
from storefront.logging import get_logger, order_ref, sanitize_string_for_logging
from storefront.services.database import Database
from storefront.services.integrations.xui import ProvisionRequest, VpnCredential, XuiPanelClient
from storefront.services.models import Order, VpnPlan, VpnProvisionStatus, VpnServer
from storefront.services.repositories.base import iso, utc_now
from storefront.services.vpn_plans import get_plan

logger = get_logger(__name__)

DEFAULT_PROTOCOL = "trojan"


@dataclass
class ProvisionOutcome:
    order: Order
    already_provisioned: bool = False


def is_provisioned(order: Order) -> bool:
    return (
        order.vpn_provision_status == VpnProvisionStatus.PROVISIONED
        and order.vpn_key is not None
        and bool(order.vpn_key.client_uuid)
    )


class VpnProvisioner:
    """Provision / revoke panel clients for VPN orders."""

    def __init__(self, db: Database, panel: XuiPanelClient):
        self.db = db
        self.panel = panel

    async def resolve_selection(
        self, server_id: str, plan_id: str, protocol: str | None = None
    ) -> tuple[VpnPlan, VpnServer, str]:
        """
        Check a VPN checkout selection.

        Raises:
            NotFound: unknown plan, or server unknown/disabled/offline
            ValidationError: protocol not enabled on the server
        """
        plan = get_plan(plan_id)
        if not plan:
            raise NotFound(ERROR_VPN_PLAN_NOT_FOUND)
        server = await self.db.vpn_servers.get_available(server_id)
        if not server:
            raise NotFound(ERROR_VPN_SERVER_NOT_FOUND)
        protocol = protocol or DEFAULT_PROTOCOL
        if protocol not in server.enabled_protocols:
            raise ValidationError(ERROR_VPN_PROTOCOL_UNSUPPORTED)
        return plan, server, protocol

    async def _claim(self, order: Order, settings: PipelineSettings) -> str:
        seen = order.vpn_provision_claimed_at
        if seen is not None:
            age = utc_now() - seen
            if age < timedelta(seconds=settings.provision_claim_ttl_seconds):
                raise Conflict(ERROR_VPN_PROVISION_IN_PROGRESS)
            logger.warning(f"Taking over stale provision claim on {order_ref(order.id, order.order_number)}")
        token = await self.db.orders.claim_provision(order.id, seen)
        if token is None:
            raise Conflict(ERROR_VPN_PROVISION_IN_PROGRESS)
        return token

    async def _username(self, user_id: str) -> str:
        user = await self.db.users.get_by_id(user_id)
        return user.display_name if user else ""

    async def _call_panel(self, request: ProvisionRequest, timeout: float) -> VpnCredential | None:
        try:
            return await asyncio.wait_for(self.panel.provision(request), timeout=timeout)
        except TimeoutError:
            logger.error(f"VPN panel timed out after {timeout}s on {request.server_id}")
        except Exception as e:
            logger.error(f"VPN panel error on {request.server_id}: {e}", exc_info=True)
        return None

    async def provision(self, order_id: str, settings: PipelineSettings) -> ProvisionOutcome:
        """
        Issue a panel client for a VPN order, or return the existing one.

        Order status is not touched here; callers move the order to completed.

        Raises:
            NotFound: order/plan/server missing
            Conflict: another provisioning attempt holds the claim
            ExternalServiceFailure: panel failed (vpnProvisionStatus = failed)
        """
        order = await self.db.orders.get_by_id(order_id)
        if not order or not order.vpn_plan:
            raise NotFound(ERROR_ORDER_NOT_FOUND)
        if is_provisioned(order):
            logger.warning(f"VPN already provisioned, skipping duplicate for {order_ref(order.id, order.order_number)}")
            return ProvisionOutcome(order=order, already_provisioned=True)

        claim = await self._claim(order, settings)
        try:
            # A provisioner that finished between our read and our claim leaves its key behind
            order = await self.db.orders.get_by_id(order_id)
            if is_provisioned(order):
                return ProvisionOutcome(order=order, already_provisioned=True)

            selection = order.vpn_plan
            plan = get_plan(selection.plan_id)
            if not plan:
                raise NotFound(ERROR_VPN_PLAN_NOT_FOUND)
            server = await self.db.vpn_servers.get_by_id(selection.server_id)
            if not server:
                raise NotFound(ERROR_VPN_SERVER_NOT_FOUND)

            request = ProvisionRequest(
                server_id=selection.server_id,
                username=await self._username(order.user),
                user_id=order.user,
                devices=plan.devices,
                expiry_days=plan.expiry_days,
                data_limit_gb=plan.data_limit_gb,
                protocol=selection.protocol or DEFAULT_PROTOCOL,
            )
            logger.info(
                f"Provisioning VPN key for {order_ref(order.id, order.order_number)} "
                f"on {selection.server_id} ({plan.id})"
            )
            credential = await self._call_panel(request, settings.vpn_timeout_seconds)

            if credential is None:
                await self.db.orders.update_fields(
                    order.id, {"vpnProvisionStatus": VpnProvisionStatus.FAILED.value}
                )
                raise ExternalServiceFailure(ERROR_VPN_PROVISION_FAILED, service="vpn_panel")

            updated = await self.db.orders.update_fields(order.id, {
                "vpnKey": {
                    "clientEmail": credential.client_email,
                    "clientUUID": credential.client_uuid,
                    "subId": credential.sub_id,
                    "subLink": credential.sub_link,
                    "configLink": credential.config_link,
                    "protocol": credential.protocol,
                    "expiryTime": credential.expiry_time,
                    "provisionedAt": iso(),
                },
                "vpnProvisionStatus": VpnProvisionStatus.PROVISIONED.value,
            })
            logger.info(
                f"VPN key provisioned for {order_ref(order.id, order.order_number)}: "
                f"{sanitize_string_for_logging(credential.client_email)}"
            )
            return ProvisionOutcome(order=updated)
        finally:
            if not await self.db.orders.release_provision(order_id, claim):
                logger.warning(f"Provision claim on {order_ref(order_id)} was taken over before release")

    async def revoke(self, order_id: str, settings: PipelineSettings) -> Order:
        """
        Delete the order's panel client. Only from provisioned; never retried.

        Raises:
            Conflict: no provisioned key (including a second revoke)
            ExternalServiceFailure: panel refused or failed; key stays provisioned
        """
        order = await self.db.orders.get_by_id(order_id)
        if not order or not order.vpn_plan:
            raise NotFound(ERROR_ORDER_NOT_FOUND)
        if order.vpn_provision_status != VpnProvisionStatus.PROVISIONED or not order.vpn_key:
            raise Conflict(ERROR_VPN_NO_ACTIVE_KEY)

        client_email = order.vpn_key.client_email
        try:
            revoked = await asyncio.wait_for(
                self.panel.revoke(order.vpn_plan.server_id, client_email),
                timeout=settings.vpn_timeout_seconds,
            )
        except TimeoutError:
            logger.error(f"VPN revoke timed out for {order_ref(order.id, order.order_number)}")
            revoked = False
        except Exception as e:
            logger.error(f"Error revoking VPN key for {order_ref(order.id, order.order_number)}: {e}")
            revoked = False

        if not revoked:
            raise ExternalServiceFailure(ERROR_VPN_REVOKE_FAILED, service="vpn_panel")

        updated = await self.db.orders.cas_provision_status(
            order.id,
            VpnProvisionStatus.PROVISIONED.value,
            {"vpnProvisionStatus": VpnProvisionStatus.REVOKED.value},
        )
        if not updated:
            raise Conflict(ERROR_VPN_NO_ACTIVE_KEY)
        logger.info(f"VPN key revoked for {order_ref(order.id, order.order_number)}")
        return updated
