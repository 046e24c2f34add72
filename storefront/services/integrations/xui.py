"""
3x-UI Panel API client.

One cookie-authenticated httpx session per panel. Transport errors and 5xx
responses are retried with tenacity; any other failure is logged and reported
as None/False so the caller can record it on the order.
"""

import base64
import json
import os
import secrets
import string
import time
import uuid
from typing import Any
from urllib.parse import quote

import httpx
from pydantic import BaseModel
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from storefront.logging import get_logger, sanitize_string_for_logging
from storefront.services.models import VpnServer
from storefront.services.repositories import VpnServerRepository

logger = get_logger(__name__)

XUI_USERNAME = os.environ.get("XUI_USERNAME", "")
XUI_PASSWORD = os.environ.get("XUI_PASSWORD", "")
XUI_ALLOW_INSECURE_TLS = os.environ.get("XUI_ALLOW_INSECURE_TLS") == "true"

REQUEST_TIMEOUT_SECONDS = 30.0
PROTOCOL_CODES = {"trojan": "TR", "vless": "VL", "vmess": "VM", "shadowsocks": "SS"}
DEFAULT_SS_METHOD = "chacha20-ietf-poly1305"
SUB_ID_ALPHABET = string.ascii_lowercase + string.digits


class PanelServerError(Exception):
    """Panel answered 5xx."""


class ProvisionRequest(BaseModel):
    server_id: str
    username: str
    user_id: str
    devices: int
    expiry_days: int
    data_limit_gb: int = 0
    protocol: str = "trojan"


class VpnCredential(BaseModel):
    client_email: str
    client_uuid: str
    sub_id: str
    sub_link: str
    config_link: str
    protocol: str
    expiry_time: int  # unix ms
    devices: int


def generate_sub_id() -> str:
    return "".join(secrets.choice(SUB_ID_ALPHABET) for _ in range(16))


def build_client_name(username: str, user_id: str, devices: int, protocol: str) -> str:
    """Panel client email: "<username> - <n>D / Web (<proto code>)"."""
    code = PROTOCOL_CODES.get(protocol, "VPN")
    owner = username or f"User_{user_id}"
    return f"{owner} - {devices}D / Web ({code})"


def build_client_settings(
    protocol: str,
    client_uuid: str,
    client_name: str,
    devices: int,
    total_bytes: int,
    expiry_time: int,
    user_id: str,
    sub_id: str,
) -> dict[str, Any]:
    settings = {
        "email": client_name,
        "limitIp": devices,
        "totalGB": total_bytes,
        "expiryTime": expiry_time,
        "enable": True,
        "tgId": user_id,
        "subId": sub_id,
        "reset": 0,
    }
    if protocol in ("trojan", "shadowsocks"):
        settings["password"] = client_uuid
    else:
        settings["id"] = client_uuid
        if protocol == "vless":
            settings["flow"] = ""
    return settings


def build_config_link(
    protocol: str,
    client_uuid: str,
    client_name: str,
    server: VpnServer,
    port: int,
    remark: str,
    expiry_days: int,
    ss_method: str = DEFAULT_SS_METHOD,
) -> str:
    """Client import link for the inbound's protocol."""
    encoded_remark = quote(f"{remark}-{client_name}-{expiry_days}D", safe="")

    if protocol == "trojan":
        trojan_port = server.trojan_port or port
        return f"trojan://{client_uuid}@{server.domain}:{trojan_port}?security=none&type=tcp#{encoded_remark}"
    if protocol == "vless":
        return f"vless://{client_uuid}@{server.domain}:{port}?type=tcp&security=none#{encoded_remark}"
    if protocol == "vmess":
        vmess_config = {
            "v": "2",
            "ps": f"{remark}-{client_name}",
            "add": server.domain,
            "port": str(port),
            "id": client_uuid,
            "aid": "0",
            "net": "tcp",
            "type": "none",
            "tls": "",
        }
        encoded = base64.b64encode(json.dumps(vmess_config, separators=(",", ":")).encode()).decode()
        return f"vmess://{encoded}"
    if protocol == "shadowsocks":
        user_info = base64.b64encode(f"{ss_method}:{client_uuid}".encode()).decode()
        return f"ss://{user_info}@{server.domain}:{port}?type=tcp#{encoded_remark}"
    return f"https://{server.domain}:{server.sub_port}/sub/{client_uuid}"


class XuiSession:
    """Logged-in session against one panel."""

    def __init__(self, server: VpnServer, timeout: float = REQUEST_TIMEOUT_SECONDS):
        self.server = server
        self.logged_in = False
        self.http = httpx.AsyncClient(
            base_url=server.panel_base_url,
            timeout=timeout,
            verify=not XUI_ALLOW_INSECURE_TLS,
        )

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=4),
        retry=retry_if_exception_type((httpx.TransportError, PanelServerError)),
        reraise=True,
    )
    async def _request(self, method: str, path: str, **kwargs) -> dict[str, Any]:
        response = await self.http.request(method, path, **kwargs)
        if response.status_code >= 500:
            raise PanelServerError(f"{method} {path} -> {response.status_code}")
        return response.json()

    async def login(self) -> bool:
        if self.logged_in:
            return True
        if not XUI_USERNAME or not XUI_PASSWORD:
            logger.error("XUI credentials missing")
            return False
        try:
            result = await self._request(
                "POST", "/login", data={"username": XUI_USERNAME, "password": XUI_PASSWORD}
            )
        except (httpx.HTTPError, PanelServerError, ValueError) as e:
            logger.error(f"XUI login error on {self.server.id}: {e}")
            return False
        if not result.get("success"):
            logger.error(f"XUI login failed on {self.server.id}: {result.get('msg')}")
            return False
        self.logged_in = True
        logger.info(f"Logged in to XUI panel {self.server.id}")
        return True

    async def get_inbounds(self) -> list[dict[str, Any]]:
        if not await self.login():
            return []
        try:
            result = await self._request("GET", "/panel/api/inbounds/list")
        except (httpx.HTTPError, PanelServerError, ValueError) as e:
            logger.error(f"Error getting inbounds on {self.server.id}: {e}")
            return []
        return (result.get("obj") or []) if result.get("success") else []

    async def create_client(self, request: ProvisionRequest) -> VpnCredential | None:
        if not await self.login():
            return None

        inbounds = await self.get_inbounds()
        if not inbounds:
            logger.error(f"No inbounds found on {self.server.id}")
            return None
        inbound = next((ib for ib in inbounds if ib.get("protocol") == request.protocol), inbounds[0])
        protocol = inbound.get("protocol", request.protocol)

        client_name = build_client_name(request.username, request.user_id, request.devices, protocol)
        client_uuid = str(uuid.uuid4())
        sub_id = generate_sub_id()
        expiry_time = int(time.time() * 1000) + request.expiry_days * 24 * 60 * 60 * 1000
        total_bytes = request.data_limit_gb * 1024 ** 3 if request.data_limit_gb > 0 else 0

        client_settings = build_client_settings(
            protocol, client_uuid, client_name, request.devices,
            total_bytes, expiry_time, request.user_id, sub_id,
        )
        try:
            result = await self._request(
                "POST",
                "/panel/api/inbounds/addClient",
                data={"id": str(inbound["id"]), "settings": json.dumps({"clients": [client_settings]})},
            )
        except (httpx.HTTPError, PanelServerError, ValueError) as e:
            logger.error(f"Error creating client on {self.server.id}: {e}")
            return None
        if not result.get("success"):
            logger.error(f"Failed to create client on {self.server.id}: {result.get('msg')}")
            return None

        ss_method = DEFAULT_SS_METHOD
        if protocol == "shadowsocks":
            try:
                ss_method = json.loads(inbound.get("settings") or "{}").get("method") or DEFAULT_SS_METHOD
            except ValueError:
                pass

        logger.info(f"VPN client created on {self.server.id}: {sanitize_string_for_logging(client_name)}")
        return VpnCredential(
            client_email=client_name,
            client_uuid=client_uuid,
            sub_id=sub_id,
            sub_link=f"https://{self.server.domain}:{self.server.sub_port}/sub/{sub_id}",
            config_link=build_config_link(
                protocol, client_uuid, client_name, self.server,
                inbound.get("port", 443), inbound.get("remark") or "VPN",
                request.expiry_days, ss_method,
            ),
            protocol=protocol,
            expiry_time=expiry_time,
            devices=request.devices,
        )

    async def find_client(self, client_email: str) -> int | None:
        """Inbound id holding `client_email`."""
        for inbound in await self.get_inbounds():
            try:
                clients = json.loads(inbound.get("settings") or "{}").get("clients", [])
            except ValueError:
                continue
            if any(c.get("email") == client_email for c in clients):
                return inbound["id"]
        return None

    async def delete_client(self, inbound_id: int, client_email: str) -> bool:
        if not await self.login():
            return False
        try:
            result = await self._request(
                "POST", f"/panel/api/inbounds/{inbound_id}/delClient/{quote(client_email, safe='')}"
            )
        except (httpx.HTTPError, PanelServerError, ValueError) as e:
            logger.error(f"Error deleting client on {self.server.id}: {e}")
            return False
        return bool(result.get("success"))

    async def close(self) -> None:
        await self.http.aclose()


class XuiPanelClient:
    """Provisioning client over every configured panel."""

    def __init__(self, servers: VpnServerRepository, timeout: float = REQUEST_TIMEOUT_SECONDS):
        self.servers = servers
        self.timeout = timeout
        self._sessions: dict[str, XuiSession] = {}

    async def _session(self, server_id: str) -> XuiSession | None:
        session = self._sessions.get(server_id)
        if session:
            return session
        server = await self.servers.get_by_id(server_id)
        if not server:
            logger.error(f"Unknown VPN server id: {sanitize_string_for_logging(server_id, 20)}")
            return None
        session = XuiSession(server, timeout=self.timeout)
        self._sessions[server_id] = session
        return session

    async def provision(self, request: ProvisionRequest) -> VpnCredential | None:
        session = await self._session(request.server_id)
        if not session:
            return None
        return await session.create_client(request)

    async def revoke(self, server_id: str, client_email: str) -> bool:
        session = await self._session(server_id)
        if not session:
            return False
        inbound_id = await session.find_client(client_email)
        if inbound_id is None:
            logger.warning(f"Client not found for revoke on {server_id}: {sanitize_string_for_logging(client_email)}")
            return False
        return await session.delete_client(inbound_id, client_email)

    async def close(self) -> None:
        for session in self._sessions.values():
            await session.close()
        self._sessions.clear()
