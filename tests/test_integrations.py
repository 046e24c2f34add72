"""
Tests for the external adapters: receipt OCR parsing, 3x-UI panel, Telegram channel
"""
import json
from decimal import Decimal
from unittest.mock import AsyncMock, Mock

import httpx
import pytest
from aiogram.exceptions import TelegramAPIError

from storefront.services.integrations import xui as xui_module
from storefront.services.integrations.ocr import extract_amount, extract_transaction_id, parse_receipt_text
from storefront.services.integrations.telegram import (
    ApprovePrompt,
    NotificationDispatcher,
    build_screenshot_caption,
)
from storefront.services.integrations.xui import (
    ProvisionRequest,
    XuiSession,
    build_client_name,
    build_client_settings,
    build_config_link,
)
from storefront.services.models import VpnServer


# ==================== OCR ====================

class TestReceiptParsing:
    def test_kpay_receipt(self):
        text = "KBZPay Payment Successful Transaction ID : 01234567890123 Amount 25,000 Ks"

        result = parse_receipt_text(text, 91.5)

        assert result.transaction_id == "01234567890123"
        assert result.amount == "25000"
        assert result.confidence == 91.5

    def test_wave_reference(self):
        assert extract_transaction_id("Wave Money Ref No: WM12345678 Total 8,000 MMK") == "WM12345678"

    def test_amount_currency_first(self):
        assert extract_amount("MMK 12,500.00 paid") == "12500.00"

    def test_nothing_readable(self):
        result = parse_receipt_text("blurry", 12)
        assert result.transaction_id is None
        assert result.amount is None


# ==================== 3X-UI ====================

def _server(**fields) -> VpnServer:
    data = {
        "id": "sg1",
        "name": "Singapore 1",
        "url": "https://sg1.example.net:2053",
        "panelPath": "/panel",
        "domain": "sg1.example.net",
        "subPort": 2096,
        "trojanPort": 443,
    }
    data.update(fields)
    return VpnServer(**data)


class TestPanelHelpers:
    def test_client_name(self):
        assert build_client_name("Ko Ko", "u1", 2, "vless") == "Ko Ko - 2D / Web (VL)"
        assert build_client_name("", "u1", 1, "trojan") == "User_u1 - 1D / Web (TR)"

    def test_trojan_uses_password(self):
        settings = build_client_settings("trojan", "uuid-1", "n", 1, 0, 1, "u1", "sub")
        assert settings["password"] == "uuid-1"
        assert "id" not in settings

    def test_vless_uses_id(self):
        settings = build_client_settings("vless", "uuid-1", "n", 3, 0, 1, "u1", "sub")
        assert settings["id"] == "uuid-1"
        assert settings["limitIp"] == 3

    def test_trojan_link_prefers_trojan_port(self):
        link = build_config_link("trojan", "uuid-1", "Ko", _server(), 8443, "SG", 30)
        assert link.startswith("trojan://uuid-1@sg1.example.net:443?")

    def test_vmess_link_is_base64_json(self):
        link = build_config_link("vmess", "uuid-1", "Ko", _server(), 8443, "SG", 30)
        assert link.startswith("vmess://")


def _panel_transport(calls: list, add_success: bool = True, fail_times: int = 0):
    state = {"failures": fail_times}

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append((request.method, request.url.path))
        if state["failures"] > 0:
            state["failures"] -= 1
            return httpx.Response(502)
        if request.url.path.endswith("/login"):
            return httpx.Response(200, json={"success": True})
        if request.url.path.endswith("/inbounds/list"):
            clients = json.dumps({"clients": [{"email": "Ko Ko - 1D / Web (TR)"}]})
            return httpx.Response(200, json={"success": True, "obj": [
                {"id": 3, "protocol": "vless", "port": 8443, "remark": "SG", "settings": "{}"},
                {"id": 7, "protocol": "trojan", "port": 8443, "remark": "SG", "settings": clients},
            ]})
        if request.url.path.endswith("/addClient"):
            return httpx.Response(200, json={"success": add_success, "msg": "dup email"})
        if "/delClient/" in request.url.path:
            return httpx.Response(200, json={"success": True})
        return httpx.Response(404, json={"success": False})

    return httpx.MockTransport(handler)


@pytest.fixture
def panel_credentials(monkeypatch):
    monkeypatch.setattr(xui_module, "XUI_USERNAME", "admin")
    monkeypatch.setattr(xui_module, "XUI_PASSWORD", "secret")


def _session(transport) -> XuiSession:
    server = _server()
    session = XuiSession(server)
    session.http = httpx.AsyncClient(base_url=server.panel_base_url, transport=transport)
    return session


class TestXuiSession:
    @pytest.mark.asyncio
    async def test_create_client_on_matching_inbound(self, panel_credentials):
        calls = []
        session = _session(_panel_transport(calls))

        credential = await session.create_client(ProvisionRequest(
            server_id="sg1", username="Ko Ko", user_id="u1", devices=1, expiry_days=30, protocol="trojan",
        ))
        await session.close()

        assert credential is not None
        assert credential.protocol == "trojan"
        assert credential.client_email == "Ko Ko - 1D / Web (TR)"
        assert len(credential.sub_id) == 16
        assert credential.sub_link == f"https://sg1.example.net:2096/sub/{credential.sub_id}"
        assert credential.config_link.startswith(f"trojan://{credential.client_uuid}@sg1.example.net:443")
        assert ("POST", "/panel/panel/api/inbounds/addClient") in calls

    @pytest.mark.asyncio
    async def test_panel_refusal_returns_none(self, panel_credentials):
        session = _session(_panel_transport([], add_success=False))

        credential = await session.create_client(ProvisionRequest(
            server_id="sg1", username="Ko Ko", user_id="u1", devices=1, expiry_days=30,
        ))
        await session.close()

        assert credential is None

    @pytest.mark.asyncio
    async def test_server_errors_are_retried(self, panel_credentials, monkeypatch):
        monkeypatch.setattr(XuiSession._request.retry, "sleep", AsyncMock())
        calls = []
        session = _session(_panel_transport(calls, fail_times=2))

        assert await session.login() is True
        await session.close()

        assert len(calls) == 3

    @pytest.mark.asyncio
    async def test_find_and_delete_client(self, panel_credentials):
        calls = []
        session = _session(_panel_transport(calls))

        inbound_id = await session.find_client("Ko Ko - 1D / Web (TR)")
        deleted = await session.delete_client(inbound_id, "Ko Ko - 1D / Web (TR)")
        await session.close()

        assert inbound_id == 7
        assert deleted is True

    @pytest.mark.asyncio
    async def test_missing_credentials(self, monkeypatch):
        monkeypatch.setattr(xui_module, "XUI_USERNAME", "")
        session = _session(_panel_transport([]))

        assert await session.login() is False
        await session.close()


# ==================== TELEGRAM ====================

class TestOperatorChannel:
    def test_caption_escapes_html(self):
        caption = build_screenshot_caption("BD-000001", "<b>Mg</b>", "Netflix", Decimal("25000"), "kpay", "KP1")

        assert "&lt;b&gt;Mg&lt;/b&gt;" in caption
        assert "25,000 Ks" in caption
        assert "KPAY" in caption

    @pytest.mark.asyncio
    async def test_send_screenshot(self):
        bot = AsyncMock()
        bot.send_photo.return_value = Mock(message_id=42, photo=[Mock(file_id="small"), Mock(file_id="large")])
        dispatcher = NotificationDispatcher(bot, channel_id="-100123")

        receipt = await dispatcher.send_screenshot(b"img", "r.png", "caption")

        assert receipt.file_id == "large"
        assert receipt.message_id == 42

    @pytest.mark.asyncio
    async def test_send_failure_returns_none(self):
        bot = AsyncMock()
        bot.send_photo.side_effect = TelegramAPIError(method=Mock(), message="chat not found")
        dispatcher = NotificationDispatcher(bot, channel_id="-100123")

        assert await dispatcher.send_screenshot(b"img", "r.png", "caption") is None

    @pytest.mark.asyncio
    async def test_approve_buttons_carry_order_id(self):
        bot = AsyncMock()
        dispatcher = NotificationDispatcher(bot, channel_id="-100123")

        sent = await dispatcher.send_approve_buttons(ApprovePrompt(
            order_id="o-1", order_number="BD-000001", user_name="Ko", product_name="VPN",
            amount=Decimal("8000"), payment_method="kpay", order_type="vpn",
        ))

        assert sent is True
        markup = bot.send_message.await_args.kwargs["reply_markup"]
        buttons = markup.inline_keyboard[0]
        assert [b.callback_data for b in buttons] == ["approve_order:o-1", "reject_order:o-1"]

    @pytest.mark.asyncio
    async def test_unconfigured_dispatcher(self):
        dispatcher = NotificationDispatcher(None, channel_id="")

        assert await dispatcher.send_screenshot(b"img", "r.png", "c") is None
        assert await dispatcher.send_approve_buttons(ApprovePrompt(
            order_id="o", order_number="n", user_name="u", product_name="p",
            amount=Decimal("1"), payment_method="kpay",
        )) is False
