"""Unit tests for signed xfyun HTTP calls and machine translation."""

from __future__ import annotations

import base64
import json
from unittest.mock import AsyncMock, patch

import pytest

from speech_services.config import Settings
from speech_services.translate.xfyun_ots import Language, translate
from speech_services.xfyun.service import XFYunAPIError, XFYunService
from speech_services.xfyun.signer import body_digest
from tests.unit.mocks.mock_http import FakeResponse, fake_session

# 2026-10-19 08:00:00 UTC
TS = 1792396800.0


@pytest.fixture
def service(settings: Settings) -> XFYunService:
    return XFYunService(settings.xfyun_ots, clock=lambda: TS)


class TestXFYunService:
    def test_endpoint_parts(self, service: XFYunService) -> None:
        assert service.host == "ntrans.xfyun.cn"
        assert service.path == "/v2/ots"

    def test_signed_headers(self, service: XFYunService) -> None:
        headers = service.signed_headers(b'{"a": 1}')
        assert headers["Date"] == "Mon, 19 Oct 2026 08:00:00 GMT"
        assert headers["Digest"] == body_digest(b'{"a": 1}')
        assert 'headers="host date request-line digest"' in headers["Authorization"]
        assert headers["Authorization"].startswith('api_key="key456"')

    def test_socket_url_signed_now(self, settings: Settings) -> None:
        url = XFYunService(settings.xfyun_iat, clock=lambda: TS).socket_url()
        assert url.startswith("wss://iat-api.xfyun.cn/v2/iat?authorization=")
        assert "date=Mon%2C+19+Oct+2026" in url

    @pytest.mark.asyncio
    async def test_post_fills_app_id_and_signs_body(self, service: XFYunService) -> None:
        session = fake_session(FakeResponse(json_data={"code": 0, "data": {"ok": True}}))

        result = await service.post(session, {"business": {"from": "zh"}})

        assert result["data"] == {"ok": True}
        call = session.post.call_args
        assert call.args[0] == "https://ntrans.xfyun.cn/v2/ots"
        payload = call.kwargs["data"]
        assert json.loads(payload)["common"] == {"app_id": "app123"}
        assert call.kwargs["headers"]["Digest"] == body_digest(payload)

    @pytest.mark.asyncio
    async def test_non_zero_code(self, service: XFYunService) -> None:
        session = fake_session(FakeResponse(json_data={"code": 10163, "message": "bad param"}))

        with pytest.raises(XFYunAPIError) as exc_info:
            await service.post(session, {})

        assert exc_info.value.code == 10163
        assert exc_info.value.message == "bad param"

    @pytest.mark.asyncio
    async def test_http_error_without_code(self, service: XFYunService) -> None:
        session = fake_session(FakeResponse(403, body=b"<html>forbidden</html>"))

        with pytest.raises(XFYunAPIError) as exc_info:
            await service.post(session, {})
        assert exc_info.value.code == 403


class TestTranslate:
    @pytest.mark.asyncio
    async def test_returns_destination_text(self, service: XFYunService) -> None:
        reply = {
            "code": 0,
            "data": {"result": {"from": "cn", "to": "en", "trans_result": {"dst": "Hello"}}},
        }
        with patch.object(service, "post", new_callable=AsyncMock, return_value=reply) as post:
            text = await translate(service, session=None, text="你好")  # type: ignore[arg-type]

        assert text == "Hello"
        body = post.await_args.args[1]
        assert body["business"] == {"from": "zh", "to": "en"}
        assert base64.b64decode(body["data"]["text"]).decode() == "你好"

    @pytest.mark.asyncio
    async def test_reverse_direction(self, service: XFYunService) -> None:
        reply = {"code": 0, "data": {"result": {"trans_result": {"dst": "你好"}}}}
        with patch.object(service, "post", new_callable=AsyncMock, return_value=reply) as post:
            await translate(
                service, None, "hello", Language.EN, Language.ZH  # type: ignore[arg-type]
            )

        assert post.await_args.args[1]["business"] == {"from": "en", "to": "zh"}

    @pytest.mark.asyncio
    async def test_unexpected_reply(self, service: XFYunService) -> None:
        with patch.object(
            service, "post", new_callable=AsyncMock, return_value={"code": 0, "data": {}}
        ):
            with pytest.raises(XFYunAPIError, match="unexpected translation reply"):
                await translate(service, None, "你好")  # type: ignore[arg-type]
