"""Unit tests for baidu speech and NLP calls."""

from __future__ import annotations

import json
from typing import Any
from unittest.mock import AsyncMock, patch

import pytest

from speech_services.baidu import services
from speech_services.baidu.client import BaiduClient, BaiduResponse, BaiduService
from speech_services.baidu.errors import BaiduAPIError
from speech_services.config import Settings


def _json(data: dict[str, Any], status: int = 200) -> BaiduResponse:
    return BaiduResponse(status, "application/json", json.dumps(data).encode())


@pytest.fixture
def client(settings: Settings) -> BaiduClient:
    return BaiduClient(settings.baidu)


class TestRecognize:
    @pytest.mark.asyncio
    async def test_best_hypothesis(self, client: BaiduClient) -> None:
        reply = _json({"err_no": 0, "result": ["你好", "你号"]})
        with patch.object(client, "send", new_callable=AsyncMock, return_value=reply) as send:
            text = await services.recognize(client, b"\x00\x01" * 10)

        assert text == "你好"
        service, body = send.await_args.args
        assert service is services.ASR
        assert body["len"] == 20
        assert body["format"] == "wav"
        assert body["rate"] == 16000

    @pytest.mark.asyncio
    async def test_no_result(self, client: BaiduClient) -> None:
        reply = _json({"err_no": 0, "result": []})
        with patch.object(client, "send", new_callable=AsyncMock, return_value=reply):
            assert await services.recognize(client, b"") is None

    @pytest.mark.asyncio
    async def test_vendor_error(self, client: BaiduClient) -> None:
        reply = _json({"err_no": 3301, "err_msg": "speech quality error."})
        with patch.object(client, "send", new_callable=AsyncMock, return_value=reply):
            with pytest.raises(BaiduAPIError) as exc_info:
                await services.recognize(client, b"\x00")
        assert exc_info.value.code == 3301


class TestSynthesize:
    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        ("per", "expected"), [(0, services.TTS), (4, services.TTS), (5, services.TTS_PREMIUM)]
    )
    async def test_voice_routes_to_quota(
        self, client: BaiduClient, per: int, expected: BaiduService
    ) -> None:
        audio = BaiduResponse(200, "audio/mp3", b"ID3")
        with patch.object(client, "send", new_callable=AsyncMock, return_value=audio) as send:
            result = await services.synthesize(client, "你好", per=per, fmt="wav")

        assert result == b"ID3"
        service, body = send.await_args.args
        assert service is expected
        assert body["per"] == per
        assert body["aue"] == 6
        assert send.await_args.kwargs["body_type"] == "form"

    @pytest.mark.asyncio
    async def test_long_text_truncated(self, client: BaiduClient) -> None:
        audio = BaiduResponse(200, "audio/mp3", b"ID3")
        with patch.object(client, "send", new_callable=AsyncMock, return_value=audio) as send:
            await services.synthesize(client, "字" * 5000)

        assert len(send.await_args.args[1]["tex"]) == services.MAX_TTS_TEXT

    @pytest.mark.asyncio
    async def test_error_reply_instead_of_audio(self, client: BaiduClient) -> None:
        reply = _json({"err_no": 500, "err_msg": "not support"})
        with patch.object(client, "send", new_callable=AsyncMock, return_value=reply):
            with pytest.raises(BaiduAPIError, match="not support"):
                await services.synthesize(client, "你好")


class TestLexer:
    @pytest.mark.asyncio
    async def test_extension_a_runs_pass_through(self, client: BaiduClient) -> None:
        async def send(service: BaiduService, body: dict[str, Any]) -> BaiduResponse:
            text = body["text"]
            return _json({"items": [{"item": text, "pos": "n"}]})

        with patch.object(client, "send", side_effect=send) as mock_send:
            items = await services.lexer(client, "山川㐀㐁河流")

        assert [(i.item, i.pos) for i in items] == [
            ("山川", "n"),
            ("㐀㐁", None),
            ("河流", "n"),
        ]
        assert mock_send.call_count == 2

    @pytest.mark.asyncio
    async def test_only_extension_a(self, client: BaiduClient) -> None:
        with patch.object(client, "send", new_callable=AsyncMock) as send:
            items = await services.lexer(client, "㐀")

        assert [(i.item, i.pos) for i in items] == [("㐀", None)]
        send.assert_not_awaited()


class TestDepparse:
    @pytest.mark.asyncio
    async def test_conll_rows(self, client: BaiduClient) -> None:
        reply = _json(
            {
                "items": [
                    {"id": "1", "word": "张三", "postag": "nr", "head": "2", "deprel": "SBV"},
                    {"id": "2", "word": "走", "postag": "v", "head": "0", "deprel": "HED"},
                ]
            }
        )
        with patch.object(client, "send", new_callable=AsyncMock, return_value=reply):
            rows = await services.depparse(client, "张三走")

        assert [(r.word, r.postag, r.deprel) for r in rows] == [
            ("张三", "nr", "SBV"),
            ("走", "v", "HED"),
        ]


class TestKnowledge:
    @pytest.mark.asyncio
    async def test_definition(self, client: BaiduClient) -> None:
        reply = _json(
            {
                "result": [
                    {
                        "response": {
                            "entity": [
                                {
                                    "attrs": [
                                        {"key": "alias", "objects": [{"@value": "x"}]},
                                        {
                                            "key": "definition",
                                            "objects": [{"@value": "A large river."}],
                                        },
                                    ]
                                }
                            ]
                        }
                    }
                ]
            }
        )
        with patch.object(client, "send", new_callable=AsyncMock, return_value=reply) as send:
            assert await services.definition(client, "长江") == "A large river."
        assert send.await_args.args == (services.OPENQA, {"query": "长江"})

    @pytest.mark.asyncio
    async def test_definition_missing(self, client: BaiduClient) -> None:
        reply = _json({"result": []})
        with patch.object(client, "send", new_callable=AsyncMock, return_value=reply):
            assert await services.definition(client, "xyz") is None


class TestIdentifySpeakers:
    @pytest.mark.asyncio
    async def test_named_labels_only(self, client: BaiduClient) -> None:
        tags = {"A": "n", "张三": "nr", "李四": "nr", "跑步": "v"}

        async def send(service: BaiduService, body: dict[str, Any]) -> BaiduResponse:
            text = body["text"]
            return _json({"items": [{"id": "1", "word": text, "postag": tags[text]}]})

        text = "A：你好\n张三、李四：走吧\n跑步：好的"
        with patch.object(client, "send", side_effect=send):
            speakers = await services.identify_speakers(client, text)

        assert speakers == {0: "A", 5: "张三", 8: "李四"}

    @pytest.mark.asyncio
    async def test_no_dialogue(self, client: BaiduClient) -> None:
        with patch.object(client, "send", new_callable=AsyncMock) as send:
            assert await services.identify_speakers(client, "今天天气很好。") == {}
        send.assert_not_awaited()
