"""
Tests for the model client layer: message rendering, error mapping and retries.
"""

import pytest
from unittest.mock import AsyncMock, Mock, patch

import requests

from conftest import ScriptedProvider, text_response, tool_response
from jump_code.core.errors import ConfigurationError, QuotaError, TransportError
from jump_code.llm.base import (
    ImageBlock,
    Role,
    StopReason,
    StreamComplete,
    TextBlock,
    TextDelta,
    ToolResultBlock,
    ToolUseBlock,
    Turn,
    normalize_stop_reason,
    parse_tool_arguments,
)
from jump_code.llm.manager import LLMManager, classify_error, create_provider
from jump_code.llm.providers import (
    AnthropicProvider,
    GatewayProvider,
    OpenAIProvider,
    from_anthropic_content,
    to_anthropic_messages,
)
from jump_code.utils.config import LLMConfig


def conversation():
    return [
        Turn.operator("Read main.py"),
        Turn(role=Role.ASSISTANT, content=[
            TextBlock(text="Reading it."),
            ToolUseBlock(id="call_1", name="Read", input={"file_path": "main.py"}),
        ]),
        Turn(role=Role.OPERATOR, content=[
            ToolResultBlock(tool_use_id="call_1", output="print('hi')"),
        ]),
    ]


class TestDataModel:

    def test_turn_helpers(self):
        turns = conversation()
        assert turns[0].text == "Read main.py"
        assert turns[1].tool_uses[0].name == "Read"
        assert turns[2].tool_results[0].tool_use_id == "call_1"

    def test_turn_round_trips_through_json(self):
        turn = Turn.operator("look", ImageBlock(data="aGVsbG8="))
        restored = Turn.model_validate_json(turn.model_dump_json())
        assert isinstance(restored.content[1], ImageBlock)
        assert restored == turn

    def test_parse_tool_arguments(self):
        assert parse_tool_arguments('{"a": 1}') == {"a": 1}
        assert parse_tool_arguments({"a": 1}) == {"a": 1}
        assert parse_tool_arguments("") == {}
        assert parse_tool_arguments("{not json") == {}
        assert parse_tool_arguments("[1, 2]") == {}

    def test_normalize_stop_reason(self):
        assert normalize_stop_reason("stop", False) == StopReason.END_TURN
        assert normalize_stop_reason("tool_calls", True) == StopReason.TOOL_USE
        assert normalize_stop_reason("end_turn", True) == StopReason.TOOL_USE
        assert normalize_stop_reason("length", False) == StopReason.MAX_TOKENS


class TestAnthropicFormat:

    def test_messages(self):
        messages = to_anthropic_messages(conversation())

        assert [m["role"] for m in messages] == ["user", "assistant", "user"]
        assert messages[1]["content"][1] == {
            "type": "tool_use", "id": "call_1", "name": "Read", "input": {"file_path": "main.py"},
        }
        assert messages[2]["content"][0]["type"] == "tool_result"
        assert messages[2]["content"][0]["tool_use_id"] == "call_1"

    def test_image_block(self):
        messages = to_anthropic_messages([Turn.operator("see", ImageBlock(data="abc"))])
        image = messages[0]["content"][1]
        assert image["source"] == {"type": "base64", "media_type": "image/png", "data": "abc"}

    def test_response_content(self):
        blocks = from_anthropic_content([
            {"type": "text", "text": "Let me check."},
            {"type": "tool_use", "id": "t1", "name": "Glob", "input": {"pattern": "*.py"}},
        ])
        assert isinstance(blocks[0], TextBlock)
        assert blocks[1] == ToolUseBlock(id="t1", name="Glob", input={"pattern": "*.py"})


class TestOpenAIFormat:

    def test_messages(self):
        provider = OpenAIProvider(api_key="k")
        messages = provider.format_messages(conversation(), "system text")

        assert messages[0] == {"role": "system", "content": "system text"}
        assert messages[1] == {"role": "user", "content": "Read main.py"}
        assert messages[2]["tool_calls"][0]["id"] == "call_1"
        assert messages[2]["tool_calls"][0]["function"]["arguments"] == '{"file_path": "main.py"}'
        assert messages[3] == {"role": "tool", "tool_call_id": "call_1", "content": "print('hi')"}

    def test_error_results_are_marked(self):
        provider = OpenAIProvider(api_key="k")
        turns = [Turn(role=Role.OPERATOR, content=[
            ToolResultBlock(tool_use_id="x", output="boom", is_error=True),
        ])]
        assert provider.format_messages(turns, "")[0]["content"] == "Error: boom"

    def test_image_becomes_data_url(self):
        provider = OpenAIProvider(api_key="k")
        messages = provider.format_messages([Turn.operator("see", ImageBlock(data="abc"))], "")
        parts = messages[0]["content"]
        assert parts[1]["image_url"]["url"] == "data:image/png;base64,abc"

    def test_tools_rendered_as_functions(self):
        from jump_code.tools import build_registry

        provider = OpenAIProvider(api_key="k")
        params = provider._request_params([], "", build_registry().definitions())
        names = [t["function"]["name"] for t in params["tools"]]
        assert names == ["Bash", "Read", "Write", "Edit", "Glob", "Grep"]
        assert params["tool_choice"] == "auto"


class TestGateway:

    @pytest.fixture
    def gateway(self):
        provider = GatewayProvider(api_key="secret", model="sonnet", base_url="http://gw.test/api/jump-code/")
        provider.session = Mock(spec=requests.Session)
        return provider

    def _response(self, status, payload):
        response = Mock()
        response.status_code = status
        response.json.return_value = payload
        response.reason = "reason"
        return response

    async def test_send(self, gateway):
        gateway.session.post.return_value = self._response(200, {
            "content": [
                {"type": "text", "text": "Running it."},
                {"type": "tool_use", "id": "t1", "name": "Bash", "input": {"command": "ls"}},
            ],
            "stop_reason": "tool_use",
            "usage": {"input_tokens": 12, "output_tokens": 7},
        })

        response = await gateway.send([Turn.operator("ls please")], "sys", [])

        url = gateway.session.post.call_args.args[0]
        payload = gateway.session.post.call_args.kwargs["json"]
        assert url == "http://gw.test/api/jump-code"
        assert payload["model"] == "sonnet"
        assert payload["system"] == "sys"
        assert "tools" not in payload
        assert response.stop_reason == StopReason.TOOL_USE
        assert response.tool_uses[0].input == {"command": "ls"}
        assert response.usage.output_tokens == 7

    async def test_rate_limit(self, gateway):
        gateway.session.post.return_value = self._response(429, {"error": "slow down"})
        with pytest.raises(QuotaError):
            await gateway.send([Turn.operator("hi")], "", [])

    async def test_server_error(self, gateway):
        gateway.session.post.return_value = self._response(502, {"error": "bad gateway"})
        with pytest.raises(TransportError) as exc_info:
            await gateway.send([Turn.operator("hi")], "", [])
        assert exc_info.value.status_code == 502
        assert not isinstance(exc_info.value, QuotaError)

    async def test_unreachable(self, gateway):
        gateway.session.post.side_effect = requests.ConnectionError("refused")
        with pytest.raises(TransportError):
            await gateway.send([Turn.operator("hi")], "", [])

    async def test_stream_emits_whole_text(self, gateway):
        gateway.session.post.return_value = self._response(200, {
            "content": [{"type": "text", "text": "All done."}],
            "stop_reason": "end_turn",
        })
        events = [e async for e in gateway.stream([Turn.operator("hi")], "", [])]
        assert events[0] == TextDelta(text="All done.")
        assert isinstance(events[-1], StreamComplete)

    async def test_non_object_body_is_transport_error(self, gateway):
        gateway.session.post.return_value = self._response(200, ["not", "an", "object"])
        with pytest.raises(TransportError) as exc_info:
            await gateway.send([Turn.operator("hi")], "", [])
        assert "not a JSON object" in str(exc_info.value)

    async def test_list_error_body_still_maps_status(self, gateway):
        gateway.session.post.return_value = self._response(502, ["oops"])
        with pytest.raises(TransportError) as exc_info:
            await gateway.send([Turn.operator("hi")], "", [])
        assert exc_info.value.status_code == 502

    async def test_requests_per_minute_waits_for_next_window(self, gateway):
        gateway.requests_per_minute = 2
        gateway.session.post.return_value = self._response(200, {"content": []})
        with patch("jump_code.llm.providers.asyncio.sleep", new_callable=AsyncMock) as sleep:
            for _ in range(3):
                await gateway.send([Turn.operator("hi")], "", [])
        sleep.assert_awaited_once()
        assert 0 < sleep.call_args.args[0] <= 60
        assert gateway.session.post.call_count == 3
        assert gateway._window_requests == 1

    async def test_zero_requests_per_minute_disables_limit(self, gateway):
        gateway.requests_per_minute = 0
        gateway.session.post.return_value = self._response(200, {"content": []})
        with patch("jump_code.llm.providers.asyncio.sleep", new_callable=AsyncMock) as sleep:
            for _ in range(5):
                await gateway.send([Turn.operator("hi")], "", [])
        sleep.assert_not_awaited()

    def test_limit_taken_from_config(self):
        provider = create_provider(LLMConfig(provider="gateway", base_url="http://gw.test", requests_per_minute=10))
        assert provider.requests_per_minute == 10

    async def test_authorization_header(self):
        provider = GatewayProvider(api_key="secret", base_url="http://gw.test")
        await provider.initialize()
        assert provider.session.headers["Authorization"] == "Bearer secret"


class TestCreateProvider:

    def test_anthropic_requires_key(self, clean_environment):
        with pytest.raises(ConfigurationError):
            create_provider(LLMConfig(provider="anthropic", model="claude"))

    def test_openai_with_base_url_needs_no_key(self):
        provider = create_provider(LLMConfig(provider="openai", base_url="http://localhost:8000/v1"))
        assert isinstance(provider, OpenAIProvider)
        assert provider.base_url == "http://localhost:8000/v1"

    def test_gateway_requires_url(self):
        with pytest.raises(ConfigurationError):
            create_provider(LLMConfig(provider="gateway"))

    def test_unknown_provider(self):
        with pytest.raises(ConfigurationError) as exc_info:
            create_provider(LLMConfig(provider="mystery"))
        assert "openai" in str(exc_info.value)

    def test_anthropic(self):
        provider = create_provider(LLMConfig(provider="anthropic", model="claude-x", api_key="k"))
        assert isinstance(provider, AnthropicProvider)
        assert provider.model == "claude-x"


class TestClassifyError:

    def test_requests_errors(self):
        assert isinstance(classify_error(requests.Timeout("slow")), TransportError)

    def test_passthrough(self):
        error = QuotaError()
        assert classify_error(error) is error

    def test_programming_errors_not_transport(self):
        assert classify_error(KeyError("x")) is None


class TestLLMManager:

    def manager(self, responses, **config):
        settings = {"retry_backoff": 0.0, "quota_retries": 2}
        settings.update(config)
        provider = ScriptedProvider(responses)
        return LLMManager(LLMConfig(**settings), provider=provider), provider

    async def test_send(self):
        manager, provider = self.manager([text_response("hello")])
        response = await manager.send([Turn.operator("hi")], "sys", [])
        assert response.text == "hello"
        assert provider.initialized

    async def test_quota_retried_then_succeeds(self):
        manager, provider = self.manager([QuotaError(), QuotaError(), text_response("finally")])
        response = await manager.send([Turn.operator("hi")], "", [])
        assert response.text == "finally"
        assert len(provider.calls) == 3

    async def test_quota_retries_exhausted(self):
        manager, provider = self.manager([QuotaError()], quota_retries=1)
        with pytest.raises(QuotaError):
            await manager.send([Turn.operator("hi")], "", [])
        assert len(provider.calls) == 2

    async def test_transport_error_not_retried(self):
        manager, provider = self.manager([TransportError("down"), text_response("never")])
        with pytest.raises(TransportError):
            await manager.send([Turn.operator("hi")], "", [])
        assert len(provider.calls) == 1

    async def test_programming_error_propagates(self):
        manager, _ = self.manager([KeyError("bug")])
        with pytest.raises(KeyError):
            await manager.send([Turn.operator("hi")], "", [])

    async def test_stream(self):
        manager, _ = self.manager([tool_response(("t", "Glob", {"pattern": "*"}), text="Looking")])
        events = [e async for e in manager.stream([Turn.operator("hi")], "", [])]
        assert "".join(e.text for e in events if isinstance(e, TextDelta)) == "Looking"
        assert events[-1].response.tool_uses[0].id == "t"

    async def test_stream_quota_retried(self):
        manager, provider = self.manager([QuotaError(), text_response("ok")])
        events = [e async for e in manager.stream([Turn.operator("hi")], "", [])]
        assert events[-1].response.text == "ok"
        assert len(provider.calls) == 2

    async def test_backoff_doubles(self):
        manager, _ = self.manager([QuotaError(), QuotaError(), text_response("ok")], retry_backoff=0.5)
        with patch("jump_code.llm.manager.asyncio.sleep", new_callable=AsyncMock) as sleep:
            await manager.send([Turn.operator("hi")], "", [])
        assert [c.args[0] for c in sleep.call_args_list] == [0.5, 1.0]

    def test_set_model(self):
        manager, provider = self.manager([text_response("x")])
        manager.set_model("bigger-model")
        assert provider.model == "bigger-model"
        assert manager.config.model == "bigger-model"

    def test_count_turn_tokens(self):
        manager, _ = self.manager([text_response("x")])
        assert manager.count_turn_tokens(conversation()) > 0
