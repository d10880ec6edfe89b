from __future__ import annotations

from unittest.mock import MagicMock, patch

import pytest

from acpd.engine.config import RuntimeConfig
from acpd.engine.operations import CancellationToken
from acpd.engine.providers import ClaudeCliGateway, ClaudeGateway, build_gateway


def test_build_gateway_by_kind() -> None:
    with patch("acpd.engine.providers.base.shutil.which", return_value=None):
        cli = build_gateway(RuntimeConfig(engine="cli", claude_command="my-claude"))
    assert isinstance(cli, ClaudeCliGateway)
    assert cli.command == "my-claude"

    sdk = build_gateway(RuntimeConfig(engine="sdk", default_model="sonnet"))
    assert isinstance(sdk, ClaudeGateway)
    assert sdk.name == "sdk"


def test_build_gateway_auto_falls_back_to_cli() -> None:
    with patch("acpd.engine.providers.registry.sdk_installed", return_value=False):
        assert build_gateway(RuntimeConfig(engine="auto")).name == "cli"
    with patch("acpd.engine.providers.registry.sdk_installed", return_value=True):
        assert build_gateway(RuntimeConfig(engine="auto")).name == "sdk"


def test_build_gateway_rejects_unknown_kind() -> None:
    with pytest.raises(ValueError, match="Unknown engine"):
        build_gateway(RuntimeConfig(engine="gpt"))


@pytest.mark.asyncio
async def test_sdk_gateway_maps_messages() -> None:
    sdk = pytest.importorskip("claude_agent_sdk")

    assistant = MagicMock(spec=sdk.AssistantMessage)
    assistant.content = [MagicMock(spec=sdk.TextBlock, text="looking"), object()]
    result = MagicMock(spec=sdk.ResultMessage)
    result.result = "done"
    result.is_error = False
    result.usage = {"input_tokens": 5, "output_tokens": 2}
    result.subtype = "success"
    result.duration_ms = 40
    result.num_turns = 1
    seen: dict = {}

    async def fake_query(*, prompt, options):
        seen["prompt"] = prompt
        seen["options"] = options
        yield assistant
        yield result

    gateway = ClaudeGateway(default_model="sonnet")
    with patch("claude_agent_sdk.query", new=fake_query):
        chunks = [
            chunk async for chunk in gateway.execute(
                "do it", working_directory="/tmp/ws",
                cancellation_token=CancellationToken(), api_key="sk-x",
            )
        ]

    assert [c.text for c in chunks] == ["looking", "done"]
    assert chunks[1].is_result
    assert (chunks[1].input_tokens, chunks[1].output_tokens) == (5, 2)
    assert seen["prompt"] == "do it"
    assert seen["options"].model == "sonnet"
    assert seen["options"].env == {"ANTHROPIC_API_KEY": "sk-x"}
