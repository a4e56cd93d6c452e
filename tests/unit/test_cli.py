"""
tests/unit/test_cli.py — CLI Interface Unit Tests

Tests CLIInterface command dispatch, proactive message rendering and
runtime /set handling with a mocked generation service.

Run with:
    pytest tests/unit/test_cli.py -v
"""

from __future__ import annotations

from io import StringIO
from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio
from rich.console import Console

from chime.config.settings import ProactiveConfig, Settings
from chime.exceptions import GenerationConnectionError
from chime.host.memory_store import InMemoryConversationStore
from chime.host.yaml_store import YamlConfigStore
from chime.interfaces.cli import CLIInterface, parse_set_command
from chime.types import ChatMessage, GenerationResult


# ── Helpers ───────────────────────────────────────────────────────────────────


def output(cli: CLIInterface) -> str:
    return cli.console.file.getvalue()


@pytest.fixture
def mock_generator() -> MagicMock:
    generator = MagicMock()
    generator.reply = AsyncMock(return_value=GenerationResult(text="Nice to meet you.", model="m"))
    generator.generate = AsyncMock(return_value=GenerationResult(text="Still there?", model="m"))
    generator.health_check = AsyncMock(return_value=True)
    return generator


@pytest.fixture
def settings() -> Settings:
    return Settings(
        proactive=ProactiveConfig(
            fixed={"enabled": True},
            random={"enabled": False},
            inactivity={"enabled": False},
        ),
    )


@pytest_asyncio.fixture
async def cli(settings, mock_generator, tmp_path):
    interface = CLIInterface(
        settings,
        conversations=InMemoryConversationStore(model="m"),
        generator=mock_generator,
        config_store=YamlConfigStore(tmp_path / "proactive.yaml", defaults=settings.proactive),
        console=Console(file=StringIO(), width=120, force_terminal=False),
    )
    await interface.prepare()
    yield interface
    await interface.coordinator.close()


# ── parse_set_command ────────────────────────────────────────────────────────


class TestParseSetCommand:
    def test_nested_bool(self):
        assert parse_set_command("random.enabled", "true") == {"random": {"enabled": True}}

    def test_top_level_int(self):
        assert parse_set_command("max_uses", "3") == {"max_uses": 3}

    def test_times_are_split_not_parsed(self):
        assert parse_set_command("fixed.times", "08:30, 18:00") == {
            "fixed": {"times": ["08:30", "18:00"]}
        }

    def test_prompts_split_on_pipe(self):
        assert parse_set_command("prompts", "Hi, how are you? | Anything new?") == {
            "prompts": ["Hi, how are you?", "Anything new?"]
        }

    def test_missing_key(self):
        with pytest.raises(ValueError):
            parse_set_command("", "1")


# ── Startup ──────────────────────────────────────────────────────────────────


class TestPrepare:
    @pytest.mark.asyncio
    async def test_creates_conversation_and_starts(self, cli):
        assert cli.conversations.current_id is not None
        assert cli.coordinator.running
        assert cli.coordinator.armed() == {"fixed"}

    @pytest.mark.asyncio
    async def test_restores_saved_settings(self, settings, mock_generator, tmp_path):
        path = tmp_path / "proactive.yaml"
        path.write_text("enabled: false\n", encoding="utf-8")
        interface = CLIInterface(
            settings,
            conversations=InMemoryConversationStore(),
            generator=mock_generator,
            config_store=YamlConfigStore(path, defaults=settings.proactive),
            console=Console(file=StringIO()),
        )
        await interface.prepare()
        assert interface.coordinator.config.enabled is False
        assert interface.coordinator.armed() == set()
        await interface.coordinator.close()

    @pytest.mark.asyncio
    async def test_unreachable_model_warns_and_still_starts(self, settings, mock_generator, tmp_path):
        mock_generator.health_check.return_value = False
        interface = CLIInterface(
            settings,
            conversations=InMemoryConversationStore(),
            generator=mock_generator,
            config_store=YamlConfigStore(tmp_path / "proactive.yaml", defaults=settings.proactive),
            console=Console(file=StringIO(), width=120, force_terminal=False),
        )
        await interface.prepare()
        assert "not reachable" in output(interface)
        assert interface.coordinator.running
        await interface.coordinator.close()

    @pytest.mark.asyncio
    async def test_reachable_model_prints_no_warning(self, cli, mock_generator):
        mock_generator.health_check.assert_awaited_once()
        assert "not reachable" not in output(cli)


# ── Dispatch ─────────────────────────────────────────────────────────────────


class TestDispatch:
    @pytest.mark.asyncio
    async def test_unknown_command(self, cli):
        await cli.dispatch("/bogus")
        assert "Unknown command" in output(cli)

    @pytest.mark.asyncio
    async def test_quit_sets_shutdown(self, cli):
        await cli.dispatch("/quit")
        assert cli._shutdown.is_set()

    @pytest.mark.asyncio
    async def test_help(self, cli):
        await cli.dispatch("/help")
        assert "/status" in output(cli)


class TestChat:
    @pytest.mark.asyncio
    async def test_reply_appended_and_rendered(self, cli, mock_generator):
        await cli.dispatch("hello")

        messages = cli.conversations.get_current_conversation().messages
        assert [m.text for m in messages] == ["hello", "Nice to meet you."]
        history = mock_generator.reply.call_args.args[0]
        assert [m.text for m in history] == ["hello"]
        assert "Nice to meet you." in output(cli)

    @pytest.mark.asyncio
    async def test_model_error_is_printed(self, cli, mock_generator):
        mock_generator.reply.side_effect = GenerationConnectionError("unreachable", provider="openai")

        await cli.dispatch("hello")

        assert "Model error" in output(cli)
        assert len(cli.conversations.get_current_conversation().messages) == 1


class TestConversationCommands:
    @pytest.mark.asyncio
    async def test_new_restarts_scheduler(self, cli):
        restarts = cli.coordinator.status()["restarts"]
        first = cli.conversations.current_id

        await cli.dispatch("/new")

        assert cli.conversations.current_id != first
        assert cli.coordinator.status()["restarts"] == restarts + 1

    @pytest.mark.asyncio
    async def test_switch_unknown(self, cli):
        await cli.dispatch("/switch nope")
        assert "does not exist" in output(cli)

    @pytest.mark.asyncio
    async def test_switch_without_id(self, cli):
        await cli.dispatch("/switch")
        assert "Usage" in output(cli)

    @pytest.mark.asyncio
    async def test_list_marks_current(self, cli):
        await cli.dispatch("/list")
        assert cli.conversations.current_id in output(cli)


class TestSettingsCommands:
    @pytest.mark.asyncio
    async def test_disable_and_enable(self, cli):
        await cli.dispatch("/disable")
        assert cli.coordinator.config.enabled is False
        assert cli.coordinator.armed() == set()

        await cli.dispatch("/enable")
        assert cli.coordinator.armed() == {"fixed"}

    @pytest.mark.asyncio
    async def test_set_valid_value_persists(self, cli, tmp_path):
        await cli.dispatch("/set random.enabled true")
        await cli.coordinator.close()

        assert cli.coordinator.config.random.enabled is True
        assert "random.enabled updated" in output(cli)
        assert "enabled: true" in (tmp_path / "proactive.yaml").read_text(encoding="utf-8")

    @pytest.mark.asyncio
    async def test_set_times(self, cli):
        await cli.dispatch("/set fixed.times 07:00,21:30")
        assert [str(p) for p in cli.coordinator.config.fixed.times] == ["07:00", "21:30"]

    @pytest.mark.asyncio
    async def test_set_invalid_value_keeps_config(self, cli):
        before = cli.coordinator.config

        await cli.dispatch("/set random.max_interval_seconds -5")

        assert cli.coordinator.config is before
        assert "Could not set random.max_interval_seconds" in output(cli)

    @pytest.mark.asyncio
    async def test_set_without_arguments(self, cli):
        await cli.dispatch("/set")
        assert "Usage" in output(cli)

    @pytest.mark.asyncio
    async def test_status_renders(self, cli):
        await cli.dispatch("/status")
        text = output(cli)
        assert "Triggers" in text
        assert "fixed" in text
        assert "Sends: 0" in text


class TestRendering:
    @pytest.mark.asyncio
    async def test_proactive_message_rendered(self, cli):
        conversation = cli.conversations.get_current_conversation()
        cli.conversations.append_message(conversation, ChatMessage.assistant("Ping!", proactive=True))
        text = output(cli)
        assert "Ping!" in text
        assert "proactive" in text

    @pytest.mark.asyncio
    async def test_background_conversation_not_rendered(self, cli):
        background = cli.conversations.get_current_conversation()
        cli.conversations.create("other")
        cli.conversations.append_message(background, ChatMessage.assistant("Hidden", proactive=True))
        assert "Hidden" not in output(cli)
