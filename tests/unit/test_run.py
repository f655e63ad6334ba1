"""Tests for the CLI runner."""

import asyncio
from unittest.mock import AsyncMock, patch

import pytest

from budget_buddy.models import (
    AlternativesOutcome,
    IncomingMessage,
    RankedSpot,
    ReceiptItem,
    ReceiptSuccess,
    SearchOutcome,
)
from budget_buddy.config import BotConfig
from budget_buddy.run import build_model, build_search_client, main, run_bot
from budget_buddy.transport import MessagingTransport, TransportError, TransportErrorKind


@pytest.fixture(autouse=True)
def no_dotenv():
    """Keep a developer's .env out of the tests."""
    with patch("budget_buddy.run.load_dotenv"):
        yield


class TestBuilders:
    def test_build_model(self, monkeypatch):
        monkeypatch.setenv("GEMINI_API_KEY", "gem-key")
        config = BotConfig()
        config.gemini.model = "gemini-test"

        model = build_model(config)

        assert model.api_key == "gem-key"
        assert model.model == "gemini-test"

    def test_build_search_client(self, monkeypatch):
        monkeypatch.setenv("DEDALUS_API_KEY", "search-key")
        client = build_search_client(BotConfig())
        assert client.api_key == "search-key"
        assert client.url.endswith("/v1/web/search")


class TestMain:
    """Test command-line modes."""

    def test_search(self, capsys):
        outcome = SearchOutcome(
            query="coffee",
            location="Austin",
            spots=[RankedSpot(rank=1, name="Cafe A", description="Cozy", url="https://a")],
        )
        with patch("budget_buddy.run.search_nearby_places", AsyncMock(return_value=outcome)) as m:
            code = main(["--search", "coffee", "--location", "Austin"])

        assert code == 0
        assert m.await_args.args[1:3] == ("coffee", "Austin")
        out = capsys.readouterr().out
        assert "🔍 Search Results near Austin:" in out
        assert "1 Cafe A" in out

    def test_search_with_ai(self, capsys):
        outcome = SearchOutcome(query="coffee", summary="Nice", spots=[
            RankedSpot(name="Cafe A", description="Cozy", url="a")
        ])
        with patch(
            "budget_buddy.run.search_nearby_places_with_ai", AsyncMock(return_value=outcome)
        ):
            assert main(["--search", "coffee", "--ai"]) == 0

        assert "Nice" in capsys.readouterr().out

    def test_cheaper(self, capsys):
        outcome = AlternativesOutcome(
            query="diner",
            location="Austin",
            alternatives=[RankedSpot(rank=1, name="Budget Diner", description="$5", url="d")],
        )
        with patch(
            "budget_buddy.run.find_cheaper_nearby_spots", AsyncMock(return_value=outcome)
        ):
            assert main(["--cheaper", "diner", "--location", "Austin"]) == 0

        assert "1. Budget Diner" in capsys.readouterr().out

    def test_cheaper_requires_location(self):
        with pytest.raises(SystemExit) as exc_info:
            main(["--cheaper", "diner"])
        assert exc_info.value.code == 2

    def test_receipt(self, capsys, receipt_image):
        analysis = ReceiptSuccess(items=(ReceiptItem("Coffee", 2, 3.5),), total=7.0)
        with patch(
            "budget_buddy.receipts.ReceiptAnalyzer.analyze_file",
            AsyncMock(return_value=analysis),
        ):
            assert main(["--receipt", str(receipt_image)]) == 0

        out = capsys.readouterr().out
        assert "Qty: 2 × $3.50" in out
        assert '"total": 7.0' in out

    def test_watch_missing_database(self, tmp_path, monkeypatch):
        """A missing chat.db is a fatal startup error."""
        monkeypatch.setenv("BUDGET_BUDDY_CHAT_DB", str(tmp_path / "missing.db"))
        assert main(["--watch", "--config", str(tmp_path / "none.yaml")]) == 1

    def test_no_mode_prints_help(self, capsys, tmp_path):
        assert main(["--config", str(tmp_path / "none.yaml")]) == 0
        assert "usage:" in capsys.readouterr().out


class FakeTransport(MessagingTransport):
    """In-memory transport whose sends block until the test releases them."""

    def __init__(self, messages, open_error=None):
        super().__init__(poll_interval_seconds=0.01)
        self.messages = list(messages)
        self.open_error = open_error
        self.sending = asyncio.Event()
        self.release = asyncio.Event()
        self.close_calls = 0

    async def open(self):
        if self.open_error:
            raise self.open_error

    async def fetch_new_messages(self):
        messages, self.messages = self.messages, []
        return messages

    async def get_unread_messages(self):
        return []

    async def send(self, recipient, text):
        self.sending.set()
        await self.release.wait()

    async def close(self):
        self.close_calls += 1
        self.stop_watching()


class TestRunBot:
    """Test bot startup and shutdown."""

    @pytest.fixture
    def config(self):
        config = BotConfig()
        config.watcher.max_concurrent = 1
        return config

    @pytest.mark.asyncio
    async def test_transport_closed_when_open_fails(self, config):
        error = TransportError(TransportErrorKind.DATABASE, "no chat.db")
        transport = FakeTransport([], open_error=error)

        with pytest.raises(TransportError):
            await run_bot(config, transport)

        assert transport.close_calls == 1

    @pytest.mark.asyncio
    async def test_cancel_stops_watching_and_closes(self, config):
        """Cancelling while the pool is full still closes the message stream."""
        transport = FakeTransport(
            [
                IncomingMessage(message_id=1, sender="+15550001", text="hi"),
                IncomingMessage(message_id=2, sender="+15550002", text="hello"),
            ]
        )

        bot = asyncio.create_task(run_bot(config, transport))
        await asyncio.wait_for(transport.sending.wait(), timeout=5)
        assert transport.is_watching

        bot.cancel()
        with pytest.raises(asyncio.CancelledError):
            await bot

        assert transport.is_watching is False
        assert transport.close_calls == 1
