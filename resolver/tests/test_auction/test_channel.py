"""Tests for the auction Socket.IO channel."""

from unittest.mock import AsyncMock, MagicMock

import pytest
import socketio

from resolver.auction.channel import AuctionChannel
from resolver.auction.participant import AuctionParticipant
from resolver.config.schema import AuctionConfig


@pytest.fixture
def participant(context):
    return AuctionParticipant(context, AuctionConfig(), AsyncMock(), AsyncMock())


class TestAuctionChannel:
    def test_binds_auction_events(self, participant):
        client = socketio.AsyncClient()
        AuctionChannel(AuctionConfig(), participant, client=client)
        handlers = client.handlers["/"]
        for event in ("auctionStarted", "priceUpdate", "auctionAccepted", "auctionEnded"):
            assert event in handlers
        assert handlers["auctionEnded"] == participant.on_auction_ended

    @pytest.mark.asyncio
    async def test_connect_failure_is_not_fatal(self, participant):
        client = MagicMock()
        client.connect = AsyncMock(side_effect=socketio.exceptions.ConnectionError("refused"))
        channel = AuctionChannel(AuctionConfig(channel_url="http://nowhere:1"), participant, client)
        assert await channel.connect() is False

    @pytest.mark.asyncio
    async def test_connect_uses_websocket_first(self, participant):
        client = MagicMock()
        client.connect = AsyncMock()
        channel = AuctionChannel(AuctionConfig(channel_url="http://backend:5001"), participant, client)
        assert await channel.connect()
        client.connect.assert_awaited_once_with(
            "http://backend:5001", transports=["websocket", "polling"]
        )
