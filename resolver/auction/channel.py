"""Socket.IO connection to the backend's Dutch auction broadcaster."""

import logging

import socketio

from resolver.auction.participant import AuctionParticipant
from resolver.config.schema import AuctionConfig

logger = logging.getLogger(__name__)


class AuctionChannel:
    def __init__(
        self,
        config: AuctionConfig,
        participant: AuctionParticipant,
        client: socketio.AsyncClient | None = None,
    ):
        self.config = config
        self.participant = participant
        self.client = client or socketio.AsyncClient(reconnection=True)
        self._bind()

    def _bind(self) -> None:
        c = self.client
        c.on("connect", self._on_connect)
        c.on("disconnect", self._on_disconnect)
        c.on("connect_error", self._on_connect_error)
        c.on("auctionStarted", self.participant.on_auction_started)
        c.on("priceUpdate", self.participant.on_price_update)
        c.on("auctionAccepted", self.participant.on_auction_accepted)
        c.on("auctionEnded", self.participant.on_auction_ended)

    def _on_connect(self) -> None:
        logger.info("Connected to Dutch auction server")

    def _on_disconnect(self, *args) -> None:
        logger.warning("Disconnected from Dutch auction server")

    def _on_connect_error(self, data=None) -> None:
        logger.error("Failed to connect to auction server: %s", data)

    async def connect(self) -> bool:
        """Connect to the auction server. Failure only disables auctions."""
        logger.info("Connecting to auction server at %s...", self.config.channel_url)
        try:
            await self.client.connect(
                self.config.channel_url, transports=["websocket", "polling"]
            )
        except socketio.exceptions.ConnectionError as e:
            logger.error("Auction channel unavailable, continuing without auctions: %s", e)
            return False
        return True

    async def disconnect(self) -> None:
        if self.client.connected:
            await self.client.disconnect()
            logger.info("Auction socket disconnected")
