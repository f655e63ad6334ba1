"""
Message dispatch for budget-buddy.

Each incoming message is routed by what it carries: image attachments go to
the receipt analyzer, plain text gets a prompt asking for a receipt, and
anything else is ignored.
"""

import asyncio
import logging
from collections.abc import AsyncIterable, Callable

from .formatting import format_receipt_response
from .models import IncomingMessage, ReceiptFailure
from .receipts import ReceiptAnalyzer
from .transport import MessagingTransport, TransportError, TransportErrorKind

logger = logging.getLogger(__name__)

RECEIPT_PROMPT_REPLY = "📸 Please send me a receipt image to analyze!"
TROUBLE_REPLY = "❌ Sorry, I had trouble processing that receipt."


def _log_handler_error(error: Exception) -> None:
    logger.error("Message handler failed", exc_info=error)


class MessageDispatcher:
    """
    Routes messages to handlers and sends replies to the original sender.

    ``run`` consumes a message stream and handles up to ``max_concurrent``
    messages at once.
    """

    def __init__(
        self,
        transport: MessagingTransport,
        analyzer: ReceiptAnalyzer,
        max_concurrent: int = 5,
        on_error: Callable[[Exception], None] | None = None,
    ):
        """
        Initialize the dispatcher.

        Args:
            transport: Where replies are sent
            analyzer: Receipt analyzer for image attachments
            max_concurrent: Width of the handler pool
            on_error: Called with any exception a handler lets escape
        """
        if max_concurrent < 1:
            raise ValueError("max_concurrent must be at least 1")
        self.transport = transport
        self.analyzer = analyzer
        self.max_concurrent = max_concurrent
        self.on_error = on_error or _log_handler_error

    async def reply(self, recipient: str, text: str) -> bool:
        """Send a reply. Transport failures are logged, not raised."""
        try:
            await self.transport.send(recipient, text)
            return True
        except TransportError as e:
            if e.kind is TransportErrorKind.SEND:
                logger.error(f"Could not reply to {recipient}: Messages app is not running ({e})")
            else:
                logger.error(f"Could not reply to {recipient}: {e}")
            return False

    async def handle_message(self, message: IncomingMessage) -> None:
        """Handle one message."""
        logger.info(f"New message from {message.sender}")
        logger.info(f"Text: {message.text or 'No text'}")
        logger.info(f"Attachments: {len(message.attachments)}")

        if message.attachments:
            for attachment in message.attachments:
                if not attachment.is_image:
                    logger.debug(
                        f"Ignoring non-image attachment {attachment.filename} "
                        f"({attachment.mime_type})"
                    )
                    continue

                logger.info(f"Processing receipt image: {attachment.filename}")
                try:
                    analysis = await self.analyzer.analyze_file(
                        attachment.path, attachment.mime_type
                    )

                    if isinstance(analysis, ReceiptFailure):
                        await self.reply(message.sender, f"❌ Error: {analysis.error}")
                    else:
                        await self.reply(message.sender, format_receipt_response(analysis))
                        logger.info(f"Receipt JSON:\n{analysis.to_json()}")
                except Exception:
                    logger.exception("Error processing receipt")
                    await self.reply(message.sender, TROUBLE_REPLY)

        elif message.text:
            await self.reply(message.sender, RECEIPT_PROMPT_REPLY)

        else:
            logger.debug(f"Nothing to do for message {message.message_id}")

    async def _guarded(self, message: IncomingMessage, slots: asyncio.Semaphore) -> None:
        try:
            await self.handle_message(message)
        except Exception as e:
            self.on_error(e)
        finally:
            slots.release()

    async def run(self, source: AsyncIterable[IncomingMessage]) -> None:
        """
        Dispatch every message from ``source`` until it is exhausted.

        Waits for in-flight handlers before returning; on cancellation they
        are cancelled too.
        """
        slots = asyncio.Semaphore(self.max_concurrent)
        tasks: set[asyncio.Task] = set()

        try:
            async for message in source:
                await slots.acquire()
                task = asyncio.create_task(self._guarded(message, slots))
                tasks.add(task)
                task.add_done_callback(tasks.discard)

            if tasks:
                await asyncio.gather(*tasks)
        finally:
            for task in tasks:
                task.cancel()
            if tasks:
                await asyncio.gather(*tasks, return_exceptions=True)
