"""Single-message send orchestration."""

from __future__ import annotations

import logging
import time

from .errors import ChannelNotReady, DestinationNotRegistered, SendFailed
from .models import SendRequest, SendResult
from .phone import normalize_number
from .state import ConnectionStateMachine

logger = logging.getLogger(__name__)


def _elapsed_ms(start: float) -> int:
    return int((time.monotonic() - start) * 1000)


class SendGateway:
    """Admits a send against the current channel state and delegates it.

    Only reads the state machine; never waits for the channel to become
    ready.
    """

    def __init__(self, machine: ConnectionStateMachine) -> None:
        self._machine = machine

    async def send(self, request: SendRequest, client_ip: str | None = None) -> SendResult:
        start = time.monotonic()

        snapshot = self._machine.snapshot()
        client = self._machine.client
        if not snapshot.ready or client is None:
            logger.warning(
                "Message send failed: client not ready (state=%s, initializing=%s, ip=%s)",
                snapshot.state.value,
                snapshot.initializing,
                client_ip,
            )
            raise ChannelNotReady(initializing=snapshot.initializing)

        chat_id = normalize_number(request.number)
        logger.info(
            "Attempting to send message (to=%s, chat_id=%s, length=%d, ip=%s)",
            request.number,
            chat_id,
            len(request.message),
            client_ip,
        )

        try:
            number_id = await client.get_number_id(chat_id)
            if not number_id:
                logger.warning(
                    "Message send failed: number not registered (to=%s, chat_id=%s, %dms, ip=%s)",
                    request.number,
                    chat_id,
                    _elapsed_ms(start),
                    client_ip,
                )
                raise DestinationNotRegistered(request.number)

            message_id = await client.safe_send(chat_id, request.message)
        except DestinationNotRegistered:
            raise
        except Exception as exc:
            elapsed = _elapsed_ms(start)
            logger.error(
                "Error sending message (to=%s, chat_id=%s, %dms, ip=%s): %s",
                request.number,
                chat_id,
                elapsed,
                client_ip,
                exc,
                exc_info=True,
            )
            raise SendFailed(str(exc), elapsed) from exc

        result = SendResult(
            to=request.number,
            chat_id=chat_id,
            message_id=message_id,
            response_time_ms=_elapsed_ms(start),
        )
        logger.info(
            "Message sent successfully (to=%s, chat_id=%s, id=%s, %dms, ip=%s)",
            result.to,
            result.chat_id,
            result.message_id,
            result.response_time_ms,
            client_ip,
        )
        return result
