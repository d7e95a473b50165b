# paygate/x402/watcher.py
"""
Settlement watcher.

Polls the relay for a submitted batch until it reaches a terminal status or
the wall-clock bound elapses:

    submitted -> confirmed   (status 200, transaction hash from the receipt)
    submitted -> failed      (status >= 300, or an unrecognized status payload)
    submitted -> timed_out   (no terminal status before the deadline)

The watcher never compensates: whatever happened on-chain is the source of
truth and is not reversed.
"""
import asyncio
import logging
from typing import Optional

from paygate.core.config import settings
from paygate.services.relay import CallsStatus, RelayClient, RelayError, RelayResponseError
from paygate.x402.errors import SettlementFailed, SettlementTimedOut
from paygate.x402.settlement import SettlementAttempt

logger = logging.getLogger(__name__)


class SettlementWatcher:

    def __init__(
        self,
        relay: RelayClient,
        timeout: Optional[float] = None,
        poll_interval: Optional[float] = None
    ):
        self.relay = relay
        self.timeout = timeout if timeout is not None else settings.X402_SETTLEMENT_TIMEOUT_SECONDS
        self.poll_interval = (
            poll_interval if poll_interval is not None
            else settings.X402_SETTLEMENT_POLL_INTERVAL_SECONDS
        )

    async def _poll_until_terminal(self, batch_id: str) -> CallsStatus:
        while True:
            try:
                status = await self.relay.get_calls_status(batch_id)
            except RelayResponseError:
                raise
            except RelayError as e:
                # Transient observation failure; the deadline still bounds us
                logger.warning(f"x402: Status poll for batch {batch_id} failed: {e}")
            else:
                if not status.is_pending:
                    return status
            await asyncio.sleep(self.poll_interval)

    async def wait(self, attempt: SettlementAttempt) -> SettlementAttempt:
        """
        Wait for a submitted attempt to reach a terminal state.

        Returns:
            The attempt in state CONFIRMED

        Raises:
            SettlementFailed: terminal non-success status or unrecognized payload
            SettlementTimedOut: no terminal status within the timeout
        """
        batch_id = attempt.batch_id
        try:
            status = await asyncio.wait_for(self._poll_until_terminal(batch_id), timeout=self.timeout)
        except asyncio.TimeoutError:
            reason = f"batch {batch_id} not terminal after {self.timeout}s"
            attempt.mark_timed_out(reason)
            logger.error(f"x402: Settlement {attempt.attempt_id} timed out: {reason}")
            raise SettlementTimedOut(reason, attempt=attempt)
        except RelayResponseError as e:
            attempt.mark_failed(str(e))
            logger.error(f"x402: Settlement {attempt.attempt_id} failed closed: {e}")
            raise SettlementFailed(str(e), attempt=attempt)

        if not status.is_confirmed:
            reason = f"batch {batch_id} finished with status {status.status_code}"
            attempt.mark_failed(reason, status_code=status.status_code)
            logger.error(f"x402: Settlement {attempt.attempt_id} failed: {reason}")
            raise SettlementFailed(reason, attempt=attempt)

        attempt.mark_confirmed(status.status_code, status.transaction_hash)
        logger.info(
            f"x402: Settlement {attempt.attempt_id} confirmed in tx {attempt.transaction_hash}"
        )
        return attempt
