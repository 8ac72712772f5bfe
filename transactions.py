import asyncio
from datetime import datetime

import requests
import structlog

import config
from errors import SubmissionFailure
from models import SalesLogEntry

logger = structlog.get_logger(__name__)

SALE_ACTION = 'venta'


def build_payload(line):
    """
    #Body expected by the sheet script, e.g.
    {"action": "venta", "producto": "Rice", "cantidad": 2, "total": 20.0}
    """
    return {
        'action': SALE_ACTION,
        'producto': line.name,
        'cantidad': line.quantity,
        'total': line.subtotal,
    }

#sale transport
class HttpTransport:
    """Posts sale payloads to the remote store.

    The endpoint is write-only: nothing in the response is read. A submit that
    returns means only that the request went out without a transport error,
    not that the sheet stored the row.
    """

    def __init__(self, url=None, session=None, timeout=config.SUBMIT_TIMEOUT):
        self.url = url or config.API_URL
        self._owns_session = session is None
        self.session = session or requests.Session()
        self.timeout = timeout

    def _post(self, payload):
        try:
            self.session.post(self.url, json=payload, timeout=self.timeout)
        except requests.RequestException as exc:
            raise SubmissionFailure(f"Could not send {payload.get('producto')!r}: {exc}") from exc

    async def submit(self, payload):
        # requests blocks, so the call runs on a worker thread
        await asyncio.to_thread(self._post, payload)

    def close(self):
        if self._owns_session:
            self.session.close()

#sales log
class SalesLog:
    """Append-only record of the sales sent during this session."""

    def __init__(self):
        self._entries = []
        self.running_total = 0.0

    @property
    def entries(self):
        return tuple(self._entries)

    def __len__(self):
        return len(self._entries)

    def __iter__(self):
        return iter(self._entries)

    def record_cycle(self, lines, timestamp=None):
        """Log every line of a finished checkout and add its total once.

        Lines whose submission failed are logged too: the transport cannot tell
        a lost write from a stored one, so bookkeeping assumes it went through.
        """
        timestamp = timestamp or datetime.now()
        cycle_total = 0.0
        for line in lines:
            entry = SalesLogEntry.from_line(line, timestamp)
            self._entries.append(entry)
            cycle_total += entry.total
        self.running_total += cycle_total
        logger.info(
            "Checkout recorded",
            lines=len(lines),
            cycle_total=cycle_total,
            running_total=self.running_total,
        )
        return cycle_total
