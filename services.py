import asyncio
import math

import structlog

import config
from errors import CartLocked, ConcurrentCheckoutRejected, InvalidQuantity
from models import CartLine, CheckoutResult, CheckoutState
from products import CatalogStore
from transactions import HttpTransport, SalesLog, build_payload

logger = structlog.get_logger(__name__)


def validate_quantity(value):
    """Return value as a positive finite number or raise InvalidQuantity."""
    if isinstance(value, bool):
        raise InvalidQuantity(value)
    try:
        quantity = float(value)
    except (TypeError, ValueError):
        raise InvalidQuantity(value) from None
    if not math.isfinite(quantity) or quantity <= 0:
        raise InvalidQuantity(value)
    # keep whole counts as ints so payloads read "cantidad": 2
    if not isinstance(value, float) and quantity.is_integer():
        return int(quantity)
    return quantity

#Cart service
class CartService:
    """Pending sale lines for one checkout cycle.

    Adding a product also lowers the stock shown for it in the catalog. That
    number is a local hint for the operator and is never sent upstream. Removing
    a line leaves the decrement in place (the units stay "reserved") unless the
    service is built with restore_stock_on_remove=True.

    A checkout locks the cart from confirmation until it settles. Mutators raise
    CartLocked in that window.
    """

    def __init__(self, provisional_stock=True, restore_stock_on_remove=False):
        self._lines = []
        self.provisional_stock = provisional_stock
        self.restore_stock_on_remove = restore_stock_on_remove
        # product id -> [catalog product, units taken off its displayed stock]
        self._reserved = {}
        self.locked = False

    @property
    def lines(self):
        return tuple(self._lines)

    def __len__(self):
        return len(self._lines)

    def is_empty(self):
        return not self._lines

    def _find(self, product_id):
        for line in self._lines:
            if line.product_id == product_id:
                return line
        return None

    def lock(self):
        self.locked = True

    def unlock(self):
        self.locked = False

    def _check_unlocked(self):
        if self.locked:
            raise CartLocked()

    def _line_at(self, index):
        if not isinstance(index, int) or isinstance(index, bool) or not 0 <= index < len(self._lines):
            raise IndexError(f"No cart line at index {index!r}")
        return self._lines[index]

    def _reserve(self, product, quantity):
        taken = min(quantity, max(product.stock, 0))
        product.stock -= taken
        entry = self._reserved.setdefault(product.id, [product, 0])
        entry[1] += taken

    def add_line(self, product, quantity=1):
        self._check_unlocked()
        qty = validate_quantity(quantity)
        line = self._find(product.id)
        if line is not None:
            line.quantity += qty
        else:
            line = CartLine(product, qty)
            self._lines.append(line)

        if self.provisional_stock:
            self._reserve(product, qty)

        logger.debug("Cart line added", product=product.name, quantity=line.quantity, subtotal=line.subtotal)
        return line

    def update_quantity(self, index, quantity):
        self._check_unlocked()
        qty = validate_quantity(quantity)
        line = self._line_at(index)
        line.quantity = qty
        logger.debug("Cart line updated", product=line.name, quantity=qty)
        return line

    def remove_line(self, index):
        self._check_unlocked()
        line = self._line_at(index)
        del self._lines[index]
        reserved = self._reserved.pop(line.product_id, None)
        if reserved is not None and self.restore_stock_on_remove:
            product, taken = reserved
            product.stock += taken
        logger.debug("Cart line removed", product=line.name)
        return line

    def total(self):
        return sum((line.subtotal for line in self._lines), 0.0)

    def clear(self):
        self._check_unlocked()
        self._lines = []
        self._reserved = {}

    def discard(self, lines):
        """Drop the given lines after a checkout booked them. Works while locked."""
        done = {id(line) for line in lines}
        kept = []
        for line in self._lines:
            if id(line) in done:
                self._reserved.pop(line.product_id, None)
            else:
                kept.append(line)
        self._lines = kept

    def snapshot(self):
        rows = []
        for index, line in enumerate(self._lines):
            row = line.to_dict()
            row['index'] = index
            rows.append(row)
        return rows

#Check-out service
class CheckoutService:
    """Sends every cart line to the remote store and folds the outcome into the sales log.

    One cycle runs idle -> confirming -> submitting -> completed -> idle. The
    is_processing flag is held from confirmation until the cycle settles, so a
    second trigger in that window does nothing. A line whose submit raises is
    counted as an error and the rest of the batch still goes out.

    Events (register with on()):
      state(CheckoutState)
      progress(current, total, product_name)
      completed(CheckoutResult)
    """

    EVENTS = ('state', 'progress', 'completed')

    def __init__(self, cart, sales_log, transport, strategy=None, submit_delay=None):
        strategy = (strategy or config.CHECKOUT_STRATEGY).strip().lower()
        if strategy not in config.STRATEGIES:
            raise ValueError(f"Unknown checkout strategy {strategy!r}; expected one of {config.STRATEGIES}")
        self.cart = cart
        self.sales_log = sales_log
        self.transport = transport
        self.strategy = strategy
        self.submit_delay = config.SUBMIT_DELAY_SECONDS if submit_delay is None else submit_delay
        self.state = CheckoutState.IDLE
        self.is_processing = False
        # frozen copies of the confirmed lines, and the cart lines they came from
        self._pending = None
        self._pending_source = ()
        self._listeners = {event: [] for event in self.EVENTS}

    def on(self, event, callback):
        if event not in self._listeners:
            raise ValueError(f"Unknown checkout event {event!r}")
        self._listeners[event].append(callback)

    def _emit(self, event, *args):
        for callback in list(self._listeners[event]):
            try:
                callback(*args)
            except Exception:
                logger.exception("Checkout listener failed", checkout_event=event)

    def _set_state(self, state):
        self.state = state
        self._emit('state', state)

    def _acquire(self):
        if self.is_processing:
            raise ConcurrentCheckoutRejected()
        self.is_processing = True

    def _settle(self):
        self._pending = None
        self._pending_source = ()
        self.cart.unlock()
        self.is_processing = False
        self._set_state(CheckoutState.IDLE)

    def begin(self, confirm):
        """Claim the checkout and ask the operator to confirm the cart total.

        confirm is called with the total and must return truthy to go ahead.
        Returns False, leaving the cart untouched, when a cycle is already
        running, the cart is empty or the operator declines.

        Once confirmed the cart stays locked and the lines are frozen as they
        were confirmed until submit_pending() settles the cycle.
        """
        try:
            self._acquire()
        except ConcurrentCheckoutRejected as exc:
            logger.warning("Checkout trigger ignored", reason=str(exc))
            return False

        if self.cart.is_empty():
            self.is_processing = False
            return False

        self.cart.lock()
        total = self.cart.total()
        self._set_state(CheckoutState.CONFIRMING)
        try:
            confirmed = confirm(total)
        except BaseException:
            self._settle()
            raise
        if not confirmed:
            logger.info("Checkout cancelled by operator", total=total)
            self._settle()
            return False

        self._pending_source = self.cart.lines
        self._pending = tuple(line.copy() for line in self._pending_source)
        return True

    async def submit_pending(self):
        if self._pending is None:
            raise RuntimeError("submit_pending() needs a confirmed begin() first")
        lines = self._pending
        total = sum((line.subtotal for line in lines), 0.0)
        try:
            self._set_state(CheckoutState.SUBMITTING)
            logger.info("Checkout started", lines=len(lines), total=total, strategy=self.strategy)

            if self.strategy == config.STRATEGY_PARALLEL:
                processed, errors = await self._submit_parallel(lines)
            else:
                processed, errors = await self._submit_serial(lines)

            self.sales_log.record_cycle(lines)
            self.cart.discard(self._pending_source)
            result = CheckoutResult(processed, errors, total, lines)
            self._set_state(CheckoutState.COMPLETED)
            if result.has_errors:
                logger.warning("Checkout completed with errors", processed=processed, errors=errors)
            else:
                logger.info("Checkout completed", processed=processed)
            self._emit('completed', result)
            return result
        finally:
            self._settle()

    async def checkout(self, confirm):
        """Run one full cycle. Returns None when the trigger was ignored."""
        if not self.begin(confirm):
            return None
        return await self.submit_pending()

    async def _submit_serial(self, lines):
        processed = 0
        errors = 0
        count = len(lines)
        for index, line in enumerate(lines, 1):
            self._emit('progress', index, count, line.name)
            try:
                await self.transport.submit(build_payload(line))
                # the sheet script rejects bursts
                if self.submit_delay:
                    await asyncio.sleep(self.submit_delay)
            except Exception as exc:
                errors += 1
                logger.error("Sale submission failed", product=line.name, index=index, error=str(exc))
            processed += 1
        return processed, errors

    async def _submit_parallel(self, lines):
        count = len(lines)
        done = 0

        async def send(line):
            nonlocal done
            try:
                await self.transport.submit(build_payload(line))
            finally:
                done += 1
                self._emit('progress', done, count, line.name)

        outcomes = await asyncio.gather(*(send(line) for line in lines), return_exceptions=True)
        errors = 0
        for line, outcome in zip(lines, outcomes):
            if isinstance(outcome, BaseException):
                errors += 1
                logger.error("Sale submission failed", product=line.name, error=str(outcome))
        return len(outcomes), errors

#Session
class PosSession:
    """Everything one till needs for a run of the app: catalog, cart, log and submitter."""

    def __init__(self, catalog=None, transport=None, strategy=None, submit_delay=None,
                 provisional_stock=True, restore_stock_on_remove=False):
        self.catalog = catalog if catalog is not None else CatalogStore()
        self.transport = transport if transport is not None else HttpTransport()
        self.cart = CartService(provisional_stock=provisional_stock,
                                restore_stock_on_remove=restore_stock_on_remove)
        self.sales_log = SalesLog()
        self.checkout = CheckoutService(self.cart, self.sales_log, self.transport,
                                        strategy=strategy, submit_delay=submit_delay)

    def search(self, term, limit=None):
        return self.catalog.search(term, limit)

    def add_product(self, product_id, quantity=1):
        product = self.catalog.get(product_id)
        if product is None:
            raise KeyError(f"Unknown product id {product_id!r}")
        return self.cart.add_line(product, quantity)

    def close(self):
        close = getattr(self.transport, 'close', None)
        if close is not None:
            close()

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()
        return False


def create_session(**kwargs):
    return PosSession(**kwargs)
