import asyncio
import os
import unittest
import sys
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from errors import CartLocked, SubmissionFailure
from models import CheckoutResult, CheckoutState, Product
from services import CartService, CheckoutService
from transactions import SalesLog


class FakeTransport:
    """Records payloads; raises on the given 1-indexed calls or product names."""

    def __init__(self, fail_calls=(), fail_products=(), error=SubmissionFailure):
        self.fail_calls = set(fail_calls)
        self.fail_products = set(fail_products)
        self.error = error
        self.payloads = []

    async def submit(self, payload):
        self.payloads.append(payload)
        await asyncio.sleep(0)
        if len(self.payloads) in self.fail_calls or payload['producto'] in self.fail_products:
            raise self.error(f"boom on {payload['producto']}")


class GatedTransport:
    def __init__(self):
        self.gate = asyncio.Event()
        self.payloads = []

    async def submit(self, payload):
        self.payloads.append(payload)
        await self.gate.wait()


def confirm_yes(total):
    return True


def _products():
    return {
        'A': Product('a', 'A', 1.0, 10),
        'B': Product('b', 'B', 2.0, 10),
        'C': Product('c', 'C', 3.0, 10),
    }


def _build(transport, strategy='serial', names=('A', 'B', 'C')):
    products = _products()
    cart = CartService()
    for name in names:
        cart.add_line(products[name], 1)
    log = SalesLog()
    checkout = CheckoutService(cart, log, transport, strategy=strategy, submit_delay=0)
    return checkout, cart, log


class SerialCheckoutTests(unittest.IsolatedAsyncioTestCase):
    async def test_all_lines_sent_in_cart_order(self):
        transport = FakeTransport()
        checkout, cart, log = _build(transport)
        result = await checkout.checkout(confirm_yes)

        self.assertIsInstance(result, CheckoutResult)
        self.assertEqual((result.processed, result.errors), (3, 0))
        self.assertEqual(result.status, CheckoutResult.SUCCESS)
        self.assertEqual([p['producto'] for p in transport.payloads], ['A', 'B', 'C'])
        self.assertEqual(transport.payloads[1], {'action': 'venta', 'producto': 'B', 'cantidad': 1, 'total': 2.0})
        self.assertTrue(cart.is_empty())
        self.assertEqual(len(log), 3)
        self.assertAlmostEqual(log.running_total, 6.0)

    async def test_failure_on_one_line_does_not_stop_the_batch(self):
        for k in (1, 2, 3):
            transport = FakeTransport(fail_calls={k})
            checkout, cart, log = _build(transport)
            result = await checkout.checkout(confirm_yes)
            self.assertEqual(result.processed, 3)
            self.assertEqual(result.errors, 1)
            self.assertEqual(result.status, CheckoutResult.PARTIAL_FAILURE)
            self.assertEqual(len(transport.payloads), 3)
            # failed lines are still booked
            self.assertEqual(len(log), 3)
            self.assertAlmostEqual(log.running_total, 6.0)
            self.assertTrue(cart.is_empty())

    async def test_any_exception_counts_as_a_failed_line(self):
        transport = FakeTransport(fail_calls={1, 3}, error=ConnectionError)
        checkout, _, _ = _build(transport)
        result = await checkout.checkout(confirm_yes)
        self.assertEqual((result.processed, result.errors), (3, 2))

    async def test_progress_events(self):
        checkout, _, _ = _build(FakeTransport())
        seen = []
        checkout.on('progress', lambda i, n, name: seen.append((i, n, name)))
        await checkout.checkout(confirm_yes)
        self.assertEqual(seen, [(1, 3, 'A'), (2, 3, 'B'), (3, 3, 'C')])

    async def test_state_transitions(self):
        checkout, _, _ = _build(FakeTransport())
        states = []
        completed = []
        checkout.on('state', states.append)
        checkout.on('completed', completed.append)
        await checkout.checkout(confirm_yes)
        self.assertEqual(states, [
            CheckoutState.CONFIRMING,
            CheckoutState.SUBMITTING,
            CheckoutState.COMPLETED,
            CheckoutState.IDLE,
        ])
        self.assertEqual(len(completed), 1)
        self.assertEqual(checkout.state, CheckoutState.IDLE)

    async def test_delay_between_submissions(self):
        transport = FakeTransport()
        checkout, _, _ = _build(transport)
        checkout.submit_delay = 0.01
        loop = asyncio.get_running_loop()
        started = loop.time()
        await checkout.checkout(confirm_yes)
        self.assertGreaterEqual(loop.time() - started, 0.025)


class ParallelCheckoutTests(unittest.IsolatedAsyncioTestCase):
    async def test_counts_do_not_depend_on_order(self):
        outcomes = []
        for names in (('A', 'B', 'C'), ('C', 'B', 'A')):
            transport = FakeTransport(fail_products={'B'})
            checkout, cart, log = _build(transport, strategy='parallel', names=names)
            result = await checkout.checkout(confirm_yes)
            outcomes.append((result.processed, result.errors))
            self.assertTrue(cart.is_empty())
            self.assertEqual(len(log), 3)
        self.assertEqual(outcomes, [(3, 1), (3, 1)])

    async def test_progress_reaches_total(self):
        checkout, _, _ = _build(FakeTransport(fail_products={'A'}), strategy='parallel')
        seen = []
        checkout.on('progress', lambda i, n, name: seen.append((i, n)))
        await checkout.checkout(confirm_yes)
        self.assertEqual(sorted(seen), [(1, 3), (2, 3), (3, 3)])


class CheckoutGuardTests(unittest.IsolatedAsyncioTestCase):
    async def test_reentrant_trigger_does_not_double_submit(self):
        transport = GatedTransport()
        checkout, cart, log = _build(transport)
        first = asyncio.create_task(checkout.checkout(confirm_yes))
        await asyncio.sleep(0)
        self.assertTrue(checkout.is_processing)

        second = await checkout.checkout(confirm_yes)
        self.assertIsNone(second)

        transport.gate.set()
        result = await first
        self.assertEqual(result.processed, 3)
        self.assertEqual(len(transport.payloads), 3)
        self.assertEqual(len(log), 3)
        self.assertFalse(checkout.is_processing)

    async def test_cart_is_frozen_while_submitting(self):
        transport = GatedTransport()
        checkout, cart, log = _build(transport, names=('A',))
        beans = Product('b', 'B', 2.0, 10)
        running = asyncio.create_task(checkout.checkout(confirm_yes))
        await asyncio.sleep(0)

        with self.assertRaises(CartLocked):
            cart.update_quantity(0, 5)
        with self.assertRaises(CartLocked):
            cart.add_line(beans, 2)
        # a line mutated behind the lock does not reach the books
        cart.lines[0].quantity = 5

        transport.gate.set()
        result = await running
        self.assertEqual(transport.payloads, [{'action': 'venta', 'producto': 'A', 'cantidad': 1, 'total': 1.0}])
        self.assertEqual([(e.product_name, e.quantity, e.total) for e in log], [('A', 1, 1.0)])
        self.assertAlmostEqual(log.running_total, 1.0)
        self.assertAlmostEqual(result.total, 1.0)
        self.assertTrue(cart.is_empty())
        self.assertFalse(cart.locked)

    async def test_cart_unlocks_when_declined(self):
        checkout, cart, _ = _build(FakeTransport())
        await checkout.checkout(lambda total: False)
        self.assertFalse(cart.locked)
        cart.update_quantity(0, 2)

    async def test_confirm_receives_total_and_can_decline(self):
        transport = FakeTransport()
        checkout, cart, log = _build(transport)
        asked = []

        def decline(total):
            asked.append(total)
            return False

        result = await checkout.checkout(decline)
        self.assertIsNone(result)
        self.assertEqual(asked, [6.0])
        self.assertEqual(len(cart), 3)
        self.assertEqual(transport.payloads, [])
        self.assertEqual(len(log), 0)
        self.assertFalse(checkout.is_processing)
        self.assertEqual(checkout.state, CheckoutState.IDLE)

    async def test_empty_cart_is_a_no_op(self):
        transport = FakeTransport()
        checkout, _, _ = _build(transport, names=())
        self.assertIsNone(await checkout.checkout(confirm_yes))
        self.assertFalse(checkout.is_processing)

    async def test_confirm_error_releases_the_guard(self):
        checkout, cart, _ = _build(FakeTransport())

        def broken(total):
            raise RuntimeError("dialog crashed")

        with self.assertRaises(RuntimeError):
            await checkout.checkout(broken)
        self.assertFalse(checkout.is_processing)
        self.assertEqual(len(cart), 3)

    async def test_guard_released_when_reconciliation_fails(self):
        checkout, cart, log = _build(FakeTransport())

        def explode(lines, timestamp=None):
            raise RuntimeError("log broke")

        log.record_cycle = explode
        with self.assertRaises(RuntimeError):
            await checkout.checkout(confirm_yes)
        self.assertFalse(checkout.is_processing)
        self.assertEqual(checkout.state, CheckoutState.IDLE)
        # nothing was drained
        self.assertEqual(len(cart), 3)

    async def test_submit_pending_requires_begin(self):
        checkout, _, _ = _build(FakeTransport())
        with self.assertRaises(RuntimeError):
            await checkout.submit_pending()

    async def test_begin_then_submit(self):
        transport = FakeTransport()
        checkout, _, _ = _build(transport)
        self.assertTrue(checkout.begin(confirm_yes))
        self.assertTrue(checkout.is_processing)
        self.assertFalse(checkout.begin(confirm_yes))
        result = await checkout.submit_pending()
        self.assertEqual(result.processed, 3)

    async def test_failing_listener_does_not_break_the_cycle(self):
        checkout, _, _ = _build(FakeTransport())

        def bad_listener(*args):
            raise ValueError("render failed")

        checkout.on('progress', bad_listener)
        result = await checkout.checkout(confirm_yes)
        self.assertEqual(result.errors, 0)


class CheckoutConfigTests(unittest.TestCase):
    def test_unknown_strategy(self):
        with self.assertRaises(ValueError):
            CheckoutService(CartService(), SalesLog(), FakeTransport(), strategy='bulk')

    def test_unknown_event(self):
        checkout = CheckoutService(CartService(), SalesLog(), FakeTransport(), strategy='serial')
        with self.assertRaises(ValueError):
            checkout.on('finished', print)

    def test_strategy_name_is_case_insensitive(self):
        checkout = CheckoutService(CartService(), SalesLog(), FakeTransport(), strategy=' Parallel ')
        self.assertEqual(checkout.strategy, 'parallel')


if __name__ == '__main__':
    unittest.main()
