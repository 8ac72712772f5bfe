import asyncio

from PyQt5.QtWidgets import QMainWindow, QMessageBox
from PyQt5.QtCore import QThread, QTimer, pyqtSignal
import structlog

import config
from errors import CatalogUnavailable, InvalidQuantity
from view import PosMain, money

logger = structlog.get_logger(__name__)


class CatalogWorker(QThread):
    """Fetches the catalog off the UI thread."""
    loaded = pyqtSignal(int)  # product count
    failed = pyqtSignal(str)

    def __init__(self, catalog):
        super().__init__()
        self.catalog = catalog

    def run(self):
        try:
            self.catalog.load()
        except CatalogUnavailable as e:
            self.failed.emit(str(e))
            return
        self.loaded.emit(len(self.catalog))


class CheckoutWorker(QThread):
    """Runs the submission half of a checkout on its own event loop."""
    finished_cycle = pyqtSignal(object)  # CheckoutResult
    failed = pyqtSignal(str)

    def __init__(self, checkout):
        super().__init__()
        self.checkout = checkout

    def run(self):
        try:
            result = asyncio.run(self.checkout.submit_pending())
        except Exception as e:
            logger.exception("Checkout cycle crashed")
            self.failed.emit(str(e))
            return
        self.finished_cycle.emit(result)


class MainController(QMainWindow):
    # emitted from the worker thread; Qt queues it onto the UI thread
    checkout_progress = pyqtSignal(int, int, str)

    def __init__(self, session):
        super().__init__()
        self.setWindowTitle("Point of Sale")
        self.resize(1024, 768)

        # Data State
        self.session = session
        self._worker = None
        self._catalog_worker = None

        self.till = PosMain()
        self.setCentralWidget(self.till)

        # Connect Signals
        self.till.search_query.connect(self.filter_search)
        self.till.product_chosen.connect(self.add_to_cart)
        self.till.update_qty.connect(self.update_cart_qty)
        self.till.remove_item.connect(self.remove_from_cart)
        self.till.checkout_requested.connect(self.initiate_checkout)

        self.checkout_progress.connect(self.show_progress)
        self.session.checkout.on('progress', self.checkout_progress.emit)

        self.update_cart_ui()

    # --- DATA ---
    def load_catalog(self):
        """Show the syncing status and start the fetch. Returns False if one is already running."""
        if self._catalog_worker is not None:
            return False
        self.till.set_status("Syncing products...")
        self._catalog_worker = CatalogWorker(self.session.catalog)
        self._catalog_worker.loaded.connect(self.catalog_loaded)
        self._catalog_worker.failed.connect(self.catalog_failed)
        self._catalog_worker.start()
        return True

    def catalog_loaded(self, count):
        self._release_catalog_worker()
        self.till.set_status(self.session.catalog.status_text())
        self.till.set_product_count(count)

    def catalog_failed(self, message):
        self._release_catalog_worker()
        # keep running: the operator sees the banner and can restart
        self.till.set_status(self.session.catalog.status_text(), ok=False)

    def _release_catalog_worker(self):
        worker, self._catalog_worker = self._catalog_worker, None
        if worker is not None:
            worker.wait()

    def filter_search(self, text):
        self.till.show_results(self.session.search(text, limit=config.MAX_RESULTS))

    # --- CART LOGIC ---
    def _checkout_busy(self):
        return self._worker is not None or self.session.checkout.is_processing

    def add_to_cart(self, product_id):
        if self._checkout_busy():
            return
        try:
            self.session.add_product(product_id)
        except KeyError:
            logger.warning("Picked product is no longer in the catalog", product_id=product_id)
            return
        self.update_cart_ui()

    def update_cart_qty(self, index, value):
        if self._checkout_busy():
            return
        lines = self.session.cart.lines
        if not 0 <= index < len(lines):
            return
        # editingFinished also fires on plain focus changes
        if value == lines[index].quantity:
            return
        try:
            self.session.cart.update_quantity(index, value)
        except InvalidQuantity as e:
            QMessageBox.warning(self, "Invalid quantity", f"{e}\nUse the remove button to drop a line.")
        self.update_cart_ui()

    def remove_from_cart(self, index):
        if self._checkout_busy():
            return
        try:
            self.session.cart.remove_line(index)
        except IndexError:
            return
        self.update_cart_ui()

    def update_cart_ui(self):
        cart = self.session.cart
        self.till.update_cart_display(cart.snapshot(), cart.total())

    # --- CHECKOUT ---
    def _confirm_total(self, total):
        resp = QMessageBox.question(self, "Confirm Sale",
                                    f"Confirm charge for a total of {money(total)}?",
                                    QMessageBox.Yes | QMessageBox.No)
        return resp == QMessageBox.Yes

    def initiate_checkout(self):
        if self._worker is not None:
            return
        if not self.session.checkout.begin(self._confirm_total):
            return

        self.till.set_input_enabled(False)
        self.till.overlay.show_message("Processing...")
        self._worker = CheckoutWorker(self.session.checkout)
        self._worker.finished_cycle.connect(self.finish_checkout)
        self._worker.failed.connect(self.checkout_failed)
        self._worker.start()

    def show_progress(self, current, total, name):
        self.till.overlay.show_message(f"Processing {current} of {total}...", f"Sending: {name}")

    def finish_checkout(self, result):
        if result.has_errors:
            detail = f"There were {result.errors} errors, check the spreadsheet."
        else:
            detail = "Everything was saved."
        self.till.overlay.show_message("Sale complete!", detail)
        QTimer.singleShot(config.SETTLE_DELAY_MS, self._settle_ui)

    def checkout_failed(self, message):
        self._settle_ui()
        QMessageBox.critical(self, "Checkout Failed", f"The sale could not be completed:\n{message}")

    def _settle_ui(self):
        worker, self._worker = self._worker, None
        if worker is not None:
            # the result signal can arrive before run() has returned
            worker.wait()
        self.till.overlay.hide()
        self.till.set_input_enabled(True)
        self.update_cart_ui()
        self.till.search_input.setFocus()

    def closeEvent(self, event):
        for worker in (self._catalog_worker, self._worker):
            if worker is not None:
                worker.wait()
        super().closeEvent(event)
