from PyQt5.QtWidgets import (
    QWidget, QVBoxLayout, QHBoxLayout, QLabel, QPushButton, QLineEdit,
    QListWidget, QListWidgetItem, QHeaderView, QTableWidget, QTableWidgetItem,
    QDoubleSpinBox, QFrame, QSizePolicy
)
from PyQt5.QtCore import Qt, pyqtSignal
from PyQt5.QtGui import QFont, QColor

import config


def money(value):
    return f"{config.CURRENCY} {value:,.2f}"

# --- CUSTOM WIDGETS ---

class CheckoutOverlay(QFrame):
    """Blocks the till while a checkout is being sent."""

    def __init__(self, parent=None):
        super().__init__(parent)
        self.setObjectName("CheckoutOverlay")
        self.setStyleSheet("""
            QFrame#CheckoutOverlay { background-color: rgba(0,0,0,0.72); }
            QLabel { color: white; }
        """)
        layout = QVBoxLayout()
        layout.setAlignment(Qt.AlignCenter)

        self.text = QLabel("Processing...")
        self.text.setAlignment(Qt.AlignCenter)
        self.text.setFont(QFont("Segoe UI", 22, QFont.Bold))

        self.subtext = QLabel("")
        self.subtext.setAlignment(Qt.AlignCenter)
        self.subtext.setStyleSheet("font-size: 14pt;")

        layout.addWidget(self.text)
        layout.addWidget(self.subtext)
        self.setLayout(layout)
        self.hide()

    def show_message(self, text, subtext=""):
        self.text.setText(text)
        self.subtext.setText(subtext)
        if self.parentWidget() is not None:
            self.setGeometry(self.parentWidget().rect())
        self.show()
        self.raise_()

# --- SCREENS ---

class PosMain(QWidget):
    # Signals to Controller
    search_query = pyqtSignal(str)
    product_chosen = pyqtSignal(str)  # product id
    update_qty = pyqtSignal(int, float)  # line index, new quantity
    remove_item = pyqtSignal(int)  # line index
    checkout_requested = pyqtSignal()

    def __init__(self):
        super().__init__()
        self.setObjectName("PosMain")

        main_layout = QVBoxLayout()

        # 1. Top Bar: search + status
        top_layout = QHBoxLayout()
        self.search_input = QLineEdit()
        self.search_input.setPlaceholderText("Search products...")
        self.search_input.setMinimumHeight(44)
        self.search_input.textChanged.connect(self.search_query.emit)

        self.status = QLabel("Syncing products...")
        self.status.setObjectName("StatusIndicator")

        top_layout.addWidget(self.search_input, 1)
        top_layout.addWidget(self.status)

        # 2. Results dropdown, hidden until a search matches something
        self.results = QListWidget()
        self.results.setObjectName("SearchResults")
        self.results.setMaximumHeight(260)
        self.results.itemClicked.connect(self._on_result_clicked)
        self.results.hide()

        # 3. Cart / ticket
        lbl_cart = QLabel("Ticket")
        lbl_cart.setFont(QFont("Segoe UI", 16, QFont.Bold))

        self.cart_table = QTableWidget()
        self.cart_table.setColumnCount(5)
        self.cart_table.setHorizontalHeaderLabels(["Product", "Price", "Qty", "Total", ""])
        header = self.cart_table.horizontalHeader()
        header.setSectionResizeMode(0, QHeaderView.Stretch)
        for col in (1, 2, 3):
            header.setSectionResizeMode(col, QHeaderView.ResizeToContents)
        header.setSectionResizeMode(4, QHeaderView.Fixed)
        self.cart_table.setColumnWidth(4, 60)
        self.cart_table.verticalHeader().setVisible(False)
        self.cart_table.setSizePolicy(QSizePolicy.Expanding, QSizePolicy.Expanding)

        # Totals
        bottom = QHBoxLayout()
        self.grand_total = QLabel(money(0))
        self.grand_total.setStyleSheet("font-size: 20pt; font-weight: bold; color: #27AE60;")

        self.btn_checkout = QPushButton("CHARGE")
        self.btn_checkout.setObjectName("CheckoutBtn")
        self.btn_checkout.setMinimumHeight(48)
        self.btn_checkout.setEnabled(False)
        self.btn_checkout.clicked.connect(self.checkout_requested.emit)

        bottom.addWidget(QLabel("Total:"))
        bottom.addWidget(self.grand_total, 1)
        bottom.addWidget(self.btn_checkout)

        main_layout.addLayout(top_layout)
        main_layout.addWidget(self.results)
        main_layout.addWidget(lbl_cart)
        main_layout.addWidget(self.cart_table, 1)
        main_layout.addLayout(bottom)
        self.setLayout(main_layout)

        self.overlay = CheckoutOverlay(self)

    def resizeEvent(self, event):
        super().resizeEvent(event)
        if self.overlay.isVisible():
            self.overlay.setGeometry(self.rect())

    def set_input_enabled(self, enabled):
        # the overlay only stops the mouse; keyboard focus can still reach the table
        for widget in (self.search_input, self.results, self.cart_table, self.btn_checkout):
            widget.setEnabled(enabled)

    def set_status(self, text, ok=True):
        self.status.setStyleSheet("" if ok else "color: red;")
        self.status.setText(text)

    def set_product_count(self, count):
        self.search_input.setPlaceholderText(f"Search among {count} products...")

    def show_results(self, products):
        self.results.clear()
        if not products:
            self.results.hide()
            return

        for product in products[:config.MAX_RESULTS]:
            item = QListWidgetItem(f"{product.name}    Stock: {product.stock:g}    {money(product.unit_price)}")
            item.setData(Qt.UserRole, product.id)
            if product.stock < config.LOW_STOCK_THRESHOLD:
                item.setForeground(QColor("#E74C3C"))
            self.results.addItem(item)
        self.results.show()

    def hide_results(self):
        self.results.hide()

    def _on_result_clicked(self, item):
        product_id = item.data(Qt.UserRole)
        self.search_input.clear()
        self.search_input.setFocus()
        self.results.hide()
        self.product_chosen.emit(product_id)

    def update_cart_display(self, rows, total):
        self.cart_table.setRowCount(0)

        if not rows:
            self.cart_table.setRowCount(1)
            self.cart_table.setSpan(0, 0, 1, 5)
            empty = QTableWidgetItem("The cart is empty")
            empty.setTextAlignment(Qt.AlignCenter)
            self.cart_table.setItem(0, 0, empty)
            self.btn_checkout.setEnabled(False)
            self.grand_total.setText(money(0))
            return

        self.cart_table.clearSpans()
        self.cart_table.setRowCount(len(rows))
        self.btn_checkout.setEnabled(True)

        for row in rows:
            r = row['index']
            self.cart_table.setItem(r, 0, QTableWidgetItem(row['name']))
            self.cart_table.setItem(r, 1, QTableWidgetItem(money(row['unit_price'])))

            qty = QDoubleSpinBox()
            qty.setDecimals(2)
            qty.setRange(0, 1e6)
            qty.setValue(row['quantity'])
            qty.editingFinished.connect(lambda i=r, w=qty: self.update_qty.emit(i, w.value()))
            self.cart_table.setCellWidget(r, 2, qty)

            line_total = QTableWidgetItem(money(row['subtotal']))
            line_total.setFont(QFont("Segoe UI", 10, QFont.Bold))
            self.cart_table.setItem(r, 3, line_total)

            btn_rem = QPushButton("x")
            btn_rem.setStyleSheet("background-color: #E74C3C; color: white;")
            btn_rem.clicked.connect(lambda ch, i=r: self.remove_item.emit(i))
            self.cart_table.setCellWidget(r, 4, btn_rem)

        self.grand_total.setText(money(total))
