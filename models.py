import copy
from datetime import datetime
from enum import Enum

#product model
class Product:
    def __init__(self, id, name, unit_price=0.0, stock=0.0, unit=''):
        self._id = id
        self.name = name
        self.unit_price = unit_price
        # Locally tracked and advisory only; the remote sheet owns the real count
        self.stock = stock
        self.unit = unit

    @property
    def id(self):
        return self._id

    def copy(self):
        return copy.copy(self)

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'unit_price': self.unit_price,
            'stock': self.stock,
            'unit': self.unit,
        }

    def __repr__(self):
        return f"Product(id={self.id!r}, name={self.name!r}, unit_price={self.unit_price!r}, stock={self.stock!r})"

#cart line model
class CartLine:
    """One pending sale: a private copy of the product plus a quantity.

    The subtotal is never stored, so it always follows the current quantity and
    the price captured when the line was created.
    """

    def __init__(self, product, quantity):
        self.product = product.copy()
        self.quantity = quantity

    @property
    def product_id(self):
        return self.product.id

    @property
    def name(self):
        return self.product.name

    @property
    def unit_price(self):
        return self.product.unit_price

    @property
    def subtotal(self):
        return self.quantity * self.product.unit_price

    def copy(self):
        return CartLine(self.product, self.quantity)

    def to_dict(self):
        return {
            'id': self.product_id,
            'name': self.name,
            'unit_price': self.unit_price,
            'quantity': self.quantity,
            'subtotal': self.subtotal,
        }

    def __repr__(self):
        return f"CartLine({self.name!r}, quantity={self.quantity!r}, subtotal={self.subtotal!r})"

#sales log entry model
class SalesLogEntry:
    def __init__(self, product_name, quantity, total, timestamp=None):
        self.product_name = product_name
        self.quantity = quantity
        self.total = total
        self.timestamp = timestamp or datetime.now()

    @classmethod
    def from_line(cls, line, timestamp=None):
        return cls(line.name, line.quantity, line.subtotal, timestamp)

    def to_dict(self):
        return {
            'product': self.product_name,
            'quantity': self.quantity,
            'total': self.total,
            'timestamp': self.timestamp.strftime("%Y-%m-%d %H:%M:%S"),
        }

    def __repr__(self):
        return f"SalesLogEntry({self.product_name!r}, quantity={self.quantity!r}, total={self.total!r})"

#checkout state
class CheckoutState(Enum):
    IDLE = 'idle'
    CONFIRMING = 'confirming'
    SUBMITTING = 'submitting'
    COMPLETED = 'completed'

#checkout result model
class CheckoutResult:
    SUCCESS = 'success'
    PARTIAL_FAILURE = 'partial_failure'

    def __init__(self, processed, errors, total=0.0, lines=()):
        self.processed = processed
        self.errors = errors
        self.total = total
        self.lines = tuple(lines)

    @property
    def status(self):
        return self.PARTIAL_FAILURE if self.errors > 0 else self.SUCCESS

    @property
    def has_errors(self):
        return self.errors > 0

    def __repr__(self):
        return f"CheckoutResult(processed={self.processed}, errors={self.errors}, total={self.total!r})"
