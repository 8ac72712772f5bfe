class PosError(Exception):
    """Base class for errors raised by the point-of-sale core."""


class CatalogUnavailable(PosError):
    """The product catalog could not be fetched or parsed."""


class InvalidQuantity(PosError, ValueError):
    def __init__(self, value):
        super().__init__(f"Invalid quantity: {value!r}. Must be a positive number.")
        self.value = value


class SubmissionFailure(PosError):
    """A single sale line could not be sent to the remote store."""


class ConcurrentCheckoutRejected(PosError):
    def __init__(self):
        super().__init__("A checkout is already in progress.")


class CartLocked(PosError):
    def __init__(self):
        super().__init__("The cart cannot change while a checkout is in progress.")
