"""Domain exceptions mapped to failure envelopes in main.py"""

from .domain.bookings.state import TransitionError  # noqa: F401 - re-exported


class BookingNotFoundError(Exception):
    """Raised when a booking does not exist or is not visible to the caller"""

    def __init__(self, message: str = "Booking not found"):
        self.message = message
        super().__init__(message)


class BookingAccessError(Exception):
    """Raised when the caller is not a party to the booking"""

    def __init__(self, message: str = "You are not authorized to act on this booking"):
        self.message = message
        super().__init__(message)


class InvalidActionError(Exception):
    """Business validation failure (short reason, duplicate request, already paid, ...)"""

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class PaymentVerificationError(Exception):
    """Raised when a gateway signature does not match"""

    def __init__(self, message: str = "Invalid payment signature"):
        self.message = message
        super().__init__(message)


class PaymentGatewayError(Exception):
    """Raised when the gateway cannot open an order"""

    def __init__(self, message: str = "Payment gateway unavailable"):
        self.message = message
        super().__init__(message)


class WithdrawalNotFoundError(Exception):
    """Raised when a withdrawal request does not exist or belongs to another vendor"""

    def __init__(self, message: str = "Withdrawal request not found"):
        self.message = message
        super().__init__(message)
