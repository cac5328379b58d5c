"""
Booking state machine

A booking's progress is a single BookingState record with three read views:
overall() for the canonical status, vendor_view() for what the assigned vendor
sees and user_view() for what the customer sees. The views move together except
where the transition table below says otherwise (after the report upload the
customer is AWAITING_PAYMENT while the vendor stays REPORT_UPLOADED). Final
settlement brings all three views back together on COMPLETED.

Every transition names the view its guard reads, the values it accepts and a
pure function producing the next state. Nothing else writes the three columns.
"""

from dataclasses import dataclass, replace
from typing import Callable, Dict, Tuple


class BookingStatus:
    """Wire-visible status values"""

    PENDING = "PENDING"
    AWAITING_ADVANCE = "AWAITING_ADVANCE"
    ASSIGNED = "ASSIGNED"
    ACCEPTED = "ACCEPTED"
    VISITED = "VISITED"
    REPORT_UPLOADED = "REPORT_UPLOADED"
    AWAITING_PAYMENT = "AWAITING_PAYMENT"
    PAYMENT_SUCCESS = "PAYMENT_SUCCESS"
    BOREWELL_UPLOADED = "BOREWELL_UPLOADED"
    COMPLETED = "COMPLETED"
    REJECTED = "REJECTED"
    CANCELLED = "CANCELLED"

    ALL = (
        PENDING,
        AWAITING_ADVANCE,
        ASSIGNED,
        ACCEPTED,
        VISITED,
        REPORT_UPLOADED,
        AWAITING_PAYMENT,
        PAYMENT_SUCCESS,
        BOREWELL_UPLOADED,
        COMPLETED,
        REJECTED,
        CANCELLED,
    )


class TransitionError(Exception):
    """Raised when a transition's guard does not hold for the booking's current state"""

    def __init__(self, action: str, current: str, expected: Tuple[str, ...], message: str = None):
        self.action = action
        self.current = current
        self.expected = tuple(expected)
        self.message = message or (
            f"Cannot {action.replace('_', ' ')} booking. "
            f"Current status: {current}. Expected: {' or '.join(self.expected)}."
        )
        super().__init__(self.message)


@dataclass(frozen=True)
class BookingState:
    status: str
    vendor_status: str
    user_status: str

    @classmethod
    def uniform(cls, status: str) -> "BookingState":
        return cls(status=status, vendor_status=status, user_status=status)

    def overall(self) -> str:
        return self.status

    def vendor_view(self) -> str:
        return self.vendor_status

    def user_view(self) -> str:
        return self.user_status

    def view(self, name: str) -> str:
        return {"overall": self.status, "vendor": self.vendor_status, "user": self.user_status}[name]

    def as_columns(self) -> dict:
        return {
            "status": self.status,
            "vendor_status": self.vendor_status,
            "user_status": self.user_status,
        }


@dataclass(frozen=True)
class Transition:
    name: str
    guard_view: str  # "overall" | "vendor" | "user"
    allowed: Tuple[str, ...]
    target: Callable[[BookingState], BookingState]

    def permits(self, state: BookingState) -> bool:
        return state.view(self.guard_view) in self.allowed

    def apply(self, state: BookingState) -> BookingState:
        """Return the next state or raise TransitionError"""
        if not self.permits(state):
            raise TransitionError(self.name, state.view(self.guard_view), self.allowed)
        return self.target(state)


def _to(status: str) -> Callable[[BookingState], BookingState]:
    return lambda _state: BookingState.uniform(status)


S = BookingStatus

TRANSITIONS: Dict[str, Transition] = {
    t.name: t
    for t in (
        Transition("verify_advance_payment", "overall", (S.AWAITING_ADVANCE,), _to(S.ASSIGNED)),
        Transition("accept", "vendor", (S.ASSIGNED,), _to(S.ACCEPTED)),
        Transition("reject", "vendor", (S.ASSIGNED,), _to(S.REJECTED)),
        Transition("cancel_by_vendor", "overall", (S.ACCEPTED,), _to(S.REJECTED)),
        Transition(
            "cancel_by_user", "overall", (S.PENDING, S.ASSIGNED, S.ACCEPTED), _to(S.CANCELLED)
        ),
        Transition("mark_visited", "vendor", (S.ACCEPTED,), _to(S.VISITED)),
        Transition(
            "upload_report",
            "vendor",
            (S.VISITED,),
            lambda _state: BookingState(
                status=S.REPORT_UPLOADED,
                vendor_status=S.REPORT_UPLOADED,
                user_status=S.AWAITING_PAYMENT,
            ),
        ),
        # vendor view stays where it is until the report installment is released
        Transition(
            "verify_remaining_payment",
            "user",
            (S.AWAITING_PAYMENT,),
            lambda state: replace(state, status=S.PAYMENT_SUCCESS, user_status=S.PAYMENT_SUCCESS),
        ),
        Transition(
            "upload_borewell_result", "user", (S.PAYMENT_SUCCESS,), _to(S.BOREWELL_UPLOADED)
        ),
        Transition(
            "mark_completed",
            "vendor",
            (S.VISITED, S.AWAITING_PAYMENT, S.REPORT_UPLOADED),
            lambda state: replace(state, status=S.COMPLETED),
        ),
        # reassignment: a rejected booking goes back to ASSIGNED with its new vendor
        Transition("reassign", "overall", (S.REJECTED,), _to(S.ASSIGNED)),
        Transition(
            "process_final_settlement", "overall", (S.BOREWELL_UPLOADED,), _to(S.COMPLETED)
        ),
    )
}


def _stay(state: BookingState) -> BookingState:
    return state


# Guards for actions that check the state but do not move it.
# The report installment can be released any time after upload, including after
# the customer has moved on to the borewell result or the booking was completed.
REPORT_APPROVAL_GUARD = Transition(
    "approve_report",
    "vendor",
    (S.REPORT_UPLOADED, S.AWAITING_PAYMENT, S.BOREWELL_UPLOADED, S.COMPLETED),
    _stay,
)
REPORT_REJECTION_GUARD = Transition(
    "reject_report", "vendor", (S.REPORT_UPLOADED, S.AWAITING_PAYMENT), _stay
)
REPORT_RESUBMISSION_GUARD = Transition(
    "resubmit_report",
    "vendor",
    (S.REPORT_UPLOADED, S.AWAITING_PAYMENT, S.BOREWELL_UPLOADED),
    _stay,
)
BOREWELL_APPROVAL_GUARD = Transition(
    "approve_borewell_result", "overall", (S.BOREWELL_UPLOADED,), _stay
)
RATING_GUARD = Transition("rate", "overall", (S.BOREWELL_UPLOADED, S.COMPLETED), _stay)


def initial_state() -> BookingState:
    return BookingState.uniform(BookingStatus.AWAITING_ADVANCE)
