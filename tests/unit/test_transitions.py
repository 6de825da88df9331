"""
Unit tests for the order and issue state graphs and refund rules.
"""

from decimal import Decimal

import pytest

from fulfillment.exceptions import (
    InvalidTransition,
    IssueAlreadyResolved,
    StaleState,
    ValidationError,
)
from fulfillment.models import IssueStatus, Order, OrderStatus, RefundType
from fulfillment.transitions import (
    ISSUE_TRANSITIONS,
    ORDER_TRANSITIONS,
    can_transition,
    check_issue_transition,
    check_transition,
    compute_refund,
    describe_refund,
)
from tests.fixtures import CUSTOMER


def _order(status: OrderStatus = OrderStatus.PENDING, value: str = "100") -> Order:
    return Order(number=1, value=Decimal(value), customer_id=CUSTOMER, status=status)


# =============================================================================
# Order graph
# =============================================================================


class TestOrderGraph:
    """Tests for ORDER_TRANSITIONS and can_transition."""

    def test_every_status_has_an_entry(self) -> None:
        assert set(ORDER_TRANSITIONS) == set(OrderStatus)

    @pytest.mark.parametrize("status", [OrderStatus.COMPLETED, OrderStatus.CANCELLED])
    def test_terminal_states_have_no_exits(self, status: OrderStatus) -> None:
        assert ORDER_TRANSITIONS[status] == frozenset()
        assert status.is_terminal

    @pytest.mark.parametrize(
        ("from_status", "to_status"),
        [
            (OrderStatus.PENDING, OrderStatus.IN_PROGRESS),
            (OrderStatus.PENDING, OrderStatus.CANCELLED),
            (OrderStatus.IN_PROGRESS, OrderStatus.AWAITING_CONFIRM),
            (OrderStatus.IN_PROGRESS, OrderStatus.DISPUTED),
            (OrderStatus.AWAITING_CONFIRM, OrderStatus.COMPLETED),
            (OrderStatus.AWAITING_CONFIRM, OrderStatus.DISPUTED),
            (OrderStatus.DISPUTED, OrderStatus.IN_PROGRESS),
            (OrderStatus.DISPUTED, OrderStatus.AWAITING_CONFIRM),
            (OrderStatus.DISPUTED, OrderStatus.CANCELLED),
        ],
    )
    def test_allowed_edges(self, from_status: OrderStatus, to_status: OrderStatus) -> None:
        assert can_transition(from_status, to_status)

    @pytest.mark.parametrize(
        ("from_status", "to_status"),
        [
            (OrderStatus.PENDING, OrderStatus.COMPLETED),
            (OrderStatus.PENDING, OrderStatus.AWAITING_CONFIRM),
            (OrderStatus.IN_PROGRESS, OrderStatus.COMPLETED),
            (OrderStatus.DISPUTED, OrderStatus.COMPLETED),
            (OrderStatus.COMPLETED, OrderStatus.CANCELLED),
            (OrderStatus.CANCELLED, OrderStatus.PENDING),
        ],
    )
    def test_forbidden_edges(self, from_status: OrderStatus, to_status: OrderStatus) -> None:
        assert not can_transition(from_status, to_status)


class TestCheckTransition:
    """Tests for check_transition."""

    def test_allowed_edge_passes(self) -> None:
        check_transition(_order(), OrderStatus.IN_PROGRESS)

    def test_forbidden_edge_raises_invalid_transition(self) -> None:
        with pytest.raises(InvalidTransition) as exc_info:
            check_transition(_order(), OrderStatus.COMPLETED)

        assert not isinstance(exc_info.value, StaleState)
        assert exc_info.value.current_status == OrderStatus.PENDING
        assert exc_info.value.requested_status == OrderStatus.COMPLETED

    def test_stale_expectation_wins_over_invalid_edge(self) -> None:
        order = _order(OrderStatus.IN_PROGRESS)

        with pytest.raises(StaleState) as exc_info:
            check_transition(order, OrderStatus.IN_PROGRESS, expected_status=OrderStatus.PENDING)

        assert exc_info.value.expected_status == OrderStatus.PENDING
        assert exc_info.value.actual_status == OrderStatus.IN_PROGRESS

    def test_matching_expectation_passes(self) -> None:
        check_transition(
            _order(OrderStatus.IN_PROGRESS),
            OrderStatus.AWAITING_CONFIRM,
            expected_status=OrderStatus.IN_PROGRESS,
        )


# =============================================================================
# Issue graph
# =============================================================================


class TestIssueGraph:
    """Tests for ISSUE_TRANSITIONS and check_issue_transition."""

    def test_resolved_is_terminal(self) -> None:
        assert ISSUE_TRANSITIONS[IssueStatus.RESOLVED] == frozenset()

    def test_in_review_can_be_reopened(self) -> None:
        check_issue_transition(
            None, IssueStatus.IN_REVIEW, IssueStatus.OPEN  # type: ignore[arg-type]
        )

    def test_resolving_twice_raises_issue_already_resolved(self) -> None:
        with pytest.raises(IssueAlreadyResolved) as exc_info:
            check_issue_transition(
                None,  # type: ignore[arg-type]
                IssueStatus.RESOLVED,
                IssueStatus.RESOLVED,
                "Worker right - delivered as ordered",
            )

        assert exc_info.value.resolution == "Worker right - delivered as ordered"
        assert isinstance(exc_info.value, InvalidTransition)

    def test_open_to_open_is_invalid(self) -> None:
        with pytest.raises(InvalidTransition):
            check_issue_transition(
                None, IssueStatus.OPEN, IssueStatus.OPEN  # type: ignore[arg-type]
            )


# =============================================================================
# Refunds
# =============================================================================


class TestComputeRefund:
    """Tests for compute_refund."""

    def test_full_refunds_order_value_and_ignores_amount(self) -> None:
        assert compute_refund(_order(), RefundType.FULL, Decimal("5")) == Decimal("100.00")

    def test_none_refunds_nothing(self) -> None:
        assert compute_refund(_order(), RefundType.NONE) == Decimal("0.00")

    def test_partial_refunds_the_amount(self) -> None:
        assert compute_refund(_order(), RefundType.PARTIAL, Decimal("40")) == Decimal("40.00")

    def test_partial_may_equal_order_value(self) -> None:
        assert compute_refund(_order(), RefundType.PARTIAL, Decimal("100")) == Decimal("100.00")

    @pytest.mark.parametrize("amount", [None, Decimal("0"), Decimal("-1"), Decimal("100.01")])
    def test_partial_out_of_range_is_rejected(self, amount: Decimal | None) -> None:
        with pytest.raises(ValidationError) as exc_info:
            compute_refund(_order(), RefundType.PARTIAL, amount)

        assert exc_info.value.field == "refund_amount"

    def test_partial_above_value_mentions_the_limit(self) -> None:
        with pytest.raises(ValidationError) as exc_info:
            compute_refund(_order(value="50"), RefundType.PARTIAL, Decimal("60"))

        assert "$50.00" in exc_info.value.user_message

    @pytest.mark.parametrize("amount", [Decimal("NaN"), Decimal("Infinity"), Decimal("1e400")])
    def test_partial_amount_that_is_not_money_is_rejected(self, amount: Decimal) -> None:
        with pytest.raises(ValidationError) as exc_info:
            compute_refund(_order(), RefundType.PARTIAL, amount)

        assert exc_info.value.field == "refund_amount"


class TestDescribeRefund:
    def test_partial(self) -> None:
        assert describe_refund(RefundType.PARTIAL, Decimal("40")) == "$40.00 partial refund"

    def test_full(self) -> None:
        assert describe_refund(RefundType.FULL, Decimal("100")) == "$100.00 full refund"

    def test_none(self) -> None:
        assert describe_refund(RefundType.NONE, Decimal("0")) == "no refund"
