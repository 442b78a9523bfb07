"""Order status state machine: transition table, terminal states, history walks."""

import pytest

from fulfillment_kernel.domain.order_status import (
    ALLOWED_TRANSITIONS,
    INITIAL_STATUS,
    TERMINAL_STATUSES,
    OrderStatus,
    coerce_status,
    is_terminal,
    is_valid_transition,
    validate_history,
)

S = OrderStatus

EXPECTED_ALLOWED = {
    (S.PENDING, S.CONFIRMED),
    (S.PENDING, S.PROCESSING),
    (S.PENDING, S.SHIPPED),
    (S.PENDING, S.CANCELLED),
    (S.CONFIRMED, S.PROCESSING),
    (S.CONFIRMED, S.SHIPPED),
    (S.CONFIRMED, S.CANCELLED),
    (S.PROCESSING, S.SHIPPED),
    (S.PROCESSING, S.CANCELLED),
    (S.SHIPPED, S.DELIVERED),
    (S.SHIPPED, S.CANCELLED),
}


class TestTransitionTable:
    @pytest.mark.parametrize("source", list(S))
    @pytest.mark.parametrize("target", list(S))
    def test_every_pair(self, source, target):
        expected = source == target or (source, target) in EXPECTED_ALLOWED
        assert is_valid_transition(source, target) is expected

    def test_table_covers_every_status(self):
        assert set(ALLOWED_TRANSITIONS) == set(S)

    def test_terminal_statuses(self):
        assert TERMINAL_STATUSES == {S.DELIVERED, S.CANCELLED}
        assert is_terminal("delivered")
        assert not is_terminal(S.SHIPPED)

    def test_delivered_cannot_go_back_to_processing(self):
        assert not is_valid_transition(S.DELIVERED, S.PROCESSING)

    def test_cancelled_is_a_dead_end(self):
        for target in S:
            if target != S.CANCELLED:
                assert not is_valid_transition(S.CANCELLED, target)

    def test_initial_status(self):
        assert INITIAL_STATUS == S.PENDING


class TestCoercion:
    def test_accepts_strings_case_insensitively(self):
        assert coerce_status("shipped") is S.SHIPPED
        assert is_valid_transition("pending", "CONFIRMED")

    def test_unknown_status(self):
        with pytest.raises(ValueError, match="Unknown order status"):
            coerce_status("LOST")


class TestValidateHistory:
    def test_happy_path(self):
        assert validate_history([S.PENDING, S.CONFIRMED, S.PROCESSING, S.SHIPPED, S.DELIVERED])

    def test_skip_ahead_is_allowed(self):
        assert validate_history(["PENDING", "SHIPPED", "CANCELLED"])

    def test_must_start_pending(self):
        assert not validate_history([S.CONFIRMED, S.SHIPPED])
        assert not validate_history([])

    def test_nothing_after_terminal(self):
        assert not validate_history([S.PENDING, S.CANCELLED, S.CONFIRMED])

    def test_repeated_status_is_not_a_transition(self):
        assert not validate_history([S.PENDING, S.PENDING])

    def test_backwards_step_rejected(self):
        assert not validate_history([S.PENDING, S.SHIPPED, S.PROCESSING])
