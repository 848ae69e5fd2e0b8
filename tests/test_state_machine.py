"""Tests for the connection state table."""

import pytest

from sselink.session.state_machine import (
    TRANSITIONS,
    ConnectionState,
    InvalidTransition,
    Trigger,
    can_fire,
    next_state,
    transition,
)


class TestValidTransitions:
    def test_idle_connect(self):
        assert next_state(ConnectionState.IDLE, Trigger.CONNECT) == ConnectionState.CONNECTING

    def test_connecting_success(self):
        assert next_state(ConnectionState.CONNECTING, Trigger.SUCCESS) == ConnectionState.OPEN

    def test_connecting_failure(self):
        assert next_state(ConnectionState.CONNECTING, Trigger.FAILURE) == ConnectionState.RETRY

    def test_open_message_stays_open(self):
        assert next_state(ConnectionState.OPEN, Trigger.MESSAGE) == ConnectionState.OPEN

    def test_open_dropped(self):
        assert next_state(ConnectionState.OPEN, Trigger.DROPPED) == ConnectionState.RETRY

    def test_retry_branches(self):
        assert next_state(ConnectionState.RETRY, Trigger.SCHEDULE) == ConnectionState.DELAYING
        assert next_state(ConnectionState.RETRY, Trigger.EXHAUSTED) == ConnectionState.FAILED

    def test_delaying_timer(self):
        assert next_state(ConnectionState.DELAYING, Trigger.TIMER) == ConnectionState.CONNECTING

    def test_failed_exits(self):
        assert next_state(ConnectionState.FAILED, Trigger.RESET) == ConnectionState.IDLE
        assert next_state(ConnectionState.FAILED, Trigger.CONNECT) == ConnectionState.CONNECTING

    def test_close_from_any_live_state(self):
        for state in ConnectionState:
            if state != ConnectionState.IDLE:
                assert next_state(state, Trigger.CLOSE) == ConnectionState.IDLE


class TestInvalidTransitions:
    def test_failed_never_reconnects_on_its_own(self):
        for trigger in (Trigger.TIMER, Trigger.SCHEDULE, Trigger.SUCCESS, Trigger.FAILURE):
            assert not can_fire(ConnectionState.FAILED, trigger)

    def test_no_duplicate_connect(self):
        for state in (
            ConnectionState.CONNECTING,
            ConnectionState.OPEN,
            ConnectionState.RETRY,
            ConnectionState.DELAYING,
        ):
            assert not can_fire(state, Trigger.CONNECT)

    def test_messages_only_while_open(self):
        states = {state for (state, trigger) in TRANSITIONS if trigger is Trigger.MESSAGE}
        assert states == {ConnectionState.OPEN}

    def test_idle_close_invalid(self):
        with pytest.raises(InvalidTransition):
            next_state(ConnectionState.IDLE, Trigger.CLOSE)

    def test_reset_only_from_failed(self):
        with pytest.raises(InvalidTransition):
            next_state(ConnectionState.OPEN, Trigger.RESET)


class TestTransition:
    def test_returns_new_state(self):
        result = transition(ConnectionState.IDLE, Trigger.CONNECT, conn_id="test123")
        assert result == ConnectionState.CONNECTING

    def test_raises_on_invalid(self):
        with pytest.raises(InvalidTransition) as exc_info:
            transition(ConnectionState.DELAYING, Trigger.SUCCESS, conn_id="test123")
        assert exc_info.value.state == ConnectionState.DELAYING
        assert exc_info.value.trigger == Trigger.SUCCESS
