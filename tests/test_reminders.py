"""Tests for hypebot.core.reminders — transition guard and lifecycle transitions."""

import asyncio
from datetime import timedelta

import pytest

from hypebot.core.errors import StoreError, TransportError
from hypebot.core.reminders import (
    LifecycleState,
    ReminderStateMachine,
    Transition,
    evaluate,
    state_of,
)
from hypebot.data.models import Event

from conftest import NOW, FakeNotifier


def _at(minutes, reminder_sent=0):
    return Event(
        name="Game night",
        scheduled_time=NOW + timedelta(minutes=minutes),
        external_message_id="101",
        reminder_sent=reminder_sent,
    )


# ---------------------------------------------------------------------------
# Pure guard
# ---------------------------------------------------------------------------


class TestEvaluate:
    @pytest.mark.parametrize("minutes_until_start", [10, 9, 5, 1, 0.5])
    def test_remind_inside_lead_window(self, minutes_until_start):
        decision = evaluate(_at(minutes_until_start), NOW)
        assert decision.should_remind is True
        assert decision.should_retire is False

    def test_no_remind_before_lead_window(self):
        assert evaluate(_at(10.5), NOW).should_remind is False

    def test_no_remind_at_start_time(self):
        assert evaluate(_at(0), NOW).should_remind is False

    def test_no_remind_once_sent(self):
        assert evaluate(_at(5, reminder_sent=1), NOW).should_remind is False

    def test_no_action_during_event(self):
        decision = evaluate(_at(-30), NOW)
        assert decision.should_remind is False
        assert decision.should_retire is False

    @pytest.mark.parametrize("reminder_sent", [0, 1])
    def test_retire_after_window_regardless_of_flag(self, reminder_sent):
        assert evaluate(_at(-60, reminder_sent), NOW).should_retire is True
        assert evaluate(_at(-61, reminder_sent), NOW).should_retire is True

    def test_not_retired_just_before_window(self):
        assert evaluate(_at(-59), NOW).should_retire is False

    def test_retire_wins_over_late_reminder(self):
        # 70 minutes old, never reminded: retire, no late reminder
        decision = evaluate(_at(-70, reminder_sent=0), NOW)
        assert decision.should_retire is True
        assert decision.should_remind is False

    def test_custom_lead(self):
        assert evaluate(_at(25), NOW, lead=timedelta(minutes=30)).should_remind is True


class TestStateOf:
    def test_missing_row_is_retired(self):
        assert state_of(None) is LifecycleState.RETIRED

    def test_unposted_is_drafting(self):
        assert state_of(Event(name="x")) is LifecycleState.DRAFTING

    def test_posted_pending(self):
        assert state_of(_at(30)) is LifecycleState.PENDING

    def test_posted_reminded(self):
        assert state_of(_at(30, reminder_sent=1)) is LifecycleState.REMINDED


# ---------------------------------------------------------------------------
# apply_remind
# ---------------------------------------------------------------------------


class TestApplyRemind:
    @pytest.mark.asyncio
    async def test_sends_to_every_interested_user_then_sets_flag(
        self, machine, notifier, event_db, add_event,
    ):
        event = add_event(minutes=8)
        notifier.interested["101"] = [1, 2, 3]

        assert await machine.apply_remind(event) is True

        assert [uid for uid, _ in notifier.direct_messages] == [1, 2, 3]
        assert "Game night" in notifier.direct_messages[0][1]
        assert "8 minutes" in notifier.direct_messages[0][1]
        assert event_db.get_by_id(event.id).reminder_sent == 1

    @pytest.mark.asyncio
    async def test_no_interested_users_still_sets_flag(self, machine, notifier, event_db, add_event):
        event = add_event(minutes=5)
        assert await machine.apply_remind(event) is True
        assert notifier.direct_messages == []
        assert event_db.get_by_id(event.id).reminder_sent == 1

    @pytest.mark.asyncio
    async def test_rereads_flag_instead_of_trusting_snapshot(
        self, machine, notifier, event_db, add_event,
    ):
        event = add_event(minutes=5)
        notifier.interested["101"] = [1]
        stale = Event(**{**event.__dict__})
        event_db.set_reminder_sent(event.id, 1)

        assert stale.reminder_sent == 0
        assert await machine.apply_remind(stale) is False
        assert notifier.direct_messages == []

    @pytest.mark.asyncio
    async def test_missing_row_is_noop(self, machine, notifier, event_db, add_event):
        event = add_event(minutes=5)
        event_db.delete(event.id)
        assert await machine.apply_remind(event) is False
        assert notifier.direct_messages == []

    @pytest.mark.asyncio
    async def test_not_due_yet_is_noop(self, machine, notifier, event_db, add_event):
        event = add_event(minutes=45)
        notifier.interested["101"] = [1]
        assert await machine.apply_remind(event) is False
        assert notifier.direct_messages == []
        assert event_db.get_by_id(event.id).reminder_sent == 0

    @pytest.mark.asyncio
    async def test_transport_failure_leaves_flag_unset(self, event_db, add_event, clock):
        event = add_event(minutes=5)

        class BrokenNotifier(FakeNotifier):
            async def list_interested_users(self, external_message_id):
                raise TransportError("network down")

        machine = ReminderStateMachine(event_db, BrokenNotifier(), clock=clock)
        with pytest.raises(TransportError):
            await machine.apply_remind(event)
        assert event_db.get_by_id(event.id).reminder_sent == 0

    @pytest.mark.asyncio
    async def test_crash_after_send_gives_duplicate_on_retry(
        self, machine, notifier, event_db, add_event, monkeypatch,
    ):
        """Set-after-send: losing the flag write means the next trigger sends again."""
        event = add_event(minutes=5)
        notifier.interested["101"] = [1]

        def failing_write(event_id, value):
            raise StoreError("disk full")

        monkeypatch.setattr(event_db, "set_reminder_sent", failing_write)
        with pytest.raises(StoreError):
            await machine.apply_remind(event)
        monkeypatch.undo()

        assert event_db.get_by_id(event.id).reminder_sent == 0
        assert await machine.apply_remind(event) is True
        assert [uid for uid, _ in notifier.direct_messages] == [1, 1]
        assert event_db.get_by_id(event.id).reminder_sent == 1

    @pytest.mark.asyncio
    async def test_racing_triggers_are_at_least_once(self, event_db, add_event, clock):
        """Both triggers read reminder_sent=0 before either writes: both send, flag ends at 1."""
        event = add_event(minutes=5)

        class RacingNotifier(FakeNotifier):
            def __init__(self):
                super().__init__({"101": [1, 2]})
                self.readers = 0
                self.both_read = asyncio.Event()

            async def list_interested_users(self, external_message_id):
                self.readers += 1
                if self.readers == 2:
                    self.both_read.set()
                await self.both_read.wait()
                return await super().list_interested_users(external_message_id)

        notifier = RacingNotifier()
        machine = ReminderStateMachine(event_db, notifier, clock=clock)

        results = await asyncio.wait_for(
            asyncio.gather(machine.apply_remind(event), machine.apply_remind(event)),
            timeout=2,
        )

        assert results == [True, True]
        assert sorted(uid for uid, _ in notifier.direct_messages) == [1, 1, 2, 2]
        assert event_db.get_by_id(event.id).reminder_sent == 1


# ---------------------------------------------------------------------------
# apply_retire / cancel
# ---------------------------------------------------------------------------


class TestApplyRetire:
    @pytest.mark.asyncio
    async def test_deletes_announcement_and_row(self, machine, notifier, event_db, add_event):
        event = add_event(minutes=-70)
        assert await machine.apply_retire(event) is True
        assert notifier.deleted == ["101"]
        assert event_db.get_by_id(event.id) is None

    @pytest.mark.asyncio
    async def test_twice_is_idempotent(self, machine, notifier, event_db, add_event):
        event = add_event(minutes=-70)
        assert await machine.apply_retire(event) is True
        assert await machine.apply_retire(event) is False
        assert notifier.deleted == ["101"]
        assert event_db.get_by_id(event.id) is None

    @pytest.mark.asyncio
    async def test_concurrent_retires_do_not_fail(self, machine, event_db, add_event):
        event = add_event(minutes=-70)
        await asyncio.gather(machine.apply_retire(event), machine.apply_retire(event))
        assert event_db.get_by_id(event.id) is None

    @pytest.mark.asyncio
    async def test_unposted_row_skips_message_delete(self, machine, notifier, event_db, add_event):
        event = add_event(minutes=-70, message_id="")
        assert await machine.apply_retire(event) is True
        assert notifier.deleted == []
        assert event_db.get_by_id(event.id) is None

    @pytest.mark.asyncio
    async def test_transport_failure_keeps_row_for_retry(self, event_db, add_event, clock):
        event = add_event(minutes=-70)

        class BrokenNotifier(FakeNotifier):
            async def delete_announcement(self, external_message_id):
                raise TransportError("timed out")

        machine = ReminderStateMachine(event_db, BrokenNotifier(), clock=clock)
        with pytest.raises(TransportError):
            await machine.apply_retire(event)
        assert event_db.get_by_id(event.id) is not None


class TestCancel:
    @pytest.mark.asyncio
    async def test_notifies_interested_then_retires(self, machine, notifier, event_db, add_event):
        event = add_event(minutes=120)
        notifier.interested["101"] = [1, 2]

        notified = await machine.cancel(event)

        assert notified == 2
        assert notifier.direct_messages == [
            (1, "*Game night* has been canceled!"),
            (2, "*Game night* has been canceled!"),
        ]
        assert notifier.deleted == ["101"]
        assert event_db.get_by_id(event.id) is None

    @pytest.mark.asyncio
    async def test_cancel_reminded_event(self, machine, notifier, event_db, add_event):
        event = add_event(minutes=5, reminder_sent=1)
        await machine.cancel(event)
        assert event_db.get_by_id(event.id) is None

    @pytest.mark.asyncio
    async def test_scheduled_task_after_cancel_is_noop(self, machine, notifier, event_db, add_event):
        event = add_event(minutes=5)
        await machine.cancel(event)
        assert await machine.advance(event.id) is None


# ---------------------------------------------------------------------------
# process / advance
# ---------------------------------------------------------------------------


class TestProcess:
    @pytest.mark.asyncio
    async def test_process_reminds_due_event(self, machine, add_event):
        assert await machine.process(add_event(minutes=5)) is Transition.REMIND

    @pytest.mark.asyncio
    async def test_process_retires_old_event_without_reminder(
        self, machine, notifier, event_db, add_event,
    ):
        event = add_event(minutes=-70, reminder_sent=0)
        notifier.interested["101"] = [1]

        assert await machine.process(event) is Transition.RETIRE
        assert notifier.direct_messages == []
        assert event_db.get_by_id(event.id) is None

    @pytest.mark.asyncio
    async def test_process_future_event_does_nothing(self, machine, add_event):
        assert await machine.process(add_event(minutes=60)) is None

    @pytest.mark.asyncio
    async def test_advance_uses_clock(self, machine, clock, event_db, add_event):
        event = add_event(minutes=30)
        assert await machine.advance(event.id) is None
        clock.advance(minutes=21)
        assert await machine.advance(event.id) is Transition.REMIND
        clock.advance(minutes=70)
        assert await machine.advance(event.id) is Transition.RETIRE
        assert await machine.advance(event.id) is None

    def test_reminder_and_retire_times(self, machine):
        event = _at(30)
        assert machine.reminder_at(event) == NOW + timedelta(minutes=20)
        assert machine.retire_at(event) == NOW + timedelta(minutes=90)
