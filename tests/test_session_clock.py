import asyncio
import threading
import time
from datetime import datetime, timedelta, timezone

import pytest

from cbt.errors import ExamAccessError, ExamNotFoundError, SessionLoadError, SessionNotFoundError
from cbt.schemas import ExamInfo, ExamSettings
from cbt.services.clock import SessionClock
from cbt.services.exam_session import SessionState
from cbt.services.session_registry import SessionRegistry, check_access


@pytest.fixture
def one_minute_session(make_session, single_choice, short_answer):
    return make_session([single_choice("q1"), short_answer("q2")], duration_minutes=1)


class TestSessionClock:
    def test_interval_must_be_positive(self, one_minute_session, manual_time):
        with pytest.raises(ValueError):
            SessionClock(one_minute_session, interval=0, monotonic=manual_time)

    def test_tick_advances_one_interval(self, one_minute_session, manual_time):
        clock = SessionClock(one_minute_session, interval=1, monotonic=manual_time)
        assert clock.tick() is False
        assert one_minute_session.remaining_seconds == 59

    def test_sync_applies_whole_elapsed_intervals(self, one_minute_session, manual_time):
        clock = SessionClock(one_minute_session, interval=1, monotonic=manual_time)
        manual_time.advance(10.5)
        assert clock.sync() is False
        assert one_minute_session.remaining_seconds == 50

        # the leftover half second carries into the next sync
        manual_time.advance(0.5)
        clock.sync()
        assert one_minute_session.remaining_seconds == 49

    def test_sync_without_elapsed_time_is_noop(self, one_minute_session, manual_time):
        clock = SessionClock(one_minute_session, interval=1, monotonic=manual_time)
        assert clock.sync() is False
        assert one_minute_session.remaining_seconds == 60

    def test_sync_past_deadline_forces_submit_once(self, one_minute_session, manual_time, sink):
        clock = SessionClock(one_minute_session, interval=1, monotonic=manual_time)
        manual_time.advance(3600)
        assert clock.sync() is True
        assert one_minute_session.state is SessionState.FINISHED
        assert one_minute_session.auto_submitted

        manual_time.advance(60)
        assert clock.sync() is False
        assert sink.calls == 1

    def test_run_ticks_until_time_is_up(self, one_minute_session, manual_time, sink):
        clock = SessionClock(one_minute_session, interval=1, monotonic=manual_time)
        sleeps = []

        async def fake_sleep(seconds):
            sleeps.append(seconds)

        asyncio.run(clock.run(sleep=fake_sleep))

        assert len(sleeps) == 60
        assert one_minute_session.state is SessionState.FINISHED
        assert sink.calls == 1
        assert not clock.running

    def test_stop_ends_the_loop(self, one_minute_session, manual_time, sink):
        clock = SessionClock(one_minute_session, interval=1, monotonic=manual_time)

        async def fake_sleep(seconds):
            if one_minute_session.remaining_seconds == 55:
                clock.stop()

        asyncio.run(clock.run(sleep=fake_sleep))

        assert one_minute_session.state is SessionState.ACTIVE
        assert one_minute_session.remaining_seconds == 55
        assert sink.calls == 0

    def test_run_returns_when_student_submits(self, one_minute_session, manual_time, sink):
        clock = SessionClock(one_minute_session, interval=1, monotonic=manual_time)

        async def fake_sleep(seconds):
            if one_minute_session.remaining_seconds == 30:
                one_minute_session.confirm_submit()

        asyncio.run(clock.run(sleep=fake_sleep))

        assert one_minute_session.auto_submitted is False
        assert one_minute_session.remaining_seconds == 30
        assert sink.calls == 1

    def test_concurrent_syncs_charge_elapsed_time_once(self, one_minute_session):
        now = [1000.0]

        def slow_monotonic():
            time.sleep(0.005)
            return now[0]

        clock = SessionClock(one_minute_session, interval=1, monotonic=slow_monotonic)
        now[0] += 10
        barrier = threading.Barrier(4)

        def request():
            barrier.wait()
            clock.sync()

        threads = [threading.Thread(target=request) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert one_minute_session.remaining_seconds == 50


class TestCheckAccess:
    @pytest.fixture
    def now(self):
        return datetime(2026, 5, 4, 9, 0)

    def test_open_exam_without_token(self, now):
        check_access(ExamInfo(id=1, name="A", duration_minutes=5), ExamSettings(), None, now)

    def test_wrong_token(self, now):
        exam = ExamInfo(id=1, name="A", duration_minutes=5, token="TOKEN123")
        with pytest.raises(ExamAccessError):
            check_access(exam, ExamSettings(), "nope", now)
        check_access(exam, ExamSettings(), "TOKEN123", now)

    def test_required_token_missing_on_exam(self, now):
        exam = ExamInfo(id=1, name="A", duration_minutes=5)
        with pytest.raises(ExamAccessError):
            check_access(exam, ExamSettings(require_token=True), None, now)

    def test_window(self, now):
        later = ExamInfo(
            id=1, name="A", duration_minutes=5,
            start_time=now + timedelta(hours=1), end_time=now + timedelta(hours=2),
        )
        earlier = ExamInfo(
            id=2, name="B", duration_minutes=5,
            start_time=now - timedelta(hours=2), end_time=now - timedelta(hours=1),
        )
        with pytest.raises(ExamAccessError, match="not started"):
            check_access(later, ExamSettings(), None, now)
        with pytest.raises(ExamAccessError, match="closed"):
            check_access(earlier, ExamSettings(), None, now)

    def test_window_with_offsets_compares_instants(self):
        jakarta = timezone(timedelta(hours=7))
        exam = ExamInfo(
            id=1, name="A", duration_minutes=5,
            start_time=datetime(2026, 5, 4, 9, 0, tzinfo=jakarta),
            end_time=datetime(2026, 5, 4, 11, 0, tzinfo=jakarta),
        )
        assert exam.start_time == datetime(2026, 5, 4, 2, 0, tzinfo=timezone.utc)

        check_access(exam, ExamSettings(), None, datetime(2026, 5, 4, 3, 0, tzinfo=timezone.utc))
        # naive times are UTC
        check_access(exam, ExamSettings(), None, datetime(2026, 5, 4, 3, 0))
        with pytest.raises(ExamAccessError, match="not started"):
            check_access(exam, ExamSettings(), None, datetime(2026, 5, 4, 8, 30, tzinfo=jakarta))
        with pytest.raises(ExamAccessError, match="closed"):
            check_access(exam, ExamSettings(), None, datetime(2026, 5, 4, 5, 0, tzinfo=timezone.utc))

    def test_iso_strings_with_offsets(self):
        exam = ExamInfo.model_validate(
            {
                "id": 1,
                "name": "A",
                "duration_minutes": 5,
                "start_time": "2026-05-04T09:00:00+07:00",
                "end_time": "2026-05-04T02:30:00Z",
            }
        )
        assert exam.end_time - exam.start_time == timedelta(minutes=30)


class FailingExamSource:
    def load_exam(self, exam_id):
        raise ConnectionError("database is down")

    def load_questions(self, exam_id):
        return []

    def load_exam_settings(self):
        return ExamSettings()


class TestSessionRegistry:
    @pytest.fixture
    def memory_registry(self, source, sink, reporter, manual_time, single_choice, short_answer):
        source.add_exam(
            ExamInfo(id=1, name="Literacy", duration_minutes=1, token="TOKEN123"),
            [single_choice("q1"), short_answer("q2")],
        )
        return SessionRegistry(source, sink, reporter=reporter, monotonic=manual_time)

    def test_start_and_get(self, memory_registry):
        session = memory_registry.start("1001", 1, token="TOKEN123")
        assert session.state is SessionState.ACTIVE
        assert memory_registry.get("1001", 1) is session

    def test_start_resumes_active_session(self, memory_registry):
        first = memory_registry.start("1001", 1, token="TOKEN123")
        first.select_answer("q1", "q1o1")
        again = memory_registry.start("1001", 1, token="TOKEN123")
        assert again is first
        assert again.answer_for("q1") == "q1o1"

    def test_start_checks_token(self, memory_registry):
        with pytest.raises(ExamAccessError):
            memory_registry.start("1001", 1, token="wrong")
        with pytest.raises(SessionNotFoundError):
            memory_registry.get("1001", 1)

    def test_unknown_exam(self, memory_registry):
        with pytest.raises(ExamNotFoundError):
            memory_registry.start("1001", 99)

    def test_source_failure_is_a_load_error(self, sink, manual_time):
        registry = SessionRegistry(FailingExamSource(), sink, monotonic=manual_time)
        with pytest.raises(SessionLoadError):
            registry.start("1001", 1)

    def test_get_catches_up_with_wall_clock(self, memory_registry, manual_time, sink):
        memory_registry.start("1001", 1, token="TOKEN123")
        manual_time.advance(61)
        session = memory_registry.get("1001", 1)
        assert session.state is SessionState.FINISHED
        assert session.auto_submitted
        assert sink.records[("1001", 1)].answers == []

    def test_finished_session_is_replaced_on_start(self, memory_registry):
        first = memory_registry.start("1001", 1, token="TOKEN123")
        first.confirm_submit()
        second = memory_registry.start("1001", 1, token="TOKEN123")
        assert second is not first
        assert second.state is SessionState.ACTIVE

    def test_discard(self, memory_registry):
        memory_registry.start("1001", 1, token="TOKEN123")
        memory_registry.discard("1001", 1)
        with pytest.raises(SessionNotFoundError):
            memory_registry.get("1001", 1)

    def test_start_with_timezone_aware_window(self, source, sink, manual_time, single_choice):
        now = datetime.now(timezone.utc)
        source.add_exam(
            ExamInfo(
                id=5, name="Aware", duration_minutes=5,
                start_time=now - timedelta(hours=1), end_time=now + timedelta(hours=1),
            ),
            [single_choice("q1")],
        )
        registry = SessionRegistry(source, sink, monotonic=manual_time)
        assert registry.start("s1", 5).state is SessionState.ACTIVE

    def test_saved_session_is_dropped_after_retention(self, memory_registry, manual_time):
        memory_registry.retention = 60
        session = memory_registry.start("1001", 1, token="TOKEN123")
        session.confirm_submit()

        assert memory_registry.get("1001", 1) is session
        manual_time.advance(59)
        assert memory_registry.get("1001", 1) is session
        manual_time.advance(1)
        with pytest.raises(SessionNotFoundError):
            memory_registry.get("1001", 1)

    def test_unsaved_session_is_kept_for_retry(self, source, manual_time, single_choice):
        class DownSink:
            def submit_session(self, *args, **kwargs):
                raise ConnectionError("database is down")

        source.add_exam(ExamInfo(id=2, name="Numeracy", duration_minutes=5), [single_choice("q1")])
        registry = SessionRegistry(source, DownSink(), monotonic=manual_time, retention=60)
        session = registry.start("1001", 2)
        session.confirm_submit()

        manual_time.advance(3600)
        assert registry.get("1001", 2) is session
        assert not session.is_persisted
