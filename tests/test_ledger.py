import asyncio
import os
import re
from datetime import datetime, timezone

import pytest

from protokoll.errors import InvalidTransition
from protokoll.models import SessionKey, SessionState
from protokoll.session.ledger import SessionLedger

KEY = SessionKey("guild1", "voice2")
LINE_RE = re.compile(r"^\[\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}\.\d{3}\+00:00\] (.+?): (.*)$")


@pytest.fixture
def ledger(tmp_path):
    return SessionLedger(str(tmp_path / "transcripts"))


def test_log_path_is_deterministic(ledger):
    started = datetime(2025, 4, 27, 18, 45, 12, tzinfo=timezone.utc)
    path = ledger.log_path_for(KEY, started)
    assert os.path.basename(path) == "guild1-voice2-2025-04-27T18-45-12.log"


def test_append_writes_log_line(ledger):
    session = ledger.open_session(KEY)

    ledger.append(KEY, "Anna", "Hallo zusammen")
    ledger.append(KEY, "Ben", "Guten Morgen")

    with open(session.log_path, encoding="utf-8") as handle:
        lines = handle.read().splitlines()
    assert [LINE_RE.match(line).groups() for line in lines] == [
        ("Anna", "Hallo zusammen"),
        ("Ben", "Guten Morgen"),
    ]
    assert ledger.transcript_text(KEY) == "".join(line + "\n" for line in lines)


def test_empty_text_is_ignored_and_repeats_are_kept(ledger):
    ledger.open_session(KEY)

    assert ledger.append(KEY, "Anna", "   ") is None
    ledger.append(KEY, "Anna", "Ja")
    ledger.append(KEY, "Anna", "Ja")

    assert [entry.text for entry in ledger.entries(KEY)] == ["Ja", "Ja"]


def test_first_speech_opens_session(ledger):
    ledger.append(KEY, "Anna", "Hallo")
    assert ledger.get(KEY).state == SessionState.OPEN


def test_log_write_failure_keeps_memory_transcript(ledger, tmp_path, caplog):
    session = ledger.open_session(KEY)
    session.log_path = str(tmp_path)

    entry = ledger.append(KEY, "Anna", "Hallo")

    assert entry is not None
    assert ledger.entries(KEY) == [entry]
    assert "Failed to write transcript" in caplog.text


def test_lifecycle_transitions(ledger):
    ledger.open_session(KEY)

    with pytest.raises(InvalidTransition):
        ledger.mark_closed(KEY)

    ledger.mark_draining(KEY)
    with pytest.raises(InvalidTransition):
        ledger.mark_draining(KEY)
    with pytest.raises(InvalidTransition):
        ledger.begin_task(KEY)
    with pytest.raises(InvalidTransition):
        ledger.open_session(KEY)

    ledger.append(KEY, "Anna", "late but in time")
    ledger.mark_closed(KEY)
    assert ledger.append(KEY, "Anna", "too late") is None
    assert [entry.text for entry in ledger.entries(KEY)] == ["late but in time"]

    ledger.remove(KEY)
    assert ledger.get(KEY) is None
    with pytest.raises(InvalidTransition):
        ledger.mark_draining(KEY)


def test_in_flight_tracking(ledger):
    ledger.open_session(KEY)
    first = ledger.begin_task(KEY)
    second = ledger.begin_task(KEY)

    assert ledger.in_flight_count(KEY) == 2
    ledger.end_task(KEY, first)
    assert not ledger.is_quiescent(KEY)
    ledger.end_task(KEY, second)
    ledger.end_task(KEY, second)
    assert ledger.is_quiescent(KEY)


def test_drain_returns_immediately_when_idle(ledger):
    ledger.open_session(KEY)
    assert asyncio.run(ledger.drain(KEY, max_wait=0, grace_wait=0)) is True


def test_drain_waits_for_in_flight_work(ledger):
    async def run():
        ledger.open_session(KEY)
        task_id = ledger.begin_task(KEY)

        async def finish():
            await asyncio.sleep(0.05)
            ledger.append(KEY, "Anna", "Hallo zusammen")
            ledger.end_task(KEY, task_id)

        asyncio.get_running_loop().create_task(finish())
        return await ledger.drain(KEY, max_wait=1.0, grace_wait=0)

    assert asyncio.run(run()) is True
    assert [entry.text for entry in ledger.entries(KEY)] == ["Hallo zusammen"]


def test_drain_grace_window(ledger):
    async def run():
        ledger.open_session(KEY)
        task_id = ledger.begin_task(KEY)

        async def finish():
            await asyncio.sleep(0.1)
            ledger.end_task(KEY, task_id)

        asyncio.get_running_loop().create_task(finish())
        return await ledger.drain(KEY, max_wait=0.03, grace_wait=1.0)

    assert asyncio.run(run()) is True


def test_drain_times_out_without_cancelling(ledger):
    async def run():
        ledger.open_session(KEY)
        ledger.begin_task(KEY)
        return await ledger.drain(KEY, max_wait=0.02, grace_wait=0.02)

    assert asyncio.run(run()) is False
    assert ledger.in_flight_count(KEY) == 1
