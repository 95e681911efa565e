import asyncio
from datetime import date, datetime, time

import httpx
import numpy as np
import pytest

from attendance import entry_exists
from client import AttendanceApiClient
from conftest import CLOSED_EYE, OPEN_EYE, FakeApi, FakeCamera, FakeRecognizer, make_face, make_photo
from kiosk import ENTRY, EXIT, RECOGNITION_FAILED_MESSAGE, KioskSession, TickOutcome, attendance_action
from main import app
from notifications import Level

ANA = np.zeros(4, dtype=np.float32)
STRANGER = np.full(4, 5.0, dtype=np.float32)


def _session(frames, api=None, clock=None):
    api = api or FakeApi(rosters={1: ["Ana"]}, photos={(1, "Ana"): b"ana"})
    api.person_ids.setdefault("Ana", 7)
    recognizer = FakeRecognizer({b"ana": ANA})
    return KioskSession(
        api,
        recognizer,
        FakeCamera(frames),
        interval=0,
        clock=clock or (lambda: datetime(2026, 10, 19, 9, 0)),
    )


def test_attendance_action_uses_cutoff():
    assert attendance_action(datetime(2026, 10, 19, 9, 0)) == ENTRY
    assert attendance_action(datetime(2026, 10, 19, 20, 29)) == ENTRY
    assert attendance_action(datetime(2026, 10, 19, 20, 30)) == EXIT
    assert attendance_action(datetime(2026, 10, 19, 23, 0)) == EXIT
    assert attendance_action(datetime(2026, 10, 19, 12, 0), cutoff=time(12, 0)) == EXIT


def test_recognised_face_records_entry_before_cutoff():
    session = _session([[make_face(descriptor=ANA)]])

    async def scenario():
        await session.select_company(1)
        assert await session.tick() == TickOutcome.MATCHING
        await session.wait_idle()

    asyncio.run(scenario())

    assert session.api.entries == [(7, 1, datetime(2026, 10, 19, 9, 0))]
    assert session.notifier.latest.level == Level.SUCCESS


def test_recognised_face_records_exit_after_cutoff():
    session = _session([[make_face(descriptor=ANA)]], clock=lambda: datetime(2026, 10, 19, 21, 0))

    async def scenario():
        await session.select_company(1)
        await session.tick()
        await session.wait_idle()

    asyncio.run(scenario())

    assert session.api.entries == []
    assert session.api.exits == [(7, 1, datetime(2026, 10, 19, 21, 0))]


def test_unknown_face_never_records():
    session = _session([[make_face(descriptor=STRANGER)]])

    async def scenario():
        await session.select_company(1)
        await session.tick()
        await session.wait_idle()

    asyncio.run(scenario())

    assert session.api.entries == []
    assert session.notifier.latest.level == Level.ERROR
    assert session.notifier.latest.message == "Person not recognised."


def test_frame_without_face_skips_and_keeps_liveness_state():
    still = make_face(descriptor=STRANGER)
    session = _session([[still], [], [still]])

    async def scenario():
        await session.select_company(1)
        outcomes = []
        for _ in range(3):
            outcomes.append(await session.tick())
            await session.wait_idle()
        return outcomes

    outcomes = asyncio.run(scenario())

    assert outcomes[1] == TickOutcome.NO_FACE
    assert session.liveness.still_frames == 1
    assert session.liveness.no_blink_frames == 2


def test_spoofed_presentation_is_rejected_and_not_matched():
    frames = [[make_face(descriptor=STRANGER)]] * 2 + [[make_face(descriptor=ANA)]] * 2
    session = _session(frames)

    async def scenario():
        await session.select_company(1)
        outcomes = []
        for _ in range(4):
            outcomes.append(await session.tick())
            await session.wait_idle()
        return outcomes

    outcomes = asyncio.run(scenario())

    assert outcomes[2:] == [TickOutcome.SPOOF, TickOutcome.SPOOF]
    assert session.api.entries == []
    warnings = [n for n in session.notifier.history if n.level == Level.WARNING]
    assert len(warnings) == 2


def test_blinking_still_face_is_accepted():
    frames = [[make_face(descriptor=ANA, eye=CLOSED_EYE)]] * 3
    session = _session(frames)
    session.api.person_ids["Ana"] = 7

    async def scenario():
        await session.select_company(1)
        outcomes = []
        for _ in range(3):
            outcomes.append(await session.tick())
            await session.wait_idle()
        return outcomes

    outcomes = asyncio.run(scenario())

    assert TickOutcome.SPOOF not in outcomes


def test_only_one_match_in_flight():
    frames = [[make_face(x=100, descriptor=ANA)], [make_face(x=120, descriptor=ANA)]]
    session = _session(frames)

    async def scenario():
        session.api.release = asyncio.Event()
        await session.select_company(1)
        first = await session.tick()
        second = await session.tick()
        assert session.match_in_flight
        session.api.release.set()
        await session.wait_idle()
        return first, second

    first, second = asyncio.run(scenario())

    assert (first, second) == (TickOutcome.MATCHING, TickOutcome.BUSY)
    assert not session.match_in_flight
    assert len(session.api.entries) == 1


def test_run_samples_until_frames_run_out():
    frames = [[make_face(x=100 + 10 * i, descriptor=STRANGER)] for i in range(3)]
    session = _session(frames)

    async def scenario():
        await session.select_company(1)
        await session.run(max_ticks=5)

    asyncio.run(scenario())

    errors = [n for n in session.notifier.history if n.message == "Person not recognised."]
    assert len(errors) == 3


def test_detector_failure_does_not_stop_sampling():
    frames = [[make_face(x=100 + 10 * i, descriptor=STRANGER)] for i in range(3)]
    session = _session(frames)
    detect = session.recognizer.detect_faces
    calls = []

    def flaky_detect(frame):
        calls.append(frame)
        if len(calls) == 1:
            raise RuntimeError("detector failure")
        return detect(frame)

    session.recognizer.detect_faces = flaky_detect

    async def scenario():
        await session.select_company(1)
        await session.run(max_ticks=3)

    asyncio.run(scenario())

    assert len(calls) == 3
    errors = [n for n in session.notifier.history if n.message == "Person not recognised."]
    assert len(errors) == 2


def test_match_failure_is_reported_and_clears_in_flight():
    session = _session([[make_face(descriptor=np.zeros(3, dtype=np.float32))]])

    async def scenario():
        await session.select_company(1)
        outcome = await session.tick()
        await session.wait_idle()
        return outcome

    assert asyncio.run(scenario()) == TickOutcome.MATCHING
    assert not session.match_in_flight
    assert session.notifier.latest.message == RECOGNITION_FAILED_MESSAGE
    assert session.api.entries == []


def test_run_requires_company():
    session = _session([])

    with pytest.raises(RuntimeError):
        asyncio.run(session.run(max_ticks=1))


def test_empty_roster_warns_and_skips_matching():
    api = FakeApi(rosters={1: []})
    session = _session([[make_face(descriptor=ANA)]], api=api)

    async def scenario():
        await session.select_company(1)
        return await session.tick()

    assert asyncio.run(scenario()) == TickOutcome.NO_ROSTER
    assert session.notifier.history[0].level == Level.WARNING


def test_end_to_end_entry_then_already_recorded(client, company_id, enroll, session_factory):
    photo = make_photo((9, 9, 9))
    enroll(company_id, "Ana", "V-1001", photo=photo)
    frames = [[make_face(x=100, descriptor=ANA)], [make_face(x=140, descriptor=ANA)]]

    async def scenario():
        transport = httpx.ASGITransport(app=app)
        async with AttendanceApiClient("http://testserver", transport=transport) as api:
            session = KioskSession(
                api,
                FakeRecognizer({photo: ANA}),
                FakeCamera(frames),
                interval=0,
                clock=lambda: datetime(2026, 10, 19, 9, 0),
            )
            await session.select_company(company_id)
            await session.run(max_ticks=1)
            first = session.notifier.latest
            await session.run(max_ticks=1)
            return first, session.notifier.latest

    first, second = asyncio.run(scenario())

    assert first.level == Level.SUCCESS
    assert first.message == "Entry recorded for Ana."
    assert second.level == Level.INFO
    assert "already recorded" in second.message

    db = session_factory()
    try:
        person_id = client.get("/person-id", params={"label": "Ana", "companyId": company_id}).json()["id"]
        assert entry_exists(db, person_id, company_id, date(2026, 10, 19))
    finally:
        db.close()


def test_unreachable_server_prompts_retry():
    async def scenario():
        def refuse(request):
            raise httpx.ConnectError("connection refused", request=request)

        transport = httpx.MockTransport(refuse)
        async with AttendanceApiClient("http://testserver", transport=transport) as api:
            session = KioskSession(api, FakeRecognizer(), FakeCamera([]), interval=0)
            session.company_id = 1
            session.roster._descriptors["Ana"] = ANA
            session.roster.company_id = 1
            session.camera.frames.append([make_face(descriptor=ANA)])
            await session.tick()
            await session.wait_idle()
            return session.notifier.latest

    latest = asyncio.run(scenario())

    assert latest.level == Level.ERROR
    assert "try again" in latest.message
