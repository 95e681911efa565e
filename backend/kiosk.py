"""
Capture kiosk: samples the camera on a fixed timer, gates each frame through
the liveness check, matches the face against the company roster and submits
entry/exit events to the attendance server.
"""
import argparse
import asyncio
import logging
from datetime import datetime, time
from enum import Enum
from typing import Callable, Optional

import httpx

from camera_manager import CameraStream, CameraType
from client import AttendanceApiClient
from config import API_BASE_URL, EXIT_CUTOFF, SAMPLE_INTERVAL
from errors import ConflictError, NotFoundError, TransientNetworkError
from liveness import LivenessGate
from logger_helper import setup_logging
from matcher import FaceMatcher, MatchResult
from notifications import Notifier
from recognition import FaceRecognizer
from roster import RosterCache

logger = logging.getLogger(__name__)

ENTRY = "entry"
EXIT = "exit"

RETRY_MESSAGE = "Could not reach the server, please try again."
SPOOF_MESSAGE = "No blinking or facial movement detected, possible photo or screen."
RECOGNITION_FAILED_MESSAGE = "Could not process the face, please try again."


def attendance_action(now: datetime, cutoff: time = EXIT_CUTOFF) -> str:
    """Entry before the cutoff time of day, exit at or after it."""
    return ENTRY if now.time() < cutoff else EXIT


class TickOutcome(str, Enum):
    NO_FRAME = "no-frame"
    NO_FACE = "no-face"
    SPOOF = "spoof"
    NO_ROSTER = "no-roster"
    BUSY = "busy"
    MATCHING = "matching"


class KioskSession:
    """
    One company selection on one camera.

    The roster, liveness state and in-flight flag live here rather than in
    module globals; selecting another company rebuilds the roster and
    restarting the camera loop resets the liveness state.
    """

    def __init__(
        self,
        api: AttendanceApiClient,
        recognizer,
        camera,
        notifier: Optional[Notifier] = None,
        matcher: Optional[FaceMatcher] = None,
        liveness: Optional[LivenessGate] = None,
        interval: float = SAMPLE_INTERVAL,
        cutoff: time = EXIT_CUTOFF,
        clock: Callable[[], datetime] = datetime.now,
        location: Optional[str] = None,
    ):
        self.api = api
        self.recognizer = recognizer
        self.camera = camera
        self.notifier = notifier or Notifier()
        self.matcher = matcher or FaceMatcher()
        self.liveness = liveness or LivenessGate()
        self.roster = RosterCache(api, recognizer)
        self.interval = interval
        self.cutoff = cutoff
        self.clock = clock
        self.location = location

        self.company_id: Optional[int] = None
        self.match_in_flight = False
        self._match_task: Optional[asyncio.Task] = None
        self._running = False

    async def select_company(self, company_id: int):
        """Bind the session to a company and load its roster."""
        self.company_id = company_id
        self.liveness.reset()
        try:
            entries = await self.roster.load(company_id)
        except NotFoundError:
            self.notifier.error(f"Company {company_id} not found.")
            raise
        except TransientNetworkError:
            self.notifier.error(RETRY_MESSAGE)
            raise

        if not entries:
            self.notifier.warning("No enrolled faces available for this company.")
        return entries

    async def tick(self) -> TickOutcome:
        """Process one sampled frame."""
        frame = await asyncio.to_thread(self.camera.read)
        if frame is None:
            return TickOutcome.NO_FRAME

        faces = await asyncio.to_thread(self.recognizer.detect_faces, frame)
        if not faces:
            return TickOutcome.NO_FACE

        face = faces[0]
        verdict = self.liveness.observe(face.bbox, face.left_eye, face.right_eye)
        if verdict.spoof_suspected:
            self.notifier.warning(SPOOF_MESSAGE)
            return TickOutcome.SPOOF

        if not len(self.roster):
            return TickOutcome.NO_ROSTER

        if self.match_in_flight:
            logger.debug("Previous match still in flight, skipping")
            return TickOutcome.BUSY

        self.match_in_flight = True
        self._match_task = asyncio.create_task(self._recognize(face.descriptor))
        return TickOutcome.MATCHING

    async def wait_idle(self):
        """Wait for the in-flight match, if any."""
        if self._match_task is not None:
            task, self._match_task = self._match_task, None
            await task

    async def _recognize(self, descriptor) -> Optional[MatchResult]:
        try:
            result = self.matcher.match(descriptor, self.roster.entries())
            if not result.known:
                self.notifier.error("Person not recognised.")
                return result
            logger.info(f"Matched {result}")
            await self._record(result)
            return result
        except Exception:
            logger.exception("Match failed")
            self.notifier.error(RECOGNITION_FAILED_MESSAGE)
            return None
        finally:
            self.match_in_flight = False

    async def _record(self, result: MatchResult):
        company_id = self.company_id
        label = result.label
        try:
            person_id = await self.api.person_id(label, company_id)
            now = self.clock()
            if attendance_action(now, self.cutoff) == ENTRY:
                await self.api.register_entry(
                    person_id, company_id, now,
                    location=self.location,
                    auth_result=str(result)
                )
                self.notifier.success(f"Entry recorded for {label}.")
            else:
                await self.api.register_exit(person_id, company_id, now)
                self.notifier.success(f"Exit recorded for {label}.")
        except ConflictError:
            self.notifier.info(f"Attendance for {label} already recorded today.")
        except NotFoundError:
            self.notifier.error(f"{label} is not enrolled in this company.")
        except TransientNetworkError:
            self.notifier.error(RETRY_MESSAGE)
        except httpx.HTTPStatusError as e:
            logger.error(f"Attendance request for {label} rejected: {e}")
            self.notifier.error(f"Could not record attendance for {label}.")

    async def run(self, max_ticks: Optional[int] = None):
        """
        Sample the camera every ``interval`` seconds until ``stop`` is called
        (or ``max_ticks`` frames were processed). Matches run in the
        background so a slow server never delays the next sample.
        """
        if self.company_id is None:
            raise RuntimeError("Select a company before starting the camera")

        loop = asyncio.get_running_loop()
        self.liveness.reset()
        self._running = True
        ticks = 0
        try:
            while self._running:
                started = loop.time()
                try:
                    await self.tick()
                except Exception:
                    logger.exception("Failed to process frame")
                ticks += 1
                if max_ticks is not None and ticks >= max_ticks:
                    break
                delay = self.interval - (loop.time() - started)
                if delay > 0:
                    await asyncio.sleep(delay)
        finally:
            self._running = False
            await self.wait_idle()

    def stop(self):
        self._running = False


def main(argv=None):
    parser = argparse.ArgumentParser(description="Face attendance kiosk")
    parser.add_argument("--api-url", default=API_BASE_URL)
    parser.add_argument("--company-id", type=int, required=True)
    parser.add_argument("--camera", default="0", help="Webcam index, stream URL or video file")
    parser.add_argument("--camera-type", default=CameraType.WEBCAM.value, choices=[t.value for t in CameraType])
    parser.add_argument("--location", default=None)
    args = parser.parse_args(argv)

    setup_logging()

    recognizer = FaceRecognizer()

    camera = CameraStream(args.camera, CameraType(args.camera_type))
    if not camera.open():
        raise SystemExit(f"Could not open camera {args.camera}")

    async def _run():
        async with AttendanceApiClient(args.api_url) as api:
            session = KioskSession(api, recognizer, camera, location=args.location)
            await session.select_company(args.company_id)
            await session.run()

    try:
        asyncio.run(_run())
    except KeyboardInterrupt:
        logger.info("Kiosk stopped")
    finally:
        camera.release()


if __name__ == "__main__":
    main()
