from __future__ import annotations

import argparse
import asyncio
import json
import sys
from typing import Any
from uuid import uuid4

import uvicorn

from .api import create_app
from .errors import TrackerError
from .service import TrackerService
from .timers import BreathPhase, TimerState, format_clock


def _service() -> TrackerService:
    return TrackerService.create(on_breath=_print_breath)


def _print_breath(phase: BreathPhase) -> None:
    print(f"  {phase.label}")


def _print_json(payload: Any) -> None:
    print(json.dumps(payload, indent=2))


def _default_tap_index(service: TrackerService) -> int:
    expected = service.beads.next_expected
    return service.beads.first_untapped if expected is None else expected


def _warn_if_unpersisted(service: TrackerService) -> None:
    if not service.storage_available:
        print("warning: local storage is unavailable; progress will not persist.", file=sys.stderr)


async def _run_meditation(service: TrackerService, minutes: int | None) -> dict[str, Any]:
    if not service.start_timer(minutes):
        return {"started": False, **service.meditation.describe()}
    last_shown = -1
    while service.meditation.state is TimerState.RUNNING:
        remaining = service.meditation.remaining_seconds
        if remaining != last_shown and remaining % 60 == 0:
            print(f"{format_clock(remaining)} remaining")
            last_shown = remaining
        await asyncio.sleep(0.5)
    return service.meditation.describe()


async def _run_midnight(service: TrackerService, wait: bool) -> dict[str, Any]:
    service.arm_midnight()
    while wait and not service.midnight.triggered:
        await asyncio.sleep(1)
    if service.midnight.triggered and service.start_midnight():
        print("Midnight stillness: 5:00")
        while service.midnight.state is TimerState.RUNNING:
            await asyncio.sleep(0.5)
    return service.midnight.describe()


def main() -> int:
    parser = argparse.ArgumentParser(description="Jagarana progress tracker CLI")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("status", help="Print current progress and certificate checklist")

    tap_cmd = sub.add_parser("tap", help="Tap one bead of the current round")
    tap_cmd.add_argument("index", type=int, nargs="?", default=None, help="Zero-based bead index (default: next bead)")
    tap_cmd.add_argument("--count", type=int, default=1, help="Tap this many consecutive beads")
    tap_cmd.add_argument("--free-order", action="store_true", help="Allow taps in any order")

    reset_round_cmd = sub.add_parser("reset-round", help="Clear the beads of the current round")
    reset_round_cmd.add_argument("--yes", action="store_true", help="Confirm the reset")

    sub.add_parser("reflect", help="Show the next unseen reflection")

    quiz_cmd = sub.add_parser("quiz", help="Quiz operations")
    quiz_sub = quiz_cmd.add_subparsers(dest="quiz_command", required=True)
    quiz_sub.add_parser("next", help="Show a question not yet answered")
    quiz_answer = quiz_sub.add_parser("answer", help="Answer one question")
    quiz_answer.add_argument("question_id")
    quiz_answer.add_argument("option", type=int, help="Zero-based option index")

    meditate_cmd = sub.add_parser("meditate", help="Run the meditation timer in the foreground")
    meditate_cmd.add_argument("--minutes", type=int, default=None, help="Duration in whole minutes")
    meditate_cmd.add_argument("--reset", action="store_true", help="Reset the timer instead of running it")

    midnight_cmd = sub.add_parser("midnight", help="Check the midnight window and run its stillness countdown")
    midnight_cmd.add_argument("--wait", action="store_true", help="Keep polling until the window opens")

    cert_cmd = sub.add_parser("certificate", help="Show checklist or issue certificate data")
    cert_cmd.add_argument("--name", default=None, help="Participant name")
    cert_cmd.add_argument("--lineage", default="", help="Optional lineage line")

    sound_cmd = sub.add_parser("sound", help="Set the sound preference")
    sound_cmd.add_argument("setting", choices=["on", "off"])

    reset_cmd = sub.add_parser("reset", help="Erase all progress")
    reset_cmd.add_argument("--yes", action="store_true", help="Confirm the reset")

    telemetry_cmd = sub.add_parser("telemetry", help="Telemetry operations")
    telemetry_sub = telemetry_cmd.add_subparsers(dest="telemetry_command", required=True)
    telemetry_sub.add_parser("status", help="Show telemetry status")
    telemetry_summary = telemetry_sub.add_parser("summary", help="Count recent events by type")
    telemetry_summary.add_argument("--range", default="7d", help="Range window like 7d or 24h")

    api_cmd = sub.add_parser("api", help="Run local API server")
    api_cmd.add_argument("--host", default="127.0.0.1")
    api_cmd.add_argument("--port", type=int, default=8000)

    args = parser.parse_args()
    service = _service()
    service.trace_id = f"cli:{uuid4()}"
    _warn_if_unpersisted(service)

    try:
        return _dispatch(args, service)
    except TrackerError as exc:
        _print_json(exc.to_dict())
        return 2
    finally:
        service.shutdown()


def _dispatch(args: argparse.Namespace, service: TrackerService) -> int:
    if args.command == "status":
        _print_json(service.snapshot())
        return 0

    if args.command == "tap":
        if args.free_order:
            service.set_strict_order(False)
        results = []
        for offset in range(max(args.count, 1)):
            index = _default_tap_index(service) if args.index is None else args.index + offset
            result = service.tap_bead(index)
            results.append(result.to_dict())
            if not result.accepted:
                break
        _print_json(results if len(results) > 1 else results[0])
        return 0 if results[-1]["accepted"] else 1

    if args.command == "reset-round":
        _print_json({"reset": service.reset_round(confirm=args.yes)})
        return 0

    if args.command == "reflect":
        _print_json(service.next_reflection())
        return 0

    if args.command == "quiz":
        if args.quiz_command == "next":
            _print_json(service.next_question())
            return 0
        if args.quiz_command == "answer":
            try:
                result = service.answer_quiz(args.question_id, args.option)
            except (KeyError, ValueError) as exc:
                print(str(exc), file=sys.stderr)
                return 1
            _print_json(result.to_dict())
            return 0

    if args.command == "meditate":
        if args.reset:
            service.reset_timer()
            _print_json(service.meditation.describe())
            return 0
        try:
            result = asyncio.run(_run_meditation(service, args.minutes))
        except KeyboardInterrupt:
            service.pause_timer()
            result = service.meditation.describe()
        _print_json(result)
        return 0

    if args.command == "midnight":
        try:
            result = asyncio.run(_run_midnight(service, args.wait))
        except KeyboardInterrupt:
            service.dismiss_midnight()
            result = service.midnight.describe()
        _print_json(result)
        return 0

    if args.command == "certificate":
        if args.name is None:
            _print_json(service.certificate_status())
            return 0
        _print_json(service.issue_certificate(args.name, args.lineage))
        return 0

    if args.command == "sound":
        _print_json({"sound_enabled": service.set_sound(args.setting == "on")})
        return 0

    if args.command == "reset":
        _print_json(service.reset_all_progress(confirm=args.yes))
        return 0

    if args.command == "telemetry":
        if args.telemetry_command == "status":
            _print_json(service.telemetry_status())
            return 0
        if args.telemetry_command == "summary":
            _print_json(service.telemetry_summary(args.range))
            return 0

    if args.command == "api":
        app = create_app(service)
        uvicorn.run(app, host=args.host, port=args.port, log_level="info")
        return 0

    return 1


if __name__ == "__main__":
    raise SystemExit(main())
