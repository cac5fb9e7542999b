"""Enroll, unenroll and inspect theory lesson enrollments from the command line.

Standalone CLI over the backend records API. Runs one coordinator operation
and prints its result as JSON on stdout.

Run with: python scripts/manage_enrollment.py validate LESSON_ID STUDENT_ID
Enroll:   python scripts/manage_enrollment.py enroll LESSON_ID STUDENT_ID --by admin --reason "Placement"
Unenroll: python scripts/manage_enrollment.py unenroll LESSON_ID STUDENT_ID --reason "Dropped"
Waitlist: python scripts/manage_enrollment.py process-waitlist LESSON_ID
Position: python scripts/manage_enrollment.py position LESSON_ID STUDENT_ID

Configuration comes from the environment / .env (RECORDS_API_URL,
RECORDS_API_TOKEN, LOG_LEVEL, LOG_JSON).

Exit codes:
  0 = success (JSON on stdout)
  1 = error (message on stderr)
"""

import argparse
import asyncio
import json
import os
import sys

from dotenv import load_dotenv

load_dotenv()

# Add project root to path for src imports
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from src.enrollment.config import get_config  # noqa: E402
from src.enrollment.coordinator import EnrollmentCoordinator  # noqa: E402
from src.enrollment.logging import enrollment_context, setup_logging  # noqa: E402
from src.enrollment.reporting import CriticalErrorReporter  # noqa: E402
from src.enrollment.store.http import HttpRecordStore  # noqa: E402


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse CLI arguments using argparse."""
    parser = argparse.ArgumentParser(
        description="Manage theory lesson enrollments.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    commands = parser.add_subparsers(dest="command", required=True)

    validate = commands.add_parser("validate", help="Check enrollment eligibility.")
    validate.add_argument("lesson_id")
    validate.add_argument("student_id")

    enroll = commands.add_parser("enroll", help="Enroll a student (or waitlist if full).")
    enroll.add_argument("lesson_id")
    enroll.add_argument("student_id")
    enroll.add_argument("--by", dest="performed_by", default="system", help="Who performed it.")
    enroll.add_argument("--reason", default=None, help="Reason recorded in the audit trail.")

    unenroll = commands.add_parser("unenroll", help="Unenroll a student and process the waitlist.")
    unenroll.add_argument("lesson_id")
    unenroll.add_argument("student_id")
    unenroll.add_argument("--reason", default=None, help="Reason recorded in the audit trail.")

    process = commands.add_parser("process-waitlist", help="Promote the next waitlisted student.")
    process.add_argument("lesson_id")

    position = commands.add_parser("position", help="Live waitlist position of a student.")
    position.add_argument("lesson_id")
    position.add_argument("student_id")

    return parser.parse_args(argv)


async def main(args: argparse.Namespace) -> dict:
    config = get_config()
    store = HttpRecordStore.from_config(config)
    coordinator = EnrollmentCoordinator(
        store,
        reporter=CriticalErrorReporter(
            store,
            sink_path=config.error_sink_path,
            service_name=config.service_name,
        ),
    )
    with enrollment_context(args.lesson_id, getattr(args, "student_id", None)):
        return await _run(coordinator, args)


async def _run(coordinator: EnrollmentCoordinator, args: argparse.Namespace) -> dict:
    if args.command == "validate":
        result = await coordinator.validate_enrollment(args.lesson_id, args.student_id)
        return result.model_dump(mode="json", exclude={"lesson", "student"})
    if args.command == "enroll":
        result = await coordinator.enroll_student(
            args.lesson_id,
            args.student_id,
            performed_by=args.performed_by,
            reason=args.reason,
        )
        return result.model_dump(mode="json", exclude={"lesson"})
    if args.command == "unenroll":
        result = await coordinator.unenroll_student(
            args.lesson_id, args.student_id, reason=args.reason
        )
        return result.model_dump(mode="json")
    if args.command == "process-waitlist":
        return {"promoted": await coordinator.process_waitlist(args.lesson_id)}
    if args.command == "position":
        return {
            "position": await coordinator.get_waitlist_position(
                args.lesson_id, args.student_id
            )
        }
    raise ValueError(f"Unknown command: {args.command}")


if __name__ == "__main__":
    args = _parse_args()
    config = get_config()
    setup_logging(
        json_output=config.log_json,
        log_level=config.log_level,
        service_name=config.service_name,
    )
    try:
        output = asyncio.run(main(args))
    except Exception as e:
        print(f"ERROR: {e}", file=sys.stderr)
        sys.exit(1)
    print(json.dumps(output, indent=2, ensure_ascii=False))
