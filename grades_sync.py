#!/usr/bin/env python3
# /// script
# dependencies = [
#   "requests",
#   "beautifulsoup4",
#   "python-dotenv",
# ]
# ///
"""
Grades Sync Script

Logs into the UoM SIS portal (reusing the cached session when it still works),
fetches grades and keeps an offline copy so they can be viewed without network.

Usage:
    uv run grades_sync.py                 # Sync grades, report new ones
    uv run grades_sync.py --info          # Show student info only
    uv run grades_sync.py --stats COURSE_SYLLABUS_ID EXAM_PERIOD_ID
    uv run grades_sync.py --offline       # Show cached grades, no network
    uv run grades_sync.py --clear-cache   # Force fresh login
    uv run grades_sync.py --logout        # Forget the cached session
"""

from __future__ import annotations

import argparse
import json
import sys
from datetime import datetime
from pathlib import Path
from typing import Any

from uom_api import (
    PortalClient,
    course_code,
    course_name,
    first_list,
    grade_record_id,
    grade_value,
    student_display_name,
    student_number,
)
from uom_auth import (
    DATA_DIR,
    AuthSessionManager,
    PortalError,
    RestoreError,
    get_credentials,
)


class GradesCache:
    """
    Manages grades_cache.json, the offline copy of the last fetched grades.

    Version 1 files (grades only) are still accepted; new files are written as
    version 2, which also carries the student info.
    """

    VERSION = 2
    CACHE_FILE = DATA_DIR / "grades_cache.json"

    def __init__(self, cache_file: Path | None = None) -> None:
        self.cache_file = Path(cache_file) if cache_file else self.CACHE_FILE

    def load(self) -> dict[str, Any] | None:
        """Return the cached record, or None if missing, unreadable or unknown version."""
        try:
            data = json.loads(self.cache_file.read_bytes())
        except (ValueError, OSError):
            return None

        if not isinstance(data, dict) or not isinstance(data.get("grades"), list):
            return None
        if data.get("version") not in (1, self.VERSION):
            return None
        return data

    def save(self, grades: list[dict[str, Any]], student_info: dict[str, Any] | None = None) -> None:
        """Persist grades (and optionally student info) to disk."""
        data: dict[str, Any] = {
            "version": self.VERSION,
            "grades": grades,
            "cached_at": datetime.now().isoformat(),
        }
        if student_info:
            data["student_info"] = student_info

        self.cache_file.parent.mkdir(parents=True, exist_ok=True)
        self.cache_file.write_text(json.dumps(data, indent=2, ensure_ascii=False))

    def known_ids(self) -> set[str]:
        cached = self.load()
        if not cached:
            return set()
        return {grade_record_id(g) for g in cached["grades"] if isinstance(g, dict)}


def new_grades(grades: list[dict[str, Any]], known: set[str]) -> list[dict[str, Any]]:
    """Grades whose record id was not in the previous sync."""
    return [g for g in grades if grade_record_id(g) not in known]


def format_grade(grade: dict[str, Any]) -> str:
    value = grade_value(grade)
    shown = f"{value:>4}" if value is not None else "   -"
    status = grade.get("status") or grade.get("result") or ""
    return f"  {course_code(grade):<8} {shown}  {course_name(grade)}  {status}".rstrip()


def print_student(info: Any) -> None:
    if not isinstance(info, dict):
        print(f"Student data: {info}")
        return
    number = student_number(info)
    print(f"Student: {student_display_name(info)}" + (f" ({number})" if number else ""))


def ensure_session(manager: AuthSessionManager, debug: bool = False) -> Any:
    """Restore the cached session or fall back to a fresh login. Returns student info."""
    try:
        return manager.restore()
    except RestoreError as e:
        print(f"  No usable cached session ({e}), logging in...")

    username, password = get_credentials()
    return manager.login(username, password, debug=debug)


def show_offline(cache: GradesCache) -> int:
    cached = cache.load()
    if not cached:
        print("No cached grades found.")
        return 1

    print(f"Cached at: {cached.get('cached_at', 'unknown')}")
    if cached.get("student_info"):
        print_student(cached["student_info"])
    print()
    for grade in cached["grades"]:
        if isinstance(grade, dict):
            print(format_grade(grade))
    return 0


def sync_grades(client: PortalClient, cache: GradesCache, student: Any) -> int:
    grades = [g for g in first_list(client.grades()) if isinstance(g, dict)]
    known = cache.known_ids()
    fresh = new_grades(grades, known) if known else []

    try:
        cache.save(grades, student if isinstance(student, dict) else None)
    except OSError as e:
        print(f"  Warning: Failed to save offline grades: {e}")

    print(f"Grades: {len(grades)}")
    for grade in grades:
        print(format_grade(grade))

    if fresh:
        print()
        print(f"New since last sync: {len(fresh)}")
        for grade in fresh:
            print(format_grade(grade))
    return 0


def main() -> int:
    parser = argparse.ArgumentParser(
        description="UoM Grades Sync",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument(
        "--info",
        action="store_true",
        help="Only show student info",
    )
    parser.add_argument(
        "--stats",
        nargs=2,
        metavar=("COURSE_SYLLABUS_ID", "EXAM_PERIOD_ID"),
        help="Show the grade distribution of a course exam period",
    )
    parser.add_argument(
        "--offline",
        action="store_true",
        help="Show cached grades without contacting the portal",
    )
    parser.add_argument(
        "--clear-cache",
        action="store_true",
        help="Clear cached session and force fresh login",
    )
    parser.add_argument(
        "--logout",
        action="store_true",
        help="Delete the cached session and exit",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Write the login handshake to auth_debug.log",
    )
    args = parser.parse_args()

    print("UoM Grades Sync")
    print("=" * 50)
    print()

    cache = GradesCache()

    # Handle --offline without authentication
    if args.offline:
        return show_offline(cache)

    manager = AuthSessionManager(verbose=True)

    if args.logout:
        manager.logout()
        print("Logged out.")
        return 0

    if args.clear_cache:
        manager.cache.clear()
        print()

    try:
        student = ensure_session(manager, debug=args.debug)
    except (PortalError, ValueError) as e:
        print(f"\nAuthentication failed: {e}")
        return 1

    print()
    print_student(student)
    print()

    client = PortalClient(manager)
    try:
        if args.info:
            print(json.dumps(student, indent=2, ensure_ascii=False))
            return 0
        if args.stats:
            distribution = first_list(client.grade_stats(*args.stats))
            print(f"Grade distribution ({len(distribution)} grades):")
            print(f"  {distribution}")
            return 0
        return sync_grades(client, cache, student)

    except (PortalError, ValueError) as e:
        print(f"\nRequest failed: {e}")
        return 1
    except KeyboardInterrupt:
        print("\n\nInterrupted by user.")
        return 1


if __name__ == "__main__":
    sys.exit(main())
