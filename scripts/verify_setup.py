#!/usr/bin/env python3
"""
Setup Verification Script

Checks configuration and backing services for the booking engine before
starting the API.

Usage:
    python scripts/verify_setup.py
"""

import asyncio
import sys
from pathlib import Path

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from dotenv import load_dotenv
load_dotenv()


def print_header(title: str) -> None:
    print(f"\n{'='*60}")
    print(f" {title}")
    print(f"{'='*60}")


def print_result(name: str, success: bool, message: str = "") -> None:
    status = "[PASS]" if success else "[FAIL]"
    color = "\033[92m" if success else "\033[91m"
    reset = "\033[0m"
    msg = f" - {message}" if message else ""
    print(f"  {color}{status}{reset} {name}{msg}")


def mask_url(url: str) -> str:
    """Hide the password part of a connection URL."""
    if "@" not in url or "://" not in url:
        return url
    scheme, rest = url.split("://", 1)
    credentials, host = rest.rsplit("@", 1)
    user = credentials.split(":", 1)[0]
    return f"{scheme}://{user}:***@{host}"


def check_settings() -> bool:
    """Load settings and print the values that shape engine behavior."""
    try:
        from app.config import get_settings
        settings = get_settings()
    except Exception as e:
        print_result("Settings", False, str(e)[:60])
        return False

    print_result("APP_ENV", True, settings.app_env)
    print_result("BOOKING_STORE", True, settings.booking_store)
    print_result("DATABASE_URL", True, mask_url(settings.database_url))
    print_result("REDIS_URL", True, mask_url(settings.redis_url))
    print_result("DEFAULT_INDUSTRY", True, settings.default_industry)
    print_result(
        "RESERVATION_LOCK_TIMEOUT",
        settings.reservation_lock_timeout > 0,
        f"{settings.reservation_lock_timeout}s",
    )
    return True


def check_industry_profile() -> bool:
    """Make sure the default industry resolves to a rule profile."""
    from app.config import get_settings
    from app.core.booking.rules import get_profile
    from app.core.booking.types import Industry

    name = get_settings().default_industry
    try:
        profile = get_profile(Industry(name))
    except ValueError:
        print_result("Industry profile", False, f"Unknown industry '{name}'")
        return False

    policy = profile.default_policy
    print_result(
        "Industry profile",
        True,
        f"{name} (buffer {policy.buffer_minutes}m, cancel {policy.cancellation_hours}h)",
    )
    return True


async def check_postgres() -> bool:
    try:
        from app.infra.database import check_db_health
        healthy = await check_db_health()
        print_result("PostgreSQL", healthy, "Connection successful" if healthy else "Connection failed")
        return healthy
    except Exception as e:
        print_result("PostgreSQL", False, str(e)[:50])
        return False


async def check_redis() -> bool:
    try:
        from app.infra.redis import check_redis_health
        healthy = await check_redis_health()
        message = "Connection successful" if healthy else "Unavailable (in-process locks)"
        print_result("Redis", healthy, message)
        return healthy
    except Exception as e:
        print_result("Redis", False, str(e)[:50])
        return False


async def check_webhook() -> bool:
    """Check that the notification webhook host answers at all."""
    from app.config import get_settings

    url = get_settings().notification_webhook_url
    if not url:
        print_result("Notification webhook", True, "Not configured (events are logged)")
        return True

    import httpx

    try:
        async with httpx.AsyncClient(timeout=5.0) as client:
            response = await client.head(url)
        # Any response means the host is reachable
        print_result("Notification webhook", True, f"Reachable ({response.status_code})")
        return True
    except httpx.HTTPError:
        print_result("Notification webhook", False, f"Not reachable at {url}")
        return False


def check_dependencies() -> bool:
    required_packages = [
        "fastapi",
        "uvicorn",
        "pydantic",
        "pydantic_settings",
        "sqlalchemy",
        "asyncpg",
        "redis",
        "httpx",
    ]

    missing = []
    for package in required_packages:
        try:
            __import__(package)
        except ImportError:
            missing.append(package)

    if missing:
        print_result("Python packages", False, f"Missing: {', '.join(missing)}")
        return False
    print_result("Python packages", True, "All required packages installed")
    return True


async def main() -> int:
    print("\n" + "="*60)
    print(" Booking Engine - Setup Verification")
    print("="*60)

    print_header("Python Dependencies")
    if not check_dependencies():
        return 1

    print_header("Configuration")
    if not check_settings() or not check_industry_profile():
        return 1

    from app.config import get_settings
    settings = get_settings()

    print_header("Service Connections")
    critical_failed = False

    if settings.uses_sql_store:
        critical_failed = not await check_postgres()
    else:
        print_result("PostgreSQL", True, "Skipped (BOOKING_STORE=memory)")

    redis_ok = await check_redis()
    webhook_ok = await check_webhook()

    print_header("Summary")

    if critical_failed:
        print("\n  \033[91mCRITICAL: The SQL store is selected but the database is unreachable.\033[0m")
        print("  Start PostgreSQL or set BOOKING_STORE=memory.")
        print()
        return 1
    if not (redis_ok and webhook_ok):
        print("\n  \033[93mWARNING: Some optional checks failed.\033[0m")
        print("  Locks fall back to a single process and notifications may be dropped.")
        print()
        return 0

    print("\n  \033[92mAll checks passed!\033[0m")
    print("  You can start the application with:")
    print("    uvicorn app.main:app --reload")
    print()
    return 0


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
