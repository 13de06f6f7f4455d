"""
Concept Tracker — Startup Verification

Checks run before the dashboard opens: required tables reachable, database
functions callable, auth responding, screenshot bucket present. Each backend
probe runs under its own timeout so an unreachable backend turns into a
failed check instead of a hung page.
"""

import logging
import time
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeout
from dataclasses import dataclass
from typing import Callable, Optional, TypeVar

from . import config as cfg
from .errors import ConnectivityError
from .gateway import ConceptGateway

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class SetupCheck:
    success: bool
    error: Optional[str] = None
    demo_count: int = 0
    user: Optional[dict] = None


def with_timeout(fn: Callable[[], T], seconds: float, label: str) -> T:
    """
    Run fn, giving up after `seconds`.

    Raises:
        ConnectivityError: on timeout or when fn raises.
    """
    executor = ThreadPoolExecutor(max_workers=1)
    future = executor.submit(fn)
    try:
        return future.result(timeout=seconds)
    except FutureTimeout:
        raise ConnectivityError(f"{label} timed out after {seconds}s")
    except Exception as e:
        raise ConnectivityError(f"{label} failed: {e}") from e
    finally:
        # Don't wait on a hung call
        executor.shutdown(wait=False)


def verify_database_setup(gateway: ConceptGateway, total_timeout: float = cfg.VERIFY_TOTAL_TIMEOUT) -> SetupCheck:
    """Demos and profiles tables readable, database functions available."""
    logger.info("Verifying database setup...")
    deadline = time.monotonic() + total_timeout

    def remaining(limit: float) -> float:
        return max(0.1, min(limit, deadline - time.monotonic()))

    probes = [
        ("Demos table", lambda: gateway.count_rows(cfg.DEMOS_TABLE)),
        ("User profiles table", lambda: gateway.count_rows(cfg.PROFILES_TABLE)),
        ("Database functions", gateway.call_probe_function),
    ]
    for label, probe in probes:
        if time.monotonic() >= deadline:
            return SetupCheck(False, f"Verification timed out after {total_timeout}s")
        try:
            with_timeout(probe, remaining(cfg.TABLE_PROBE_TIMEOUT), label)
        except ConnectivityError as e:
            logger.error(f"{label} not accessible: {e}")
            return SetupCheck(False, f"{label} not accessible")

    logger.info("Database setup verified")
    return SetupCheck(True)


def check_basic_functionality(gateway: ConceptGateway) -> SetupCheck:
    """Fetch one demo and the auth user; a missing session is fine."""
    try:
        demos = with_timeout(gateway.fetch_sample_demo, cfg.TABLE_PROBE_TIMEOUT, "Demo fetching")
        user = with_timeout(gateway.get_user, cfg.AUTH_PROBE_TIMEOUT, "Auth system")
    except ConnectivityError as e:
        logger.error(f"Functionality test failed: {e}")
        return SetupCheck(False, str(e))
    return SetupCheck(True, demo_count=len(demos), user=user)


def check_storage(gateway: ConceptGateway) -> bool:
    """True when the screenshot bucket exists. Missing bucket only warns."""
    try:
        buckets = with_timeout(gateway.list_buckets, cfg.TABLE_PROBE_TIMEOUT, "Storage")
    except ConnectivityError as e:
        logger.error(f"Storage access failed: {e}")
        return False
    if cfg.SCREENSHOT_BUCKET not in buckets:
        logger.warning(f"{cfg.SCREENSHOT_BUCKET} bucket not found - image uploads may fail")
        return False
    return True
