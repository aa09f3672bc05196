"""
Retry/backoff and rate-limit-aware HTTP helper.
Centralizes request retry logic so ingest clients (REST and GraphQL) share one policy.
Every call carries its own timeout, separate from any pipeline-level duration.
"""

import os
import time
import random
import logging
import email.utils
from datetime import datetime, timezone
from typing import Optional, Dict, Any, Callable
import requests

logger = logging.getLogger(__name__)

# retry/backoff defaults from environment
DEFAULT_MAX_RETRIES = int(os.getenv("CONTRIB_MAX_RETRIES", "3"))
DEFAULT_BACKOFF_BASE = float(os.getenv("CONTRIB_BACKOFF_BASE", "0.5"))
_env_jitter = os.getenv("CONTRIB_BACKOFF_JITTER")
DEFAULT_BACKOFF_JITTER = float(_env_jitter) if _env_jitter is not None and _env_jitter != "" else None
DEFAULT_MAX_BACKOFF = float(os.getenv("CONTRIB_MAX_BACKOFF", "120.0"))
DEFAULT_TIMEOUT = float(os.getenv("CONTRIB_REQUEST_TIMEOUT", "30"))
MAX_WAIT_SECONDS = 300.0

# runtime-overrides
_runtime: Dict[str, Optional[float]] = {
    'max_retries': None,
    'backoff_base': None,
    'backoff_jitter': None,
    'max_backoff': None,
}


def configure_retry(
    max_retries: Optional[int] = None, backoff_base: Optional[float] = None, backoff_jitter: Optional[float] = None, max_backoff: Optional[float] = None
):
    """Configure retry/backoff defaults at runtime (e.g. from CLI). None leaves a value unchanged."""
    if max_retries is not None:
        _runtime['max_retries'] = int(max_retries)
    if backoff_base is not None:
        _runtime['backoff_base'] = float(backoff_base)
    if backoff_jitter is not None:
        _runtime['backoff_jitter'] = float(backoff_jitter)
    if max_backoff is not None:
        _runtime['max_backoff'] = float(max_backoff)


def reset_retry():
    """Drop runtime overrides and fall back to the environment defaults."""
    for k in _runtime:
        _runtime[k] = None


def _parse_retry_after(raw_ra: Optional[str]) -> Optional[float]:
    if not raw_ra:
        return None
    try:
        return float(raw_ra)
    except ValueError:
        try:
            dt = email.utils.parsedate_to_datetime(raw_ra)
        except (TypeError, ValueError):
            return None
        if dt.tzinfo is None:
            dt = dt.replace(tzinfo=timezone.utc)
        return max(0.0, (dt - datetime.now(timezone.utc)).total_seconds())


def _header_number(headers: Dict[str, Any], key: str, cast: Callable[[Any], Any]):
    val = headers.get(key)
    if val is None:
        return None
    try:
        return cast(val)
    except (TypeError, ValueError):
        return None


def _parse_rate_headers(resp):
    headers = getattr(resp, 'headers', None) or {}
    ra = _parse_retry_after(headers.get('Retry-After'))
    rl_remaining = _header_number(headers, 'X-RateLimit-Remaining', int)
    rl_reset = _header_number(headers, 'X-RateLimit-Reset', float)
    return ra, rl_remaining, rl_reset


class RetryPolicy:
    """Resolved backoff parameters for one request (explicit args > runtime overrides > env defaults)."""

    def __init__(self, max_retries: Optional[int] = None, backoff_base: Optional[float] = None,
                 backoff_jitter: Optional[float] = None, max_backoff: Optional[float] = None):
        self.max_retries = max(1, int(_pick(max_retries, _runtime['max_retries'], DEFAULT_MAX_RETRIES)))
        self.base = float(_pick(backoff_base, _runtime['backoff_base'], DEFAULT_BACKOFF_BASE))
        self.jitter = float(_pick(backoff_jitter, _runtime['backoff_jitter'], DEFAULT_BACKOFF_JITTER, self.base))
        self.max_backoff = float(_pick(max_backoff, _runtime['max_backoff'], DEFAULT_MAX_BACKOFF))

    def wait_for(self, backoff: float, ra: Optional[float] = None, rl_reset: Optional[float] = None) -> float:
        if ra is not None:
            return min(ra + random.uniform(0, self.jitter), MAX_WAIT_SECONDS)
        if rl_reset:
            return min(max(0.0, rl_reset - time.time()) + random.uniform(0, self.jitter), MAX_WAIT_SECONDS)
        return min(backoff + random.uniform(0, self.jitter), self.max_backoff)


def _pick(*values):
    for v in values:
        if v is not None:
            return v
    return None


def _should_retry_response(status_code: int, ra: Optional[float], rl_remaining: Optional[int]) -> bool:
    if status_code in (429, 502, 503, 504):
        return True
    if ra is not None:
        return True
    # 403 with an exhausted quota is GitHub's secondary rate limit
    if rl_remaining is not None and rl_remaining <= 0:
        return True
    return False


def _parse_body(resp):
    try:
        return resp.json()
    except ValueError:
        return getattr(resp, 'text', None)


def perform_request(
    method: str,
    url: str,
    headers: Optional[Dict[str, str]] = None,
    params: Optional[Dict[str, Any]] = None,
    json_body: Optional[Dict[str, Any]] = None,
    timeout: Optional[float] = None,
    policy: Optional[RetryPolicy] = None,
    sleep: Callable[[float], None] = time.sleep,
) -> Dict[str, Any]:
    """Perform one HTTP request with retries/backoff.

    Returns {'response': body, 'status': int, 'timestamp': float}. Status 0 means the request
    never produced a response (network error or timeout after all attempts); the exception
    text is returned as the response.
    """
    policy = policy or RetryPolicy()
    timeout = float(timeout if timeout is not None else DEFAULT_TIMEOUT)
    backoff = policy.base
    last: Dict[str, Any] = {'response': None, 'status': 0, 'timestamp': time.time()}

    for attempt in range(policy.max_retries):
        try:
            resp = requests.request(method, url, headers=headers or {}, params=params or None, json=json_body, timeout=timeout)
        except requests.RequestException as ex:
            last = {'response': str(ex), 'status': 0, 'timestamp': time.time()}
            logger.debug("%s %s failed on attempt %d: %s", method, url, attempt + 1, ex)
            if attempt + 1 < policy.max_retries:
                sleep(policy.wait_for(backoff))
            backoff = min(backoff * 2, policy.max_backoff)
            continue

        status = getattr(resp, 'status_code', 0)
        if 200 <= status < 300:
            return {'response': _parse_body(resp), 'status': status, 'timestamp': time.time()}

        ra, rl_remaining, rl_reset = _parse_rate_headers(resp)
        last = {'response': _parse_body(resp), 'status': status, 'timestamp': time.time()}
        if not _should_retry_response(status, ra, rl_remaining):
            return last
        logger.debug("%s %s rate limited (status %s) on attempt %d", method, url, status, attempt + 1)
        if attempt + 1 < policy.max_retries:
            sleep(policy.wait_for(backoff, ra, rl_reset))
        backoff = min(backoff * 2, policy.max_backoff)

    return last


__all__ = ["configure_retry", "reset_retry", "perform_request", "RetryPolicy"]
