"""
HTTP client with retry logic for API calls.
Handles rate limiting, exponential backoff with jitter, and Discogs headers.
"""

import time
import random
import requests
from config import DiscogsSettings

TRANSIENT_STATUSES = (429, 500, 502, 503, 504)


def discogs_headers(settings: DiscogsSettings = None):
    """Generate Discogs API headers with user-agent and authentication."""
    settings = settings or DiscogsSettings()
    # Discogs rejects requests without a User-Agent
    name = (settings.app_name or "vinyl-catalog").strip()
    ver = (settings.app_version or "").strip()
    ua_core = f"{name}/{ver}" if ver else name

    extras = []
    if settings.app_url:
        extras.append(f"+{settings.app_url}")
    if settings.contact:
        extras.append(f"contact: {settings.contact}")

    ua = ua_core if not extras else f"{ua_core} ({'; '.join(extras)})"

    headers = {
        "User-Agent": ua,
        "Accept": "application/json",
    }
    if settings.token:
        headers["Authorization"] = f"Discogs token={settings.token}"
    return headers


def backoff_delay(attempt, base_delay, response=None):
    """
    Sleep before the next attempt. On 429 the Retry-After header wins,
    otherwise exponential backoff (doubled for 429) plus jitter.
    """
    if response is not None and response.status_code == 429:
        retry_after = response.headers.get("Retry-After")
        if retry_after:
            try:
                return int(retry_after) + random.uniform(0, 1)
            except (ValueError, TypeError):
                pass
        return base_delay * (2 ** (attempt - 1)) * 2 + random.uniform(0, 1)
    return base_delay * (2 ** (attempt - 1)) + random.uniform(0, 0.25)


def request_with_retry(method, url, *, session=None, params=None, headers=None, json_data=None,
                       data=None, files=None, timeout=20, tries=4, base_delay=0.8, context=None):
    """
    HTTP request with retry on transient statuses and connection errors.
    Client errors (4xx other than 429) are raised immediately.
    context: Optional string to include in retry messages (e.g., "item 5/221")
    """
    client = session or requests
    verb = method.upper()
    context_str = f" [{context}]" if context else ""

    for attempt in range(1, tries + 1):
        try:
            r = client.request(verb, url, params=params, headers=headers, json=json_data,
                               data=data, files=files, timeout=timeout)
        except (requests.ConnectionError, requests.Timeout) as e:
            if attempt == tries:
                raise
            delay = backoff_delay(attempt, base_delay)
            print(f"{verb} retry {attempt}/{tries-1} after error: {e}{context_str} (sleep {delay:.1f}s)")
            time.sleep(delay)
            continue

        if r.status_code in TRANSIENT_STATUSES:
            if attempt == tries:
                raise requests.HTTPError(f"Transient {r.status_code}", response=r)
            delay = backoff_delay(attempt, base_delay, r)
            reason = "429 rate limit" if r.status_code == 429 else f"status {r.status_code}"
            print(f"{verb} retry {attempt}/{tries-1} after {reason}{context_str} (sleep {delay:.1f}s)")
            time.sleep(delay)
            continue

        r.raise_for_status()
        return r


def http_get_with_retry(url, *, params=None, headers=None, timeout=20, tries=4, base_delay=0.8,
                        context=None, session=None):
    """HTTP GET with retry logic."""
    return request_with_retry("GET", url, session=session, params=params, headers=headers,
                              timeout=timeout, tries=tries, base_delay=base_delay, context=context)

def http_post_with_retry(url, *, headers=None, json_data=None, data=None, files=None, timeout=20,
                         tries=4, base_delay=0.8, context=None, session=None):
    """HTTP POST with retry logic."""
    return request_with_retry("POST", url, session=session, headers=headers, json_data=json_data,
                              data=data, files=files, timeout=timeout, tries=tries,
                              base_delay=base_delay, context=context)

def http_patch_with_retry(url, *, headers=None, json_data=None, data=None, files=None, timeout=20,
                          tries=4, base_delay=0.8, context=None, session=None):
    """HTTP PATCH with retry logic."""
    return request_with_retry("PATCH", url, session=session, headers=headers, json_data=json_data,
                              data=data, files=files, timeout=timeout, tries=tries,
                              base_delay=base_delay, context=context)
