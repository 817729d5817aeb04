"""Shared HTTP plumbing for the Tautulli, Overseerr, Radarr and Sonarr clients.

Requests go through a requests.Session with a bounded retry loop:
connection errors, timeouts and 5xx responses are retried with linear
backoff, 429 honours Retry-After. Anything that still fails is raised as
CollaboratorError so callers can tell "service down" from "no data".
"""

import logging
import time
from datetime import UTC, datetime

import requests

from error_handler import CollaboratorError

logger = logging.getLogger(__name__)

REQUEST_TIMEOUT = 15
MAX_RETRIES = 3
BACKOFF_BASE = 2
MAX_RETRY_AFTER = 60


class ServiceClient:
    """Base for JSON-over-HTTP service clients."""

    service_name = "service"
    api_prefix = ""

    def __init__(self, url, api_key=None, timeout=REQUEST_TIMEOUT):
        self.url = url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout
        self.session = requests.Session()
        self.session.headers["Accept"] = "application/json"

    def _url(self, path):
        return f"{self.url}{self.api_prefix}{path}"

    def _request(self, method, path, params=None, json=None, allow_404=False):
        """Send a request with retries. Returns the decoded JSON body (None for empty).

        Raises:
            CollaboratorError: after MAX_RETRIES failed attempts or on a 4xx response.
        """
        url = self._url(path)
        last_error = None
        for attempt in range(1, MAX_RETRIES + 1):
            try:
                resp = self.session.request(method, url, params=params, json=json,
                                            timeout=self.timeout)
                if resp.status_code == 429:
                    wait_seconds = _retry_after(resp.headers.get("Retry-After"))
                    logger.warning("%s %s %s rate limited (attempt %d), waiting %ds",
                                   self.service_name, method, path, attempt, wait_seconds)
                    last_error = "rate limited"
                    if attempt < MAX_RETRIES:
                        time.sleep(wait_seconds)
                    continue
                if resp.status_code == 404 and allow_404:
                    return None
                if resp.status_code >= 500:
                    last_error = f"HTTP {resp.status_code}"
                    logger.warning("%s %s %s returned %d (attempt %d)",
                                   self.service_name, method, path, resp.status_code, attempt)
                else:
                    resp.raise_for_status()
                    if not resp.content:
                        return None
                    return resp.json()
            except requests.ConnectionError as e:
                last_error = f"connection failed: {e}"
                logger.warning("%s %s %s failed (attempt %d): %s",
                               self.service_name, method, path, attempt, e)
            except requests.Timeout:
                last_error = "timed out"
                logger.warning("%s %s %s timed out (attempt %d)",
                               self.service_name, method, path, attempt)
            except requests.HTTPError as e:
                logger.error("%s HTTP error on %s %s: %s", self.service_name, method, path, e)
                raise CollaboratorError(self.service_name, str(e)) from e
            except ValueError as e:
                raise CollaboratorError(self.service_name, f"invalid JSON from {path}") from e
            if attempt < MAX_RETRIES:
                time.sleep(BACKOFF_BASE * attempt)

        logger.error("%s %s %s failed after %d attempts: %s",
                     self.service_name, method, path, MAX_RETRIES, last_error)
        raise CollaboratorError(self.service_name, f"{method} {path}: {last_error}")

    def _get(self, path, params=None):
        return self._request("GET", path, params=params)

    def health_check(self):
        """Returns (is_healthy, message)."""
        try:
            self._health_probe()
        except CollaboratorError as e:
            return False, str(e)
        return True, "OK"

    def _health_probe(self):
        raise NotImplementedError


def _retry_after(value):
    if not value:
        return MAX_RETRY_AFTER
    try:
        return min(int(value), MAX_RETRY_AFTER)
    except ValueError:
        return MAX_RETRY_AFTER


def parse_timestamp(value):
    """Epoch seconds or ISO-8601 text to an aware UTC datetime (None if empty)."""
    if value in (None, "", 0, "0"):
        return None
    if isinstance(value, (int, float)) or (isinstance(value, str) and value.isdigit()):
        return datetime.fromtimestamp(int(value), tz=UTC)
    try:
        parsed = datetime.fromisoformat(str(value))
    except ValueError:
        logger.debug("Unparseable timestamp %r", value)
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=UTC)
