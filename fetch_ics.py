#!/usr/bin/env python3
# -*- coding: utf-8 -*-
#
# fetch_ics.py - download a study group schedule and repair its timezones
# Usage:
#   python3 fetch_ics.py <ID> <OUTPUT_PATH>
#
import http.client
import logging
import os
import sys
import urllib.error
import urllib.request
from dataclasses import dataclass
from typing import Optional

from fix_ics_timezone import normalize

log = logging.getLogger(__name__)

DEFAULT_URL_TEMPLATE = 'https://home.mephi.ru/study_groups/{id}/schedule.ics'
DEFAULT_USER_AGENT = 'Mozilla/5.0'


class FetchError(Exception):
    """Base class for failures while retrieving an upstream calendar."""

    def __init__(self, url: str, message: str):
        super().__init__(message)
        self.url = url


class UpstreamError(FetchError):
    """Upstream answered with something other than 200."""

    def __init__(self, url: str, status: int):
        super().__init__(url, f"call to {url} returned status code: {status}")
        self.status = status


class TransportError(FetchError):
    """DNS, connect, timeout or body-read failure."""

    def __init__(self, url: str, cause: BaseException):
        super().__init__(url, f"failed to fetch {url}: {cause}")
        self.cause = cause


@dataclass(frozen=True)
class UpstreamConfig:
    """Where schedules come from and how we ask for them.

    Built once at startup and handed to the server and to fetch_ics().
    timeout=None leaves the socket default alone.
    """
    url_template: str = DEFAULT_URL_TEMPLATE
    user_agent: str = DEFAULT_USER_AGENT
    timeout: Optional[float] = None

    def __post_init__(self):
        if not self.user_agent:
            raise ValueError('user_agent must not be empty')
        if '{id}' not in self.url_template:
            raise ValueError(f"url_template has no {{id}} placeholder: {self.url_template}")

    @classmethod
    def from_env(cls) -> 'UpstreamConfig':
        timeout = os.environ.get('ICSTZ_TIMEOUT')
        return cls(
            url_template=os.environ.get('ICSTZ_URL_TEMPLATE', DEFAULT_URL_TEMPLATE),
            user_agent=os.environ.get('ICSTZ_USER_AGENT', DEFAULT_USER_AGENT),
            timeout=float(timeout) if timeout else None,
        )

    def url_for(self, id: int) -> str:
        return self.url_template.format(id=id)


def fetch_ics(id: int, config: UpstreamConfig) -> str:
    """
    Download the schedule for a study group.
    Returns the raw text; raises UpstreamError or TransportError.
    """
    url = config.url_for(id)
    log.debug("fetching %s", url)
    req = urllib.request.Request(url, headers={'User-Agent': config.user_agent})
    kwargs = {} if config.timeout is None else {'timeout': config.timeout}
    try:
        with urllib.request.urlopen(req, **kwargs) as r:
            if r.status != 200:
                raise UpstreamError(url, r.status)
            content = r.read()
    except urllib.error.HTTPError as e:
        e.close()
        raise UpstreamError(url, e.code) from e
    except urllib.error.URLError as e:
        raise TransportError(url, e.reason) from e
    except (OSError, http.client.HTTPException) as e:
        raise TransportError(url, e) from e
    # lossy: bytes that are not valid UTF-8 are dropped, not passed through
    return content.decode('utf-8', errors='ignore')


def main():
    if len(sys.argv) != 3:
        print("Usage: python3 fetch_ics.py <ID> <OUTPUT_PATH>", file=sys.stderr)
        sys.exit(1)

    try:
        group_id = int(sys.argv[1])
    except ValueError:
        print(f"ERROR: ID is not an int: {sys.argv[1]}", file=sys.stderr)
        sys.exit(1)
    output_file = sys.argv[2]

    config = UpstreamConfig.from_env()
    print(f"Fetching from: {config.url_for(group_id)}")
    try:
        ics_data = fetch_ics(group_id, config)
    except FetchError as e:
        print(f"ERROR: {e}", file=sys.stderr)
        sys.exit(2)

    with open(output_file, 'w', encoding='utf-8', newline='') as f:
        f.write(normalize(ics_data))

    print(f"Successfully created fixed ICS file at: {output_file}")


if __name__ == "__main__":
    main()
