"""
Zendesk Data Extraction

Thin client over the Zendesk endpoints the export needs:
- Incremental ticket export (one page per call, cursor = start_time)
- Single user lookup (requester email)
- Ticket comment listing
"""

import time
from dataclasses import dataclass, field
from typing import List, Optional

import requests

from utils.extract_utils import parse_retry_after
from zendesk_export.errors import UpstreamError


@dataclass
class Page:
    """One page of the incremental ticket feed."""
    records: List[dict]
    new_cursor: int
    end_of_feed: bool
    next_page: Optional[str] = None


@dataclass
class ZendeskClient:
    """
    Zendesk API client using basic auth with an API token.

    Non-success responses raise UpstreamError with the status code and body.
    A 429 is honoured by waiting for Retry-After and re-issuing the same
    request, at most `max_rate_limit_waits` times.
    """
    subdomain: str
    email: str
    api_token: str
    timeout: int = 60
    max_rate_limit_waits: int = 3
    session: requests.Session = field(default_factory=requests.Session)

    def __post_init__(self):
        self.session.auth = (f"{self.email}/token", self.api_token)

    @classmethod
    def from_config(cls, zendesk_cfg):
        return cls(
            subdomain=zendesk_cfg.subdomain,
            email=zendesk_cfg.email,
            api_token=zendesk_cfg.api_token,
            timeout=zendesk_cfg.timeout,
            max_rate_limit_waits=zendesk_cfg.max_rate_limit_waits,
        )

    @property
    def base_url(self):
        return f"https://{self.subdomain}.zendesk.com/api/v2"

    def _get(self, url, params=None):
        rate_limit_waits = 0
        while True:
            try:
                response = self.session.get(url, params=params, timeout=self.timeout)
            except requests.exceptions.RequestException as e:
                raise UpstreamError(f"GET {url} failed: {e}") from e

            # Handle Rate Limits (429)
            if response.status_code == 429 and rate_limit_waits < self.max_rate_limit_waits:
                retry_after = parse_retry_after(response.headers.get('Retry-After'))
                print(f"!!! Rate limit hit. Waiting for {retry_after} seconds...")
                time.sleep(retry_after)
                rate_limit_waits += 1
                continue

            if not response.ok:
                raise UpstreamError(
                    f"GET {url} returned {response.status_code}: {response.text}",
                    status_code=response.status_code,
                    body=response.text,
                )

            try:
                return response.json()
            except ValueError as e:
                raise UpstreamError(
                    f"GET {url} returned a non-JSON body",
                    status_code=response.status_code,
                    body=response.text,
                ) from e

    def fetch_page(self, cursor: int) -> Page:
        """
        Fetches one page of the incremental ticket export.

        Args:
            cursor: Unix timestamp to start from (start_time)

        Returns:
            Page with the tickets, the new cursor (never below `cursor`),
            the end-of-stream flag and the next_page URL if any

        Raises:
            UpstreamError: On a failed request, or if the feed neither advances
                           nor reports end of stream
        """
        url = f"{self.base_url}/incremental/tickets.json"
        print(f"-> Fetching: {url}?start_time={cursor}")
        data = self._get(url, params={"start_time": cursor})

        records = data.get("tickets") or []
        end_time = data.get("end_time")
        end_of_feed = bool(data.get("end_of_stream", False))
        new_cursor = max(int(end_time), cursor) if end_time is not None else cursor

        if new_cursor == cursor and not end_of_feed:
            raise UpstreamError(
                f"Incremental feed did not advance past start_time={cursor} and did not report end of stream",
                status_code=200,
                body=None,
            )

        print(f"   Fetched {len(records)} records. end_time={end_time}, end_of_stream={end_of_feed}")
        return Page(records=records, new_cursor=new_cursor, end_of_feed=end_of_feed, next_page=data.get("next_page"))

    def get_user(self, user_id) -> dict:
        """Fetches a single user record."""
        data = self._get(f"{self.base_url}/users/{user_id}.json")
        return data.get("user") or {}

    def list_comments(self, ticket_id) -> List[dict]:
        """Fetches every comment of a ticket, following next_page links, in API order."""
        url = f"{self.base_url}/tickets/{ticket_id}/comments.json"
        comments = []
        while url:
            data = self._get(url)
            comments.extend(data.get("comments") or [])
            url = data.get("next_page")
        return comments
