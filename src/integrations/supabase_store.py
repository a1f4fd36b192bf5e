"""Supabase (PostgREST) client for the secondary study block mirror."""

import logging
from typing import Any, Dict

import requests

from config.settings import SecondaryStoreConfig
from src.utils.errors import MirrorError
from src.utils.retry_logic import retry_rest_request

logger = logging.getLogger(__name__)

# Column in the mirror table holding the primary block id
LINK_COLUMN = "primary_id"


class SupabaseMirrorStore:
    """Idempotent upsert/delete of mirror rows keyed by the primary block id.

    Uses the service-role key, which bypasses row-level security; the access
    rules themselves are provisioned outside this service.
    """

    def __init__(self, config: SecondaryStoreConfig, http: requests.Session = None):
        if not config.url or not config.service_role_key:
            raise ValueError("Supabase URL and service role key are required")

        self.config = config
        self.base_url = f"{config.url}/rest/v1/{config.table}"
        self.http = http or requests.Session()
        self.http.headers.update(
            {
                "apikey": config.service_role_key,
                "Authorization": f"Bearer {config.service_role_key}",
                "Content-Type": "application/json",
            }
        )

    def upsert(self, link_id: str, fields: Dict[str, Any]) -> None:
        """Insert or merge the mirror row for ``link_id``.

        Raises:
            MirrorError: If the row could not be written after retries
        """
        row = dict(fields)
        row[LINK_COLUMN] = link_id
        self._request(
            "POST",
            params={"on_conflict": LINK_COLUMN},
            headers={"Prefer": "resolution=merge-duplicates,return=minimal"},
            json=[row],
        )

    def delete(self, link_id: str) -> None:
        """Delete the mirror row for ``link_id``; deleting a missing row succeeds.

        Raises:
            MirrorError: If the request failed after retries
        """
        self._request(
            "DELETE",
            params={LINK_COLUMN: f"eq.{link_id}"},
            headers={"Prefer": "return=minimal"},
        )

    def _request(self, method: str, **kwargs) -> requests.Response:
        try:
            return retry_rest_request(
                self.http,
                method,
                self.base_url,
                max_retries=self.config.max_retries,
                timeout=self.config.timeout_seconds,
                total_timeout=self.config.total_timeout_seconds,
                **kwargs,
            )
        except requests.exceptions.HTTPError as e:
            status = e.response.status_code if e.response is not None else None
            detail = e.response.text[:200] if e.response is not None else str(e)
            raise MirrorError(f"Supabase {method} failed ({status}): {detail}", status) from e
        except requests.exceptions.RequestException as e:
            raise MirrorError(f"Supabase {method} failed: {e}") from e
