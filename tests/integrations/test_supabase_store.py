"""Tests for the Supabase mirror store client."""

import pytest
import requests
from unittest.mock import MagicMock, patch

from config.settings import SecondaryStoreConfig
from src.integrations.supabase_store import LINK_COLUMN, SupabaseMirrorStore
from src.utils.errors import MirrorError


def make_response(status_code=201, text=""):
    response = MagicMock()
    response.status_code = status_code
    response.text = text
    if status_code >= 400:
        response.raise_for_status.side_effect = requests.exceptions.HTTPError(
            f"{status_code} Error", response=response
        )
    return response


@pytest.fixture
def config():
    return SecondaryStoreConfig(
        url="https://project.supabase.co",
        service_role_key="service-key",
        table="study_blocks",
        timeout_seconds=5,
        max_retries=2,
    )


@pytest.fixture
def http():
    session = MagicMock()
    session.headers = {}
    return session


@pytest.fixture
def store(config, http):
    return SupabaseMirrorStore(config, http=http)


@pytest.fixture(autouse=True)
def no_sleep():
    with patch('src.utils.retry_logic.time.sleep') as mock_sleep:
        yield mock_sleep


class TestSupabaseMirrorStore:
    """Test PostgREST requests."""

    def test_requires_url_and_key(self):
        with pytest.raises(ValueError):
            SupabaseMirrorStore(SecondaryStoreConfig(url="https://project.supabase.co"))

    def test_auth_headers_set(self, store, http):
        assert http.headers["apikey"] == "service-key"
        assert http.headers["Authorization"] == "Bearer service-key"

    def test_upsert_merges_on_primary_id(self, store, http):
        http.request.return_value = make_response(201)

        store.upsert("block-1", {"title": "Physics", "reminder_sent": False})

        method, url = http.request.call_args[0]
        kwargs = http.request.call_args[1]
        assert method == "POST"
        assert url == "https://project.supabase.co/rest/v1/study_blocks"
        assert kwargs["params"] == {"on_conflict": LINK_COLUMN}
        assert "resolution=merge-duplicates" in kwargs["headers"]["Prefer"]
        assert kwargs["json"] == [{"title": "Physics", "reminder_sent": False,
                                   LINK_COLUMN: "block-1"}]
        assert kwargs["timeout"] == 5

    def test_delete_filters_by_primary_id(self, store, http):
        http.request.return_value = make_response(204)

        store.delete("block-1")

        method, _ = http.request.call_args[0]
        assert method == "DELETE"
        assert http.request.call_args[1]["params"] == {LINK_COLUMN: "eq.block-1"}

    def test_retries_transient_errors(self, store, http, no_sleep):
        http.request.side_effect = [
            requests.exceptions.Timeout("slow"),
            make_response(503),
            make_response(201),
        ]

        store.upsert("block-1", {"title": "Physics"})

        assert http.request.call_count == 3
        assert no_sleep.call_count == 2

    def test_gives_up_after_max_retries(self, store, http):
        http.request.side_effect = requests.exceptions.ConnectionError("refused")

        with pytest.raises(MirrorError):
            store.upsert("block-1", {"title": "Physics"})

        assert http.request.call_count == 3

    def test_client_error_not_retried(self, store, http):
        http.request.return_value = make_response(400, text='{"message":"bad column"}')

        with pytest.raises(MirrorError) as exc_info:
            store.delete("block-1")

        assert exc_info.value.status_code == 400
        assert "bad column" in str(exc_info.value)
        assert http.request.call_count == 1

    def test_mirror_defaults_keep_calls_short(self):
        config = SecondaryStoreConfig()

        assert config.max_retries <= 1
        assert config.total_timeout_seconds < 10

    def test_total_timeout_passed_through(self, store, http):
        http.request.return_value = make_response(201)

        with patch('src.integrations.supabase_store.retry_rest_request') as mock_retry:
            store.delete("block-1")

        assert mock_retry.call_args[1]["total_timeout"] == store.config.total_timeout_seconds
