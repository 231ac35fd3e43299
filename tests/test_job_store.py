"""
Tests for job record writes against a mocked supabase client.
"""
from unittest.mock import MagicMock

import pytest

from catalog_scrape.errors import PersistenceError
from catalog_scrape.job_store import ImportJobStore


def make_client(data=None, error=None, raises=None):
    client = MagicMock()
    table = client.table.return_value
    response = MagicMock(data=data, error=error)
    for query in (table.insert.return_value, table.update.return_value.eq.return_value):
        if raises is not None:
            query.execute.side_effect = raises
        else:
            query.execute.return_value = response
    return client


class TestCreateJob:
    def test_inserts_running_record(self):
        client = make_client(data=[{"id": 42}])
        store = ImportJobStore(client)

        assert store.create_job("brand", "Thorne") == "42"

        client.table.assert_called_with("fullscript_imports")
        client.table.return_value.insert.assert_called_once_with({
            "status": "running",
            "scrape_mode": "brand",
            "filter_value": "Thorne",
            "import_source": "fullscript_scraper",
        })

    def test_custom_table_and_no_filter(self):
        client = make_client(data=[{"id": "abc"}])
        ImportJobStore(client, table="imports_staging").create_job("full_catalog", None)
        client.table.assert_called_with("imports_staging")
        assert client.table.return_value.insert.call_args.args[0]["filter_value"] is None

    def test_missing_id(self):
        store = ImportJobStore(make_client(data=[]))
        with pytest.raises(PersistenceError, match="no row id"):
            store.create_job("brand", "Thorne")

    def test_response_error(self):
        store = ImportJobStore(make_client(data=None, error="permission denied"))
        with pytest.raises(PersistenceError) as exc_info:
            store.create_job("brand", "Thorne")
        assert exc_info.value.operation == "create"

    def test_client_exception(self):
        store = ImportJobStore(make_client(raises=RuntimeError("connection refused")))
        with pytest.raises(PersistenceError, match="connection refused"):
            store.create_job("brand", "Thorne")


class TestUpdates:
    def test_progress(self):
        client = make_client(data=[{"id": 1}])
        ImportJobStore(client).update_progress("1", 3, 2)

        table = client.table.return_value
        table.update.assert_called_once_with({"total_products": 3, "successful_products": 2})
        table.update.return_value.eq.assert_called_once_with("id", "1")

    def test_complete(self):
        client = make_client(data=[{"id": 1}])
        envelope = {"schema_version": "aviado.stack.current.v2", "products": [{}, {}, {}]}

        ImportJobStore(client).complete_job("1", envelope, 2, 1)

        update = client.table.return_value.update.call_args.args[0]
        assert update["status"] == "completed"
        assert update["total_products"] == 3
        assert update["successful_products"] == 2
        assert update["failed_products"] == 1
        assert update["products"] is envelope
        assert update["completed_at"].endswith("Z")

    def test_fail(self):
        client = make_client(data=[{"id": 1}])

        ImportJobStore(client).fail_job("1", "Login failed - still on login page")

        update = client.table.return_value.update.call_args.args[0]
        assert update["status"] == "failed"
        (entry,) = update["errors"]
        assert entry["message"] == "Login failed - still on login page"
        assert entry["timestamp"] == update["completed_at"]

    def test_update_error_raises(self):
        store = ImportJobStore(make_client(error={"message": "row not found"}))
        with pytest.raises(PersistenceError, match="Store fail failed"):
            store.fail_job("1", "boom")
