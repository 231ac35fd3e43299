"""
Job records in the `fullscript_imports` table.

A row is created `running` when a job starts, gets progress counters while
detail pages are visited, and ends `completed` (with the import envelope) or
`failed` (with a structured error entry).
"""
import logging
from typing import Any, Dict, List, Optional

from supabase import Client

from .errors import PersistenceError
from .schema import IMPORT_SOURCE, iso_timestamp

logger = logging.getLogger(__name__)

DEFAULT_TABLE = "fullscript_imports"


class ImportJobStore:
    def __init__(self, client: Client, table: str = DEFAULT_TABLE):
        self.client = client
        self.table = table

    def _execute(self, operation: str, query) -> List[Dict[str, Any]]:
        try:
            response = query.execute()
        except Exception as exc:
            logger.exception("[STORE] Supabase %s raised an exception", operation)
            raise PersistenceError(operation, exc) from exc

        # Supabase Python client returns an object with .data (and .error on older versions)
        error = getattr(response, "error", None)
        if error:
            logger.error("[STORE] Supabase %s response.error: %s", operation, error)
            raise PersistenceError(operation, error)
        return getattr(response, "data", None) or []

    def create_job(self, mode: str, filter_value: Optional[str]) -> str:
        record = {
            "status": "running",
            "scrape_mode": mode,
            "filter_value": filter_value or None,
            "import_source": IMPORT_SOURCE,
        }
        rows = self._execute("create", self.client.table(self.table).insert(record))
        if not rows or not rows[0].get("id"):
            raise PersistenceError("create", "insert returned no row id")
        job_id = str(rows[0]["id"])
        logger.info("[STORE] Created import record %s", job_id)
        return job_id

    def update_progress(self, job_id: str, processed: int, successful: int) -> None:
        self._execute(
            "progress",
            self.client.table(self.table)
            .update({"total_products": processed, "successful_products": successful})
            .eq("id", job_id),
        )

    def complete_job(
        self,
        job_id: str,
        envelope: Dict[str, Any],
        successful: int,
        failed: int,
    ) -> None:
        update = {
            "status": "completed",
            "total_products": len(envelope.get("products", [])),
            "successful_products": successful,
            "failed_products": failed,
            "products": envelope,
            "completed_at": iso_timestamp(),
        }
        self._execute("complete", self.client.table(self.table).update(update).eq("id", job_id))
        logger.info("[STORE] Import %s completed", job_id)

    def fail_job(self, job_id: str, message: str) -> None:
        now = iso_timestamp()
        update = {
            "status": "failed",
            "errors": [{"message": message, "timestamp": now}],
            "completed_at": now,
        }
        self._execute("fail", self.client.table(self.table).update(update).eq("id", job_id))
        logger.info("[STORE] Import %s marked failed", job_id)
