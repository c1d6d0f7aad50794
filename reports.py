"""
Report Store Gateway

Translates report operations into calls against the realtime database. The store
names two attributes differently from the internal model (notes is stored as
`description`, location as `location_area`); that mapping happens only here, in
to_store() and from_store().
"""
import logging
from datetime import datetime, timezone
from typing import Any, Iterable, Optional

from pydantic import ValidationError as SchemaError

from config import Config
from database import RealtimeStore
from errors import (
    ConflictError,
    DeleteError,
    GatewayError,
    ReportNotFoundError,
    UpdateError,
    ValidationError,
)
from schemas import (
    CitizenReport,
    MessageCreate,
    ReportCreate,
    ReportStats,
    ReportStatus,
    ReportType,
)

logger = logging.getLogger(__name__)

# internal name -> store name
FIELD_MAP = {
    "notes": "description",
    "location": "location_area",
}
REVERSE_FIELD_MAP = {v: k for k, v in FIELD_MAP.items()}


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def to_store(record: dict) -> dict:
    """Rename internal attributes to the store's names. `id` is never stored in the body."""
    return {FIELD_MAP.get(k, k): v for k, v in record.items() if k != "id"}


def from_store(report_id: str, data: dict) -> CitizenReport:
    record = {REVERSE_FIELD_MAP.get(k, k): v for k, v in data.items()}
    record["id"] = report_id
    record["messages"] = _message_list(record.get("messages"))
    if record.get("notes") is None:
        record["notes"] = ""
    return CitizenReport.model_validate(record)


def _message_list(raw) -> list:
    """The store returns arrays as lists, or as keyed objects once they become sparse."""
    if not raw:
        return []
    if isinstance(raw, dict):
        return [raw[k] for k in sorted(raw, key=_key_order)]
    return [m for m in raw if m is not None]


def _key_order(key: str):
    return (0, int(key), "") if str(key).isdigit() else (1, 0, str(key))


def _clean(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = value.strip()
    return value or None


def _next_message_id(messages: list, now: datetime) -> str:
    """Millisecond time token, strictly greater than every numeric id already used."""
    candidate = int(now.timestamp() * 1000)
    for message in messages:
        raw = str(message.get("id", "")) if isinstance(message, dict) else ""
        if raw.isdigit():
            candidate = max(candidate, int(raw) + 1)
    return str(candidate)


class ReportGateway:
    """CRUD over the citizen report collection."""

    def __init__(
        self,
        store: RealtimeStore,
        collection: str = Config.REPORTS_PATH,
        append_attempts: int = Config.APPEND_ATTEMPTS,
        clock=utc_now,
    ):
        self.store = store
        self.collection = collection.strip("/")
        self.append_attempts = max(1, append_attempts)
        self.clock = clock

    def _path(self, report_id: str) -> str:
        if not report_id or "/" in report_id:
            raise ReportNotFoundError(f"Invalid report id: {report_id!r}")
        return f"{self.collection}/{report_id}"

    def _current(self, report_id: str) -> dict:
        data = self.store.get(self._path(report_id))
        if not isinstance(data, dict):
            raise ReportNotFoundError(f"Report {report_id} not found")
        return data

    # ----------------------------
    # Create / read
    # ----------------------------

    def submit(self, report: ReportCreate) -> CitizenReport:
        notes = _clean(report.notes)
        missing = [
            name for name, value in (
                ("notes", notes),
                ("latitude", report.latitude),
                ("longitude", report.longitude),
            )
            if value is None
        ]
        if missing:
            raise ValidationError(f"Missing required fields: {', '.join(missing)}")

        new_report = CitizenReport(
            location=_clean(report.location),
            latitude=report.latitude,
            longitude=report.longitude,
            report_type=report.report_type,
            notes=notes,
            timestamp=self.clock(),
            status=ReportStatus.PENDING,
            reporter_name=_clean(report.reporter_name),
            reporter_contact=_clean(report.reporter_contact),
            reporter_phone=_clean(report.reporter_phone),
            photos=report.photos,
            deployed=False,
            messages=[],
        )

        record = to_store(new_report.model_dump(mode="json"))
        report_id = self.store.post(self.collection, record)
        logger.info("Stored report %s (%s)", report_id, new_report.report_type.value)
        return new_report.model_copy(update={"id": report_id})

    def list_reports(self) -> list[CitizenReport]:
        """All reports in store order. Any failure yields an empty list."""
        try:
            data = self.store.get(self.collection, retry=True)
        except GatewayError as e:
            logger.error("Failed to fetch reports, returning empty list: %s", e)
            return []

        if not isinstance(data, dict):
            return []

        reports = []
        for report_id, raw in data.items():
            if not isinstance(raw, dict):
                continue
            try:
                reports.append(from_store(report_id, raw))
            except SchemaError as e:
                logger.warning("Skipping malformed report %s: %s", report_id, e.errors()[:1])
        return reports

    def get(self, report_id: str) -> CitizenReport:
        return from_store(report_id, self._current(report_id))

    # ----------------------------
    # Patches
    # ----------------------------

    def update_status(self, report_id: str, status: ReportStatus) -> CitizenReport:
        """Set the status. Any transition between the four states is accepted."""
        current = self._current(report_id)
        status = ReportStatus(status)
        self._patch(report_id, {"status": status.value})
        logger.info("Report %s status %s -> %s", report_id, current.get("status"), status.value)
        return from_store(report_id, {**current, "status": status.value})

    def update_deployment(
        self,
        report_id: str,
        deployed: bool,
        deployment_date: Optional[datetime] = None,
        deployment_notes: Optional[str] = None,
    ) -> CitizenReport:
        """Record (or clear) a sensor deployment. Date and notes are nulled when not deployed."""
        current = self._current(report_id)
        if deployed:
            fields = {
                "deployed": True,
                "deployment_date": (deployment_date or self.clock()).isoformat(),
                "deployment_notes": _clean(deployment_notes),
            }
        else:
            fields = {"deployed": False, "deployment_date": None, "deployment_notes": None}

        self._patch(report_id, fields)
        logger.info("Report %s deployed=%s", report_id, deployed)
        return from_store(report_id, {**current, **fields})

    def append_message(self, report_id: str, message: MessageCreate) -> CitizenReport:
        """
        Append one message to the report's thread.

        The write is conditional on the ETag of the messages location; if another
        writer got there first the thread is re-read and the append retried.
        """
        current = self._current(report_id)
        messages_path = f"{self._path(report_id)}/messages"

        for attempt in range(self.append_attempts):
            try:
                raw, etag = self.store.get_with_etag(messages_path)
                messages = _message_list(raw)
                now = self.clock()
                messages.append({
                    "id": _next_message_id(messages, now),
                    "message": message.message,
                    "timestamp": (message.timestamp or now).isoformat(),
                    "sender": message.sender.value,
                })
                self.store.put(messages_path, messages, if_match=etag)
            except ConflictError:
                logger.warning("Concurrent update on report %s messages, retrying (%d)", report_id, attempt + 1)
                continue
            except GatewayError as e:
                raise UpdateError(f"Failed to add message to report {report_id}: {e}") from e

            return from_store(report_id, {**current, "messages": messages})

        raise UpdateError(f"Failed to add message to report {report_id}: too many concurrent updates")

    def _patch(self, report_id: str, fields: dict[str, Any]):
        try:
            self.store.patch(self._path(report_id), fields)
        except GatewayError as e:
            raise UpdateError(f"Failed to update report {report_id}: {e}") from e

    # ----------------------------
    # Delete
    # ----------------------------

    def remove(self, report_id: str):
        try:
            self.store.delete(self._path(report_id))
        except GatewayError as e:
            raise DeleteError(f"Failed to delete report {report_id}: {e}") from e
        logger.info("Deleted report %s", report_id)

    def delete(self, report_id: str) -> bool:
        """Remove a report. Returns False instead of raising when the store refuses."""
        try:
            self.remove(report_id)
        except DeleteError as e:
            logger.error("%s", e)
            return False
        return True


# ----------------------------
# Views over a fetched report list
# ----------------------------

def filter_reports(
    reports: Iterable[CitizenReport],
    status: Optional[ReportStatus] = None,
    report_type: Optional[ReportType] = None,
    hide_resolved: bool = False,
    newest_first: bool = False,
) -> list[CitizenReport]:
    result = [
        r for r in reports
        if (status is None or r.status == status)
        and (report_type is None or r.report_type == report_type)
        and not (hide_resolved and r.status == ReportStatus.RESOLVED)
    ]
    if newest_first:
        oldest = datetime.min.replace(tzinfo=timezone.utc)
        result.sort(key=lambda r: _aware(r.timestamp) or oldest, reverse=True)
    return result


def _aware(value: Optional[datetime]) -> Optional[datetime]:
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def summarize(reports: Iterable[CitizenReport]) -> ReportStats:
    stats = ReportStats()
    for report in reports:
        stats.total += 1
        setattr(stats, report.status.value, getattr(stats, report.status.value) + 1)
        if report.deployed:
            stats.deployed += 1
    return stats
