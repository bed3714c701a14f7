"""Supabase-backed evaluation store."""

import logging
from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Any
from uuid import UUID

import httpx
from supabase import Client, PostgrestAPIError

from nature_eval.domain.analysis import (
    ArtisticIntent,
    Point,
    Region,
    SaliencySummary,
    TechnicalMetrics,
)
from nature_eval.domain.errors import PersistenceError
from nature_eval.domain.evaluations import (
    EvaluationResult,
    EvaluationSession,
    ImageRecord,
    RecordChange,
    ResultStatus,
    UsageStats,
)
from nature_eval.services.recorder import EvaluationStore

_logger = logging.getLogger(__name__)

IMAGES_TABLE = "image_evaluations"
RESULTS_TABLE = "evaluation_results"
SESSIONS_TABLE = "evaluation_sessions"
USAGE_TABLE = "api_usage_stats"
RECORD_FUNCTION = "record_evaluation_result"


def _execute(query: Any, action: str) -> Any:
    try:
        return query.execute()
    except (PostgrestAPIError, httpx.HTTPError) as exc:
        raise PersistenceError(f"Failed to {action}: {exc}") from exc


@dataclass
class SupabaseEvaluationStore(EvaluationStore):
    """Supabase implementation of the evaluation store.

    ``commit_record`` goes through a Postgres function so the result insert,
    demotion, image update, session counters and usage totals share one
    transaction.
    """

    client: Client

    def create_image(
        self, processed_path: str | None, original_filename: str | None = None
    ) -> ImageRecord:
        """Create an image row and return it."""
        response = _execute(
            self.client.table(IMAGES_TABLE).insert(
                {
                    "processed_path": processed_path,
                    "original_filename": original_filename,
                }
            ),
            "create image",
        )
        if not response.data:
            raise PersistenceError("Failed to create image")
        return _parse_image(response.data[0])

    def get_image(self, image_id: UUID) -> ImageRecord | None:
        response = _execute(
            self.client.table(IMAGES_TABLE)
            .select("*")
            .eq("id", str(image_id))
            .limit(1),
            "load image",
        )
        if not response.data:
            return None
        return _parse_image(response.data[0])

    def list_images(self) -> list[ImageRecord]:
        response = _execute(
            self.client.table(IMAGES_TABLE).select("*").order("created_at"),
            "list images",
        )
        return [_parse_image(row) for row in response.data or []]

    def delete_image(self, image_id: UUID) -> None:
        """Delete an image; results cascade via the foreign key."""
        _execute(
            self.client.table(IMAGES_TABLE).delete().eq("id", str(image_id)),
            "delete image",
        )

    def get_result(self, result_id: UUID) -> EvaluationResult | None:
        response = _execute(
            self.client.table(RESULTS_TABLE)
            .select("*")
            .eq("id", str(result_id))
            .limit(1),
            "load result",
        )
        if not response.data:
            return None
        return _parse_result(response.data[0])

    def list_results(self, image_id: UUID) -> list[EvaluationResult]:
        response = _execute(
            self.client.table(RESULTS_TABLE)
            .select("*")
            .eq("image_id", str(image_id))
            .order("evaluated_at"),
            "list results",
        )
        return [_parse_result(row) for row in response.data or []]

    def create_session(self, session: EvaluationSession) -> EvaluationSession:
        response = _execute(
            self.client.table(SESSIONS_TABLE).insert(_session_row(session)),
            "create session",
        )
        if not response.data:
            raise PersistenceError("Failed to create session")
        return _parse_session(response.data[0])

    def get_session(self, session_id: UUID) -> EvaluationSession | None:
        response = _execute(
            self.client.table(SESSIONS_TABLE)
            .select("*")
            .eq("id", str(session_id))
            .limit(1),
            "load session",
        )
        if not response.data:
            return None
        return _parse_session(response.data[0])

    def update_session(self, session: EvaluationSession) -> None:
        row = _session_row(session)
        row.pop("id")
        _execute(
            self.client.table(SESSIONS_TABLE).update(row).eq("id", str(session.id)),
            "update session",
        )

    def list_session_results(self, session_id: UUID) -> list[EvaluationResult]:
        response = _execute(
            self.client.table(RESULTS_TABLE)
            .select("*")
            .eq("session_id", str(session_id))
            .order("evaluated_at"),
            "list session results",
        )
        return [_parse_result(row) for row in response.data or []]

    def delete_session(self, session_id: UUID) -> None:
        """Delete a session; results keep existing with ``session_id`` cleared."""
        _execute(
            self.client.table(RESULTS_TABLE)
            .update({"session_id": None})
            .eq("session_id", str(session_id)),
            "detach session results",
        )
        _execute(
            self.client.table(SESSIONS_TABLE).delete().eq("id", str(session_id)),
            "delete session",
        )

    def get_usage_stats(self) -> UsageStats:
        response = _execute(
            self.client.table(USAGE_TABLE).select("*").limit(1), "load usage stats"
        )
        if not response.data:
            return UsageStats()
        row = response.data[0]
        return UsageStats(
            total_tokens=int(row.get("total_tokens") or 0),
            total_cost=float(row.get("total_cost") or 0.0),
            total_images_evaluated=int(row.get("total_images_evaluated") or 0),
            last_reset_at=_parse_datetime(row.get("last_reset_at")),
        )

    def commit_record(self, change: RecordChange) -> None:
        """Apply a recorded outcome in a single database transaction."""
        image = change.image
        payload = {
            "p_result": _result_row(change.result),
            "p_image_id": str(image.id),
            "p_evaluation_count": image.evaluation_count,
            "p_first_evaluated_at": _format_datetime(image.first_evaluated_at),
            "p_last_evaluated_at": _format_datetime(image.last_evaluated_at),
            "p_current_result_id": _format_uuid(image.current_result_id),
            "p_demoted_result_id": _format_uuid(change.demoted_result_id),
            "p_session_id": _format_uuid(change.session.id if change.session else None),
            "p_success_count": change.session.success_count if change.session else None,
            "p_failure_count": change.session.failure_count if change.session else None,
            "p_usage_tokens": change.usage.tokens if change.usage else 0,
            "p_usage_cost": change.usage.cost if change.usage else 0.0,
            "p_usage_images": change.usage.images if change.usage else 0,
        }
        _execute(
            self.client.rpc(RECORD_FUNCTION, payload), "record evaluation result"
        )
        _logger.debug("Committed result %s for image %s", change.result.id, image.id)


def _format_datetime(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def _format_uuid(value: UUID | None) -> str | None:
    return str(value) if value else None


def _parse_datetime(value: object) -> datetime | None:
    if isinstance(value, str) and value:
        return datetime.fromisoformat(value)
    return None


def _parse_uuid(value: object) -> UUID | None:
    if isinstance(value, str) and value:
        return UUID(value)
    return None


def _parse_image(row: dict[str, Any]) -> ImageRecord:
    """Parse an image row into a domain model."""
    return ImageRecord(
        id=UUID(row["id"]),
        created_at=datetime.fromisoformat(row["created_at"]),
        processed_path=row.get("processed_path"),
        original_filename=row.get("original_filename"),
        evaluation_count=int(row.get("evaluation_count") or 0),
        first_evaluated_at=_parse_datetime(row.get("first_evaluated_at")),
        last_evaluated_at=_parse_datetime(row.get("last_evaluated_at")),
        current_result_id=_parse_uuid(row.get("current_result_id")),
        is_favorite=bool(row.get("is_favorite", False)),
        notes=row.get("notes"),
        tags=tuple(row.get("tags") or ()),
    )


_TUPLE_FIELDS = (
    "strengths",
    "improvements",
    "technical_innovations",
    "keywords",
    "suggested_categories",
    "best_use_cases",
)


def _result_row(result: EvaluationResult) -> dict[str, Any]:
    row = asdict(result)
    row["id"] = str(result.id)
    row["image_id"] = str(result.image_id)
    row["evaluated_at"] = result.evaluated_at.isoformat()
    row["status"] = str(result.status)
    row["parent_result_id"] = _format_uuid(result.parent_result_id)
    row["session_id"] = _format_uuid(result.session_id)
    for name in _TUPLE_FIELDS:
        row[name] = list(row[name])
    return row


def _parse_result(row: dict[str, Any]) -> EvaluationResult:
    """Parse a result row into a domain model."""
    values = {
        name: row[name]
        for name in EvaluationResult.__dataclass_fields__
        if name in row and row[name] is not None
    }
    values["id"] = UUID(row["id"])
    values["image_id"] = UUID(row["image_id"])
    values["evaluated_at"] = datetime.fromisoformat(row["evaluated_at"])
    values["status"] = ResultStatus(row["status"])
    values["is_current"] = bool(row.get("is_current", False))
    values["parent_result_id"] = _parse_uuid(row.get("parent_result_id"))
    values["session_id"] = _parse_uuid(row.get("session_id"))
    for name in _TUPLE_FIELDS:
        values[name] = tuple(row.get(name) or ())
    values["technical"] = _parse_technical(row.get("technical"))
    values["saliency"] = _parse_saliency(row.get("saliency"))
    return EvaluationResult(**values)


def _parse_technical(data: dict[str, Any] | None) -> TechnicalMetrics | None:
    if not data:
        return None
    intent = data.get("intent") or {}
    return TechnicalMetrics(
        **{key: value for key, value in data.items() if key != "intent"},
        intent=ArtisticIntent(
            technique=intent.get("technique", "none"),
            confidence=float(intent.get("confidence", 0.0)),
            evidence=tuple(intent.get("evidence") or ()),
        ),
    )


def _parse_saliency(data: dict[str, Any] | None) -> SaliencySummary | None:
    if not data:
        return None
    highest = data.get("highest_point")
    center = data.get("center_of_mass")
    return SaliencySummary(
        hotspots=tuple(Region(**region) for region in data.get("hotspots") or ()),
        composition_pattern=data.get("composition_pattern", "balanced"),
        highest_point=Point(**highest) if highest else None,
        center_of_mass=Point(**center) if center else None,
    )


def _session_row(session: EvaluationSession) -> dict[str, Any]:
    return {
        "id": str(session.id),
        "started_at": session.started_at.isoformat(),
        "ended_at": _format_datetime(session.ended_at),
        "total_subjects": session.total_subjects,
        "session_type": session.session_type,
        "success_count": session.success_count,
        "failure_count": session.failure_count,
        "total_cost": session.total_cost,
        "average_processing_time": session.average_processing_time,
        "providers": list(session.providers),
    }


def _parse_session(row: dict[str, Any]) -> EvaluationSession:
    return EvaluationSession(
        id=UUID(row["id"]),
        started_at=datetime.fromisoformat(row["started_at"]),
        ended_at=_parse_datetime(row.get("ended_at")),
        total_subjects=int(row.get("total_subjects") or 0),
        session_type=row.get("session_type") or "batch",
        success_count=int(row.get("success_count") or 0),
        failure_count=int(row.get("failure_count") or 0),
        total_cost=float(row.get("total_cost") or 0.0),
        average_processing_time=float(row.get("average_processing_time") or 0.0),
        providers=tuple(row.get("providers") or ()),
    )
