"""Episode Store Adapter.

Reads episode records and reads/writes the alert and escalation
sub-records that hang off them. Sub-records live in dedicated tables
(`<episodes>-alerts`, `<episodes>-escalations`); when a dedicated table
cannot be used the same item is kept in a list field on the episode
record instead. Callers never see which location served a request.

Composition:
    DedicatedTableStore   one table per record kind
    EmbeddedFieldStore    list fields on the episode record
    FallbackRecordStore   dedicated first, embedded on RepositoryError
    EpisodeStore          facade used by the engines
"""
import logging
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple

from carebridge.shared.database import BaseRepository, NotFoundError, RepositoryError
from carebridge.shared.models import Episode, format_timestamp, utc_now
from .models import AlertStatus, EmergencyAlert, EscalationProtocol, EscalationStatus

logger = logging.getLogger(__name__)

EPISODE_INDEX = "EpisodeIndex"
STATUS_INDEX = "StatusIndex"


class RecordKind(Enum):
    """Sub-record kinds owned by the emergency service."""
    ALERT = "alert"
    ESCALATION = "escalation"

    @property
    def id_attribute(self) -> str:
        return "alertId" if self == RecordKind.ALERT else "escalationId"

    @property
    def embedded_field(self) -> str:
        return "emergencyAlerts" if self == RecordKind.ALERT else "escalations"

    @property
    def open_statuses(self) -> Tuple[str, ...]:
        if self == RecordKind.ALERT:
            return (AlertStatus.ACTIVE.value, AlertStatus.ACKNOWLEDGED.value)
        return (EscalationStatus.ACTIVE.value, EscalationStatus.IN_PROGRESS.value)

    @property
    def flag(self) -> "EpisodeFlag":
        return EpisodeFlag.EMERGENCY if self == RecordKind.ALERT else EpisodeFlag.ESCALATION


class EpisodeFlag(Enum):
    """Snapshot markers on the episode record, each backed by a GSI."""
    EMERGENCY = "emergency"
    ESCALATION = "escalation"

    @property
    def index_name(self) -> str:
        return "EmergencyStatusIndex" if self == EpisodeFlag.EMERGENCY else "EscalationStatusIndex"

    @property
    def attribute(self) -> str:
        return "emergencyStatus" if self == EpisodeFlag.EMERGENCY else "escalationStatus"

    @property
    def active_value(self) -> str:
        return "active" if self == EpisodeFlag.EMERGENCY else "escalated"

    @property
    def flagged_at_attribute(self) -> str:
        return "emergencyFlaggedAt" if self == EpisodeFlag.EMERGENCY else "escalationFlaggedAt"


class EpisodeRepository(BaseRepository[Episode]):
    """Episode table, keyed by episodeId."""

    def __init__(self, table: Any, table_name: str):
        super().__init__(table, table_name, key_attribute="episodeId")

    def _item_to_entity(self, item: Dict[str, Any]) -> Episode:
        return Episode.from_item(item)

    def _entity_to_item(self, entity: Episode) -> Dict[str, Any]:
        return entity.to_item()


class RecordRepository(BaseRepository[Dict[str, Any]]):
    """Dedicated alert or escalation table holding raw record items."""

    def __init__(self, table: Any, table_name: str, kind: RecordKind):
        super().__init__(table, table_name, key_attribute=kind.id_attribute)
        self.kind = kind

    def _item_to_entity(self, item: Dict[str, Any]) -> Dict[str, Any]:
        return item

    def _entity_to_item(self, entity: Dict[str, Any]) -> Dict[str, Any]:
        return entity


class DedicatedTableStore:
    """Record storage in one dedicated table per kind."""

    def __init__(self, alerts: RecordRepository, escalations: RecordRepository):
        self._repositories = {
            RecordKind.ALERT: alerts,
            RecordKind.ESCALATION: escalations,
        }

    def repository(self, kind: RecordKind) -> RecordRepository:
        return self._repositories[kind]

    def put(self, kind: RecordKind, episode_id: str, item: Dict[str, Any]) -> None:
        self.repository(kind).save(item)

    def get(self, kind: RecordKind, record_id: str) -> Optional[Dict[str, Any]]:
        return self.repository(kind).find_by_id(record_id)

    def update(self, kind: RecordKind, record_id: str, fields: Dict[str, Any]) -> None:
        self.repository(kind).update_fields(record_id, fields)

    def list_for_episode(self, kind: RecordKind, episode_id: str) -> List[Dict[str, Any]]:
        return self.repository(kind).query_index(EPISODE_INDEX, "episodeId", episode_id)

    def list_open(self, kind: RecordKind) -> List[Dict[str, Any]]:
        records: List[Dict[str, Any]] = []
        for status in kind.open_statuses:
            records.extend(self.repository(kind).query_index(STATUS_INDEX, "status", status))
        return records


class EmbeddedFieldStore:
    """Record storage in list fields on the episode record.

    Writes touch only the emergency-owned list field (plus whatever
    snapshot fields the caller passes in the same write).
    """

    def __init__(self, episodes: EpisodeRepository):
        self.episodes = episodes

    def _load(self, episode_id: str) -> Episode:
        episode = self.episodes.find_by_id(episode_id)
        if episode is None:
            raise NotFoundError(f"Episode {episode_id} not found")
        return episode

    @staticmethod
    def _embedded(episode: Episode, kind: RecordKind) -> List[Dict[str, Any]]:
        return list(episode.emergency_alerts if kind == RecordKind.ALERT else episode.escalations)

    def put(
        self,
        kind: RecordKind,
        episode_id: str,
        item: Dict[str, Any],
        fields: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.episodes.append_to_list(episode_id, kind.embedded_field, [item], fields)

    def get(self, kind: RecordKind, record_id: str, episode_id: str) -> Optional[Dict[str, Any]]:
        for item in self._embedded(self._load(episode_id), kind):
            if item.get(kind.id_attribute) == record_id:
                return item
        return None

    def update(
        self,
        kind: RecordKind,
        record_id: str,
        episode_id: str,
        fields: Dict[str, Any],
        episode_fields: Optional[Dict[str, Any]] = None,
    ) -> None:
        records = self._embedded(self._load(episode_id), kind)
        for index, item in enumerate(records):
            if item.get(kind.id_attribute) == record_id:
                records[index] = {**item, **fields}
                break
        else:
            raise NotFoundError(f"{kind.value.capitalize()} {record_id} not found")

        self.episodes.update_fields(
            episode_id,
            {kind.embedded_field: records, **(episode_fields or {})},
        )

    def list_for_episode(self, kind: RecordKind, episode_id: str) -> List[Dict[str, Any]]:
        episode = self.episodes.find_by_id(episode_id)
        if episode is None:
            return []
        return self._embedded(episode, kind)

    def list_open(self, kind: RecordKind) -> List[Dict[str, Any]]:
        flag = kind.flag
        episodes = self.episodes.query_index(
            flag.index_name, flag.attribute, flag.active_value, newest_first=True,
        )
        return [
            item
            for episode in episodes
            for item in self._embedded(episode, kind)
            if item.get("status") in kind.open_statuses
        ]


class FallbackRecordStore:
    """Dedicated table first; embedded list when the table call fails.

    List reads merge both locations so records written during a table
    outage remain visible after it recovers.
    """

    def __init__(self, primary: DedicatedTableStore, fallback: EmbeddedFieldStore):
        self.primary = primary
        self.fallback = fallback

    @staticmethod
    def _log_fallback(kind: RecordKind, operation: str, error: Exception) -> None:
        logger.warning(
            "STORAGE_FALLBACK_USED",
            extra={
                "record_kind": kind.value,
                "operation": operation,
                "error": str(error),
            }
        )

    def put(
        self,
        kind: RecordKind,
        episode_id: str,
        item: Dict[str, Any],
        fields: Dict[str, Any],
    ) -> bool:
        """Store a new record.

        Returns:
            True if `fields` were written to the episode in the same call
            (embedded path), False if the caller still has to write them.
        """
        try:
            self.primary.put(kind, episode_id, item)
            return False
        except RepositoryError as e:
            self._log_fallback(kind, "put", e)
            self.fallback.put(kind, episode_id, item, fields)
            return True

    def get(
        self,
        kind: RecordKind,
        record_id: str,
        episode_id: Optional[str] = None,
    ) -> Optional[Dict[str, Any]]:
        try:
            item = self.primary.get(kind, record_id)
        except RepositoryError as e:
            self._log_fallback(kind, "get", e)
            item = None
        if item is None and episode_id:
            item = self.fallback.get(kind, record_id, episode_id)
        return item

    def update(
        self,
        kind: RecordKind,
        record_id: str,
        episode_id: Optional[str],
        fields: Dict[str, Any],
        episode_fields: Dict[str, Any],
    ) -> bool:
        """Apply field changes to an existing record.

        Returns:
            True if `episode_fields` were written with the record (embedded
            path), False otherwise.

        Raises:
            NotFoundError: If neither location holds the record
        """
        try:
            if self.primary.get(kind, record_id) is not None:
                self.primary.update(kind, record_id, fields)
                return False
        except RepositoryError as e:
            self._log_fallback(kind, "update", e)

        if not episode_id:
            raise NotFoundError(f"{kind.value.capitalize()} {record_id} not found")
        self.fallback.update(kind, record_id, episode_id, fields, episode_fields)
        return True

    @staticmethod
    def _merge(
        kind: RecordKind,
        dedicated: List[Dict[str, Any]],
        embedded: List[Dict[str, Any]],
    ) -> List[Dict[str, Any]]:
        seen = {item.get(kind.id_attribute) for item in dedicated}
        return dedicated + [item for item in embedded if item.get(kind.id_attribute) not in seen]

    def list_for_episode(self, kind: RecordKind, episode_id: str) -> List[Dict[str, Any]]:
        try:
            dedicated = self.primary.list_for_episode(kind, episode_id)
        except RepositoryError as e:
            self._log_fallback(kind, "list_for_episode", e)
            return self.fallback.list_for_episode(kind, episode_id)
        return self._merge(kind, dedicated, self.fallback.list_for_episode(kind, episode_id))

    def list_open(self, kind: RecordKind) -> List[Dict[str, Any]]:
        try:
            dedicated = self.primary.list_open(kind)
        except RepositoryError as e:
            self._log_fallback(kind, "list_open", e)
            return self.fallback.list_open(kind)
        return self._merge(kind, dedicated, self.fallback.list_open(kind))


class EpisodeStore:
    """Facade over the episode table and the emergency sub-records.

    Every successful mutation stamps the episode's updatedAt. Errors on
    the episode record itself propagate as RepositoryError.
    """

    def __init__(
        self,
        episodes: EpisodeRepository,
        records: FallbackRecordStore,
        clock: Callable = utc_now,
    ):
        self.episodes = episodes
        self.records = records
        self.clock = clock

    @classmethod
    def from_tables(
        cls,
        episode_table: Any,
        alerts_table: Any,
        escalations_table: Any,
        episode_table_name: str,
        clock: Callable = utc_now,
    ) -> "EpisodeStore":
        """Wire the standard dedicated-with-fallback composition."""
        episodes = EpisodeRepository(episode_table, episode_table_name)
        dedicated = DedicatedTableStore(
            RecordRepository(alerts_table, f"{episode_table_name}-alerts", RecordKind.ALERT),
            RecordRepository(escalations_table, f"{episode_table_name}-escalations", RecordKind.ESCALATION),
        )
        return cls(episodes, FallbackRecordStore(dedicated, EmbeddedFieldStore(episodes)), clock)

    def _stamped(self, fields: Optional[Dict[str, Any]]) -> Dict[str, Any]:
        return {**(fields or {}), "updatedAt": format_timestamp(self.clock())}

    def get_episode(self, episode_id: str) -> Optional[Episode]:
        """Point lookup; None when the episode does not exist."""
        return self.episodes.find_by_id(episode_id)

    def _append(
        self,
        kind: RecordKind,
        episode_id: str,
        item: Dict[str, Any],
        snapshot: Optional[Dict[str, Any]],
    ) -> None:
        fields = self._stamped(snapshot)
        if not self.records.put(kind, episode_id, item, fields):
            self.episodes.update_fields(episode_id, fields)

    def append_alert(
        self,
        episode_id: str,
        alert: EmergencyAlert,
        snapshot: Optional[Dict[str, Any]] = None,
    ) -> None:
        """Store a new alert and write the episode snapshot fields."""
        self._append(RecordKind.ALERT, episode_id, alert.to_item(), snapshot)

    def append_escalation(
        self,
        episode_id: str,
        escalation: EscalationProtocol,
        snapshot: Optional[Dict[str, Any]] = None,
    ) -> None:
        """Store a new escalation and write the episode snapshot fields."""
        self._append(RecordKind.ESCALATION, episode_id, escalation.to_item(), snapshot)

    def get_record(
        self,
        kind: RecordKind,
        record_id: str,
        episode_id: Optional[str] = None,
    ) -> Optional[Dict[str, Any]]:
        return self.records.get(kind, record_id, episode_id)

    def update_record(
        self,
        kind: RecordKind,
        record_id: str,
        episode_id: Optional[str],
        fields: Dict[str, Any],
        snapshot: Optional[Dict[str, Any]] = None,
    ) -> None:
        """Apply a status change to an alert or escalation record."""
        episode_fields = self._stamped(snapshot)
        written = self.records.update(kind, record_id, episode_id, fields, episode_fields)
        if not written and episode_id:
            self.episodes.update_fields(episode_id, episode_fields)

    def query_active_records_for_episode(
        self,
        episode_id: str,
        kind: RecordKind,
    ) -> List[Dict[str, Any]]:
        """Open (not terminal) records of one kind for one episode."""
        return [
            item for item in self.records.list_for_episode(kind, episode_id)
            if item.get("status") in kind.open_statuses
        ]

    def query_active_records(self, kind: RecordKind) -> List[Dict[str, Any]]:
        """Open records of one kind across all episodes."""
        return self.records.list_open(kind)

    def query_active_by_flag(self, flag: EpisodeFlag, limit: Optional[int] = None) -> List[Episode]:
        """Episodes carrying an active flag, most recently flagged first."""
        return self.episodes.query_index(
            flag.index_name,
            flag.attribute,
            flag.active_value,
            limit=limit,
            newest_first=True,
        )

    def update_episode_fields(self, episode_id: str, fields: Dict[str, Any]) -> None:
        self.episodes.update_fields(episode_id, self._stamped(fields))

    def append_episode_list(
        self,
        episode_id: str,
        attribute: str,
        item: Dict[str, Any],
        fields: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.episodes.append_to_list(episode_id, attribute, [item], self._stamped(fields))
