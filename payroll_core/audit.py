"""
Audit Trail Module

Append-only log of loan and permission events. Each event stores the hash of
the event before it, so editing or removing a stored event breaks the chain
and shows up in verify_integrity().
"""

import hashlib
import json
import threading
import uuid
from datetime import date, datetime, timezone
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Dict, List, Optional, Any, Tuple

from .storage import StorageInterface, StorageRecord


class AuditEventType(Enum):
    """Types of audit events"""
    LOAN_CREATED = "loan_created"
    LOAN_CREATION_ROLLED_BACK = "loan_creation_rolled_back"
    LOAN_PAID_OFF = "loan_paid_off"
    LOAN_CANCELLED = "loan_cancelled"
    INSTALLMENT_PAID = "installment_paid"
    PERMISSION_DENIED = "permission_denied"
    PERMISSION_CHANGED = "permission_changed"


def _plain(value: Any) -> Any:
    """Reduce metadata values to JSON types so the hash is reproducible"""
    if isinstance(value, dict):
        return {str(k): _plain(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_plain(v) for v in value]
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return value


def chain_hash(previous_hash: str, payload: Dict[str, Any]) -> str:
    """SHA-256 of the previous link followed by the canonical JSON payload"""
    digest = hashlib.sha256(previous_hash.encode('utf-8'))
    body = json.dumps(payload, sort_keys=True, separators=(',', ':'))
    digest.update(body.encode('utf-8'))
    return digest.hexdigest()


@dataclass
class AuditEvent(StorageRecord):
    """One link in the audit chain"""
    event_type: AuditEventType
    entity_type: str  # loan, installment, role
    entity_id: str
    metadata: Dict[str, Any]
    previous_hash: str = ""
    current_hash: str = ""
    user_id: Optional[str] = None
    sequence: int = 0

    def __post_init__(self):
        self.metadata = _plain(self.metadata or {})

    def hash_payload(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'sequence': self.sequence,
            'created_at': self.created_at.isoformat(),
            'event_type': self.event_type.value,
            'entity': f"{self.entity_type}:{self.entity_id}",
            'user_id': self.user_id,
            'metadata': self.metadata,
        }

    def calculate_hash(self) -> str:
        return chain_hash(self.previous_hash, self.hash_payload())

    def verify_hash(self) -> bool:
        return self.current_hash == self.calculate_hash()

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'AuditEvent':
        data = dict(data)
        data['event_type'] = AuditEventType(data['event_type'])
        return super().from_dict(data)


class AuditTrail:
    """
    Writes and reads the audit chain kept in one storage table.

    The chain head (last sequence number and hash) is read from storage on
    start-up, so a restarted process keeps extending the same chain.
    """

    def __init__(self, storage: StorageInterface, table_name: str = "audit_events"):
        self.storage = storage
        self.table_name = table_name
        self._lock = threading.Lock()
        self._head: Tuple[int, str] = self._read_head()

    def _read_head(self) -> Tuple[int, str]:
        head = (0, "")
        for record in self.storage.load_all(self.table_name):
            sequence = record.get('sequence', 0)
            if sequence > head[0]:
                head = (sequence, record.get('current_hash', ""))
        return head

    def log_event(
        self,
        event_type: AuditEventType,
        entity_type: str,
        entity_id: str,
        metadata: Optional[Dict[str, Any]] = None,
        user_id: Optional[str] = None
    ) -> AuditEvent:
        """
        Append an event to the chain.

        Args:
            event_type: What happened
            entity_type: Kind of entity affected (loan, installment, role)
            entity_id: ID of the affected entity
            metadata: Event details; Decimals, dates and enums are stringified
            user_id: Acting user, when known

        Returns:
            The stored AuditEvent
        """
        with self._lock:
            sequence, previous_hash = self._head
            now = datetime.now(timezone.utc)
            event = AuditEvent(
                id=str(uuid.uuid4()),
                created_at=now,
                updated_at=now,
                event_type=event_type,
                entity_type=entity_type,
                entity_id=entity_id,
                metadata=metadata,
                previous_hash=previous_hash,
                user_id=user_id,
                sequence=sequence + 1,
            )
            event.current_hash = event.calculate_hash()
            self.storage.save(self.table_name, event.id, event.to_dict())
            self._head = (event.sequence, event.current_hash)
            return event

    def _events(self, filters: Optional[Dict[str, Any]] = None) -> List[AuditEvent]:
        events = [AuditEvent.from_dict(r) for r in self.storage.find(self.table_name, filters or {})]
        return sorted(events, key=lambda e: e.sequence)

    @staticmethod
    def _latest(events: List[AuditEvent], limit: Optional[int]) -> List[AuditEvent]:
        return events[-limit:] if limit else events

    def get_events_for_entity(self, entity_type: str, entity_id: str,
                              limit: Optional[int] = None) -> List[AuditEvent]:
        """Events for one entity, oldest first; limit keeps the newest"""
        events = self._events({'entity_type': entity_type, 'entity_id': entity_id})
        return self._latest(events, limit)

    def get_all_events(self, limit: Optional[int] = None) -> List[AuditEvent]:
        return self._latest(self._events(), limit)

    def verify_integrity(self) -> Dict[str, Any]:
        """
        Walk the chain from the first event.

        Returns a dict with ``valid``, ``total_events``, ``hash_errors``
        (events whose stored hash no longer matches their content) and
        ``chain_breaks`` (events not linked to their predecessor).
        """
        events = self._events()
        hash_errors = []
        chain_breaks = []

        expected_previous = ""
        for position, event in enumerate(events):
            recomputed = event.calculate_hash()
            if recomputed != event.current_hash:
                hash_errors.append({
                    'event_id': event.id,
                    'position': position,
                    'expected_hash': recomputed,
                    'actual_hash': event.current_hash,
                })
            if event.previous_hash != expected_previous:
                chain_breaks.append({
                    'event_id': event.id,
                    'position': position,
                    'expected_previous_hash': expected_previous,
                    'actual_previous_hash': event.previous_hash,
                })
            expected_previous = event.current_hash

        return {
            'valid': not hash_errors and not chain_breaks,
            'total_events': len(events),
            'hash_errors': hash_errors,
            'chain_breaks': chain_breaks,
        }

    def count_events(self) -> int:
        return self.storage.count(self.table_name)
