# docsync_Server_API/app/core/Sync/models.py
from dataclasses import dataclass, field
from typing import Optional, Dict, Any, List, Sequence

import numpy as np
from loguru import logger

from .exceptions import MalformedOperationError

# Embeddings are stored as little-endian float32, the layout browsers produce for a Float32Array
EMBEDDING_DTYPE = np.dtype('<f4')

OPERATION_TYPES = ('create', 'update', 'delete')
CONFLICT_ALREADY_EXISTS = 'already_exists'
CONFLICT_VERSION_MISMATCH = 'version_mismatch'
CONFLICT_NO_PERMISSION = 'no_permission'


def encode_embedding(values: Optional[Sequence[float]], expected_dimensions: Optional[int] = None,
                     record_id: Optional[str] = None) -> Optional[bytes]:
    """
    Packs a numeric vector into the fixed-width binary storage form. None stays None and an empty vector is
    stored as an empty blob, so both come back exactly as sent. Only non-empty vectors are held to
    `expected_dimensions`.
    """
    if values is None:
        return None
    try:
        vector = np.asarray(values, dtype=EMBEDDING_DTYPE)
    except (TypeError, ValueError) as e:
        raise MalformedOperationError(f"Embedding is not a numeric array: {e}", record_id=record_id) from e
    if vector.ndim != 1:
        raise MalformedOperationError(f"Embedding must be one-dimensional, got shape {vector.shape}", record_id=record_id)
    if vector.size == 0:
        return b""
    if expected_dimensions is not None and vector.size != expected_dimensions:
        raise MalformedOperationError(
            f"Embedding has {vector.size} dimensions, expected {expected_dimensions}", record_id=record_id)
    return vector.tobytes()


def decode_embedding(blob: Optional[bytes]) -> Optional[List[float]]:
    if blob is None:
        return None
    if len(blob) % EMBEDDING_DTYPE.itemsize:
        logger.error(f"Stored embedding blob has invalid length {len(blob)}; returning no embedding.")
        return None
    return np.frombuffer(blob, dtype=EMBEDDING_DTYPE).astype(float).tolist()


def record_payload_to_store(record: Dict[str, Any], expected_dimensions: Optional[int] = None) -> Dict[str, Any]:
    """
    Converts a client record payload (snake_case keys) into the column values the store writes.

    The engine treats the payload as opaque whole-record state: absent optional fields are written
    as empty, they are not merged with what the server holds.
    """
    record_id = record.get('id')
    return {
        'id': record_id,
        'title': record.get('title'),
        'content': record.get('content'),
        'category': record.get('category') or None,
        'keywords': record.get('keywords') or None,
        'is_favorite': bool(record.get('is_favorite')),
        'embedding': encode_embedding(record.get('embedding'), expected_dimensions, record_id),
        'created_at': record.get('created_at'),
    }


def record_row_to_wire(row: Dict[str, Any], shared_permission: Optional[str] = None) -> Dict[str, Any]:
    """Converts a store row into the client-facing record shape (snake_case; aliases are applied by the schema)."""
    wire = {
        'id': row['id'],
        'title': row['title'],
        'content': row['content'],
        'category': row['category'],
        'keywords': row['keywords'],
        'is_favorite': bool(row['is_favorite']),
        'embedding': decode_embedding(row['embedding']),
        'created_at': row['created_at'],
        'updated_at': row['updated_at'],
        'deleted_at': row['deleted_at'],
        'version': row['version'],
        'owner_id': row['owner_id'],
        'owner_identity': row.get('owner_email'),
        'is_shared': shared_permission is not None,
    }
    if shared_permission is not None:
        wire['shared_permission'] = shared_permission
    return wire


@dataclass
class SyncOperation:
    type: str  # 'create', 'update', 'delete'
    record: Dict[str, Any]

    @property
    def record_id(self) -> Optional[str]:
        return self.record.get('id')

    @property
    def expected_version(self) -> Optional[int]:
        return self.record.get('version')


@dataclass
class OperationConflict:
    id: str
    reason: str
    client_version: Optional[int] = None
    server_version: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "reason": self.reason,
            "client_version": self.client_version,
            "server_version": self.server_version,
        }


@dataclass
class PushResult:
    server_time: str
    created: List[str] = field(default_factory=list)
    updated: List[str] = field(default_factory=list)
    deleted: List[str] = field(default_factory=list)
    conflicts: List[OperationConflict] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "created": self.created,
            "updated": self.updated,
            "deleted": self.deleted,
            "conflicts": [c.to_dict() for c in self.conflicts],
            "server_time": self.server_time,
        }


@dataclass
class ActiveGrant:
    owner_id: int
    owner_identity: Optional[str]
    permission: str
    accepted_at: Optional[str] = field(default=None, repr=False)

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "ActiveGrant":
        return cls(
            owner_id=row['owner_id'],
            owner_identity=row.get('owner_email'),
            permission=row['permission'],
            accepted_at=row.get('accepted_at'),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {"owner_id": self.owner_id, "owner_identity": self.owner_identity, "permission": self.permission}


@dataclass
class PullResult:
    records: List[Dict[str, Any]]
    server_time: str
    total: int
    has_more: bool
    active_grants: List[ActiveGrant] = field(default_factory=list)

    @property
    def count(self) -> int:
        return len(self.records)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "records": self.records,
            "server_time": self.server_time,
            "count": self.count,
            "total": self.total,
            "has_more": self.has_more,
            "active_grants": [g.to_dict() for g in self.active_grants],
        }
