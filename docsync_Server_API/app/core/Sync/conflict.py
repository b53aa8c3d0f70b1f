# docsync_Server_API/app/core/Sync/conflict.py
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

from loguru import logger


@dataclass(frozen=True)
class Resolution:
    applied: bool
    server_version: Optional[int] = None

    @classmethod
    def apply(cls) -> "Resolution":
        return cls(applied=True)

    @classmethod
    def conflict(cls, server_version: Optional[int]) -> "Resolution":
        return cls(applied=False, server_version=server_version)


class ConflictResolver(ABC):
    """Abstract base class for write-conflict decisions made by the push path."""

    @abstractmethod
    def resolve(self, stored_version: Optional[int], expected_version: Optional[int],
                record_id: Optional[str] = None) -> Resolution:
        """
        Decides whether a client write may be applied to the stored record.

        Args:
            stored_version: Version currently held by the server, or None if the record does not exist.
            expected_version: Version the client based its write on, or None if it sent none.
            record_id: Only used for logging.

        Returns:
            Resolution.apply() or Resolution.conflict(server_version).
        """
        pass


class VersionMatchResolver(ConflictResolver):
    """Applies a write only when the client's expected version equals the stored one. No merging."""

    def resolve(self, stored_version: Optional[int], expected_version: Optional[int],
                record_id: Optional[str] = None) -> Resolution:
        if stored_version is None:
            logger.debug(f"Conflict check (ID: {record_id}): no stored record. Outcome: conflict.")
            return Resolution.conflict(None)
        if expected_version is None:
            logger.debug(f"Conflict check (ID: {record_id}): client sent no version, server has {stored_version}. Outcome: conflict.")
            return Resolution.conflict(stored_version)
        if stored_version == expected_version:
            logger.debug(f"Conflict check (ID: {record_id}): versions match ({stored_version}). Outcome: apply.")
            return Resolution.apply()
        logger.debug(f"Conflict check (ID: {record_id}): client expected {expected_version}, server has {stored_version}. Outcome: conflict.")
        return Resolution.conflict(stored_version)
