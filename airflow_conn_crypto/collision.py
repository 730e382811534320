#
# Copyright (c) 2022 Samuel J. McKelvie
#
# MIT License - See LICENSE file accompanying this package.
#

"""Handling of connection IDs that already exist in the import destination"""

from typing import AbstractSet, Iterable, List
from dataclasses import dataclass, field
from enum import Enum
import logging

from .connection import Connection
from .exceptions import CollisionError

logger = logging.getLogger(__name__)

class CollisionStrategy(Enum):
  """What to do with imported connections whose conn_id already exists."""

  STOP = "stop"
  """Import nothing if any conn_id already exists. The safest choice, and the default"""

  SKIP = "skip"
  """Leave existing connections untouched and import only the new ones"""

  OVERWRITE = "overwrite"
  """Replace existing connections with the imported data"""

  @classmethod
  def default(cls) -> 'CollisionStrategy':
    return cls.STOP

  @property
  def description(self) -> str:
    if self is CollisionStrategy.STOP:
      return "Import will fail if any connection ID already exists. This is the safest option."
    if self is CollisionStrategy.SKIP:
      return "Connections with existing IDs will be skipped. New connections will be imported."
    return "Existing connections will be replaced with imported data. Use with caution!"

  def confirmation_message(self, connection_count: int) -> str:
    if self is CollisionStrategy.STOP:
      return f"Import {connection_count} connection(s)? Import will stop if any ID already exists."
    if self is CollisionStrategy.SKIP:
      return f"Import {connection_count} connection(s)? Existing connections will be skipped."
    return f"Import {connection_count} connection(s)? This will OVERWRITE existing connections. Are you sure?"

@dataclass(frozen=True)
class ImportPlan:
  """Partition of imported connections into rows to insert, rows to update, and rows to leave out."""

  strategy: CollisionStrategy
  insert: List[Connection] = field(default_factory=list)
  update: List[Connection] = field(default_factory=list)
  reject: List[Connection] = field(default_factory=list)
  collisions: List[str] = field(default_factory=list)
  """conn_ids that already exist, in candidate order"""

  @property
  def stopped(self) -> bool:
    return self.strategy is CollisionStrategy.STOP and len(self.collisions) > 0

  @property
  def is_empty(self) -> bool:
    """True if nothing would be written."""
    return len(self.insert) == 0 and len(self.update) == 0

  def raise_if_stopped(self) -> None:
    """Raise CollisionError if the STOP strategy found existing conn_ids."""
    if self.stopped:
      raise CollisionError(self.collisions)

def plan_import(
      candidates: Iterable[Connection],
      existing_ids: AbstractSet[str],
      strategy: CollisionStrategy=CollisionStrategy.STOP,
    ) -> ImportPlan:
  """Decide what happens to each imported connection, given the conn_ids already present.

  Args:
      candidates (Iterable[Connection]): Connections selected for import
      existing_ids (AbstractSet[str]): conn_ids already in the destination
      strategy (CollisionStrategy, optional): Defaults to CollisionStrategy.STOP.

  Returns:
      ImportPlan: With STOP, every candidate is rejected if any collides. With SKIP, colliding
                  candidates are rejected. With OVERWRITE, colliding candidates are updated.
                  All other candidates are inserted.
  """
  candidates = list(candidates)
  colliding = [c for c in candidates if c.conn_id in existing_ids]
  fresh = [c for c in candidates if c.conn_id not in existing_ids]
  collisions = [c.conn_id for c in colliding]
  if strategy is CollisionStrategy.STOP:
    if colliding:
      logger.info("Import stopped: %d connection ID(s) already exist", len(colliding))
      return ImportPlan(strategy, reject=candidates, collisions=collisions)
    return ImportPlan(strategy, insert=fresh)
  if strategy is CollisionStrategy.SKIP:
    return ImportPlan(strategy, insert=fresh, reject=colliding, collisions=collisions)
  return ImportPlan(strategy, insert=fresh, update=colliding, collisions=collisions)
