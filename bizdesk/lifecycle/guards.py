"""Referential guard: counts of dependents that block a delete or purge."""

from typing import Optional

from ..db.base import DeletionState
from ..db.store import StoreTransaction
from .policies import DependentRule


class ReferentialGuard:
    """
    Count the records that depend on an owner.

    The guard only counts; callers decide the threshold (any count above zero
    blocks).
    """

    def __init__(self, tx: StoreTransaction):
        self.tx = tx

    def count(self, rule: Optional[DependentRule], owner_id: int) -> int:
        """
        Count dependents of ``owner_id`` described by ``rule``.

        Args:
            rule: Dependent rule, or None for unguarded kinds
            owner_id: Id of the owning record

        Returns:
            Number of dependents (0 when there is no rule)
        """
        if rule is None:
            return 0
        filters = {rule.column: owner_id}
        if rule.active_only:
            filters["is_deleted"] = DeletionState.ACTIVE
        return self.tx.count(rule.model, **filters)
