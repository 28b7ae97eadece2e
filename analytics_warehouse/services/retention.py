"""Retention and lifecycle management for aggregate rows.

Each row moves through live -> archived -> purged as its bucket ages, using
the thresholds of the retention policy of its metric's data type. Three
sweeps drive the transitions:

- archival: places rows into the live or archived tier and recomputes the
  warehouse compression ratio
- compression: re-applies each policy's compression level to archived rows
- purge: removes rows at or beyond the purge threshold

Sweeps skip inactive data types and contain failures per data type.
"""

import asyncio
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional

import structlog

from ..config import DEFAULT_RETENTION_POLICIES, Settings
from ..core.clock import Clock
from ..models.aggregates import StorageTier
from ..models.errors import LifecycleError, UnknownDataTypeError
from ..models.retention import RetentionPolicy, SweepSummary
from .store import AggregateStore

logger = structlog.get_logger(__name__)

SWEEP_ARCHIVAL = "archival"
SWEEP_COMPRESSION = "compression"
SWEEP_PURGE = "purge"

StepFn = Callable[[RetentionPolicy, List[str], Optional[asyncio.Event]], Awaitable[int]]


class RetentionManager:
    """Owns the policy table and runs the lifecycle sweeps."""

    def __init__(
        self,
        store: AggregateStore,
        settings: Settings,
        clock: Clock,
        policies: Optional[Iterable[Dict[str, Any]]] = None,
    ):
        self.store = store
        self.clock = clock
        self.config = settings.retention

        self._policies: Dict[str, RetentionPolicy] = {}
        for data in policies if policies is not None else DEFAULT_RETENTION_POLICIES:
            policy = RetentionPolicy.from_dict(data)
            self._policies[policy.data_type] = policy
        self._warn_unmapped_data_types()

        # Data types announced by producers, first hint wins
        self._hinted_types: Dict[str, str] = {}
        self.tier_counts: Dict[str, Dict[str, int]] = {}
        self.compression_ratio = 1.0

    # ------------------------------------------------------------------
    # Policy table
    # ------------------------------------------------------------------

    def policies(self) -> List[RetentionPolicy]:
        return list(self._policies.values())

    def get_policy(self, data_type: str) -> RetentionPolicy:
        policy = self._policies.get(data_type)
        if policy is None:
            raise UnknownDataTypeError(data_type)
        return policy

    def update_policy(self, data_type: str, /, **changes: Any) -> RetentionPolicy:
        """Replace fields of a policy after validating its invariants."""
        updated = self.get_policy(data_type).with_changes(**changes)
        self._policies[data_type] = updated
        logger.info("Retention policy updated", data_type=data_type, changes=changes)
        return updated

    def set_policy_active(self, data_type: str, active: bool) -> RetentionPolicy:
        return self.update_policy(data_type, is_active=active)

    def _warn_unmapped_data_types(self) -> None:
        """Log configured data types that no policy covers.

        Metrics resolved to such a type are never archived or purged.
        """
        configured = dict(self.config.metric_data_types)
        configured["default_data_type"] = self.config.default_data_type
        unknown = {
            metric: data_type
            for metric, data_type in configured.items()
            if data_type not in self._policies
        }
        if unknown:
            logger.warning(
                "unmapped_data_types_configured",
                metrics=sorted(unknown),
                data_types=sorted(set(unknown.values())),
                policies=sorted(self._policies),
            )

    # ------------------------------------------------------------------
    # Metric to data type resolution
    # ------------------------------------------------------------------

    def register_hint(self, metric: str, data_type: Optional[str]) -> None:
        """Remember the data type a producer announced for a metric."""
        if not data_type or metric in self._hinted_types:
            return
        self.get_policy(data_type)
        self._hinted_types[metric] = data_type

    def check_hint(self, data_type: Optional[str]) -> None:
        if data_type:
            self.get_policy(data_type)

    def data_type_for(self, metric: str) -> str:
        if metric in self._hinted_types:
            return self._hinted_types[metric]
        return self.config.metric_data_types.get(metric, self.config.default_data_type)

    def purge_cutoff(
        self, metric: str, hint: Optional[str] = None
    ) -> Optional[datetime]:
        """Bucket starts at or before this are purged for the metric.

        None when the metric's policy is missing or inactive.
        """
        data_type = self._hinted_types.get(metric) or hint or self.data_type_for(metric)
        policy = self._policies.get(data_type)
        if policy is None or not policy.is_active:
            return None
        return self.clock.now() - timedelta(days=policy.purge_after_days)

    def metrics_by_data_type(self) -> Dict[str, List[str]]:
        grouped: Dict[str, List[str]] = {}
        for metric in self.store.metrics():
            grouped.setdefault(self.data_type_for(metric), []).append(metric)
        return grouped

    def is_active_metric(self, metric: str) -> bool:
        """False when the metric's data type has an inactive policy."""
        policy = self._policies.get(self.data_type_for(metric))
        return policy is None or policy.is_active

    # ------------------------------------------------------------------
    # Sweeps
    # ------------------------------------------------------------------

    async def archival_sweep(self, cancel: Optional[asyncio.Event] = None) -> SweepSummary:
        summary = await self._sweep(SWEEP_ARCHIVAL, self._archive_step, cancel)
        self.recompute_compression_ratio()
        return summary

    async def compression_sweep(
        self, cancel: Optional[asyncio.Event] = None
    ) -> SweepSummary:
        summary = await self._sweep(SWEEP_COMPRESSION, self._compress_step, cancel)
        self.recompute_compression_ratio()
        return summary

    async def purge_sweep(self, cancel: Optional[asyncio.Event] = None) -> SweepSummary:
        return await self._sweep(SWEEP_PURGE, self._purge_step, cancel)

    def recompute_compression_ratio(self) -> float:
        """Mean storage factor across every row; 1.0 for an empty store."""
        total, factor_sum = self.store.storage_profile()
        self.compression_ratio = factor_sum / total if total else 1.0
        return self.compression_ratio

    async def _sweep(
        self, name: str, step: StepFn, cancel: Optional[asyncio.Event]
    ) -> SweepSummary:
        summary = SweepSummary(sweep=name)
        grouped = self.metrics_by_data_type()

        for policy in self.policies():
            if _cancelled(cancel):
                summary.cancelled = True
                break
            if not policy.is_active:
                summary.skipped.append(policy.data_type)
                continue

            try:
                summary.rows_affected += await step(
                    policy, grouped.get(policy.data_type, []), cancel
                )
                summary.processed.append(policy.data_type)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                error = (
                    e
                    if isinstance(e, LifecycleError)
                    else LifecycleError(policy.data_type, name, str(e))
                )
                logger.error(
                    "lifecycle_step_failed",
                    sweep=name,
                    data_type=policy.data_type,
                    error=error.message,
                )
                summary.failed.append(policy.data_type)

        if _cancelled(cancel):
            summary.cancelled = True

        logger.info(
            "Sweep completed",
            sweep=name,
            processed=len(summary.processed),
            failed=summary.failed,
            skipped=summary.skipped,
            rows_affected=summary.rows_affected,
            cancelled=summary.cancelled,
        )
        return summary

    async def _archive_step(
        self,
        policy: RetentionPolicy,
        metrics: List[str],
        cancel: Optional[asyncio.Event],
    ) -> int:
        archive_before = self.clock.now() - timedelta(days=policy.archive_after_days)
        live = 0
        archived = 0
        for metric in metrics:
            for _, granularity in self.store.partition_keys_for(metric):
                if _cancelled(cancel):
                    break
                demoted = self.store.demote(
                    metric, granularity, archive_before, policy.compression_level
                )
                archived += demoted
                live += self.store.partition_size(metric, granularity) - demoted
                await asyncio.sleep(0)

        self.tier_counts[policy.data_type] = {
            StorageTier.LIVE.value: live,
            StorageTier.ARCHIVED.value: archived,
        }
        return archived

    async def _compress_step(
        self,
        policy: RetentionPolicy,
        metrics: List[str],
        cancel: Optional[asyncio.Event],
    ) -> int:
        changed = 0
        for metric in metrics:
            for _, granularity in self.store.partition_keys_for(metric):
                if _cancelled(cancel):
                    break
                changed += self.store.recompress(
                    metric, granularity, policy.compression_level
                )
                await asyncio.sleep(0)
        return changed

    async def _purge_step(
        self,
        policy: RetentionPolicy,
        metrics: List[str],
        cancel: Optional[asyncio.Event],
    ) -> int:
        purge_before = self.clock.now() - timedelta(days=policy.purge_after_days)
        removed = 0
        for metric in metrics:
            for _, granularity in self.store.partition_keys_for(metric):
                if _cancelled(cancel):
                    break
                removed += self.store.prune(
                    metric, granularity, purge_before, inclusive=True
                )
                await asyncio.sleep(0)
        return removed


def _cancelled(cancel: Optional[asyncio.Event]) -> bool:
    return cancel is not None and cancel.is_set()
