from __future__ import annotations

"""
Field-masked bidirectional record synchronizer.

One pass for a partition:
  1. read checkpoint T (absent -> 0.0, full pull)
  2. pull remote records modified after T, mask, reconcile into the local store
  3. push local records modified after T (masked), issue pending erasures
  4. advance the checkpoint to the pass start time only if nothing failed

Pass-level failures (remote unreachable on pull, sovereignty violation,
concurrent pass) propagate. Record-level failures are tallied in the report
and keep the checkpoint where it was, so the next pass re-processes the
same window.
"""

import functools
import time
from typing import Any, Callable, Dict, Optional, Set

from fieldsync.core.config.models import PartitionConfig, SyncConfigFile
from fieldsync.core.errors import (
    ConfigError,
    ErasureConflict,
    RemoteRejectedError,
    RemoteUnavailableError,
    SovereigntyViolation,
    SyncError,
)
from fieldsync.core.gates import ConsentGate
from fieldsync.core.locks import PartitionLocks
from fieldsync.core.logger import get_logger
from fieldsync.core.masking.engine import MaskingEngine, MaskResult
from fieldsync.core.models import Record, SyncAction, SyncReport, iso_from_epoch
from fieldsync.core.processing_log import ProcessingLog
from fieldsync.core.remote.base import RemoteRecordStore
from fieldsync.core.retry import RetryPolicy
from fieldsync.core.stores.checkpoints import CheckpointStore
from fieldsync.core.stores.db import normalize_fields


_RECORD_LEVEL_REMOTE_ERRORS = (RemoteUnavailableError, RemoteRejectedError)


class Synchronizer:
    def __init__(
        self,
        *,
        config: SyncConfigFile,
        remote_for: Callable[[str], RemoteRecordStore],
        local_for: Callable[[str], Any],
        checkpoints: CheckpointStore,
        masking: Optional[MaskingEngine] = None,
        processing_log: Optional[ProcessingLog] = None,
        locks: Optional[PartitionLocks] = None,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], None] = time.sleep,
        logger: Any = None,
    ):
        self.config = config
        self._remote_for = remote_for
        self._local_for = local_for
        self.checkpoints = checkpoints
        self.logger = logger or get_logger("sync")
        self.masking = masking or MaskingEngine(
            default_rules=config.default_masking,
            partition_rules=config.masking_by_partition(),
            logger=self.logger,
        )
        self.processing_log = processing_log
        self.locks = locks or PartitionLocks()
        self._clock = clock
        self._sleep = sleep

    # ---- public API ----
    def run_sync(self, partition: str) -> SyncReport:
        code = str(partition or "").strip().lower()
        pc = self._partition_cfg(code)
        with self.locks.hold(code):
            return self._run_locked(code, pc)

    def run_all(self) -> Dict[str, SyncReport]:
        """
        Run every enabled partition. A pass-level error in one partition does
        not stop the others; the first such error is raised at the end.
        """
        reports: Dict[str, SyncReport] = {}
        first_error: Optional[SyncError] = None
        for code in sorted(self.config.partitions):
            if not self.config.partitions[code].enabled:
                continue
            try:
                reports[code] = self.run_sync(code)
            except SyncError as e:
                self.logger.error(f"Sync pass failed partition={code} code={e.code}")
                if first_error is None:
                    first_error = e
        if first_error is not None:
            raise first_error
        return reports

    def status(self, partition: str) -> Dict[str, Any]:
        code = str(partition or "").strip().lower()
        self._partition_cfg(code)
        cp = self.checkpoints.get(code, entity_type=self.config.entity_type)
        last = self.checkpoints.last_run(code, entity_type=self.config.entity_type)
        return {
            "partition": code,
            "checkpoint": cp,
            "checkpoint_iso": iso_from_epoch(cp) if cp is not None else None,
            "local_records": self._local_for(code).count_live(),
            "running": self.locks.is_held(code),
            "last_run": last,
        }

    def request_erasure(self, partition: str, remote_id: str) -> bool:
        """
        Flag a local record for erasure; the next pass deletes it remotely
        and leaves a tombstone locally.
        """
        code = str(partition or "").strip().lower()
        self._partition_cfg(code)
        ok = bool(self._local_for(code).request_erasure(str(remote_id), at=float(self._clock())))
        if ok:
            self.logger.info(f"Erasure requested partition={code} remote_id={remote_id}")
        return ok

    # ---- pass ----
    def _partition_cfg(self, code: str) -> PartitionConfig:
        try:
            return self.config.partition(code)
        except KeyError:
            raise ConfigError("Unknown partition.", partition=code) from None

    def _run_locked(self, code: str, pc: PartitionConfig) -> SyncReport:
        started = float(self._clock())
        report = SyncReport(partition=code, entity_type=self.config.entity_type, started_at=started)
        try:
            remote = self._remote_for(code)
            self._check_endpoint(code, remote)
            local = self._local_for(code)
            retry = RetryPolicy(self.config.retry_for(code), sleep=self._sleep, logger=self.logger)

            cp = self.checkpoints.get(code, entity_type=self.config.entity_type)
            since = float(cp) if cp is not None else 0.0
            report.checkpoint = since
            self.logger.info(f"Sync start partition={code} trace_id={report.trace_id} since={iso_from_epoch(since)}")

            try:
                pulled = retry.call(functools.partial(remote.list_since, since), op="list", partition=code)
            except RemoteRejectedError as e:
                raise RemoteUnavailableError("Remote refused the pull.", partition=code, cause=e.code) from e
            for rec in pulled:
                self._check_pulled(code, rec)

            pulled_ids: Set[str] = set()
            for rec in pulled:
                if not rec.remote_id:
                    report.skipped += 1
                    self._plog(report, None, SyncAction.SKIPPED, outcome="missing_remote_id")
                    continue
                pulled_ids.add(rec.remote_id)
                self._apply_pulled(code, rec, local=local, remote=remote, retry=retry, report=report)

            gate = ConsentGate(pc.consent_field)
            for rec in local.find_modified_since(since):
                if not rec.remote_id:
                    continue
                if rec.erased:
                    self._erase_remote(code, rec, local=local, remote=remote, retry=retry, report=report)
                    continue
                if rec.remote_id in pulled_ids:
                    # reconciled from the remote in this pass
                    continue
                if not gate.allows(rec.fields):
                    report.skipped += 1
                    self._plog(report, rec.remote_id, SyncAction.SKIPPED, outcome="consent_missing")
                    continue
                self._push(code, rec, remote=remote, retry=retry, report=report)
        except SyncError as e:
            report.finished_at = float(self._clock())
            self._record_run(report, outcome=f"aborted:{e.code}")
            self.logger.error(f"Sync aborted partition={code} trace_id={report.trace_id} code={e.code}")
            raise

        if report.errored == 0:
            report.checkpoint = self.checkpoints.set(code, started, entity_type=self.config.entity_type, now=float(self._clock()))
            report.checkpoint_advanced = True
        report.finished_at = float(self._clock())
        self._record_run(report, outcome="ok" if report.errored == 0 else "partial")
        c = report.counts()
        self.logger.info(
            f"Sync done partition={code} trace_id={report.trace_id} created={c['created']} updated={c['updated']} "
            f"deleted={c['deleted']} pushed={c['pushed']} errored={c['errored']} checkpoint_advanced={report.checkpoint_advanced}"
        )
        return report

    # ---- sovereignty ----
    @staticmethod
    def _check_endpoint(code: str, remote: RemoteRecordStore) -> None:
        bound = str(getattr(remote, "partition", "") or "").lower()
        if bound != code:
            raise SovereigntyViolation(partition=code, endpoint_partition=bound)

    @staticmethod
    def _check_pulled(code: str, rec: Record) -> None:
        if rec.partition is not None and rec.partition.lower() != code:
            raise SovereigntyViolation(partition=code, record_partition=rec.partition, remote_id=rec.remote_id)

    # ---- pull side ----
    def _apply_pulled(self, code: str, rec: Record, *, local: Any, remote: RemoteRecordStore, retry: RetryPolicy, report: SyncReport) -> None:
        rid = str(rec.remote_id)
        now = float(self._clock())
        if rec.erased:
            if local.erase_by_remote_id(rid, at=now):
                report.deleted += 1
                self._plog(report, rid, SyncAction.DELETED, details={"source": "remote"})
            return

        if local.is_tombstoned(rid):
            conflict = ErasureConflict(partition=code, remote_id=rid)
            report.conflicts += 1
            self.logger.warning(f"Erasure conflict partition={code} remote_id={rid}; re-issuing remote delete")
            try:
                retry.call(functools.partial(remote.delete, rid), op="delete", partition=code, remote_id=rid)
            except _RECORD_LEVEL_REMOTE_ERRORS as e:
                report.add_error(remote_id=rid, phase="delete", code=e.code, message=e.user_message)
                self._plog(report, rid, SyncAction.CONFLICT, outcome="delete_failed", details=conflict.to_dict())
                return
            self._plog(report, rid, SyncAction.CONFLICT, outcome="delete_reissued", details=conflict.to_dict())
            return

        existing = local.get_by_remote_id(rid)
        if existing is not None and existing.erased:
            self._plog(report, rid, SyncAction.SKIPPED, outcome="erasure_pending")
            return

        masked = self.masking.apply(code, rec.fields, remote_id=rid)
        report.masking_failures += len(masked.failures)

        if existing is None:
            fields = normalize_fields(masked.fields)
            local.upsert_by_remote_id(Record(remote_id=rid, partition=code, fields=fields, modified_at=rec.modified_at))
            report.created += 1
            self._plog(report, rid, SyncAction.CREATED, details={"fields": fields, "dropped": masked.failed_fields})
            return

        merged = self._merge(code, existing.fields, masked)
        if merged == existing.fields:
            return
        changed = sorted(k for k in set(merged) | set(existing.fields) if merged.get(k) != existing.fields.get(k))
        local.upsert_by_remote_id(Record(local_id=existing.local_id, remote_id=rid, partition=code, fields=merged, modified_at=rec.modified_at))
        report.updated += 1
        self._plog(report, rid, SyncAction.UPDATED, details={"changed": changed, "dropped": masked.failed_fields})

    def _merge(self, code: str, local_fields: Dict[str, Any], masked: MaskResult) -> Dict[str, Any]:
        """
        Remote values win, except where the local raw value already masks to
        the pulled value (our own push coming back) or the pulled value was
        dropped by a masking failure. A ruled local value that cannot be
        masked was never pushed, so its absence on the remote keeps it.
        """
        merged = normalize_fields(masked.fields)
        for name in self.masking.rules_for(code):
            if name not in local_fields:
                continue
            if name in merged:
                if self.masking.masks_to(code, name, local_fields[name], merged[name]):
                    merged[name] = local_fields[name]
            elif not self.masking.can_mask(code, name, local_fields[name]):
                merged[name] = local_fields[name]
        for name in masked.failed_fields:
            if name in local_fields:
                merged[name] = local_fields[name]
        return merged

    # ---- push side ----
    def _push(self, code: str, rec: Record, *, remote: RemoteRecordStore, retry: RetryPolicy, report: SyncReport) -> None:
        rid = str(rec.remote_id)
        masked = self.masking.apply(code, rec.fields, remote_id=rid)
        report.masking_failures += len(masked.failures)
        leaked = self.masking.verify(code, rec.fields, masked.fields)
        if leaked:
            report.add_error(remote_id=rid, phase="push", code="masking_failure", message=f"unmasked fields: {', '.join(leaked)}")
            self._plog(report, rid, SyncAction.ERROR, outcome="unmasked_fields", details={"fields_failed": leaked})
            return
        outbound = Record(local_id=rec.local_id, remote_id=rid, partition=code, fields=masked.fields, modified_at=rec.modified_at)
        try:
            new_id = retry.call(functools.partial(remote.upsert, outbound), op="upsert", partition=code, remote_id=rid)
        except _RECORD_LEVEL_REMOTE_ERRORS as e:
            report.add_error(remote_id=rid, phase="push", code=e.code, message=e.user_message)
            self.logger.warning(f"Push failed partition={code} remote_id={rid} code={e.code}")
            self._plog(report, rid, SyncAction.ERROR, outcome=e.code, details={"phase": "push"})
            return
        if new_id and str(new_id) != rid:
            self.logger.warning(f"Remote returned a different id partition={code} remote_id={rid} returned={new_id}")
        report.pushed += 1
        self._plog(report, rid, SyncAction.PUSHED, details={"fields": masked.fields, "dropped": masked.failed_fields})

    def _erase_remote(self, code: str, rec: Record, *, local: Any, remote: RemoteRecordStore, retry: RetryPolicy, report: SyncReport) -> None:
        rid = str(rec.remote_id)
        try:
            retry.call(functools.partial(remote.delete, rid), op="delete", partition=code, remote_id=rid)
        except _RECORD_LEVEL_REMOTE_ERRORS as e:
            report.add_error(remote_id=rid, phase="delete", code=e.code, message=e.user_message)
            self.logger.warning(f"Remote delete failed partition={code} remote_id={rid} code={e.code}")
            self._plog(report, rid, SyncAction.ERROR, outcome=e.code, details={"phase": "delete"})
            return
        local.erase_by_remote_id(rid, at=float(self._clock()))
        report.deleted += 1
        self._plog(report, rid, SyncAction.DELETED, details={"source": "local"})

    # ---- bookkeeping ----
    def _plog(self, report: SyncReport, remote_id: Optional[str], action: SyncAction, *, outcome: str = "ok", details: Optional[Dict[str, Any]] = None) -> None:
        if self.processing_log is None:
            return
        self.processing_log.log(
            trace_id=report.trace_id,
            partition=report.partition,
            remote_id=remote_id,
            action=action.value,
            outcome=outcome,
            details=details,
        )

    def _record_run(self, report: SyncReport, *, outcome: str) -> None:
        self.checkpoints.record_run(
            report.partition,
            trace_id=report.trace_id,
            started_at=report.started_at,
            finished_at=float(report.finished_at or report.started_at),
            outcome=outcome,
            counts=report.counts(),
            entity_type=report.entity_type,
        )
