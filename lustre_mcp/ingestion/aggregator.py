"""Per-target accumulation of parsed Lustre counters.

Buckets are keyed by (target, jobid). jobid "" is the target's job-less
bucket (stats / md_stats counters); every job id seen in a job_stats file gets
its own bucket, so one scan can emit several records for the same target.
"""
from __future__ import annotations
import re
import time
from dataclasses import dataclass
from typing import Dict, List, Mapping, Optional

from .parser import JOBID_KEY, MEASUREMENT, LustreRecord
from ..debug_util import dbg
from ..errors import NumericConversionError

UINT64_MAX = 2**64 - 1
_UINT_RE = re.compile(r"[0-9]+")


def parse_uint64(value: str) -> int:
    """Decimal unsigned 64-bit conversion (no sign, no whitespace, no '_')."""
    if not _UINT_RE.fullmatch(value or ''):
        raise NumericConversionError(f'not an unsigned integer: {value!r}')
    number = int(value)
    if number > UINT64_MAX:
        raise NumericConversionError(f'value out of uint64 range: {value!r}')
    return number


@dataclass(frozen=True)
class SourceKey:
    target: str
    jobid: str = ""


class StatAggregator:
    def __init__(self, emit_empty: bool = False):
        """Aggregator owned by exactly one scan.

        Parameters:
            emit_empty: also drain buckets that never received a counter
                (a job id line followed by nothing we extract).
        """
        self.emit_empty = emit_empty
        self._buckets: Dict[SourceKey, Dict[str, int]] = {}
        self._current_job: Dict[str, str] = {}

    def _bucket(self, key: SourceKey) -> Dict[str, int]:
        bucket = self._buckets.get(key)
        if bucket is None:
            bucket = {}
            self._buckets[key] = bucket
        return bucket

    def begin_file(self, target: str) -> None:
        # a new file starts outside any job block; the target always gets its job-less bucket
        self._current_job[target] = ""
        self._bucket(SourceKey(target))

    def current_job(self, target: str) -> str:
        return self._current_job.get(target, "")

    def ingest(self, target: str, per_job: bool, pairs: Mapping[str, str]) -> None:
        if not pairs:
            return
        jobid = pairs.get(JOBID_KEY)
        if jobid:
            old = self._current_job.get(target, "")
            if old and old != jobid:
                dbg(f'jobid changed target={target} from={old} to={jobid}')
            self._current_job[target] = jobid
            self._bucket(SourceKey(target, jobid))
            return
        values = {name: parse_uint64(raw) for name, raw in pairs.items() if name != JOBID_KEY}
        key = SourceKey(target, self._current_job.get(target, "") if per_job else "")
        self._bucket(key).update(values)

    @property
    def bucket_count(self) -> int:
        return len(self._buckets)

    def targets(self) -> List[str]:
        seen: Dict[str, None] = {}
        for key in self._buckets:
            seen.setdefault(key.target, None)
        return list(seen)

    def drain(self, ts_ms: Optional[int] = None) -> List[LustreRecord]:
        if ts_ms is None:
            ts_ms = int(time.time() * 1000)
        records: List[LustreRecord] = []
        for key, fields in self._buckets.items():
            if not fields and not self.emit_empty:
                continue
            tags = {'name': key.target}
            if key.jobid:
                tags['jobid'] = key.jobid
            records.append(LustreRecord(MEASUREMENT, tags, dict(fields), ts_ms))
        self._buckets.clear()
        self._current_job.clear()
        return records


__all__ = ["UINT64_MAX", "parse_uint64", "SourceKey", "StatAggregator"]
