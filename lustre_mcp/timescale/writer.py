"""TimescaleWriter: metric sink for drained lustre2 records.

Surface used by the scan orchestrator:
 methods: add_fields(measurement, fields, tags, ts_ms), flush(), stats()
Without a DSN the writer still buffers and "flushes" (rows are counted and
kept as last_flush_rows) so it doubles as an in-memory sink.
"""
from __future__ import annotations
import os, socket, time
from typing import List, Dict, Any, Mapping, Optional
from dataclasses import dataclass
from datetime import datetime, timezone

from .schema_spec import SCHEMA_SPEC, TableGroup, METRIC_COLUMN_TYPE, group_for_measurement
from ..debug_util import dbg


@dataclass
class _PendingRow:
    table: str
    values: Dict[str, Any]  # column -> value


class TimescaleWriter:
    def __init__(self, batch_size: int = 2000, dsn: Optional[str] = None, host: Optional[str] = None):
        """Writer buffering one row per record and inserting in batches.

        Parameters:
            batch_size: rows kept in memory before an automatic flush.
            dsn: PostgreSQL/Timescale connection string (TIMESCALE_DSN if omitted).
            host: value of the host column (LUSTRE2_HOST or the local hostname if omitted).
        """
        if 'LUSTRE2_BATCH_SIZE' in os.environ and batch_size == 2000:  # only override default, not explicit caller value
            try:
                batch_size = int(os.environ['LUSTRE2_BATCH_SIZE'])
            except ValueError:
                dbg(f"timescale_writer bad LUSTRE2_BATCH_SIZE={os.environ['LUSTRE2_BATCH_SIZE']!r}")
        self.batch_size = max(1, batch_size)
        self.host = host or os.environ.get('LUSTRE2_HOST') or socket.gethostname()
        self.dsn = dsn or os.environ.get('TIMESCALE_DSN')
        self._pending: List[_PendingRow] = []
        self.total_rows_added = 0
        self.total_rows_ignored = 0
        self.total_flushes = 0
        self.total_rows_flushed = 0
        self.total_flush_failures = 0
        self.last_flush_payload: Dict[str, int] = {}
        self.last_flush_rows: List[Dict[str, Any]] = []
        self._total_flush_time = 0.0
        self._last_flush_seconds = 0.0
        self._conn = None
        self._ensure_connection()

    def _ensure_connection(self):
        if self.dsn and self._conn is None:
            import psycopg
            try:
                self._conn = psycopg.connect(self.dsn)
                dbg(f'timescale_connect_ok dsn={self.dsn}')
            except psycopg.Error as e:
                dbg(f'timescale_connect_fail err={e.__class__.__name__}:{e}')
                self._conn = None

    @property
    def connected(self) -> bool:
        return self._conn is not None

    @property
    def pending(self) -> int:
        return len(self._pending)

    def add_fields(self, measurement: str, fields: Mapping[str, int], tags: Mapping[str, str], ts_ms: Optional[int] = None):
        grp = group_for_measurement(measurement)
        if not grp:
            self.total_rows_ignored += 1
            return
        if ts_ms is None:
            ts_ms = int(time.time() * 1000)
        if len(self._pending) >= self.batch_size:
            self.flush()
        values: Dict[str, Any] = {
            'ts': datetime.fromtimestamp(ts_ms / 1000.0, tz=timezone.utc).isoformat(),
            'host': self.host,
        }
        for lbl in grp.local_labels:
            values[lbl] = tags.get(lbl) or None
        for name, value in fields.items():
            meta = grp.metrics.get(name)
            values[(meta.column if meta and meta.column else name)] = value
        self._pending.append(_PendingRow(grp.table, values))
        self.total_rows_added += 1

    def serialize_batches(self) -> Dict[str, List[_PendingRow]]:
        per_table: Dict[str, List[_PendingRow]] = {}
        for r in self._pending:
            per_table.setdefault(r.table, []).append(r)
        return per_table

    def _insert(self, table: str, rows: List[_PendingRow], grp: TableGroup) -> None:
        fixed = ['ts', 'host', *grp.local_labels]
        metric_cols = sorted({k for r in rows for k in r.values if k not in fixed})
        col_list = fixed + metric_cols
        with self._conn.cursor() as cur:
            known = {meta.column or m for m, meta in grp.metrics.items()}
            for col in metric_cols:
                if col not in known:
                    cur.execute(f"ALTER TABLE {table} ADD COLUMN IF NOT EXISTS {col} {METRIC_COLUMN_TYPE}")
            placeholders = ','.join(['%s'] * len(col_list))
            cur.executemany(
                f"INSERT INTO {table} ({','.join(col_list)}) VALUES ({placeholders})",
                [tuple(r.values.get(c) for c in col_list) for r in rows],
            )
        dbg(f'timescale_insert_ok table={table} rows={len(rows)} columns={len(col_list)}')

    def flush(self):
        if not self._pending:
            return
        import psycopg
        flush_start = time.time()
        batches = self.serialize_batches()
        self.last_flush_payload = {}
        for table, rows in batches.items():
            grp = next((g for g in SCHEMA_SPEC.values() if g.table == table), None)
            if grp is None:
                continue
            self.last_flush_payload[table] = len(rows)
            if self._conn is not None:
                try:
                    self._insert(table, rows, grp)
                    self._conn.commit()
                except psycopg.Error as e:
                    self.total_flush_failures += 1
                    dbg(f'timescale_flush_fail table={table} err={e.__class__.__name__}:{e}')
                    self._conn.rollback()
                    continue
            self.total_rows_flushed += len(rows)
        self.last_flush_rows = [dict(r.values) for r in self._pending]
        self._pending.clear()
        self.total_flushes += 1
        self._last_flush_seconds = time.time() - flush_start
        self._total_flush_time += self._last_flush_seconds

    def close(self):
        self.flush()
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    def stats(self) -> Dict[str, Any]:
        avg_flush = (self._total_flush_time / self.total_flushes) if self.total_flushes else 0.0
        return {
            'total_rows_added': self.total_rows_added,
            'total_rows_ignored': self.total_rows_ignored,
            'total_rows_flushed': self.total_rows_flushed,
            'total_flushes': self.total_flushes,
            'total_flush_failures': self.total_flush_failures,
            'pending': len(self._pending),
            'connected': self.connected,
            'batch_size': self.batch_size,
            'host': self.host,
            'avg_flush_seconds': round(avg_flush, 6),
            'last_flush_seconds': round(self._last_flush_seconds, 6),
        }

__all__ = ["TimescaleWriter"]
