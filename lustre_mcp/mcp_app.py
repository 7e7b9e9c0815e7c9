import os, re, time
import psycopg
from typing import List, Optional, Dict, Any

from .ingestion.lustre_scan import (
    DESCRIPTION, SAMPLE_CONFIG, DEFAULT_OST_PROCFILES, DEFAULT_MDS_PROCFILES,
    config_from_env, gather, scan,
)
from .timescale.bootstrap import bootstrap_timescale
from .timescale.writer import TimescaleWriter
from .timescale.schema_spec import SCHEMA_SPEC
from .errors import LustreScanError
from .debug_util import dbg
from fastmcp import FastMCP

# ----------------- System Prompt Guidance -----------------
SYSTEM_PROMPT = (
    "Workflow:\n"
    "1. sample_config() shows the proc globs in effect (defaults target Lustre 2.5.x).\n"
    "2. scan_lustre() runs one scan and returns lustre2 records; nothing is stored.\n"
    "3. gather_lustre() runs one scan and writes the records to Timescale table lustre2.\n"
    "4. A record is one target (tag name) or one job on a target (tags name + jobid).\n"
    "5. A failed scan returns {error, detail, path, line} and no records at all; fix the glob or report format drift.\n"
    "6. timescale_sql(sql=...) runs read-only SELECT / WITH queries; per-metric views are named lustre2_<field>.\n"
)

mcp = FastMCP("lustre2-mcp")
TIMESCALE_WRITER_LAST: Optional[TimescaleWriter] = None
TIMESCALE_DIRECT_CONN = None  # fallback read-only connection if no writer yet
LAST_SCAN: Dict[str, Any] = {}


def _error_payload(e: LustreScanError) -> dict:
    return {'error': e.__class__.__name__, 'detail': str(e).split('\n')[0], 'path': e.path, 'line': e.line}


def _effective_globs(ost_procfiles: Optional[List[str]], mds_procfiles: Optional[List[str]]):
    cfg = config_from_env()
    return (ost_procfiles or cfg.ost_procfiles), (mds_procfiles or cfg.mds_procfiles)


def _record_scan(ok: bool, started: float, **extra) -> None:
    LAST_SCAN.clear()
    LAST_SCAN.update({'ok': ok, 'at_ms': int(started * 1000), 'seconds': round(time.time() - started, 6), **extra})


def _writer() -> TimescaleWriter:
    global TIMESCALE_WRITER_LAST
    if TIMESCALE_WRITER_LAST is None:
        TIMESCALE_WRITER_LAST = TimescaleWriter()
    return TIMESCALE_WRITER_LAST


def init_server() -> dict:
    """Bootstrap Timescale (if TIMESCALE_DSN is set) and report the scan configuration."""
    status: Dict[str, Any] = {'config': config_from_env().effective_globs()}
    try:
        status['timescale'] = bootstrap_timescale()
    except psycopg.Error as e:
        status['timescale'] = {'enabled': True, 'error': str(e)}
    return status


def _scan_lustre_impl(ost_procfiles: Optional[List[str]] = None, mds_procfiles: Optional[List[str]] = None, emit_empty: bool = False) -> dict:
    ost, mds = _effective_globs(ost_procfiles, mds_procfiles)
    started = time.time()
    try:
        records = scan(ost, mds, emit_empty=emit_empty)
    except LustreScanError as e:
        dbg(f'scan_lustre failed err={e.__class__.__name__}:{e}')
        _record_scan(False, started, mode='scan', error=e.__class__.__name__)
        return _error_payload(e)
    _record_scan(True, started, mode='scan', records=len(records))
    return {'record_count': len(records), 'records': [r.as_dict() for r in records]}


@mcp.tool()
def scan_lustre(ost_procfiles: Optional[List[str]] = None, mds_procfiles: Optional[List[str]] = None, emit_empty: bool = False) -> dict:
    """Scan Lustre proc stats once and return the lustre2 records.

    Explicit glob lists replace the defaults for that target kind. Returns
    {record_count, records[{measurement,tags,fields,ts_ms}]} or {error,detail,path,line}."""
    return _scan_lustre_impl(ost_procfiles, mds_procfiles, emit_empty)


@mcp.tool()
def gather_lustre(ost_procfiles: Optional[List[str]] = None, mds_procfiles: Optional[List[str]] = None) -> dict:
    """Scan once and write the records to Timescale (buffered in memory without a DSN).

    Returns {record_count, stats} or {error,detail,path,line}."""
    ost, mds = _effective_globs(ost_procfiles, mds_procfiles)
    w = _writer()
    started = time.time()
    try:
        count = gather(w, ost, mds)
    except LustreScanError as e:
        dbg(f'gather_lustre failed err={e.__class__.__name__}:{e}')
        _record_scan(False, started, mode='gather', error=e.__class__.__name__)
        return _error_payload(e)
    _record_scan(True, started, mode='gather', records=count)
    return {'record_count': count, 'stats': w.stats()}


@mcp.tool()
def sample_config() -> dict:
    """Describe the collector configuration: defaults, sample env settings and the globs in effect."""
    return {
        'description': DESCRIPTION,
        'sample_config': SAMPLE_CONFIG,
        'defaults': {'ost': list(DEFAULT_OST_PROCFILES), 'mdt': list(DEFAULT_MDS_PROCFILES)},
        'effective': config_from_env().effective_globs(),
    }


@mcp.tool()
def ingest_status() -> dict:
    """Return the outcome of the last scan and writer stats. {state,last_scan,stats}"""
    stats: Dict[str, Any] = {'initialized': TIMESCALE_WRITER_LAST is not None}
    if TIMESCALE_WRITER_LAST is not None:
        stats.update(TIMESCALE_WRITER_LAST.stats())
    return {'state': 'idle', 'last_scan': dict(LAST_SCAN) or None, 'stats': stats}


_SQL_DISALLOWED = {'update','delete','insert','merge','alter','create','drop','truncate','grant','revoke','vacuum','analyze','call','copy'}


def _first_keyword(sql: str) -> Optional[str]:
    tmp = sql
    while True:
        m = re.match(r"^(\s*/\*.*?\*/\s*)", tmp, flags=re.DOTALL)
        if not m: break
        tmp = tmp[m.end():]
    while True:
        m = re.match(r"^(\s*--[^\n]*\n)", tmp)
        if not m: break
        tmp = tmp[m.end():]
    m = re.match(r"^\s*([a-zA-Z]+)", tmp)
    return m.group(1).lower() if m else None


@mcp.tool()
def timescale_sql(sql: str, max_rows: int = 500) -> dict:
    """Run a safe read-only SELECT / WITH query (single statement) on the lustre2 table and views.

    Auto LIMIT max_rows if none provided.
    Returns {columns, rows, records, row_count, truncated} or {'error':...}."""
    global TIMESCALE_DIRECT_CONN
    q = (sql or '').strip()
    if not q:
        return {'error': 'empty_query'}
    first_kw = _first_keyword(q)
    if first_kw is None:
        return {'error': 'parse_error', 'detail': 'could_not_extract_first_token'}
    if first_kw in _SQL_DISALLOWED or first_kw not in {'select', 'with'}:
        return {'error': 'only_select_allowed'}
    core = q.rstrip(';')
    if ';' in core:
        return {'error': 'multiple_statements_disallowed'}
    conn = None
    if TIMESCALE_WRITER_LAST and TIMESCALE_WRITER_LAST.connected:
        conn = TIMESCALE_WRITER_LAST._conn
    else:
        if TIMESCALE_DIRECT_CONN is None:
            dsn = os.environ.get('TIMESCALE_DSN')
            if not dsn:
                return {'error': 'no_dsn'}
            try:
                TIMESCALE_DIRECT_CONN = psycopg.connect(dsn)
            except psycopg.Error as e:  # pragma: no cover
                return {'error': 'connect_failed', 'detail': str(e).split('\n')[0]}
        conn = TIMESCALE_DIRECT_CONN
    enforce_limit = ' limit ' not in q.lower()
    wrapped = f"WITH _q AS ({core}) SELECT * FROM _q LIMIT {int(max_rows)}" if enforce_limit else core
    try:
        with conn.cursor() as cur:
            cur.execute(wrapped)
            cols = [d[0] for d in cur.description]
            rows = cur.fetchall()
    except psycopg.Error as e:
        try:
            conn.rollback()
        except psycopg.Error:
            pass
        if conn is TIMESCALE_DIRECT_CONN:
            # drop a broken direct connection; the next call reconnects
            try:
                TIMESCALE_DIRECT_CONN.close()
            except psycopg.Error:
                pass
            TIMESCALE_DIRECT_CONN = None
        return {'error': e.__class__.__name__, 'detail': str(e).split('\n')[0]}
    truncated = enforce_limit and len(rows) == max_rows
    def _json_val(v):
        import datetime as _dt, decimal as _dec
        if isinstance(v, _dt.datetime):
            return v.isoformat()
        if isinstance(v, _dec.Decimal):
            return int(v) if v == v.to_integral_value() else float(v)
        return v
    records = [{cols[i]: _json_val(val) for i, val in enumerate(row)} for row in rows]
    return {'columns': cols, 'rows': [list(map(_json_val, r)) for r in rows], 'records': records, 'row_count': len(rows), 'truncated': truncated}


def healthz() -> dict:
    return {
        'status': 'ok',
        'time': int(time.time() * 1000),
        'tables': [g.table for g in SCHEMA_SPEC.values()],
        'last_scan_ok': LAST_SCAN.get('ok'),
    }


if __name__ == '__main__':
    print('Initializing server...')
    print(init_server())
    host = os.environ.get('HOST','0.0.0.0')
    port = int(os.environ.get('PORT','8000'))
    print(f'Starting FastMCP on {host}:{port}')
    mcp.run(transport="http", host=host, port=port, stateless_http=True)
