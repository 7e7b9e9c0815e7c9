import os, glob, time
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterable, List, Mapping, Optional, Sequence

from .aggregator import StatAggregator
from .parser import LustreRecord, parse_line, resolve_target
from .rules import TargetKind, rules_for
from ..debug_util import dbg, logger
from ..errors import FileReadError, GlobSyntaxError, LustreScanError

DESCRIPTION = "Read metrics from local Lustre service on OST, MDS"

# Lustre 2.5.x layout:
#   read/write bytes      obdfilter/<ost_name>/stats
#   cache counters        osd-ldiskfs/<ost_name>/stats
#   per job statistics    obdfilter/<ost_name>/job_stats, mdt/<mdt_name>/job_stats
DEFAULT_OST_PROCFILES = (
    "/proc/fs/lustre/obdfilter/*/stats",
    "/proc/fs/lustre/osd-ldiskfs/*/stats",
    "/proc/fs/lustre/obdfilter/*/job_stats",
)
DEFAULT_MDS_PROCFILES = (
    "/proc/fs/lustre/mdt/*/md_stats",
    "/proc/fs/lustre/mdt/*/job_stats",
)
JOB_STATS_SUFFIX = "job_stats"
DEFAULT_INTERVAL_SECONDS = 10.0

SAMPLE_CONFIG = (
    "## Comma separated /proc globs to search for Lustre stats\n"
    "## If not specified, the defaults work on Lustre 2.5.x\n"
    "##\n"
    f"# LUSTRE2_OST_PROCFILES={','.join(DEFAULT_OST_PROCFILES)}\n"
    f"# LUSTRE2_MDS_PROCFILES={','.join(DEFAULT_MDS_PROCFILES)}\n"
    "## Seconds between scans when running the collector loop\n"
    f"# LUSTRE2_INTERVAL_SECONDS={int(DEFAULT_INTERVAL_SECONDS)}\n"
)

Lister = Callable[[str], Iterable[str]]
Reader = Callable[[str], Iterable[str]]


def resolve_globs(explicit: Optional[Sequence[str]], defaults: Sequence[str]) -> List[str]:
    """Explicit patterns replace the defaults entirely; the two are never merged."""
    if explicit:
        return list(explicit)
    return list(defaults)


def check_pattern(pattern: str) -> None:
    if not pattern:
        raise GlobSyntaxError('empty glob pattern')
    if '\x00' in pattern:
        raise GlobSyntaxError(f'NUL byte in glob pattern {pattern!r}')
    if (len(pattern) - len(pattern.rstrip('\\'))) % 2:
        raise GlobSyntaxError(f'trailing escape in glob pattern {pattern!r}')
    i, n = 0, len(pattern)
    while i < n:
        if pattern[i] == '\\':  # escaped character, '[' included
            i += 2
            continue
        if pattern[i] != '[':
            i += 1
            continue
        j = i + 1
        if j < n and pattern[j] in '!^':
            j += 1
        if j < n and pattern[j] == ']':  # leading ']' is a literal member
            j += 1
        while j < n and pattern[j] != ']':
            j += 2 if pattern[j] == '\\' else 1
        if j >= n:
            raise GlobSyntaxError(f'unterminated character class in glob pattern {pattern!r}')
        i = j + 1


def list_files(pattern: str) -> List[str]:
    check_pattern(pattern)
    return sorted(glob.glob(pattern))


def _read_error(e: Exception, path: str) -> FileReadError:
    detail = e.strerror if isinstance(e, OSError) and e.strerror else str(e)
    return FileReadError(f'{e.__class__.__name__}: {detail}', path=path)


def read_lines(path: str) -> List[str]:
    # strict utf-8: undecodable bytes fail the file
    try:
        with open(path, 'r', encoding='utf-8') as fh:
            return fh.read().splitlines()
    except (OSError, UnicodeDecodeError) as e:
        raise _read_error(e, path) from e


def is_job_stats(path: str) -> bool:
    return os.path.basename(path).endswith(JOB_STATS_SUFFIX)


def _scan_file(agg: StatAggregator, kind: TargetKind, path: str, reader: Reader) -> int:
    target = resolve_target(path)
    per_job = is_job_stats(path)
    rules = rules_for(kind, per_job)
    try:
        lines = list(reader(path))
    except (OSError, UnicodeDecodeError) as e:
        raise _read_error(e, path) from e
    agg.begin_file(target)
    count = 0
    for line in lines:
        try:
            agg.ingest(target, per_job, parse_line(line, rules))
        except LustreScanError as e:
            e.with_context(path=path, line=line)
            raise
        count += 1
    return count


def scan(
    ost_globs: Optional[Sequence[str]] = None,
    mdt_globs: Optional[Sequence[str]] = None,
    *,
    lister: Lister = list_files,
    reader: Reader = read_lines,
    ts_ms: Optional[int] = None,
    emit_empty: bool = False,
) -> List[LustreRecord]:
    """Run one full scan and return the drained records.

    Each call owns a fresh StatAggregator. The first LustreScanError raised by
    any file or line aborts the whole scan: nothing is returned for it, and
    the error propagates to the caller with the offending file/line attached.
    """
    agg = StatAggregator(emit_empty=emit_empty)
    plan = [
        (TargetKind.OST, resolve_globs(ost_globs, DEFAULT_OST_PROCFILES)),
        (TargetKind.MDT, resolve_globs(mdt_globs, DEFAULT_MDS_PROCFILES)),
    ]
    files = 0
    lines = 0
    for kind, patterns in plan:
        for pattern in patterns:
            matched = list(lister(pattern))
            dbg(f'lustre_scan glob kind={kind.value} pattern={pattern} files={len(matched)}')
            for path in matched:
                lines += _scan_file(agg, kind, path, reader)
                files += 1
    records = agg.drain(ts_ms)
    dbg(f'lustre_scan done files={files} lines={lines} records={len(records)}')
    return records


def gather(sink, ost_globs: Optional[Sequence[str]] = None, mdt_globs: Optional[Sequence[str]] = None, **kwargs) -> int:
    """Scan and hand every record to `sink.add_fields`, then flush the sink.

    The sink sees nothing when the scan fails.
    """
    records = scan(ost_globs, mdt_globs, **kwargs)
    for rec in records:
        sink.add_fields(rec.measurement, rec.fields, rec.tags, rec.ts_ms)
    sink.flush()
    return len(records)


@dataclass
class ScanConfig:
    ost_procfiles: List[str] = field(default_factory=list)
    mds_procfiles: List[str] = field(default_factory=list)
    interval_seconds: float = DEFAULT_INTERVAL_SECONDS

    def effective_globs(self) -> Dict[str, List[str]]:
        return {
            'ost': resolve_globs(self.ost_procfiles, DEFAULT_OST_PROCFILES),
            'mdt': resolve_globs(self.mds_procfiles, DEFAULT_MDS_PROCFILES),
        }


def _split_list(raw: Optional[str]) -> List[str]:
    if not raw:
        return []
    return [p.strip() for p in raw.split(',') if p.strip()]


def config_from_env(environ: Optional[Mapping[str, str]] = None) -> ScanConfig:
    env = os.environ if environ is None else environ
    interval = DEFAULT_INTERVAL_SECONDS
    raw_interval = env.get('LUSTRE2_INTERVAL_SECONDS')
    if raw_interval:
        try:
            interval = max(0.0, float(raw_interval))
        except ValueError:
            dbg(f'config_from_env bad LUSTRE2_INTERVAL_SECONDS={raw_interval!r} using={interval}')
    return ScanConfig(
        ost_procfiles=_split_list(env.get('LUSTRE2_OST_PROCFILES')),
        mds_procfiles=_split_list(env.get('LUSTRE2_MDS_PROCFILES')),
        interval_seconds=interval,
    )


def run_collector(
    sink,
    config: Optional[ScanConfig] = None,
    iterations: Optional[int] = None,
    sleep: Callable[[float], None] = time.sleep,
    **scan_kwargs,
) -> List[Dict[str, object]]:
    """Scan every `config.interval_seconds` until `iterations` scans have run (forever if None).

    A failed scan is logged and the next one starts on schedule; a scan is
    never retried internally. Returns one outcome dict per scan.
    """
    config = config or config_from_env()
    outcomes: List[Dict[str, object]] = []
    n = 0
    while iterations is None or n < iterations:
        if n:
            sleep(config.interval_seconds)
        n += 1
        started = time.time()
        try:
            count = gather(sink, config.ost_procfiles, config.mds_procfiles, **scan_kwargs)
            outcome: Dict[str, object] = {'ok': True, 'records': count}
        except LustreScanError as e:
            logger.warning('lustre2 scan failed: %s: %s', e.__class__.__name__, e)
            outcome = {'ok': False, 'error': e.__class__.__name__, 'detail': str(e)}
        outcome['seconds'] = round(time.time() - started, 6)
        dbg(f'run_collector iteration={n} outcome={outcome}')
        if iterations is not None:
            outcomes.append(outcome)
    return outcomes


__all__ = [
    "DESCRIPTION",
    "SAMPLE_CONFIG",
    "DEFAULT_OST_PROCFILES",
    "DEFAULT_MDS_PROCFILES",
    "DEFAULT_INTERVAL_SECONDS",
    "resolve_globs",
    "check_pattern",
    "list_files",
    "read_lines",
    "is_job_stats",
    "scan",
    "gather",
    "ScanConfig",
    "config_from_env",
    "run_collector",
]
