from __future__ import annotations
from dataclasses import dataclass
from typing import Dict, Iterable

from .rules import ExtractionRule
from ..errors import MalformedLineError, MalformedPathError

MEASUREMENT = "lustre2"

@dataclass(frozen=True)
class LustreRecord:
    measurement: str
    tags: Dict[str, str]
    fields: Dict[str, int]
    ts_ms: int = 0

    @property
    def name(self) -> str:
        return self.tags.get('name', '')

    @property
    def jobid(self) -> str:
        return self.tags.get('jobid', '')

    def as_dict(self) -> Dict[str, object]:
        return {'measurement': self.measurement, 'tags': dict(self.tags), 'fields': dict(self.fields), 'ts_ms': self.ts_ms}

"""Lustre proc stats line parsing

Line shapes handled
-------------------
Counter line (stats / md_stats):
    write_bytes               6 samples [bytes] 0 1048576 99999999
job_stats block:
    - job_id:          testjob.0
      snapshot_time:   1461772761
      read:            { samples: 1, unit: bytes, min: 4096, max: 4096, sum: 4096 }

A `- job_id:` line always wins over rule matching and yields only the job id.
Every other line is matched on its first token with one trailing ':' removed,
values lose one trailing ',' (job_stats fields are comma separated).

A rule pointing past the end of a matched line is a format drift we want to
see, so it raises MalformedLineError instead of dropping the field.
"""

JOB_ID_PREFIX = "- job_id:"
JOBID_KEY = "jobid"


def parse_line(line: str, rules: Iterable[ExtractionRule]) -> Dict[str, str]:
    fields: Dict[str, str] = {}
    parts = line.split()
    if line.startswith(JOB_ID_PREFIX):
        if len(parts) < 3:
            raise MalformedLineError('job_id line without job identifier', line=line)
        fields[JOBID_KEY] = parts[2]
        return fields
    if not parts:
        return fields
    label = parts[0]
    if label.endswith(':'):
        label = label[:-1]
    for rule in rules:
        if rule.match_token != label:
            continue
        if rule.field_index >= len(parts):
            raise MalformedLineError(
                f'{label!r} needs field {rule.field_index} for {rule.output_name!r} but line has {len(parts)} tokens',
                line=line,
            )
        value = parts[rule.field_index]
        if value.endswith(','):
            value = value[:-1]
        fields[rule.output_name] = value
    return fields


def resolve_target(path: str) -> str:
    """Turn /proc/fs/lustre/obdfilter/<ost_name>/stats (and similar) into the target name.

    The target name is the directory holding the stats file, which is true for
    the Lustre 2.1 -> 2.8 proc layout.
    """
    parts = path.split('/')
    if len(parts) < 2 or not parts[-2]:
        raise MalformedPathError('cannot derive target name from path', path=path)
    return parts[-2]


__all__ = [
    "MEASUREMENT",
    "LustreRecord",
    "JOB_ID_PREFIX",
    "JOBID_KEY",
    "parse_line",
    "resolve_target",
]
