"""Declarative extraction rules for Lustre proc statistics files.

Each rule says: a line whose first token (minus a trailing ':') equals
`match_token` carries a value in whitespace token `field_index`, reported as
`output_name`. All rules of the active set are tried against every line, so a
label may appear several times to pull several values off the same line
(e.g. byte count and call count from one `write_bytes` counter line).

Sample lines the indices refer to:

    obdfilter/<ost>/stats
        write_bytes   6 samples [bytes] 0 1048576 99999999
        (token 1 = calls, token 6 = sum of bytes)

    obdfilter/<ost>/job_stats
        - job_id:          testjob.0
          read:            { samples: 1, unit: bytes, min: 4096, max: 4096, sum: 4096 }
        (token 3 = samples, 7 = min, 9 = max, 11 = sum)

    mdt/<mdt>/md_stats
        open          1502 samples [reqs]

Lustre renamed the job_stats `read`/`write` labels to `read_bytes`/`write_bytes`
in later 2.x releases. Both spellings are listed and report under the same
output names so either version is understood.
"""
from __future__ import annotations
from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Optional, Tuple


@dataclass(frozen=True)
class ExtractionRule:
    match_token: str
    field_index: int = 1  # token 0 is the label itself, never a value
    output_name: Optional[str] = None  # defaults to match_token

    def __post_init__(self):
        if not self.field_index:
            object.__setattr__(self, 'field_index', 1)
        if not self.output_name:
            object.__setattr__(self, 'output_name', self.match_token)


RuleSet = Tuple[ExtractionRule, ...]


class TargetKind(str, Enum):
    OST = "ost"  # object storage target
    MDT = "mdt"  # metadata target


R = ExtractionRule

# obdfilter/<ost>/stats and osd-ldiskfs/<ost>/stats
OST_STATS_RULES: RuleSet = (
    R("write_bytes", 6, "write_bytes"),
    R("write_bytes", 1, "write_calls"),  # same line, call count in second column
    R("read_bytes", 6, "read_bytes"),
    R("read_bytes", 1, "read_calls"),
    R("cache_hit"),
    R("cache_miss"),
    R("cache_access"),
)

# obdfilter/<ost>/job_stats
OST_JOBSTATS_RULES: RuleSet = (
    R("read", 3, "jobstats_read_calls"),
    R("read", 7, "jobstats_read_min_size"),
    R("read", 9, "jobstats_read_max_size"),
    R("read", 11, "jobstats_read_bytes"),
    # newer releases
    R("read_bytes", 3, "jobstats_read_calls"),
    R("read_bytes", 7, "jobstats_read_min_size"),
    R("read_bytes", 9, "jobstats_read_max_size"),
    R("read_bytes", 11, "jobstats_read_bytes"),
    R("write", 3, "jobstats_write_calls"),
    R("write", 7, "jobstats_write_min_size"),
    R("write", 9, "jobstats_write_max_size"),
    R("write", 11, "jobstats_write_bytes"),
    # newer releases
    R("write_bytes", 3, "jobstats_write_calls"),
    R("write_bytes", 7, "jobstats_write_min_size"),
    R("write_bytes", 9, "jobstats_write_max_size"),
    R("write_bytes", 11, "jobstats_write_bytes"),
    R("getattr", 3, "jobstats_ost_getattr"),
    R("setattr", 3, "jobstats_ost_setattr"),
    R("punch", 3, "jobstats_punch"),
    R("sync", 3, "jobstats_ost_sync"),
    R("destroy", 3, "jobstats_destroy"),
    R("create", 3, "jobstats_create"),
    R("statfs", 3, "jobstats_ost_statfs"),
    R("get_info", 3, "jobstats_get_info"),
    R("set_info", 3, "jobstats_set_info"),
    R("quotactl", 3, "jobstats_quotactl"),
)

# mdt/<mdt>/md_stats
MDT_STATS_RULES: RuleSet = (
    R("open"),
    R("close"),
    R("mknod"),
    R("link"),
    R("unlink"),
    R("mkdir"),
    R("rmdir"),
    R("rename"),
    R("getattr"),
    R("setattr"),
    R("getxattr"),
    R("setxattr"),
    R("statfs"),
    R("sync"),
    R("samedir_rename"),
    R("crossdir_rename"),
)

# mdt/<mdt>/job_stats
MDT_JOBSTATS_RULES: RuleSet = (
    R("open", 3, "jobstats_open"),
    R("close", 3, "jobstats_close"),
    R("mknod", 3, "jobstats_mknod"),
    R("link", 3, "jobstats_link"),
    R("unlink", 3, "jobstats_unlink"),
    R("mkdir", 3, "jobstats_mkdir"),
    R("rmdir", 3, "jobstats_rmdir"),
    R("rename", 3, "jobstats_rename"),
    R("getattr", 3, "jobstats_getattr"),
    R("setattr", 3, "jobstats_setattr"),
    R("getxattr", 3, "jobstats_getxattr"),
    R("setxattr", 3, "jobstats_setxattr"),
    R("statfs", 3, "jobstats_statfs"),
    R("sync", 3, "jobstats_sync"),
    R("samedir_rename", 3, "jobstats_samedir_rename"),
    R("crossdir_rename", 3, "jobstats_crossdir_rename"),
)

del R

RULE_SETS: Dict[Tuple[TargetKind, bool], RuleSet] = {
    (TargetKind.OST, False): OST_STATS_RULES,
    (TargetKind.OST, True): OST_JOBSTATS_RULES,
    (TargetKind.MDT, False): MDT_STATS_RULES,
    (TargetKind.MDT, True): MDT_JOBSTATS_RULES,
}


def rules_for(kind: TargetKind, per_job: bool) -> RuleSet:
    return RULE_SETS[(TargetKind(kind), bool(per_job))]


def all_output_names() -> List[str]:
    """Every output name any rule can produce, first-seen order, no duplicates."""
    seen: Dict[str, None] = {}
    for rules in RULE_SETS.values():
        for rule in rules:
            seen.setdefault(rule.output_name, None)
    return list(seen)


__all__ = [
    "ExtractionRule",
    "RuleSet",
    "TargetKind",
    "OST_STATS_RULES",
    "OST_JOBSTATS_RULES",
    "MDT_STATS_RULES",
    "MDT_JOBSTATS_RULES",
    "RULE_SETS",
    "rules_for",
    "all_output_names",
]
