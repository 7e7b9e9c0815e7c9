"""Timescale bootstrap: create the lustre2 table, hypertable, views and indexes.

Safe to run repeatedly; statements use IF NOT EXISTS / OR REPLACE and a
failing statement is rolled back without stopping the rest.
"""
from __future__ import annotations
import os, psycopg
from .schema_spec import generate_all_ddls
from ..debug_util import dbg

def bootstrap_timescale(dsn: str | None = None, create_hypertables: bool = True) -> dict:
    dsn = dsn or os.environ.get('TIMESCALE_DSN')
    if not dsn:
        return {'enabled': False, 'reason': 'no_dsn'}
    ddls = generate_all_ddls()
    created: list[str] = []
    failed: list[str] = []
    with psycopg.connect(dsn) as conn:
        with conn.cursor() as cur:
            try:
                cur.execute("CREATE EXTENSION IF NOT EXISTS timescaledb")
                conn.commit()
            except psycopg.Error as e:
                dbg(f'timescale_extension_fail err={e.__class__.__name__}:{e}')
                conn.rollback()
            for stmt in ddls['tables']:
                tbl = stmt.split()[5]  # CREATE TABLE IF NOT EXISTS <name>
                try:
                    cur.execute(stmt)
                    conn.commit()
                    created.append(tbl)
                except psycopg.Error as e:
                    dbg(f'timescale_table_fail table={tbl} err={e.__class__.__name__}:{e}')
                    failed.append(tbl)
                    conn.rollback()
                if create_hypertables:
                    try:
                        cur.execute(f"SELECT create_hypertable('{tbl}','ts', if_not_exists => TRUE)")
                        conn.commit()
                    except psycopg.Error as e:
                        dbg(f'timescale_hypertable_fail table={tbl} err={e.__class__.__name__}:{e}')
                        conn.rollback()
            for stmt in ddls['views'] + ddls.get('indexes', []):
                try:
                    cur.execute(stmt)
                    conn.commit()
                except psycopg.Error as e:
                    dbg(f'timescale_ddl_fail stmt={stmt[:80]!r} err={e.__class__.__name__}:{e}')
                    conn.rollback()
    return {'enabled': True, 'created': created, 'failed': failed}

__all__ = ["bootstrap_timescale"]
