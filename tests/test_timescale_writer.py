from lustre_mcp.timescale.writer import TimescaleWriter


def _add(w, target='OST0000', jobid=None, ts_ms=1_700_000_000_000, **fields):
    tags = {'name': target}
    if jobid:
        tags['jobid'] = jobid
    w.add_fields('lustre2', fields or {'cache_hit': 1}, tags, ts_ms)


def test_writer_add_and_flush_single_record():
    w = TimescaleWriter(batch_size=10, dsn=None, host='oss1')
    _add(w, write_bytes=99999999, write_calls=6)
    assert w.total_rows_added == 1 and w.total_flushes == 0 and w.pending == 1
    w.flush()
    assert w.total_flushes == 1 and w.pending == 0
    assert w.last_flush_payload == {'lustre2': 1}
    row = w.last_flush_rows[0]
    assert row['name'] == 'OST0000' and row['jobid'] is None and row['host'] == 'oss1'
    assert row['write_bytes'] == 99999999 and row['write_calls'] == 6
    assert row['ts'].startswith('2023-11-14T22:13:20')


def test_writer_job_tag_becomes_column():
    w = TimescaleWriter(batch_size=10, dsn=None, host='oss1')
    _add(w, jobid='testjob.0', jobstats_punch=1)
    w.flush()
    assert w.last_flush_rows[0]['jobid'] == 'testjob.0'


def test_writer_batch_auto_flush():
    w = TimescaleWriter(batch_size=2, dsn=None, host='oss1')
    _add(w, ts_ms=1_700_000_000_000)
    _add(w, ts_ms=1_700_000_001_000)
    assert w.total_flushes == 0 and w.total_rows_added == 2
    # third row exceeds batch size -> flush of the first two
    _add(w, ts_ms=1_700_000_002_000)
    assert w.total_flushes == 1 and w.total_rows_added == 3 and w.pending == 1


def test_writer_ignores_unknown_measurement():
    w = TimescaleWriter(batch_size=10, dsn=None, host='oss1')
    w.add_fields('cpu', {'usage': 1}, {'name': 'x'})
    assert w.total_rows_added == 0 and w.total_rows_ignored == 1
    w.flush()
    assert w.total_flushes == 0


def test_writer_env_batch_size(monkeypatch):
    monkeypatch.setenv('LUSTRE2_BATCH_SIZE', '7')
    assert TimescaleWriter(dsn=None, host='h').batch_size == 7
    assert TimescaleWriter(batch_size=3, dsn=None, host='h').batch_size == 3


def test_writer_stats_without_connection(monkeypatch):
    monkeypatch.delenv('TIMESCALE_DSN', raising=False)
    w = TimescaleWriter(batch_size=10, host='oss1')
    _add(w)
    w.close()
    st = w.stats()
    assert st['connected'] is False
    assert st['total_rows_flushed'] == 1 and st['pending'] == 0 and st['host'] == 'oss1'
