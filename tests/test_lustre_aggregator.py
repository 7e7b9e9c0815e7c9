import pytest
from lustre_mcp.errors import NumericConversionError
from lustre_mcp.ingestion.aggregator import StatAggregator, SourceKey, parse_uint64, UINT64_MAX


def _by_tags(records):
    return {(r.tags['name'], r.tags.get('jobid')): r for r in records}


def test_parse_uint64_bounds():
    assert parse_uint64('0') == 0
    assert parse_uint64(str(UINT64_MAX)) == UINT64_MAX
    for bad in ['', '-1', '+5', '1.5', '12a', ' 7', '1_000', str(UINT64_MAX + 1)]:
        with pytest.raises(NumericConversionError):
            parse_uint64(bad)


def test_plain_counters_single_record_name_only():
    agg = StatAggregator()
    agg.begin_file('OST0000')
    agg.ingest('OST0000', False, {'write_bytes': '99999999', 'write_calls': '6'})
    agg.ingest('OST0000', False, {'cache_hit': '12'})
    records = agg.drain(ts_ms=1000)
    assert len(records) == 1
    rec = records[0]
    assert rec.measurement == 'lustre2'
    assert rec.tags == {'name': 'OST0000'}
    assert rec.fields == {'write_bytes': 99999999, 'write_calls': 6, 'cache_hit': 12}
    assert rec.ts_ms == 1000


def test_empty_pairs_are_a_noop():
    agg = StatAggregator()
    agg.ingest('OST0000', False, {})
    assert agg.bucket_count == 0
    assert agg.drain() == []


def test_last_write_wins_within_scan():
    agg = StatAggregator()
    agg.ingest('MDT0000', False, {'open': '1'})
    agg.ingest('MDT0000', False, {'open': '5'})
    assert agg.drain()[0].fields == {'open': 5}


def test_job_blocks_get_own_records():
    agg = StatAggregator()
    agg.begin_file('OST0000')
    agg.ingest('OST0000', False, {'read_bytes': '10'})
    agg.begin_file('OST0000')
    agg.ingest('OST0000', True, {'jobstats_read_bytes': '1'})  # before any job id
    agg.ingest('OST0000', True, {'jobid': 'job.a'})
    agg.ingest('OST0000', True, {'jobstats_read_bytes': '4096'})
    agg.ingest('OST0000', True, {'jobid': 'job.b'})
    agg.ingest('OST0000', True, {'jobstats_write_bytes': '8192'})
    recs = _by_tags(agg.drain())
    assert set(recs) == {('OST0000', None), ('OST0000', 'job.a'), ('OST0000', 'job.b')}
    assert recs[('OST0000', None)].fields == {'read_bytes': 10, 'jobstats_read_bytes': 1}
    assert recs[('OST0000', 'job.a')].fields == {'jobstats_read_bytes': 4096}
    assert recs[('OST0000', 'job.a')].tags == {'name': 'OST0000', 'jobid': 'job.a'}
    assert recs[('OST0000', 'job.b')].fields == {'jobstats_write_bytes': 8192}


def test_new_file_resets_current_job():
    agg = StatAggregator()
    agg.begin_file('MDT0000')
    agg.ingest('MDT0000', True, {'jobid': 'j1'})
    assert agg.current_job('MDT0000') == 'j1'
    agg.begin_file('MDT0000')
    assert agg.current_job('MDT0000') == ''
    agg.ingest('MDT0000', True, {'jobstats_open': '3'})
    recs = _by_tags(agg.drain(ts_ms=1))
    assert recs[('MDT0000', None)].fields == {'jobstats_open': 3}
    # j1 received no counters
    assert ('MDT0000', 'j1') not in recs


def test_emit_empty_keeps_counterless_job_buckets():
    agg = StatAggregator(emit_empty=True)
    agg.ingest('MDT0000', True, {'jobid': 'idle.job'})
    recs = agg.drain()
    assert [(r.tags, r.fields) for r in recs] == [({'name': 'MDT0000', 'jobid': 'idle.job'}, {})]


def test_plain_file_ignores_job_context():
    agg = StatAggregator()
    agg.ingest('OST0000', True, {'jobid': 'j1'})
    agg.ingest('OST0000', False, {'cache_miss': '2'})
    recs = _by_tags(agg.drain())
    assert recs[('OST0000', None)].fields == {'cache_miss': 2}


def test_targets_are_independent():
    agg = StatAggregator()
    agg.ingest('OST0000', True, {'jobid': 'j1'})
    agg.ingest('OST0001', True, {'jobstats_punch': '1'})
    assert agg.current_job('OST0001') == ''
    assert agg.targets() == ['OST0000', 'OST0001']
    assert SourceKey('OST0001') == SourceKey('OST0001', '')


def test_non_numeric_value_raises():
    agg = StatAggregator()
    with pytest.raises(NumericConversionError):
        agg.ingest('OST0000', False, {'cache_hit': 'lots'})


def test_drain_resets_state():
    agg = StatAggregator()
    agg.ingest('OST0000', True, {'jobid': 'j1'})
    agg.ingest('OST0000', True, {'jobstats_punch': '1'})
    assert len(agg.drain()) == 1
    assert agg.bucket_count == 0
    assert agg.current_job('OST0000') == ''
    assert agg.drain() == []


def test_begin_file_creates_jobless_bucket():
    agg = StatAggregator(emit_empty=True)
    agg.begin_file('OST0000')
    agg.ingest('OST0000', True, {'jobid': 'j1'})
    agg.ingest('OST0000', True, {'jobstats_punch': '1'})
    agg.begin_file('MDT0000')
    assert agg.bucket_count == 3
    recs = agg.drain(ts_ms=1)
    assert [(r.tags, r.fields) for r in recs] == [
        ({'name': 'OST0000'}, {}),
        ({'name': 'OST0000', 'jobid': 'j1'}, {'jobstats_punch': 1}),
        ({'name': 'MDT0000'}, {}),
    ]


def test_jobless_bucket_dropped_while_empty_by_default():
    agg = StatAggregator()
    agg.begin_file('OST0000')
    assert agg.bucket_count == 1
    assert agg.drain() == []
