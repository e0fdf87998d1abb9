import io

import pytest

from swathio import LogReader, open_log
from swathio.drivers import HysweepDriver, SimradDriver, get_driver, guess_format, open_driver
from swathio.records import MalformedRecord, Ping

from conftest import HSX_HEADER, hsx_bytes, ranges_line


def test_format_lookup():
    assert get_driver('HYSWEEP') is HysweepDriver
    assert guess_format('/data/line_001.HSX') == 'hysweep'
    assert guess_format('0001_20040101_000000.all') == 'simrad'
    with pytest.raises(ValueError):
        guess_format('notes.txt')
    with pytest.raises(ValueError):
        get_driver('xtf')


def test_open_driver_passes_options():
    driver = open_driver('simrad', io.BytesIO(), 'w', wrapper=False)
    assert isinstance(driver, SimradDriver)
    assert driver.has_wrapper is False


def test_pings_skip_disabled_devices_and_invalid_pings():
    lines = HSX_HEADER + [
        'DEV 2 32784 "Spare sonar"',
        'DV2 2 1 0 0',
        'GYR 1 100.000 45.00',
        'DFT 0 100.000 1.50',
        'RMB 2 100.500 1 3 1 61 1500.00 1',
        ranges_line(),
        'RMB 0 101.000 1 3 1 61 1500.00 2',
        ranges_line(),
        'RMB 0 101.500 1 3 1 61 1500.00 3',
        ranges_line(5),
    ]
    reader = LogReader(HysweepDriver(io.BytesIO(hsx_bytes(lines))))
    pings = list(reader.pings())

    assert [p.ping_number for p in pings] == [2]
    assert reader.counts['ping'] == 2
    assert reader.counts['malformed'] == 1
    assert isinstance(reader.diagnostics[0], MalformedRecord)


def test_records_hide_diagnostics():
    lines = HSX_HEADER + ['this is not a record']
    reader = LogReader(HysweepDriver(io.BytesIO(hsx_bytes(lines))))
    records = list(reader.records())
    assert not any(isinstance(r, MalformedRecord) for r in records)
    assert len(reader.diagnostics) == 1


def test_open_log(tmp_path, survey_lines):
    path = tmp_path / 'survey.hsx'
    path.write_bytes(hsx_bytes(survey_lines))
    with open_log(str(path)) as reader:
        pings = list(reader.pings())
    assert len(pings) == 1
    assert isinstance(pings[0], Ping)
    assert 'hysweep' in reader.summary()
