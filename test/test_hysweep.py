import io

import numpy as np
import pytest

from swathio.config import SessionConfig
from swathio.drivers.hysweep import HysweepDriver, ping_matches
from swathio.records import (BEAM_FIELDS, AbandonedPing, BeamField, CommentRecord, DeviceRecord,
                             HeaderRecord, MalformedRecord, Ping, SensorKind, SensorRecord,
                             SensorSample, SonarSettings)
from swathio.timeutil import calendar_to_epoch

from conftest import HSX_HEADER, MIDNIGHT, hsx_bytes, ranges_line

NOON = MIDNIGHT + 12 * 3600.0


def read_all(data, config=None):
    return list(HysweepDriver(io.BytesIO(data), 'r', config))


def pings_of(records):
    return [r for r in records if isinstance(r, Ping)]


def test_header_records_populate_registry(survey_stream):
    driver = HysweepDriver(survey_stream)
    records = list(driver)

    assert isinstance(records[0], HeaderRecord)
    assert records[0].fields['text'] == 'NEW 2'
    tnd = [r for r in records if isinstance(r, HeaderRecord) and r.tag == 'TND'][0]
    assert tnd.fields['time'] == NOON
    assert sum(isinstance(r, DeviceRecord) for r in records) == 5

    sonar = driver.session.registry.lookup(0)
    assert sonar.name == 'SeaBeam 1050'
    assert sonar.is_extended
    assert sonar.first_beam_angle == -60.0
    assert driver.session.header_complete


def test_ping_is_resolved(survey_stream):
    ping = pings_of(list(HysweepDriver(survey_stream)))[0]

    assert ping.valid, ping.error
    assert ping.time == MIDNIGHT + 101.0
    assert ping.num_beams == 61
    assert ping.snapshot.heading == 45.0
    assert ping.beams['depth'][0] == pytest.approx(50.0 + 1.5 - 0.1)
    assert ping.beams['across'][0] == pytest.approx(86.6025, abs=1e-3)


def test_attitude_roll_sign_is_flipped():
    lines = HSX_HEADER + ['HCP 1 100.000 0.20 1.50 -0.50']
    sensor = [r for r in read_all(hsx_bytes(lines)) if isinstance(r, SensorRecord)][0]
    assert sensor.kind == SensorKind.ATTITUDE
    assert sensor.value == pytest.approx((-1.5, -0.5, 0.2))


def test_ping_without_heading_is_invalid():
    lines = HSX_HEADER + ['DFT 0 100.000 1.50', 'RMB 0 101.000 1 3 1 61 1500.00 1', ranges_line()]
    ping = pings_of(read_all(hsx_bytes(lines)))[0]
    assert not ping.valid
    assert ping.error.startswith('missing navigation/attitude')


def test_beam_count_above_maximum_is_malformed(survey_lines):
    survey_lines += ['TID 1 102.000 0.35']
    records = read_all(hsx_bytes(survey_lines), SessionConfig(max_beams=10))

    malformed = [r for r in records if isinstance(r, MalformedRecord)]
    assert len(malformed) == 1
    assert malformed[0].tag == 'RMB'
    assert not pings_of(records)
    # The array lines were consumed and decoding carried on
    assert isinstance(records[-1], SensorRecord)
    assert records[-1].kind == SensorKind.TIDE


def test_short_array_line_is_malformed(survey_lines):
    survey_lines[-1] = ranges_line(60)
    records = read_all(hsx_bytes(survey_lines))
    assert isinstance(records[-1], MalformedRecord)


def test_rmb_for_non_multibeam_device_is_malformed():
    lines = HSX_HEADER + ['RMB 1 101.000 1 3 1 61 1500.00 1', ranges_line()]
    records = read_all(hsx_bytes(lines))
    assert isinstance(records[-1], MalformedRecord)
    assert 'not multibeam' in records[-1].message


def test_unknown_tag_is_skipped_and_garbage_is_malformed():
    lines = HSX_HEADER + ['XYZ 1 2 3', 'this is not a record', 'TID 1 102.000 0.35']
    records = read_all(hsx_bytes(lines))
    assert isinstance(records[-2], MalformedRecord)
    assert isinstance(records[-1], SensorRecord)


def test_settings_and_sidescan_attach_to_their_ping():
    lines = HSX_HEADER + [
        'GYR 1 100.000 45.00',
        'DFT 0 100.000 1.50',
        'SNR 0 100.900 1 7 3 1.0 2.0 3.0',
        'RSS 0 100.900 0 3 2 1500.00 1 12.00 10000.000000',
        '1 2 3',
        '4 5',
        'RMB 0 101.000 1 3 1 61 1500.00 1',
        ranges_line(),
    ]
    ping = pings_of(read_all(hsx_bytes(lines)))[0]
    assert ping.settings.sonar_id == 7
    assert ping.settings.values == [1.0, 2.0, 3.0]
    assert len(ping.sidescan) == 1
    assert list(ping.sidescan[0].arrays['port']) == [1, 2, 3]
    assert list(ping.sidescan[0].arrays['starboard']) == [4, 5]


def test_ping_waits_for_late_settings():
    lines = HSX_HEADER + [
        'GYR 1 100.000 45.00',
        'DFT 0 100.000 1.50',
        'SNR 0 100.900 1 7 1 1.0',
        'RMB 0 101.000 1 3 1 61 1500.00 1',
        ranges_line(),
        'RMB 0 102.000 1 3 1 61 1500.00 2',
        ranges_line(),
        'SNR 0 102.100 2 7 1 5.0',
    ]
    pings = pings_of(read_all(hsx_bytes(lines)))
    assert [p.ping_number for p in pings] == [1, 2]
    assert pings[1].settings.values == [5.0]


def test_incomplete_ping_is_abandoned():
    lines = HSX_HEADER + [
        'SNR 0 100.900 1 7 1 1.0',
        'RMB 0 101.000 1 3 1 61 1500.00 1',
        ranges_line(),
        'RMB 0 102.000 1 3 1 61 1500.00 2',
        ranges_line(),
        'RMB 0 103.000 1 3 1 61 1500.00 3',
        ranges_line(),
    ]
    records = read_all(hsx_bytes(lines))
    abandoned = [r for r in records if isinstance(r, AbandonedPing)]

    assert [p.ping_number for p in pings_of(records)] == [1]
    assert [a.ping.ping_number for a in abandoned] == [2, 3]
    assert abandoned[-1].reason == 'end of stream'
    assert not abandoned[0].ping.valid


def test_ping_number_matching():
    assert not ping_matches(0, 17)
    assert ping_matches(17, 17)
    assert ping_matches(170, 17)
    assert not ping_matches(16, 17)


def test_settings_after_first_ping_are_kept():
    lines = HSX_HEADER + [
        'GYR 1 100.000 45.00',
        'DFT 0 100.000 1.50',
        'RMB 0 101.000 1 3 1 61 1500.00 1',
        ranges_line(),
        'SNR 0 101.100 1 7 1 2.5',
        'RMB 0 102.000 1 3 1 61 1500.00 2',
        ranges_line(),
        'SNR 0 102.100 2 7 1 3.5',
    ]
    records = read_all(hsx_bytes(lines))
    pings = pings_of(records)

    assert [p.ping_number for p in pings] == [1, 2]
    assert pings[0].settings.values == [2.5]
    assert pings[1].settings.values == [3.5]
    assert not [r for r in records if isinstance(r, AbandonedPing)]


def test_log_without_settings_or_sidescan_keeps_every_ping():
    lines = HSX_HEADER + [
        'GYR 1 100.000 45.00',
        'DFT 0 100.000 1.50',
        'RMB 0 101.000 1 3 1 61 1500.00 1',
        ranges_line(),
        'RMB 0 102.000 1 3 1 61 1500.00 2',
        ranges_line(),
    ]
    records = read_all(hsx_bytes(lines))
    assert [p.ping_number for p in pings_of(records)] == [1, 2]
    assert all(p.valid for p in pings_of(records))
    assert not [r for r in records if isinstance(r, AbandonedPing)]


def test_unusable_projection_keeps_default(survey_lines):
    survey_lines.insert(1, 'PRJ not_a_real_projection')
    driver = HysweepDriver(io.BytesIO(hsx_bytes(survey_lines)))
    records = list(driver)

    prj = [r for r in records if isinstance(r, HeaderRecord) and r.tag == 'PRJ'][0]
    assert prj.fields['text'] == 'not_a_real_projection'
    assert not [r for r in records if isinstance(r, MalformedRecord)]
    assert driver.session.projection.projection_id == 'UTM01N'
    assert pings_of(records)[0].valid


FIELD_MASKS = [
    BeamField.NONE,
    BeamField.RANGE,
    BeamField.MULTI_RANGE,
    BeamField.EASTING_NORTHING,
    BeamField.RANGE | BeamField.BATHYMETRY,
    BeamField.RANGE | BeamField.ROLL_PITCH,
    BeamField.SPHERICAL | BeamField.TIME_DELAY,
    BeamField.INTENSITY | BeamField.QUALITY | BeamField.FLAGS | BeamField.UNCERTAINTY,
    BeamField.EASTING_NORTHING | BeamField.UNCERTAINTY,
    sum(bit for bit, names, dtype in BEAM_FIELDS),
]


@pytest.mark.parametrize('mask', FIELD_MASKS, ids=lambda m: f"{int(m):#06x}")
def test_array_line_count_follows_mask(mask):
    data_lines = ['1 2 3' for bit, names, dtype in BEAM_FIELDS if mask & bit for _ in names]
    lines = HSX_HEADER + ['RMB 0 101.000 1 3 %x 3 1500.00 1' % int(mask)] + data_lines + \
        ['TID 1 102.000 0.35']
    driver = HysweepDriver(io.BytesIO(hsx_bytes(lines)))
    records = list(driver)

    assert len(records) == len(HSX_HEADER) + 2
    assert isinstance(records[-2], SensorRecord)
    assert records[-2].value == pytest.approx((0.35,))
    ping = records[-1]
    assert isinstance(ping, Ping)
    assert ping.available == mask
    assert driver.lines.line_number == len(lines)


def test_array_lines_cut_off_by_next_record():
    lines = HSX_HEADER + [
        'RMB 0 101.000 1 3 801 3 1500.00 1',
        '10.0 11.0 12.0',
        'TID 1 102.000 0.35',
    ]
    records = read_all(hsx_bytes(lines))

    assert isinstance(records[-2], MalformedRecord)
    assert 'interrupted by TID' in records[-2].message
    assert isinstance(records[-1], SensorRecord)
    assert not pings_of(records)


def make_ping(num_beams=5):
    ping = Ping(device_number=0, time=NOON + 1.5, ping_number=12, num_beams=num_beams,
                sound_velocity=1490.0, sonar_type=1, sonar_flags=3)
    ping.set_beams(BeamField.RANGE, np.linspace(10.0, 14.0, num_beams))
    ping.set_beams(BeamField.INTENSITY, np.arange(num_beams) * 10)
    ping.set_beams(BeamField.QUALITY, np.full(num_beams, 3))
    return ping


def write_survey(records):
    out = io.BytesIO()
    writer = HysweepDriver(out, 'w')
    writer.write(HeaderRecord('FTP', {'text': 'NEW 2'}))
    writer.write_survey_date(NOON)
    writer.write(DeviceRecord('DEV', 0, {'capability': 32784, 'name': 'SeaBeam 1050'}))
    writer.write(DeviceRecord('DV2', 0, {'capability': 1, 'towfish': 0, 'enabled': 1}))
    writer.write(DeviceRecord('MBI', 0, {'sonar_type': 1, 'sonar_flags': 3,
                                         'beam_data_available': 1, 'num_beams_1': 5,
                                         'num_beams_2': 0, 'first_beam_angle': -40.0,
                                         'angle_increment': 20.0}))
    writer.write(HeaderRecord('EOH', {}))
    for record in records:
        writer.write(record)
    writer.close()
    return out.getvalue()


def test_array_lines_follow_the_field_mask():
    data = write_survey([make_ping()]).decode('latin-1').split('\r\n')
    rmb = [i for i, line in enumerate(data) if line.startswith('RMB')][0]
    # RANGE, INTENSITY and QUALITY set: three array lines, then end of file
    assert data[rmb + 4:] == ['']
    assert data[rmb + 1].split() == ['10.00', '11.00', '12.00', '13.00', '14.00']
    assert data[rmb + 2].split() == ['0', '10', '20', '30', '40']


def test_easting_northing_field_has_two_lines():
    ping = make_ping(3)
    ping.set_beams(BeamField.EASTING_NORTHING, [1.0, 2.0, 3.0], [4.0, 5.0, 6.0])
    data = write_survey([ping]).decode('latin-1').split('\r\n')
    rmb = [i for i, line in enumerate(data) if line.startswith('RMB')][0]
    assert data[rmb + 6:] == ['']

    read = pings_of(read_all(write_survey([ping])))[0]
    assert list(read.beams['northing']) == [4.0, 5.0, 6.0]


def test_round_trip():
    settings = SonarSettings(0, NOON + 1.4, 12, 3, [1.0, 250.0])
    ping = make_ping()
    ping.settings = settings
    heading = SensorRecord(SensorKind.HEADING, 0, NOON + 1.0, [SensorSample(NOON + 1.0, (10.0,))])
    draft = SensorRecord(SensorKind.SENSOR_DEPTH, 0, NOON + 1.0, [SensorSample(NOON + 1.0, (0.75,))])

    records = read_all(write_survey([heading, draft, CommentRecord('line 1, north'), ping]))

    comment = [r for r in records if isinstance(r, CommentRecord)][0]
    assert comment.text == 'line 1, north'
    read = pings_of(records)[0]
    assert read.valid, read.error
    assert read.time == pytest.approx(ping.time)
    assert read.ping_number == 12
    assert read.sound_velocity == 1490.0
    assert list(read.beams['range']) == pytest.approx(list(ping.beams['range']))
    assert list(read.beams['intensity']) == list(ping.beams['intensity'])
    assert read.settings.values == [1.0, 250.0]
    assert read.snapshot.draft == 0.75
    # Nadir beam of five at -40 + 2 * 20 degrees
    assert read.beams['depth'][2] == pytest.approx(12.0 + 0.75)


def test_comment_commas_are_substituted_on_the_wire():
    data = write_survey([CommentRecord('a,b')])
    assert b'COM a^b\r\n' in data


def test_survey_date_sets_epoch():
    out = io.BytesIO()
    writer = HysweepDriver(out, 'w')
    writer.write_survey_date(calendar_to_epoch(2021, 1, 2, 3, 4, 5.0))
    assert out.getvalue() == b'TND 03:04:05 01/02/2021\r\n'
    assert writer.session.epoch == calendar_to_epoch(2021, 1, 2)


def test_ping_over_maximum_cannot_be_written():
    out = io.BytesIO()
    writer = HysweepDriver(out, 'w', SessionConfig(max_beams=3))
    with pytest.raises(ValueError):
        writer.write(make_ping(5))
