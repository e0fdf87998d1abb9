import io
import struct

import numpy as np
import pytest

from swathio.config import SessionConfig
from swathio.drivers.simrad import SimradDriver, parse_parameters
from swathio.drivers.simrad_structures import (EM300, ETX, RAWBEAM_BEAM, STX, BathHeader,
                                               Datagram, DatagramLabel, checksum)
from swathio.errors import ChecksumError
from swathio.records import (BeamField, BeamFlag, HeaderRecord, MalformedRecord, ParameterRecord,
                             Ping, ResyncEvent, SensorKind, SensorRecord, SensorSample, Sidescan)
from swathio.timeutil import calendar_to_epoch

T0 = calendar_to_epoch(2020, 6, 15, 12, 0, 0.0)


def make_ping(num_beams=3, ping_number=7):
    ping = Ping(device_number=0, time=T0 + 2.0, ping_number=ping_number, num_beams=num_beams,
                sound_velocity=1500.0, fields={'draft': 2.0, 'depth_resolution': 1,
                                                'distance_resolution': 1, 'heading': 4500})
    ping.set_beams(BeamField.DEPTH, np.linspace(12.0, 13.0, num_beams))
    ping.set_beams(BeamField.ALONG, np.linspace(0.1, -0.1, num_beams))
    ping.set_beams(BeamField.ACROSS, np.linspace(-10.0, 10.0, num_beams))
    ping.set_beams(BeamField.TAKEOFF_ANGLE, np.full(num_beams, 40.0))
    ping.set_beams(BeamField.AZIMUTH_ANGLE, np.full(num_beams, 270.0))
    ping.set_beams(BeamField.TIME_DELAY, np.full(num_beams, 100))
    ping.set_beams(BeamField.INTENSITY, np.full(num_beams, -20))
    ping.set_beams(BeamField.QUALITY, np.full(num_beams, 50))
    return ping


def write(records, wrapper=False, model=None):
    out = io.BytesIO()
    kwargs = {'wrapper': wrapper}
    if model is not None:
        kwargs['model'] = model
    with SimradDriver(out, 'w', **kwargs) as writer:
        for record in records:
            writer.write(record)
    return out.getvalue()


def read(data, config=None):
    driver = SimradDriver(io.BytesIO(data), 'r', config)
    return driver, list(driver)


def attitude_record():
    samples = [SensorSample(T0 + 0.01 * i, (1.0 + i * 0.01, -0.5, 0.12)) for i in range(3)]
    return SensorRecord(SensorKind.ATTITUDE, 0, T0, samples)


def position_record():
    return SensorRecord(SensorKind.NAVIGATION, 0, T0 + 1.0,
                        [SensorSample(T0 + 1.0, (18.25, 59.5))],
                        fields={'input': '$GPGGA,120001.00,5930.0000,N,01815.0000,E,1,08,0.9,,M,,M,,*4F'})


def test_datagram_framing():
    data = write([SensorRecord(SensorKind.TIDE, 0, T0, [SensorSample(T0, (0.25,))])])
    label = DatagramLabel.from_bytes(data[:4])
    assert data[0] == STX
    assert label.type_code == Datagram.TIDE
    assert len(data) % 2 == 0
    assert data[-3] == ETX
    stored = struct.unpack('>H', data[-2:])[0]
    assert stored == checksum(data[1:-3])


def test_round_trip():
    ping = make_ping()
    driver, records = read(write([attitude_record(), position_record(), ping]))

    attitude, position, read_ping = records
    assert attitude.kind == SensorKind.ATTITUDE
    assert [s.time for s in attitude.samples] == pytest.approx([T0, T0 + 0.01, T0 + 0.02])
    assert attitude.samples[1].values == pytest.approx((1.01, -0.5, 0.12))

    assert position.value == pytest.approx((18.25, 59.5))
    assert position.fields['input'].startswith('$GPGGA')

    assert isinstance(read_ping, Ping)
    assert read_ping.valid, read_ping.error
    assert read_ping.ping_number == 7
    assert read_ping.time == pytest.approx(ping.time)
    assert read_ping.sound_velocity == pytest.approx(1500.0)
    for name in ('depth', 'along', 'across', 'takeoff', 'azimuth'):
        assert read_ping.beams[name] == pytest.approx(ping.beams[name])
    assert list(read_ping.beams['intensity']) == [-20, -20, -20]
    assert read_ping.snapshot.heading == pytest.approx(45.0)
    assert read_ping.snapshot.lat == pytest.approx(59.5)

    sonar = driver.session.registry.lookup(0)
    assert sonar.name == 'EM3000'
    assert sonar.is_extended


def test_zero_depth_beams_are_null():
    ping = make_ping()
    flags = np.zeros(3, dtype=int)
    flags[1] = BeamFlag.NULL
    ping.set_beams(BeamField.FLAGS, flags)
    _, records = read(write([ping]))
    assert list(records[0].beams['flags']) == [BeamFlag.NONE, BeamFlag.NULL, BeamFlag.NONE]


def test_unsigned_depths_on_em300():
    ping = make_ping()
    ping.beams['depth'] = np.array([400.0, 401.0, 402.0])
    _, records = read(write([ping], model=EM300))
    assert records[0].beams['depth'] == pytest.approx([400.0, 401.0, 402.0])
    assert records[0].fields['model'] == EM300


def test_wrapper_is_detected():
    data = write([attitude_record(), make_ping()], wrapper=True)
    assert struct.unpack('>I', data[:4])[0] == len(write([attitude_record()]))
    driver, records = read(data)
    assert driver.has_wrapper
    assert not [r for r in records if isinstance(r, ResyncEvent)]
    assert isinstance(records[-1], Ping)


def test_bad_checksum_is_recovered():
    first = write([SensorRecord(SensorKind.TIDE, 0, T0, [SensorSample(T0, (0.25,))])])
    second = write([SensorRecord(SensorKind.TIDE, 0, T0 + 1.0, [SensorSample(T0 + 1.0, (0.5,))])])
    corrupt = bytearray(first)
    corrupt[24] ^= 0x01   # Tide value

    driver, records = read(bytes(corrupt) + second)

    assert isinstance(records[0], MalformedRecord)
    assert records[0].tag == 'TIDE'
    assert 'Checksum' in records[0].message
    assert isinstance(records[1], ResyncEvent)
    assert records[1].skipped == len(first) - 1
    assert isinstance(records[2], SensorRecord)
    assert records[2].value == pytest.approx((0.5,))


def test_truncated_datagram_at_end():
    data = write([make_ping()])
    _, records = read(data[:-5])
    assert isinstance(records[0], MalformedRecord)
    assert not [r for r in records if isinstance(r, Ping)]


def test_beam_count_above_maximum_is_malformed():
    tide = SensorRecord(SensorKind.TIDE, 0, T0 + 5.0, [SensorSample(T0 + 5.0, (0.1,))])
    data = write([make_ping(num_beams=5), tide])
    _, records = read(data, SessionConfig(max_beams=4))
    assert isinstance(records[0], MalformedRecord)
    assert 'Beam count' in records[0].message
    assert isinstance(records[1], SensorRecord)
    assert len(records) == 2


def test_beam_numbers_must_increase():
    ping = make_ping()
    ping.fields['beam_number'] = np.array([1, 3, 2])
    _, records = read(write([ping]))
    assert isinstance(records[0], MalformedRecord)


def test_rawbeam_and_seabed_image_merge_into_ping():
    ping = make_ping()
    beams = np.zeros(3, dtype=RAWBEAM_BEAM)
    beams['point_angle'] = [-4500, 0, 4500]
    beams['beam_number'] = [1, 2, 3]
    ping.fields['rawbeam'] = {'beams': beams, 'ssv': 15000}
    ping.sidescan.append(Sidescan('SS', 0, 7, {
        'beam_index': np.array([0, 1, 2]), 'sort_direction': np.array([-1, 1, 1]),
        'beam_samples': np.array([2, 1, 2]), 'center_sample': np.array([1, 0, 1]),
        'samples': np.array([-10, -20, -30, -40, -50])}, {}))

    data = write([ping])
    assert data.count(bytes([STX, Datagram.RAWBEAM & 0xFF])) >= 1
    _, records = read(data)

    assert len(records) == 1
    read_ping = records[0]
    assert list(read_ping.fields['rawbeam']['beams']['point_angle']) == [-4500, 0, 4500]
    assert len(read_ping.sidescan) == 1
    assert list(read_ping.sidescan[0].arrays['samples']) == [-10, -20, -30, -40, -50]


def test_next_depth_datagram_completes_previous_ping():
    _, records = read(write([make_ping(ping_number=1), make_ping(ping_number=2)]))
    assert [r.ping_number for r in records] == [1, 2]
    assert all(isinstance(r, Ping) for r in records)


def test_unmatched_rawbeam_is_a_parameter_record():
    ping = make_ping(ping_number=1)
    beams = np.zeros(1, dtype=RAWBEAM_BEAM)
    rawbeam = ParameterRecord('RAWBEAM', T0 + 3.0, 0, {'count': 99, 'beams': beams})
    _, records = read(write([ping, rawbeam]))
    assert isinstance(records[0], ParameterRecord)
    assert records[0].fields['count'] == 99
    assert isinstance(records[1], Ping)


def test_installation_parameters():
    start = HeaderRecord('START', {'time': T0, 'parameters': {'WLZ': '0.5', 'SMH': '1'}})
    data = write([start])
    _, records = read(data)
    header = records[0]
    assert header.tag == 'START'
    assert header.fields['parameters'] == {'WLZ': '0.5', 'SMH': '1'}
    assert header.fields['time'] == pytest.approx(T0)


def test_parse_parameters():
    assert parse_parameters('WLZ=0.5,SMH=1,,junk,') == {'WLZ': '0.5', 'SMH': '1'}


def test_sound_velocity_profile():
    svp = ParameterRecord('SVP', T0, 0, {'depth': np.array([0.0, 10.0, 100.0]),
                                         'velocity': np.array([1480.0, 1485.5, 1490.2])})
    _, records = read(write([svp]))
    assert records[0].tag == 'SVP'
    assert records[0].fields['depth'] == pytest.approx([0.0, 10.0, 100.0])
    assert records[0].fields['velocity'] == pytest.approx([1480.0, 1485.5, 1490.2])


def test_checksum_error_type():
    error = ChecksumError(1, 2, 'BATH')
    assert error.tag == 'BATH'
    assert isinstance(error, ValueError)


def test_bath_header_size():
    assert len(BathHeader(0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0).to_bytes()) == BathHeader.SIZE
    with pytest.raises(ValueError):
        BathHeader.from_bytes(b'\x00' * 10)


def test_wrapper_is_detected_after_leading_garbage():
    data = b'\x00\x01\x02' + write([attitude_record(), position_record(), make_ping()], wrapper=True)
    driver, records = read(data)

    resyncs = [r for r in records if isinstance(r, ResyncEvent)]
    assert len(resyncs) == 1
    assert resyncs[0].skipped == 7
    assert driver.has_wrapper
    assert isinstance(records[-1], Ping)


def test_unwrapped_stream_after_leading_garbage():
    data = b'\x00\x01\x02' + write([attitude_record(), position_record(), make_ping()])
    driver, records = read(data)

    resyncs = [r for r in records if isinstance(r, ResyncEvent)]
    assert [r.skipped for r in resyncs] == [3]
    assert driver.has_wrapper is False
    assert isinstance(records[-1], Ping)


def zero_model_svp():
    svp = ParameterRecord('SVP', T0, 0, {'depth': np.array([0.0, 10.0]),
                                         'velocity': np.array([1480.0, 1485.0])})
    data = bytearray(write([svp]))
    data[2:4] = b'\x00\x00'
    data[-2:] = struct.pack('>H', checksum(bytes(data[1:-3])))
    return bytes(data)


@pytest.mark.parametrize('model', [3000, 3002, 3007])
def test_zero_model_svp_after_em3000_family(model):
    data = write([attitude_record()], model=model) + zero_model_svp()
    driver, records = read(data)

    assert not [r for r in records if isinstance(r, ResyncEvent)]
    assert records[-1].tag == 'SVP'
    assert records[-1].fields['velocity'] == pytest.approx([1480.0, 1485.0])
    assert driver.model == model


def test_zero_model_svp_needs_a_known_model():
    driver, records = read(zero_model_svp())
    assert not [r for r in records if isinstance(r, ParameterRecord)]
    assert driver.model is None
