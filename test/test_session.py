import numpy as np
import pytest

from swathio.config import SessionConfig, load_config
from swathio.records import AbandonedPing, BeamField, Ping, SensorKind
from swathio.registry import SonarFlag, SonarType
from swathio.session import PingState, SessionState


def ping(number=1, device=0):
    p = Ping(device_number=device, time=10.0, ping_number=number, num_beams=3)
    p.set_beams(BeamField.RANGE, [10.0, 10.0, 10.0])
    return p


def sonar_session():
    session = SessionState()
    session.registry.declare(0, 32784, 'Sonar')
    session.registry.set_multibeam(0, SonarType.FIXED_ROLL,
                                   SonarFlag.ROLL_CORRECTED | SonarFlag.PITCH_CORRECTED,
                                   1, 3, 0, -30.0, 30.0)
    return session


def test_ping_without_subrecords_is_complete():
    assembler = SessionState().assembler
    assert assembler.open(ping()) is None
    assert assembler.state == PingState.COMPLETE
    assert assembler.take().ping_number == 1
    assert assembler.state == PingState.IDLE
    assert assembler.take() is None


def test_ping_waits_for_every_subrecord():
    assembler = SessionState().assembler
    assembler.open(ping(), {'SNR', 'RSS'})
    assert assembler.take() is None
    assert not assembler.satisfy('SNR')
    assert assembler.satisfy('RSS')
    assert assembler.take() is not None


def test_new_ping_abandons_waiting_one():
    assembler = SessionState().assembler
    assembler.open(ping(1), {'SNR'})
    abandoned = assembler.open(ping(2), {'SNR'})
    assert isinstance(abandoned, AbandonedPing)
    assert abandoned.ping.ping_number == 1
    assert not abandoned.ping.valid
    assert assembler.pending.ping_number == 2
    assert assembler.abandoned == 1


def test_complete_closes_waiting_ping():
    assembler = SessionState().assembler
    assert not assembler.complete()
    assembler.open(ping(), {'RAWBEAM', 'SS'})
    assert assembler.complete()
    assert assembler.take().ping_number == 1


def test_finalize_resolves_geometry():
    session = sonar_session()
    session.buffers.append(SensorKind.HEADING, 9.0, (180.0,))
    session.buffers.append(SensorKind.SENSOR_DEPTH, 9.0, (1.0,))
    result = session.assembler.finalize(ping())
    assert result.valid
    assert result.beams['depth'][1] == pytest.approx(11.0)
    assert result.snapshot.heading == 180.0


def test_finalize_unknown_device_is_invalid():
    session = sonar_session()
    result = session.assembler.finalize(ping(device=5))
    assert not result.valid
    assert 'Unknown device 5' in result.error


def test_finalize_missing_draft_is_invalid():
    session = sonar_session()
    session.buffers.append(SensorKind.HEADING, 9.0, (180.0,))
    result = session.assembler.finalize(ping())
    assert not result.valid
    assert result.error.startswith('missing navigation/attitude')
    assert not result.has(BeamField.DEPTH)


def test_required_navigation():
    session = SessionState(SessionConfig(require_navigation=True))
    session.registry.declare(0, 32784, 'Sonar')
    session.buffers.append(SensorKind.HEADING, 9.0, (180.0,))
    session.buffers.append(SensorKind.SENSOR_DEPTH, 9.0, (1.0,))
    result = session.assembler.finalize(ping())
    assert not result.valid


def test_first_projection_wins():
    session = SessionState()
    assert session.declare_projection('UTM33N')
    assert not session.declare_projection('UTM01S')
    assert session.projection.projection_id == 'UTM33N'


def test_release_clears_state():
    session = sonar_session()
    session.buffers.append(SensorKind.HEADING, 9.0, (180.0,))
    session.assembler.open(ping(), {'SNR'})
    session.release()
    assert len(session.registry) == 0
    assert len(session.buffers[SensorKind.HEADING]) == 0
    assert session.assembler.pending is None


def test_config_rejects_bad_policy():
    with pytest.raises(ValueError):
        SessionConfig(timestamp_policy='newest')


def test_load_config(tmp_path):
    path = tmp_path / 'params.yaml'
    path.write_text('swathio:\n  max_beams: 256\n  timestamp_policy: overwrite\n')
    config = load_config(str(path))
    assert config.max_beams == 256
    assert config.timestamp_policy == 'overwrite'
    assert config.buffer_capacity == 10000


def test_load_config_rejects_unknown_keys(tmp_path):
    path = tmp_path / 'params.yaml'
    path.write_text('max_beams: 256\nsonar_host: 10.0.0.1\n')
    with pytest.raises(ValueError):
        load_config(str(path))


def test_shipped_parameter_file_matches_defaults():
    import os
    path = os.path.join(os.path.dirname(__file__), '..', 'config', 'swathio_params.yaml')
    assert load_config(path) == SessionConfig()


def test_sessions_do_not_share_buffers():
    a = SessionState()
    b = SessionState()
    a.buffers.append(SensorKind.TIDE, 1.0, (0.5,))
    assert len(b.buffers[SensorKind.TIDE]) == 0
    assert np.isclose(a.buffers.interpolate(SensorKind.TIDE, 1.0)[0], 0.5)
