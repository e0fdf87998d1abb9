import io

import pytest

from swathio.timeutil import calendar_to_epoch

MIDNIGHT = calendar_to_epoch(2020, 6, 15)

HSX_HEADER = [
    'FTP NEW 2',
    'HSX 9',
    'VER 14.0.0.0',
    'TND 12:00:00 06/15/2020',
    'DEV 0 32784 "SeaBeam 1050"',
    'DV2 0 1 0 1',
    'MBI 0 1 3 0 61 0 -60.000 2.000',
    'DEV 1 16 "Gyro"',
    'DV2 1 20 0 1',
    'EOH',
]


def hsx_bytes(lines):
    return ('\r\n'.join(lines) + '\r\n').encode('latin-1')


def ranges_line(count=61, value=100.0):
    return ' '.join('%.2f' % value for _ in range(count))


@pytest.fixture
def survey_lines():
    """Header, heading/draft/attitude samples and one 61 beam range-only ping."""
    return HSX_HEADER + [
        'GYR 1 100.000 45.00',
        'DFT 0 100.000 1.50',
        'HCP 1 100.000 0.10 0.00 0.00',
        'RMB 0 101.000 1 3 1 61 1500.00 1',
        ranges_line(),
    ]


@pytest.fixture
def survey_stream(survey_lines):
    return io.BytesIO(hsx_bytes(survey_lines))
