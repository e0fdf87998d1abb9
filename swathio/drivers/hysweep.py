#!/usr/bin/env python3
"""
HYSWEEP HSX driver.

HSX files are CR/LF terminated ASCII. Every line starts with a three letter
tag followed by space separated fields; quoted strings are used for names.
The header (FTP ... EOH) declares the survey date, devices, offsets and
projection. After it come sensor lines (POS, GYR, HCP, ...) and pings: an
RMB line followed by one numeric array line per beam field announced in its
fields-available mask, with SNR settings and RSS/MSS sidescan records that
belong to the same ping number.

Record times on the wire are seconds after midnight of the TND survey date.
"""

from typing import Dict, List, Optional, Set, Tuple

import numpy as np

from ..buffers import KNOTS_TO_MPS
from ..errors import Malformed, UnknownDevice
from ..records import (BEAM_FIELDS, DIAGNOSTIC_TYPES, CommentRecord, DeviceRecord,
                       HeaderRecord, ParameterRecord, Ping, SensorKind, SensorRecord,
                       SensorSample, Sidescan, SonarSettings)
from ..registry import Offset
from ..session import PingState
from ..timeutil import calendar_to_epoch, epoch_to_calendar
from ..tokenizer import LineTokenizer, split_fields
from .base import DriverCapabilities, FormatDriver

MAX_BEAMS = 512

# Field layouts: (name, kind). Kind 'd' int, 'x' hex int, 's' quoted string,
# 'g' float written with %g, 'f1'/'f2'/'f3'/'f6' float with that many decimals.
LAYOUTS: Dict[str, List[Tuple[str, str]]] = {
    'HSX': [('record', 'd')],
    'INF': [('surveyor', 's'), ('boat', 's'), ('project', 's'), ('area', 's'),
            ('tide_correction', 'f2'), ('draft_correction', 'f2'), ('sound_velocity', 'f2')],
    'HSP': [('minimum_depth', 'f2'), ('maximum_depth', 'f2'),
            ('port_offset_limit', 'f2'), ('stbd_offset_limit', 'f2'),
            ('port_angle_limit', 'g'), ('stbd_angle_limit', 'g'),
            ('high_beam_quality', 'd'), ('low_beam_quality', 'd'),
            ('sonar_range', 'f2'), ('towfish_layback', 'f2'), ('units', 'd'), ('sonar_id', 'd')],
    'DEV': [('device_number', 'd'), ('capability', 'd'), ('name', 's')],
    'DV2': [('device_number', 'd'), ('capability', 'x'), ('towfish', 'd'), ('enabled', 'd')],
    'OF2': [('device_number', 'd'), ('offset_type', 'd'), ('starboard', 'f2'), ('forward', 'f2'),
            ('vertical', 'f2'), ('yaw', 'f2'), ('roll', 'f2'), ('pitch', 'f2'), ('latency', 'f3')],
    'PRI': [('device_number', 'd')],
    'MBI': [('device_number', 'd'), ('sonar_type', 'x'), ('sonar_flags', 'x'),
            ('beam_data_available', 'x'), ('num_beams_1', 'd'), ('num_beams_2', 'd'),
            ('first_beam_angle', 'f3'), ('angle_increment', 'f3')],
    'SSI': [('device_number', 'd'), ('sonar_flags', 'x'), ('port_samples', 'd'),
            ('starboard_samples', 'd')],
    'HVF': [('device_number', 'd'), ('time', 'f3'), ('minimum_depth', 'f1'), ('maximum_depth', 'f1'),
            ('port_offset_limit', 'f1'), ('starboard_offset_limit', 'f1'),
            ('minimum_angle_limit', 'f1'), ('maximum_angle_limit', 'f1')],
    'FIX': [('device_number', 'd'), ('time', 'f3'), ('event_number', 'd')],
    'PSA': [('device_number', 'd'), ('time', 'f3'), ('ping_number', 'd'), ('a0', 'g'), ('a1', 'g')],
    'GPS': [('device_number', 'd'), ('time', 'f3'), ('cog', 'f2'), ('sog', 'f2'), ('hdop', 'f2'),
            ('mode', 'd'), ('nsats', 'd')],
    'POS': [('device_number', 'd'), ('time', 'f3'), ('x', 'f2'), ('y', 'f2')],
    'GYR': [('device_number', 'd'), ('time', 'f3'), ('heading', 'f2')],
    'HCP': [('device_number', 'd'), ('time', 'f3'), ('heave', 'f2'), ('roll', 'f2'), ('pitch', 'f2')],
    'DFT': [('device_number', 'd'), ('time', 'f3'), ('draft', 'f2')],
    'EC1': [('device_number', 'd'), ('time', 'f3'), ('depth', 'f2')],
    'TID': [('device_number', 'd'), ('time', 'f3'), ('tide', 'f2')],
    'RMB': [('device_number', 'd'), ('time', 'f3'), ('sonar_type', 'x'), ('sonar_flags', 'x'),
            ('beam_data_available', 'x'), ('num_beams', 'd'), ('sound_velocity', 'f2'),
            ('ping_number', 'd')],
    'MSS': [('device_number', 'd'), ('time', 'f3'), ('sound_velocity', 'f2'), ('num_pixels', 'd'),
            ('pixel_size', 'f3'), ('ping_number', 'd')],
    'RSS': [('device_number', 'd'), ('time', 'f3'), ('sonar_flags', 'x'), ('port_samples', 'd'),
            ('starboard_samples', 'd'), ('sound_velocity', 'f2'), ('ping_number', 'd'),
            ('altitude', 'f2'), ('sample_rate', 'f6'), ('minimum_amplitude', 'd'),
            ('maximum_amplitude', 'd'), ('bit_shift', 'd'), ('frequency', 'd')],
    'SNR': [('device_number', 'd'), ('time', 'f3'), ('ping_number', 'd'), ('sonar_id', 'd'),
            ('num_settings', 'd')],
}

# Lines whose whole remainder is free text
TEXT_HEADERS = ('FTP', 'VER', 'PRJ')

# Accepted RSS field counts: basic, with amplitude range, with frequency
RSS_FIELD_COUNTS = (9, 12, 13)

SENSOR_TAGS = {
    'POS': SensorKind.NAVIGATION,
    'GYR': SensorKind.HEADING,
    'HCP': SensorKind.ATTITUDE,
    'DFT': SensorKind.SENSOR_DEPTH,
    'EC1': SensorKind.ALTITUDE,
    'TID': SensorKind.TIDE,
}
KIND_TAGS = {kind: tag for tag, kind in SENSOR_TAGS.items()}

COMMA_SUBSTITUTE = '^'


def _convert(kind: str, token: str):
    if kind == 'd':
        return int(token)
    if kind == 'x':
        return int(token, 16)
    if kind == 's':
        return token
    return float(token)


def _format(kind: str, value) -> str:
    if kind == 'd':
        return '%d' % int(value)
    if kind == 'x':
        return '%x' % int(value)
    if kind == 's':
        return '"%s"' % value
    if kind == 'g':
        return '%g' % float(value)
    return '%.*f' % (int(kind[1:]), float(value))


def ping_matches(latest: int, ping_number: int) -> bool:
    """True if a settings/sidescan ping number belongs to an RMB ping number."""
    return latest == ping_number or latest == 10 * ping_number


class HysweepDriver(FormatDriver):
    """Reads and writes HYSWEEP HSX logs."""

    CAPABILITIES = DriverCapabilities(
        name='hysweep',
        description='HYSWEEP HSX multibeam log (ASCII)',
        max_beams=MAX_BEAMS,
        amplitude=True,
        sidescan=True,
        navigation_source=SensorKind.NAVIGATION,
        heading_source=SensorKind.HEADING,
        attitude_source=SensorKind.ATTITUDE,
        binary=False,
        extensions=('.hsx',),
    )

    def __init__(self, stream, mode='r', config=None):
        super().__init__(stream, mode, config)
        self.lines = LineTokenizer(self.source) if mode == 'r' else None
        self._epoch_warned = False

        self._readers = {
            'FTP': self._read_text_header, 'VER': self._read_text_header,
            'PRJ': self._read_projection, 'HSX': self._read_header, 'INF': self._read_header,
            'HSP': self._read_header, 'TND': self._read_survey_date, 'EOH': self._read_end_of_header,
            'DEV': self._read_device, 'DV2': self._read_device, 'OF2': self._read_device,
            'PRI': self._read_device, 'MBI': self._read_device, 'SSI': self._read_device,
            'HVF': self._read_parameter, 'FIX': self._read_parameter, 'PSA': self._read_parameter,
            'GPS': self._read_gps,
            'POS': self._read_sensor, 'GYR': self._read_sensor, 'HCP': self._read_sensor,
            'DFT': self._read_sensor, 'EC1': self._read_sensor, 'TID': self._read_sensor,
            'RMB': self._read_rmb, 'SNR': self._read_snr, 'RSS': self._read_rss,
            'MSS': self._read_mss, 'COM': self._read_comment,
        }

    def allocate_session(self):
        session = super().allocate_session()
        self.snr_ping = 0
        self.rss_ping = 0
        self._settings: Optional[SonarSettings] = None
        self._sidescan: List[Sidescan] = []
        return session

    # ------------------------------------------------------------------
    # Reading
    # ------------------------------------------------------------------

    def _read_record(self):
        while True:
            ready = self._take_ready_ping()
            if ready is not None:
                return ready

            if self.session.label_buffered is not None:
                ping = self.session.label_buffered
                self.session.label_buffered = None
                abandoned = self._open_ping(ping)
                if abandoned is not None:
                    return abandoned
                continue

            line = self.lines.next_line()
            if line is None:
                assembler = self.session.assembler
                if assembler.pending is not None and assembler.waiting_for <= self._unseen():
                    assembler.complete()
                    continue
                return assembler.abandon('end of stream')

            tokens = split_fields(line)
            if not tokens:
                continue
            tag = tokens[0]
            reader = self._readers.get(tag)
            if reader is None:
                if len(tag) == 3 and tag.isalpha() and tag.isupper():
                    self.logger.debug(f"Skipping unsupported {tag} record")
                    continue
                raise Malformed(f"Unintelligible line {self.lines.line_number}: {line[:40]!r}")

            try:
                record = reader(tag, tokens[1:], line)
            except UnknownDevice as e:
                raise Malformed(str(e), tag) from e
            if record is not None:
                return record

    def _take_ready_ping(self) -> Optional[Ping]:
        ping = self.session.assembler.take()
        if ping is None:
            return None
        self.session.expect_next = None
        return self.session.assembler.finalize(ping)

    def _parse(self, tag: str, tokens: List[str], layout=None) -> dict:
        layout = layout if layout is not None else LAYOUTS[tag]
        if len(tokens) != len(layout):
            raise Malformed(f"{tag} expects {len(layout)} fields, got {len(tokens)}", tag)
        values = {}
        for (name, kind), token in zip(layout, tokens):
            try:
                values[name] = _convert(kind, token)
            except ValueError:
                raise Malformed(f"{tag} field {name} has bad value {token!r}", tag)
        return values

    def _time(self, seconds: float) -> float:
        if self.session.epoch is None:
            if not self._epoch_warned:
                self.logger.warning("Timed record before TND survey date, using 1970-01-01")
                self._epoch_warned = True
            return seconds
        return self.session.epoch + seconds

    def _next_data_line(self, tag: str) -> str:
        line = self.lines.next_line()
        if line is None:
            raise Malformed(f"End of stream inside {tag} data lines", tag)
        head = line.lstrip()[:3]
        if len(head) == 3 and head.isalpha() and head.isupper():
            self.lines.push_back(line)
            raise Malformed(f"{tag} data lines interrupted by {head} record", tag)
        return line

    def _parse_array(self, line: str, count: int, dtype, tag: str, name: str) -> np.ndarray:
        tokens = line.split()
        if len(tokens) != count:
            raise Malformed(f"{tag} {name} line has {len(tokens)} values, expected {count}", tag)
        try:
            values = np.array([float(t) for t in tokens], dtype=float)
        except ValueError:
            raise Malformed(f"{tag} {name} line has non-numeric values", tag)
        if dtype is int:
            return values.astype(int)
        return values

    # Header ---------------------------------------------------------------

    def _read_text_header(self, tag, tokens, line):
        return HeaderRecord(tag, {'text': line[4:].strip()})

    def _read_projection(self, tag, tokens, line):
        text = line[4:].strip()
        if not text:
            raise Malformed("PRJ record without projection", tag)
        try:
            declared = self.session.declare_projection(text)
        except ValueError as e:
            self.logger.warning(f"{e}; keeping projection {self.session.projection.projection_id}")
            return HeaderRecord(tag, {'text': text})
        if declared:
            self.logger.info(f"Using projection {text}")
        else:
            self.logger.debug(f"Ignoring additional projection {text}")
        return HeaderRecord(tag, {'text': text})

    def _read_header(self, tag, tokens, line):
        return HeaderRecord(tag, self._parse(tag, tokens))

    def _read_survey_date(self, tag, tokens, line):
        if len(tokens) != 2:
            raise Malformed(f"TND expects 2 fields, got {len(tokens)}", tag)
        try:
            hour, minute, second = (int(v) for v in tokens[0].split(':'))
            month, day, year = (int(v) for v in tokens[1].split('/'))
            midnight = calendar_to_epoch(year, month, day)
        except ValueError:
            raise Malformed(f"Bad survey date {' '.join(tokens)!r}", tag)
        self.session.epoch = midnight
        fields = {'year': year, 'month': month, 'day': day,
                  'hour': hour, 'minute': minute, 'second': second,
                  'time': midnight + hour * 3600 + minute * 60 + second}
        return HeaderRecord(tag, fields)

    def _read_end_of_header(self, tag, tokens, line):
        self.session.header_complete = True
        self.logger.info(f"Header complete: {len(self.session.registry)} devices, "
                         f"projection {self.session.projection.projection_id}")
        return HeaderRecord(tag, {})

    def _read_device(self, tag, tokens, line):
        values = self._parse(tag, tokens)
        dn = values['device_number']
        registry = self.session.registry
        if tag == 'DEV':
            registry.declare(dn, values['capability'], values['name'])
        elif tag == 'DV2':
            registry.update_transport(dn, values['capability'], values['enabled'], values['towfish'])
        elif tag == 'OF2':
            registry.add_offset(dn, Offset(values['offset_type'], values['starboard'],
                                           values['forward'], values['vertical'], values['yaw'],
                                           values['roll'], values['pitch'], values['latency']))
        elif tag == 'PRI':
            registry.set_primary_navigation(dn)
        elif tag == 'MBI':
            registry.set_multibeam(dn, values['sonar_type'], values['sonar_flags'],
                                   values['beam_data_available'], values['num_beams_1'],
                                   values['num_beams_2'], values['first_beam_angle'],
                                   values['angle_increment'])
        elif tag == 'SSI':
            registry.set_sidescan(dn, values['sonar_flags'], values['port_samples'],
                                  values['starboard_samples'])
        return DeviceRecord(tag, dn, values)

    # Data -----------------------------------------------------------------

    def _read_parameter(self, tag, tokens, line):
        values = self._parse(tag, tokens)
        return ParameterRecord(tag, self._time(values['time']), values['device_number'], values)

    def _read_gps(self, tag, tokens, line):
        record = self._read_parameter(tag, tokens, line)
        if self.session.registry.is_enabled(record.device_number):
            self.session.buffers.navigation.set_rate(record.fields['sog'] * KNOTS_TO_MPS,
                                                     record.fields['cog'])
        return record

    def _feeds_buffers(self, tag: str, device_number: int) -> bool:
        device = self.session.registry.get(device_number)
        if device is None:
            self.logger.debug(f"{tag} from undeclared device {device_number} not buffered")
            return False
        if not device.enabled:
            return False
        if tag == 'POS':
            primary = self.session.registry.primary_navigation
            return primary is None or primary is device
        return True

    def _read_sensor(self, tag, tokens, line):
        values = self._parse(tag, tokens)
        dn = values['device_number']
        time_d = self._time(values['time'])
        kind = SENSOR_TAGS[tag]

        if tag == 'POS':
            sample = self.session.projection.inverse(values['x'], values['y'])
        elif tag == 'GYR':
            sample = (values['heading'],)
        elif tag == 'HCP':
            sample = (-values['roll'], values['pitch'], values['heave'])
        elif tag == 'DFT':
            sample = (values['draft'],)
        elif tag == 'EC1':
            sample = (values['depth'],)
        else:
            sample = (values['tide'],)

        primary = self._feeds_buffers(tag, dn)
        if primary:
            self.session.buffers.append(kind, time_d, sample)
        return SensorRecord(kind, dn, time_d, [SensorSample(time_d, tuple(sample))],
                            tag=tag, fields=values, primary=primary)

    def _read_comment(self, tag, tokens, line):
        text = line[4:].replace(COMMA_SUBSTITUTE, ',')
        return CommentRecord(text)

    # Ping -----------------------------------------------------------------

    def _read_rmb(self, tag, tokens, line):
        values = self._parse(tag, tokens)
        count = values['num_beams']
        available = values['beam_data_available']

        # Consume the announced array lines before validating anything else
        layout = [(bit, name, dtype) for bit, names, dtype in BEAM_FIELDS if available & bit
                  for name in names]
        data_lines = [self._next_data_line(tag) for _ in layout]

        if not 0 <= count <= self.config.max_beams:
            raise Malformed(f"RMB beam count {count} outside 0..{self.config.max_beams}", tag)

        dn = values['device_number']
        device = self.session.registry.get(dn)
        if device is not None and not device.is_extended:
            raise Malformed(f"RMB for device {dn} '{device.name}' which is not multibeam capable", tag)

        ping = Ping(device_number=dn, time=self._time(values['time']),
                    ping_number=values['ping_number'], num_beams=count,
                    sound_velocity=values['sound_velocity'], sonar_type=values['sonar_type'],
                    sonar_flags=values['sonar_flags'], tag=tag, fields=values)

        arrays = {}
        for (bit, name, dtype), data in zip(layout, data_lines):
            arrays[name] = self._parse_array(data, count, dtype, tag, name)
        for bit, names, dtype in BEAM_FIELDS:
            if available & bit:
                ping.set_beams(bit, *[arrays[name] for name in names])

        pn = ping.ping_number
        if self._settings is not None and self._settings.ping_number in (pn, 10 * pn):
            ping.settings = self._settings
            self._settings = None
        ping.sidescan = [s for s in self._sidescan if s.ping_number in (pn, 10 * pn)]
        self._sidescan = []

        self.logger.debug(f"RMB ping {pn} device {dn}: {count} beams, fields {available:#06x}")

        assembler = self.session.assembler
        if assembler.state == PingState.AWAITING_SUBRECORDS and assembler.waiting_for <= self._unseen():
            # The previous ping only waits for records this log has never carried
            assembler.complete()
            self.session.label_buffered = ping
            return None
        return self._open_ping(ping)

    def _unseen(self) -> Set[str]:
        """Closing tags that have not appeared in the log yet."""
        return {tag for tag, latest in (('SNR', self.snr_ping), ('RSS', self.rss_ping))
                if latest == 0}

    def _open_ping(self, ping: Ping):
        pn = ping.ping_number
        expect = {tag for tag, latest in (('SNR', self.snr_ping), ('RSS', self.rss_ping))
                  if not ping_matches(latest, pn)}
        self.session.expect_next = min(expect) if expect else None
        return self.session.assembler.open(ping, expect)

    def _pending_for(self, ping_number: int) -> Optional[Ping]:
        pending = self.session.assembler.pending
        if pending is not None and ping_number in (pending.ping_number, 10 * pending.ping_number):
            return pending
        return None

    def _read_snr(self, tag, tokens, line):
        if len(tokens) < 5:
            raise Malformed(f"SNR expects at least 5 fields, got {len(tokens)}", tag)
        values = self._parse(tag, tokens[:5])
        if len(tokens) != 5 + values['num_settings']:
            raise Malformed(f"SNR declares {values['num_settings']} settings, "
                            f"line has {len(tokens) - 5}", tag)
        try:
            settings_values = [float(v) for v in tokens[5:]]
        except ValueError:
            raise Malformed("SNR settings are not numeric", tag)

        settings = SonarSettings(values['device_number'], self._time(values['time']),
                                 values['ping_number'], values['sonar_id'], settings_values)
        self.snr_ping = settings.ping_number

        pending = self._pending_for(settings.ping_number)
        if pending is not None:
            pending.settings = settings
            self.session.assembler.satisfy('SNR')
        else:
            self._settings = settings
        return None

    def _attach_sidescan(self, sidescan: Sidescan, closes: Optional[str]):
        pending = self._pending_for(sidescan.ping_number)
        if pending is not None:
            pending.sidescan.append(sidescan)
            if closes:
                self.session.assembler.satisfy(closes)
        else:
            self._sidescan.append(sidescan)

    def _read_rss(self, tag, tokens, line):
        if len(tokens) not in RSS_FIELD_COUNTS:
            raise Malformed(f"RSS expects {RSS_FIELD_COUNTS} fields, got {len(tokens)}", tag)
        values = self._parse(tag, tokens, LAYOUTS['RSS'][:len(tokens)])
        port_line = self._next_data_line(tag)
        stbd_line = self._next_data_line(tag)
        for name in ('port_samples', 'starboard_samples'):
            if not 0 <= values[name] <= self.config.max_pixels * 8:
                raise Malformed(f"RSS {name} {values[name]} out of range", tag)
        arrays = {
            'port': self._parse_array(port_line, values['port_samples'], int, tag, 'port'),
            'starboard': self._parse_array(stbd_line, values['starboard_samples'], int, tag, 'starboard'),
        }
        self.rss_ping = values['ping_number']
        self._attach_sidescan(Sidescan(tag, values['device_number'], values['ping_number'],
                                       arrays, values), 'RSS')
        return None

    def _read_mss(self, tag, tokens, line):
        values = self._parse(tag, tokens)
        ss_line = self._next_data_line(tag)
        along_line = self._next_data_line(tag)
        npix = values['num_pixels']
        if not 0 <= npix <= self.config.max_pixels:
            raise Malformed(f"MSS pixel count {npix} outside 0..{self.config.max_pixels}", tag)
        arrays = {
            'ss': self._parse_array(ss_line, npix, float, tag, 'ss'),
            'along': self._parse_array(along_line, npix, float, tag, 'along'),
            'across': values['pixel_size'] * (np.arange(npix) - npix // 2),
        }
        self._attach_sidescan(Sidescan(tag, values['device_number'], values['ping_number'],
                                       arrays, values), None)
        return None

    # ------------------------------------------------------------------
    # Writing
    # ------------------------------------------------------------------

    def _write_record(self, record):
        if isinstance(record, HeaderRecord):
            self._write_header(record)
        elif isinstance(record, DeviceRecord):
            fields = dict(record.fields, device_number=record.device_number)
            self._write_line(record.tag, fields)
        elif isinstance(record, ParameterRecord):
            fields = dict(record.fields)
            if record.device_number is not None:
                fields['device_number'] = record.device_number
            if record.time is not None:
                fields['time'] = self._seconds(record.time)
            self._write_line(record.tag, fields)
        elif isinstance(record, SensorRecord):
            self._write_sensor(record)
        elif isinstance(record, CommentRecord):
            self._emit('COM ' + record.text.replace(',', COMMA_SUBSTITUTE))
        elif isinstance(record, Ping):
            self._write_ping(record)
        elif isinstance(record, DIAGNOSTIC_TYPES):
            self.logger.debug(f"Not writing {record.KIND} diagnostic")
        else:
            raise TypeError(f"Cannot write {type(record).__name__} as HYSWEEP")

    def _emit(self, text: str):
        self._write_bytes(text.encode('latin-1') + b'\r\n')

    def _format_fields(self, tag: str, fields: dict, layout=None) -> str:
        layout = layout if layout is not None else LAYOUTS[tag]
        parts = [tag]
        for name, kind in layout:
            if name not in fields:
                raise ValueError(f"{tag} record is missing field {name!r}")
            parts.append(_format(kind, fields[name]))
        return ' '.join(parts)

    def _write_line(self, tag: str, fields: dict, layout=None):
        self._emit(self._format_fields(tag, fields, layout))

    def _seconds(self, time_d: float) -> float:
        return time_d - (self.session.epoch or 0.0)

    def _write_header(self, record: HeaderRecord):
        tag = record.tag
        if tag in TEXT_HEADERS:
            if tag == 'PRJ':
                self.session.declare_projection(record.fields['text'])
            self._emit(f"{tag} {record.fields['text']}")
        elif tag == 'TND':
            f = record.fields
            self.session.epoch = calendar_to_epoch(f['year'], f['month'], f['day'])
            self._emit('TND %2.2d:%2.2d:%2.2d %2.2d/%2.2d/%4.4d' % (
                f['hour'], f['minute'], int(f['second']), f['month'], f['day'], f['year']))
        elif tag == 'EOH':
            self._emit('EOH')
        else:
            self._write_line(tag, record.fields)

    def write_survey_date(self, time_d: float):
        """Write a TND record for an epoch time and use its date for later records."""
        year, month, day, hour, minute, second = epoch_to_calendar(time_d)
        self._write_header(HeaderRecord('TND', {'year': year, 'month': month, 'day': day,
                                                'hour': hour, 'minute': minute,
                                                'second': int(second)}))

    def _write_sensor(self, record: SensorRecord):
        tag = KIND_TAGS.get(record.kind)
        if tag is None:
            self.logger.debug(f"No HYSWEEP record for {record.kind.value} samples")
            return
        for sample in record.samples:
            v = sample.values
            fields = {'device_number': record.device_number, 'time': self._seconds(sample.time)}
            if tag == 'POS':
                fields['x'], fields['y'] = self.session.projection.forward(v[0], v[1])
            elif tag == 'GYR':
                fields['heading'] = v[0]
            elif tag == 'HCP':
                fields.update(heave=v[2], roll=-v[0], pitch=v[1])
            elif tag == 'DFT':
                fields['draft'] = v[0]
            elif tag == 'EC1':
                fields['depth'] = v[0]
            else:
                fields['tide'] = v[0]
            self._write_line(tag, fields)

    def _write_ping(self, ping: Ping):
        if ping.num_beams > self.config.max_beams:
            raise ValueError(f"Ping has {ping.num_beams} beams, maximum is {self.config.max_beams}")

        if ping.settings is not None:
            s = ping.settings
            self._emit(' '.join([self._format_fields('SNR', {
                'device_number': s.device_number, 'time': self._seconds(s.time),
                'ping_number': s.ping_number, 'sonar_id': s.sonar_id,
                'num_settings': len(s.values)})] + ['%g' % v for v in s.values]))

        for sidescan in ping.sidescan:
            self._write_sidescan(ping, sidescan)

        available = int(ping.available) & 0x7fff
        self._write_line('RMB', {
            'device_number': ping.device_number, 'time': self._seconds(ping.time),
            'sonar_type': ping.sonar_type, 'sonar_flags': ping.sonar_flags,
            'beam_data_available': available, 'num_beams': ping.num_beams,
            'sound_velocity': ping.sound_velocity, 'ping_number': ping.ping_number})

        for bit, names, dtype in BEAM_FIELDS:
            if available & bit:
                fmt = '%d' if dtype is int else '%.2f'
                for name in names:
                    self._emit(' '.join(fmt % v for v in ping.beams[name]))

    def _write_sidescan(self, ping: Ping, sidescan: Sidescan):
        fields = dict(sidescan.fields)
        fields.setdefault('device_number', sidescan.device_number)
        fields.setdefault('ping_number', sidescan.ping_number)
        fields['time'] = self._seconds(ping.time)
        fields.setdefault('sound_velocity', ping.sound_velocity)

        if sidescan.tag == 'RSS':
            port = sidescan.arrays['port']
            stbd = sidescan.arrays['starboard']
            fields.update(port_samples=len(port), starboard_samples=len(stbd))
            for name in ('sonar_flags', 'altitude', 'sample_rate', 'minimum_amplitude',
                         'maximum_amplitude', 'bit_shift', 'frequency'):
                fields.setdefault(name, 0)
            self._write_line('RSS', fields)
            self._emit(' '.join('%d' % v for v in port))
            self._emit(' '.join('%d' % v for v in stbd))
        elif sidescan.tag == 'MSS':
            ss = sidescan.arrays['ss']
            fields['num_pixels'] = len(ss)
            fields.setdefault('pixel_size', 0.0)
            self._write_line('MSS', fields)
            self._emit(' '.join('%.2f' % v for v in ss))
            self._emit(' '.join('%.2f' % v for v in sidescan.arrays['along']))
        else:
            self.logger.debug(f"No HYSWEEP record for {sidescan.tag} sidescan")
