#!/usr/bin/env python3
"""
Simrad EM raw datagram driver.

Reads and writes the binary datagram stream logged by Simrad EM multibeam
systems (EM120, EM300, EM1002, EM2000, EM3000). Labels are found with a
LabelTokenizer so that corrupt stretches are skipped and reported as
ResyncEvents. Depth datagrams open a ping; the raw beam angle and seabed
image datagrams with the same ping counter are merged into it.
"""

import struct
from dataclasses import asdict
from typing import List, Optional

import numpy as np

from ..errors import ChecksumError, Malformed
from ..records import (DIAGNOSTIC_TYPES, BeamField, BeamFlag, CommentRecord, DeviceRecord,
                       HeaderRecord, ParameterRecord, Ping, SensorKind, SensorRecord,
                       SensorSample, Sidescan)
from ..registry import EXTENDED_CAPABILITY, DeviceCapability, SonarFlag, SonarType
from ..timeutil import epoch_to_simrad, simrad_to_epoch
from ..tokenizer import LabelTokenizer
from .base import DriverCapabilities, FormatDriver
from .simrad_structures import (ATTITUDE_SLICE, DATAGRAM_TYPES, EM3000, EM3000_FAMILY, ETX,
                                HEADING_SLICE, LABEL_SIZE, MAX_BEAMS, MAX_RAW_PIXELS, MAX_TEXT,
                                PARAMETER_DATAGRAMS, RAWBEAM_BEAM, RUN_PARAMETER_SIZE,
                                SONAR_MODELS, SS_BEAM, SSV_SLICE, STX, SVP2_SLICE_SIZE,
                                SVP_SLICE, TRAILER_SIZE, TRANSDUCER_DEPTH_WRAP,
                                UNSIGNED_DEPTH_MODELS, WRAPPER_SIZE, BathHeader, ClockDatagram,
                                CommonHeader, Datagram, DatagramLabel, HeightDatagram,
                                PositionHeader, RawBeamHeader, SidescanHeader, SliceHeader,
                                StartHeader, SvpHeader, TideDatagram, bath_beam_dtype,
                                checksum, pad_body)

SONAR_DEVICE = 0

# Records merged into the ping opened by a depth datagram
PING_SUBRECORDS = ('RAWBEAM', 'SS')

SLICE_KINDS = {
    Datagram.HEADING: SensorKind.HEADING,
    Datagram.SSV: SensorKind.SOUND_VELOCITY,
    Datagram.ATTITUDE: SensorKind.ATTITUDE,
}

BATH_AVAILABLE = (BeamField.BATHYMETRY | BeamField.SPHERICAL | BeamField.TIME_DELAY
                  | BeamField.INTENSITY | BeamField.QUALITY | BeamField.FLAGS)

MAX_SLICE_OFFSET = 65535     # Slice time offsets are unsigned milliseconds
UNKNOWN_SPEED = 0xFFFF


def parse_parameters(text: str) -> dict:
    """Split installation parameter text "KEY=value,KEY=value," into a dict."""
    parameters = {}
    for item in text.split(','):
        key, sep, value = item.partition('=')
        if sep:
            parameters[key.strip()] = value.strip()
    return parameters


def format_parameters(parameters: dict) -> str:
    return ''.join(f"{key}={value}," for key, value in parameters.items())


class SimradDriver(FormatDriver):
    """
    Reads and writes Simrad EM raw logs.

    Args:
        stream: Binary file object
        mode: 'r' or 'w'
        config: Session configuration
        wrapper: Write a 4 byte record length before each datagram
        model: Sonar model written for records that do not carry one
    """

    CAPABILITIES = DriverCapabilities(
        name='simrad',
        description='Simrad EM multibeam raw datagrams (binary)',
        max_beams=MAX_BEAMS,
        amplitude=True,
        sidescan=True,
        navigation_source=SensorKind.NAVIGATION,
        heading_source=SensorKind.HEADING,
        attitude_source=SensorKind.ATTITUDE,
        binary=True,
        extensions=('.all',),
    )

    def __init__(self, stream, mode='r', config=None, wrapper: bool = True,
                 model: int = EM3000):
        super().__init__(stream, mode, config)
        if mode == 'r':
            self.model: Optional[int] = None
            self.has_wrapper: Optional[bool] = None
            self.tokenizer = LabelTokenizer(self.source, LABEL_SIZE, self._valid_label,
                                            known_skips=(WRAPPER_SIZE,),
                                            max_search=self.config.max_resync_bytes)
        else:
            if model not in SONAR_MODELS:
                raise ValueError(f"Unsupported sonar model {model}")
            self.model = model
            self.has_wrapper = wrapper
            self.tokenizer = None

        self._readers = {
            Datagram.START: self._read_installation, Datagram.STOP: self._read_installation,
            Datagram.STOP2: self._read_installation, Datagram.OFF: self._read_installation,
            Datagram.ON: self._read_installation,
            Datagram.RUN_PARAMETER: self._read_run_parameter,
            Datagram.CLOCK: self._read_clock, Datagram.TIDE: self._read_tide,
            Datagram.HEIGHT: self._read_height, Datagram.HEADING: self._read_slices,
            Datagram.SSV: self._read_slices, Datagram.ATTITUDE: self._read_slices,
            Datagram.POS: self._read_position, Datagram.SVP: self._read_svp,
            Datagram.SVP2: self._read_svp2, Datagram.BATH: self._read_bath,
            Datagram.RAWBEAM: self._read_rawbeam, Datagram.SS: self._read_sidescan,
        }

    def allocate_session(self):
        session = super().allocate_session()
        self._heading_seen = False
        self._held: Optional[bytes] = None
        self._consumed: Optional[bytearray] = None
        return session

    # ------------------------------------------------------------------
    # Reading
    # ------------------------------------------------------------------

    def _valid_label(self, label: bytes) -> bool:
        if label[0] != STX:
            return False
        dl = DatagramLabel.from_bytes(label)
        if dl.type_code not in DATAGRAM_TYPES:
            return False
        if dl.model in SONAR_MODELS:
            return True
        # EM3000 sound velocity profiles are logged with a zero model
        return dl.type_code == Datagram.SVP and dl.model == 0 and self.model in EM3000_FAMILY

    def _read_record(self):
        session = self.session
        assembler = session.assembler
        while True:
            ready = self._take_ready_ping()
            if ready is not None:
                return ready

            if session.label_buffered is not None:
                ping = session.label_buffered
                session.label_buffered = None
                assembler.open(ping, PING_SUBRECORDS)
                continue

            label = self._held
            self._held = None
            if label is None:
                found = self.tokenizer.next_label()
                if found is None:
                    if assembler.complete():
                        continue
                    return None
                label, skipped, event = found
                # Leading garbage says nothing about the wrapper; wait for a clean label
                if self.has_wrapper is None and skipped in (0, WRAPPER_SIZE):
                    self.has_wrapper = skipped == WRAPPER_SIZE
                    if not self.has_wrapper:
                        self.tokenizer.known_skips = set()
                    self.logger.debug(f"Record length wrapper {'present' if self.has_wrapper else 'absent'}")
                if event is not None:
                    self._held = label
                    return event

            record = self._decode(label)
            if record is not None:
                return record

    def _take_ready_ping(self) -> Optional[Ping]:
        ping = self.session.assembler.take()
        if ping is None:
            return None
        return self.session.assembler.finalize(ping)

    def _decode(self, label: bytes):
        dl = DatagramLabel.from_bytes(label)
        tag = Datagram(dl.type_code).name
        self._consumed = bytearray(label)
        record = self._readers[dl.type_code](tag, dl.model)
        if dl.model in SONAR_MODELS:
            self.model = dl.model
        return record

    def _take(self, size: int, tag: str) -> bytes:
        data = self.source.read_exact(size, tag)
        self._consumed += data
        return data

    def _finish(self, tag: str, etx_read: bool = False):
        """Read the spare byte, ETX and checksum and verify the datagram."""
        if not etx_read:
            if (len(self._consumed) - LABEL_SIZE) % 2 == 0:
                self._take(1, tag)
            body = bytes(self._consumed[1:])
            trailer = self._take(TRAILER_SIZE, tag)
            if trailer[0] != ETX:
                raise Malformed(f"Expected ETX, found {trailer[0]:#04x}", tag)
            stored = struct.unpack('>H', trailer[1:])[0]
        else:
            body = bytes(self._consumed[1:-1])
            stored = struct.unpack('>H', self._take(2, tag))[0]

        computed = checksum(body)
        if stored != computed:
            raise ChecksumError(stored, computed, tag)
        self._consumed = None

    def _recover(self, error: Malformed):
        # Resume the label search one byte after a label that did not lead to a datagram
        if self._consumed is not None:
            self.source.unread(bytes(self._consumed[1:]))
            self._consumed = None

    def _time(self, date: int, msec: int, tag: str) -> float:
        try:
            return simrad_to_epoch(date, msec)
        except ValueError as e:
            raise Malformed(f"Invalid date {date} {msec} ms: {e}", tag) from e

    # Header and parameter datagrams -------------------------------------

    def _read_installation(self, tag, model):
        header = StartHeader.from_bytes(self._take(StartHeader.SIZE, tag))
        while self._take(1, tag)[0] != ETX:
            if len(self._consumed) > MAX_TEXT:
                raise Malformed(f"No ETX within {MAX_TEXT} bytes", tag)
        raw = bytes(self._consumed[LABEL_SIZE + StartHeader.SIZE:-1])
        self._finish(tag, etx_read=True)

        text = raw.rstrip(b'\x00').decode('latin-1')
        fields = dict(asdict(header), model=model, text=text,
                      parameters=parse_parameters(text),
                      time=self._time(header.date, header.msec, tag))
        self.session.header_complete = True
        return HeaderRecord(tag, fields)

    def _read_run_parameter(self, tag, model):
        common = CommonHeader.from_bytes(self._take(CommonHeader.SIZE, tag))
        data = self._take(RUN_PARAMETER_SIZE - CommonHeader.SIZE, tag)
        self._finish(tag)
        return ParameterRecord(tag, self._time(common.date, common.msec, tag), SONAR_DEVICE,
                               dict(asdict(common), model=model, data=data))

    def _read_clock(self, tag, model):
        clock = ClockDatagram.from_bytes(self._take(ClockDatagram.SIZE, tag))
        self._finish(tag)
        fields = dict(asdict(clock), model=model,
                      origin_time=self._time(clock.origin_date, clock.origin_msec, tag))
        return ParameterRecord(tag, self._time(clock.date, clock.msec, tag), SONAR_DEVICE, fields)

    def _read_height(self, tag, model):
        height = HeightDatagram.from_bytes(self._take(HeightDatagram.SIZE, tag))
        self._finish(tag)
        return ParameterRecord(tag, self._time(height.date, height.msec, tag), SONAR_DEVICE,
                               dict(asdict(height), model=model))

    def _read_svp(self, tag, model):
        header = SvpHeader.from_bytes(self._take(SvpHeader.SIZE, tag))
        slices = np.frombuffer(self._take(header.num * SVP_SLICE.itemsize, tag), dtype=SVP_SLICE)
        self._finish(tag)
        fields = dict(asdict(header), model=model,
                      depth=slices['depth'] * header.depth_resolution * 0.01,
                      velocity=slices['velocity'] * 0.1)
        return ParameterRecord(tag, self._time(header.date, header.msec, tag), SONAR_DEVICE, fields)

    def _read_svp2(self, tag, model):
        header = SvpHeader.from_bytes(self._take(SvpHeader.SIZE, tag))
        slices = self._take(header.num * SVP2_SLICE_SIZE, tag)
        self._finish(tag)
        return ParameterRecord(tag, self._time(header.date, header.msec, tag), SONAR_DEVICE,
                               dict(asdict(header), model=model, slices=slices))

    # Sensor datagrams -----------------------------------------------------

    def _read_tide(self, tag, model):
        tide = TideDatagram.from_bytes(self._take(TideDatagram.SIZE, tag))
        self._finish(tag)
        time_d = self._time(tide.origin_date, tide.origin_msec, tag)
        value = (tide.tide * 0.01,)
        self.session.buffers.append(SensorKind.TIDE, time_d, value)
        return SensorRecord(SensorKind.TIDE, SONAR_DEVICE, time_d, [SensorSample(time_d, value)],
                            tag=tag, fields=dict(asdict(tide), model=model))

    def _read_slices(self, tag, model):
        type_code = Datagram[tag]
        dtype = {Datagram.HEADING: HEADING_SLICE, Datagram.SSV: SSV_SLICE,
                 Datagram.ATTITUDE: ATTITUDE_SLICE}[type_code]
        header = SliceHeader.from_bytes(self._take(SliceHeader.SIZE, tag))
        slices = np.frombuffer(self._take(header.ndata * dtype.itemsize, tag), dtype=dtype)
        trailer = None
        if type_code != Datagram.SSV:
            trailer = self._take(1, tag)[0]
        self._finish(tag)

        time_d = self._time(header.date, header.msec, tag)
        times = time_d + slices['time'] * 0.001
        if type_code == Datagram.HEADING:
            values = [(h,) for h in slices['heading'] * 0.01]
            extra = {'heading_status': trailer}
            self._heading_seen = True
        elif type_code == Datagram.SSV:
            values = [(v,) for v in slices['ssv'] * 0.1]
            extra = {}
        else:
            values = list(zip(slices['roll'] * 0.01, slices['pitch'] * 0.01,
                              slices['heave'] * 0.01))
            extra = {'sensor_description': trailer}

        kind = SLICE_KINDS[type_code]
        samples = []
        for t, v in zip(times, values):
            sample = SensorSample(float(t), tuple(float(x) for x in v))
            self.session.buffers.append_sample(kind, sample)
            samples.append(sample)
        fields = dict(asdict(header), model=model, slices=slices, **extra)
        return SensorRecord(kind, SONAR_DEVICE, time_d, samples, tag=tag, fields=fields)

    def _read_position(self, tag, model):
        header = PositionHeader.from_bytes(self._take(PositionHeader.SIZE, tag))
        text = self._take(header.input_size, tag)
        self._finish(tag)

        time_d = self._time(header.date, header.msec, tag)
        value = (header.longitude / 1.0e7, header.latitude / 2.0e7)
        navigation = self.session.buffers.navigation
        navigation.append(time_d, value)
        if header.speed != UNKNOWN_SPEED:
            navigation.set_rate(header.speed * 0.01, header.course * 0.01)
        fields = dict(asdict(header), model=model, input=text.decode('latin-1'))
        return SensorRecord(SensorKind.NAVIGATION, SONAR_DEVICE, time_d,
                            [SensorSample(time_d, value)], tag=tag, fields=fields)

    # Ping datagrams -------------------------------------------------------

    def _register_sonar(self, model: int, nbeams_max: int):
        registry = self.session.registry
        if SONAR_DEVICE in registry:
            return
        registry.declare(SONAR_DEVICE, EXTENDED_CAPABILITY, f"EM{model}")
        registry.update_transport(SONAR_DEVICE, DeviceCapability.MULTIBEAM, True)
        registry.set_multibeam(SONAR_DEVICE, SonarType.SPHERICAL,
                               SonarFlag.ROLL_CORRECTED | SonarFlag.PITCH_CORRECTED,
                               int(BATH_AVAILABLE), nbeams_max, 0, 0.0, 0.0)
        self.logger.info(f"Registered sonar EM{model} as device {SONAR_DEVICE}")

    def _read_bath(self, tag, model):
        header = BathHeader.from_bytes(self._take(BathHeader.SIZE, tag))
        dtype = bath_beam_dtype(model)
        beams = np.frombuffer(self._take(header.nbeams * dtype.itemsize, tag), dtype=dtype)
        offset_multiplier = struct.unpack('>b', self._take(1, tag))[0]
        self._finish(tag)

        n = header.nbeams
        if n > header.nbeams_max or header.nbeams_max > MAX_BEAMS or n > self.config.max_beams:
            raise Malformed(f"Beam count {n} (max {header.nbeams_max}) exceeds "
                            f"{min(MAX_BEAMS, self.config.max_beams)}", tag)
        numbers = beams['beam_number'].astype(int)
        if np.any(np.diff(numbers) <= 0):
            raise Malformed("Beam numbers are not strictly increasing", tag)

        time_d = self._time(header.date, header.msec, tag)
        draft = header.transducer_depth * 0.01 + TRANSDUCER_DEPTH_WRAP * offset_multiplier
        self._register_sonar(model, header.nbeams_max)

        buffers = self.session.buffers
        buffers.append(SensorKind.SENSOR_DEPTH, time_d, (draft,))
        if not self._heading_seen:
            buffers.append(SensorKind.HEADING, time_d, (header.heading * 0.01,))

        fields = dict(asdict(header), model=model, offset_multiplier=offset_multiplier,
                      draft=draft, window=beams['window'].astype(int), beam_number=numbers)
        ping = Ping(device_number=SONAR_DEVICE, time=time_d, ping_number=header.count,
                    num_beams=n, sound_velocity=header.ssv * 0.1,
                    sonar_type=SonarType.SPHERICAL,
                    sonar_flags=SonarFlag.ROLL_CORRECTED | SonarFlag.PITCH_CORRECTED,
                    tag=tag, fields=fields)

        depth_scale = header.depth_resolution * 0.01
        distance_scale = header.distance_resolution * 0.01
        raw_depth = beams['depth'].astype(float)
        ping.set_beams(BeamField.DEPTH, raw_depth * depth_scale + draft)
        ping.set_beams(BeamField.ALONG, beams['along'] * distance_scale)
        ping.set_beams(BeamField.ACROSS, beams['across'] * distance_scale)
        ping.set_beams(BeamField.TAKEOFF_ANGLE, 90.0 - beams['depression'] * 0.01)
        ping.set_beams(BeamField.AZIMUTH_ANGLE, beams['azimuth'] * 0.01)
        ping.set_beams(BeamField.TIME_DELAY, beams['range'])
        ping.set_beams(BeamField.INTENSITY, beams['amplitude'])
        ping.set_beams(BeamField.QUALITY, beams['quality'])
        ping.set_beams(BeamField.FLAGS, np.where(raw_depth == 0, int(BeamFlag.NULL),
                                                 int(BeamFlag.NONE)))

        self.logger.debug(f"BATH ping {header.count}: {n} beams, draft {draft:.2f} m")
        assembler = self.session.assembler
        if assembler.pending is not None:
            assembler.complete()
            self.session.label_buffered = ping
        else:
            assembler.open(ping, PING_SUBRECORDS)
        return None

    def _pending_for(self, tag: str, ping_number: int) -> Optional[Ping]:
        assembler = self.session.assembler
        pending = assembler.pending
        if pending is not None and pending.ping_number == ping_number and tag in assembler.waiting_for:
            return pending
        return None

    def _read_rawbeam(self, tag, model):
        header = RawBeamHeader.from_bytes(self._take(RawBeamHeader.SIZE, tag))
        beams = np.frombuffer(self._take(header.nraw * RAWBEAM_BEAM.itemsize, tag),
                              dtype=RAWBEAM_BEAM)
        self._finish(tag)

        time_d = self._time(header.date, header.msec, tag)
        fields = dict(asdict(header), model=model, beams=beams)
        ping = self._pending_for(tag, header.count)
        if ping is None:
            self.logger.debug(f"RAWBEAM for ping {header.count} has no pending depth datagram")
            return ParameterRecord(tag, time_d, SONAR_DEVICE, fields)
        ping.fields['rawbeam'] = fields
        self.session.assembler.satisfy(tag)
        return None

    def _read_sidescan(self, tag, model):
        header = SidescanHeader.from_bytes(self._take(SidescanHeader.SIZE, tag))
        beams = np.frombuffer(self._take(header.nbeams_ss * SS_BEAM.itemsize, tag), dtype=SS_BEAM)
        npixels = int(beams['beam_samples'].sum())
        if npixels > MAX_RAW_PIXELS:
            raise Malformed(f"Seabed image has {npixels} samples, maximum is {MAX_RAW_PIXELS}", tag)
        samples = np.frombuffer(self._take(npixels, tag), dtype='i1')
        self._finish(tag)

        time_d = self._time(header.date, header.msec, tag)
        arrays = {name: beams[name].astype(int) for name in SS_BEAM.names}
        arrays['samples'] = samples.astype(int)
        fields = dict(asdict(header), model=model)

        ping = self._pending_for(tag, header.count)
        if ping is None:
            self.logger.debug(f"SS for ping {header.count} has no pending depth datagram")
            return ParameterRecord(tag, time_d, SONAR_DEVICE, dict(fields, **arrays))
        ping.sidescan.append(Sidescan(tag, SONAR_DEVICE, header.count, arrays, fields))
        self.session.assembler.satisfy(tag)
        return None

    # ------------------------------------------------------------------
    # Writing
    # ------------------------------------------------------------------

    def _write_record(self, record):
        if isinstance(record, HeaderRecord):
            self._write_installation(record)
        elif isinstance(record, ParameterRecord):
            self._write_parameter(record)
        elif isinstance(record, SensorRecord):
            self._write_sensor(record)
        elif isinstance(record, Ping):
            self._write_ping(record)
        elif isinstance(record, (CommentRecord, DeviceRecord) + DIAGNOSTIC_TYPES):
            self.logger.debug(f"No Simrad datagram for {record.KIND} records")
        else:
            raise TypeError(f"Cannot write {type(record).__name__} as Simrad")

    def _write_datagram(self, type_code: int, model: int, body: bytes):
        body = pad_body(body)
        label = DatagramLabel(type_code, model).to_bytes()
        data = label + body + bytes([ETX]) + struct.pack('>H', checksum(label[1:] + body))
        if self.has_wrapper:
            data = struct.pack('>I', len(data)) + data
        self._write_bytes(data)

    def _model(self, fields: dict) -> int:
        return fields.get('model') or self.model

    @staticmethod
    def _stamp(time_d: float, fields: dict):
        """(date, msec, count, serial) for a datagram header."""
        date, msec = epoch_to_simrad(time_d)
        return date, msec, fields.get('count', 0), fields.get('serial', 0)

    def _write_installation(self, record: HeaderRecord):
        type_code = Datagram.__members__.get(record.tag)
        if type_code not in PARAMETER_DATAGRAMS:
            self.logger.debug(f"No Simrad datagram for {record.tag} header records")
            return

        f = record.fields
        text = f.get('text')
        if text is None:
            text = format_parameters(f.get('parameters', {}))
        if 'time' in f:
            date, msec = epoch_to_simrad(f['time'])
        else:
            date, msec = f.get('date', 0), f.get('msec', 0)
        header = StartHeader(date, msec, f.get('count', 0), f.get('serial', 0), f.get('serial2', 0))
        self._write_datagram(type_code, self._model(f), header.to_bytes() + text.encode('latin-1'))

    def _write_parameter(self, record: ParameterRecord):
        f = record.fields
        tag = record.tag
        stamp = self._stamp(record.time or 0.0, f)
        model = self._model(f)

        if tag == 'CLOCK':
            origin_date, origin_msec = epoch_to_simrad(f.get('origin_time', record.time or 0.0))
            body = ClockDatagram(*stamp, origin_date, origin_msec, f.get('pps', 0)).to_bytes()
        elif tag == 'HEIGHT':
            body = HeightDatagram(*stamp, f['height'], f.get('height_type', 0)).to_bytes()
        elif tag == 'SVP':
            resolution = f.get('depth_resolution', 1)
            slices = np.zeros(len(f['depth']), dtype=SVP_SLICE)
            slices['depth'] = np.round(np.asarray(f['depth']) * 100.0 / resolution)
            slices['velocity'] = np.round(np.asarray(f['velocity']) * 10.0)
            header = SvpHeader(*stamp, f.get('profile_date', stamp[0]), f.get('profile_msec', stamp[1]),
                               len(slices), resolution)
            body = header.to_bytes() + slices.tobytes()
        elif tag == 'SVP2':
            raw = bytes(f['slices'])
            header = SvpHeader(*stamp, f.get('profile_date', stamp[0]), f.get('profile_msec', stamp[1]),
                               len(raw) // SVP2_SLICE_SIZE, f.get('depth_resolution', 1))
            body = header.to_bytes() + raw
        elif tag == 'RUN_PARAMETER':
            data = bytes(f['data'])
            if len(data) != RUN_PARAMETER_SIZE - CommonHeader.SIZE:
                raise ValueError(f"RUN_PARAMETER data must be {RUN_PARAMETER_SIZE - CommonHeader.SIZE} bytes")
            body = CommonHeader(*stamp).to_bytes() + data
        elif tag == 'RAWBEAM':
            body = self._rawbeam_body(record.time or 0.0, f)
        elif tag == 'SS':
            arrays = {name: f[name] for name in SS_BEAM.names + ('samples',)}
            body = self._sidescan_body(record.time or 0.0, f, arrays)
        else:
            self.logger.debug(f"No Simrad datagram for {tag} parameter records")
            return
        self._write_datagram(Datagram[tag], model, body)

    def _slice_groups(self, record: SensorRecord):
        """Split samples into groups whose time offsets fit a datagram."""
        group: List[SensorSample] = []
        start = record.time
        for sample in record.samples:
            if group and (sample.time - start) * 1000.0 > MAX_SLICE_OFFSET:
                yield start, group
                group = []
                start = sample.time
            if not group and sample.time < start:
                start = sample.time
            group.append(sample)
        if group:
            yield start, group

    def _write_sensor(self, record: SensorRecord):
        f = record.fields
        model = self._model(f)
        kind = record.kind

        if kind == SensorKind.NAVIGATION:
            for sample in record.samples:
                self._write_position(sample, f, model)
            return
        if kind == SensorKind.TIDE:
            for sample in record.samples:
                stamp = self._stamp(sample.time, f)
                body = TideDatagram(*stamp, stamp[0], stamp[1],
                                    int(round(sample.values[0] * 100.0))).to_bytes()
                self._write_datagram(Datagram.TIDE, model, body)
            return

        type_code = {SensorKind.HEADING: Datagram.HEADING, SensorKind.SOUND_VELOCITY: Datagram.SSV,
                     SensorKind.ATTITUDE: Datagram.ATTITUDE}.get(kind)
        if type_code is None:
            self.logger.debug(f"No Simrad datagram for {kind.value} samples")
            return

        stored = f.get('slices')
        for start, group in self._slice_groups(record):
            values = np.array([s.values for s in group], dtype=float)
            offsets = np.round((np.array([s.time for s in group]) - start) * 1000.0)
            if type_code == Datagram.HEADING:
                slices = np.zeros(len(group), dtype=HEADING_SLICE)
                slices['heading'] = np.round(values[:, 0] * 100.0) % 36000
                trailer = bytes([f.get('heading_status', 0)])
            elif type_code == Datagram.SSV:
                slices = np.zeros(len(group), dtype=SSV_SLICE)
                slices['ssv'] = np.round(values[:, 0] * 10.0)
                trailer = b''
            else:
                slices = np.zeros(len(group), dtype=ATTITUDE_SLICE)
                slices['roll'] = np.round(values[:, 0] * 100.0)
                slices['pitch'] = np.round(values[:, 1] * 100.0)
                slices['heave'] = np.round(values[:, 2] * 100.0)
                if stored is not None and len(stored) == len(group):
                    slices['status'] = stored['status']
                    slices['heading'] = stored['heading']
                trailer = bytes([f.get('sensor_description', 0)])
            slices['time'] = offsets

            header = SliceHeader(*self._stamp(start, f), len(group))
            self._write_datagram(type_code, model, header.to_bytes() + slices.tobytes() + trailer)

    def _write_position(self, sample: SensorSample, f: dict, model: int):
        lon, lat = sample.values[:2]
        text = f.get('input', '').encode('latin-1')[:255]
        header = PositionHeader(*self._stamp(sample.time, f),
                                int(round(lat * 2.0e7)), int(round(lon * 1.0e7)),
                                f.get('quality', 0), f.get('speed', UNKNOWN_SPEED),
                                f.get('course', 0), f.get('heading', 0), f.get('system', 0),
                                len(text))
        self._write_datagram(Datagram.POS, model, header.to_bytes() + text)

    def _rawbeam_body(self, time_d: float, f: dict) -> bytes:
        beams = np.asarray(f['beams'], dtype=RAWBEAM_BEAM)
        header = RawBeamHeader(*self._stamp(time_d, f), f.get('nbeams_max', len(beams)),
                               len(beams), f.get('ssv', 0))
        return header.to_bytes() + beams.tobytes()

    def _sidescan_body(self, time_d: float, f: dict, arrays: dict) -> bytes:
        beams = np.zeros(len(arrays['beam_index']), dtype=SS_BEAM)
        for name in SS_BEAM.names:
            beams[name] = arrays[name]
        samples = np.asarray(arrays['samples']).astype('i1')
        if int(beams['beam_samples'].sum()) != len(samples):
            raise ValueError("Seabed image sample count does not match its beam table")
        header = SidescanHeader(*self._stamp(time_d, f), f.get('max_range', 0),
                                f.get('r_zero', 0), f.get('r_zero_corr', 0),
                                f.get('tvg_start', 0), f.get('tvg_stop', 0), f.get('bsn', 0),
                                f.get('bso', 0), f.get('tx', 0), f.get('tvg_crossover', 0),
                                len(beams))
        return header.to_bytes() + beams.tobytes() + samples.tobytes()

    def _write_ping(self, ping: Ping):
        n = ping.num_beams
        if n > MAX_BEAMS:
            raise ValueError(f"Ping has {n} beams, Simrad maximum is {MAX_BEAMS}")
        if not ping.has(BeamField.BATHYMETRY | BeamField.SPHERICAL):
            raise ValueError(f"Ping {ping.ping_number} has no resolved bathymetry and angles")

        f = ping.fields
        model = self._model(f)
        snapshot = ping.snapshot

        draft = f.get('draft')
        if draft is None:
            draft = snapshot.draft if snapshot is not None else 0.0
        offset_multiplier = int(draft // TRANSDUCER_DEPTH_WRAP)
        transducer_depth = int(round((draft - offset_multiplier * TRANSDUCER_DEPTH_WRAP) * 100.0))

        heading = f.get('heading')
        if heading is None:
            heading = int(round((snapshot.heading if snapshot is not None else 0.0) * 100.0)) % 36000

        relative = ping.beams['depth'] - draft
        depth_resolution = f.get('depth_resolution')
        if depth_resolution is None:
            depth_resolution = max(1, int(np.ceil(np.abs(relative).max(initial=0.0) * 100.0 / 32767.0)))
        distance_resolution = f.get('distance_resolution')
        if distance_resolution is None:
            spread = max(np.abs(ping.beams['across']).max(initial=0.0),
                         np.abs(ping.beams['along']).max(initial=0.0))
            distance_resolution = max(1, int(np.ceil(spread * 100.0 / 32767.0)))

        beams = np.zeros(n, dtype=bath_beam_dtype(model))
        raw_depth = np.round(relative * 100.0 / depth_resolution)
        if ping.has(BeamField.FLAGS):
            raw_depth[ping.beams['flags'] == BeamFlag.NULL] = 0
        beams['depth'] = raw_depth
        beams['across'] = np.round(ping.beams['across'] * 100.0 / distance_resolution)
        beams['along'] = np.round(ping.beams['along'] * 100.0 / distance_resolution)
        beams['depression'] = np.round((90.0 - ping.beams['takeoff']) * 100.0)
        beams['azimuth'] = np.round(ping.beams['azimuth'] * 100.0) % 36000
        for name, key in (('range', 'time_delay'), ('amplitude', 'intensity'), ('quality', 'quality')):
            if key in ping.beams:
                beams[name] = ping.beams[key]
        beams['window'] = f.get('window', 0)
        beams['beam_number'] = f.get('beam_number', np.arange(1, n + 1))

        stamp = self._stamp(ping.time, dict(f, count=ping.ping_number))
        header = BathHeader(*stamp, heading, int(round(ping.sound_velocity * 10.0)),
                            transducer_depth, max(f.get('nbeams_max', n), n), n,
                            depth_resolution, distance_resolution, f.get('sample_rate', 0))
        body = header.to_bytes() + beams.tobytes() + struct.pack('>b', offset_multiplier)
        self._write_datagram(Datagram.BATH, model, body)

        rawbeam = f.get('rawbeam')
        if rawbeam is not None:
            self._write_datagram(Datagram.RAWBEAM, model,
                                 self._rawbeam_body(ping.time, dict(rawbeam, count=ping.ping_number)))
        for sidescan in ping.sidescan:
            if sidescan.tag != 'SS':
                self.logger.debug(f"No Simrad datagram for {sidescan.tag} sidescan")
                continue
            sf = dict(sidescan.fields, count=ping.ping_number)
            self._write_datagram(Datagram.SS, model, self._sidescan_body(ping.time, sf, sidescan.arrays))
