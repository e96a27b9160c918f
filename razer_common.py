#!/usr/bin/env python3

import enum
import logging
import struct
from dataclasses import dataclass, field, replace

__version__ = "0.1.0"

logger = logging.getLogger("razer_common")

# Razer response status codes (byte 0 of the 90-byte report)
RAZER_STATUS_NEW = 0x00
RAZER_STATUS_BUSY = 0x01
RAZER_STATUS_SUCCESS = 0x02
RAZER_STATUS_FAILURE = 0x03
RAZER_STATUS_TIMEOUT = 0x04
RAZER_STATUS_NOT_SUPPORTED = 0x05

RAZER_VID = 0x1532
ORNATA_V3_PID = 0x02A1
ORNATA_V3_NAME = "Razer Ornata V3"

REPORT_LEN = 90
ARGUMENTS_LEN = 80
CRC_OFFSET = 88

# status, transaction_id, remaining_packets, protocol_type, data_size,
# command_class, command_id, arguments, crc, reserved
REPORT_FORMAT = ">BBHBBBB80sBB"

TRANSACTION_ID = 0x1F
VARSTORE = 0x01
BACKLIGHT_LED = 0x05

EXTENDED_MATRIX_CLASS = 0x0F
SET_EFFECT_CMD = 0x02
STATIC_DATA_SIZE = 0x09
ANIMATED_DATA_SIZE = 0x06

BREATHING_SINGLE_COLOR = 0x01

EFFECT_STATIC = "static"
EFFECT_BREATHING = "breathing"
EFFECT_SPECTRUM = "spectrum"
EFFECT_WAVE = "wave"
EFFECT_NAMES = (EFFECT_STATIC, EFFECT_BREATHING, EFFECT_SPECTRUM, EFFECT_WAVE)

# Extended matrix effect ids. Firmware revisions disagree on spectrum/wave,
# so these are only defaults; settings may override them per keyboard.
DEFAULT_EFFECT_ID_MAP = {
    EFFECT_STATIC: 0x01,
    EFFECT_BREATHING: 0x02,
    EFFECT_SPECTRUM: 0x03,
    EFFECT_WAVE: 0x04,
}

STATUS_NAMES = {
    RAZER_STATUS_NEW: "new/pending",
    RAZER_STATUS_BUSY: "busy",
    RAZER_STATUS_SUCCESS: "success",
    RAZER_STATUS_FAILURE: "failure",
    RAZER_STATUS_TIMEOUT: "timeout",
    RAZER_STATUS_NOT_SUPPORTED: "not supported",
}


class RazerError(Exception):
    """Base class for protocol and discovery errors."""


class ResponseTooShort(RazerError, ValueError):
    def __init__(self, length):
        super().__init__(f"Response too short: {length} bytes (need {REPORT_LEN})")
        self.length = length


class DeviceNotFound(RazerError):
    pass


class CommandResult(enum.Enum):
    SUCCESS = "success"
    NOT_SUPPORTED = "not supported"
    COMMAND_FAILED = "command failed"
    RESPONSE_TOO_SHORT = "response too short"
    TRANSFER_ERROR = "transfer error"
    READ_ERROR = "read error"
    DEVICE_NOT_FOUND = "device not found"

    @property
    def ok(self) -> bool:
        return self is CommandResult.SUCCESS

    @property
    def label(self) -> str:
        return self.value.capitalize()


def status_to_result(status: int) -> CommandResult:
    if status == RAZER_STATUS_SUCCESS:
        return CommandResult.SUCCESS
    if status == RAZER_STATUS_NOT_SUPPORTED:
        return CommandResult.NOT_SUPPORTED
    return CommandResult.COMMAND_FAILED


def _check_byte(name, value):
    if isinstance(value, bool) or not isinstance(value, int) or not 0 <= value <= 0xFF:
        raise ValueError(f"{name} must be an integer 0-255, got {value!r}")
    return value


@dataclass(frozen=True)
class EffectIds:
    """Effect id table for the extended matrix "set effect" command."""
    static: int = DEFAULT_EFFECT_ID_MAP[EFFECT_STATIC]
    breathing: int = DEFAULT_EFFECT_ID_MAP[EFFECT_BREATHING]
    spectrum: int = DEFAULT_EFFECT_ID_MAP[EFFECT_SPECTRUM]
    wave: int = DEFAULT_EFFECT_ID_MAP[EFFECT_WAVE]

    def __post_init__(self):
        for name in EFFECT_NAMES:
            _check_byte(f"{name} effect id", getattr(self, name))

    @classmethod
    def from_mapping(cls, mapping):
        """Build a table from a partial {name: id} dict, defaulting the rest."""
        unknown = set(mapping) - set(EFFECT_NAMES)
        if unknown:
            raise ValueError(f"Unknown effect names: {sorted(unknown)}")
        return cls(**mapping)

    def as_dict(self):
        return {name: getattr(self, name) for name in EFFECT_NAMES}

    def id_for(self, effect_name: str) -> int:
        if effect_name not in EFFECT_NAMES:
            raise ValueError(f"Unknown effect: {effect_name!r}")
        return getattr(self, effect_name)


DEFAULT_EFFECT_IDS = EffectIds()


@dataclass(frozen=True)
class Effect:
    """A lighting effect request. Use the classmethod constructors."""
    name: str
    red: int = 0
    green: int = 0
    blue: int = 0
    direction: int = 0
    speed: int = 0

    def __post_init__(self):
        if self.name not in EFFECT_NAMES:
            raise ValueError(f"Unknown effect: {self.name!r}")
        for attr in ("red", "green", "blue", "direction", "speed"):
            _check_byte(attr, getattr(self, attr))

    @classmethod
    def static(cls, red, green, blue):
        return cls(EFFECT_STATIC, red=red, green=green, blue=blue)

    @classmethod
    def breathing(cls, red, green, blue):
        return cls(EFFECT_BREATHING, red=red, green=green, blue=blue)

    @classmethod
    def spectrum(cls):
        return cls(EFFECT_SPECTRUM)

    @classmethod
    def wave(cls, direction, speed):
        return cls(EFFECT_WAVE, direction=direction, speed=speed)

    @property
    def rgb(self):
        return (self.red, self.green, self.blue)

    def describe(self) -> str:
        if self.name in (EFFECT_STATIC, EFFECT_BREATHING):
            return f"{self.name} #{self.red:02X}{self.green:02X}{self.blue:02X}"
        if self.name == EFFECT_WAVE:
            return f"wave (direction 0x{self.direction:02X}, speed 0x{self.speed:02X})"
        return self.name


@dataclass(frozen=True)
class RazerReport:
    """One 90-byte Razer feature report, encoded field by field."""
    status: int = 0x00
    transaction_id: int = TRANSACTION_ID
    remaining_packets: int = 0x0000
    protocol_type: int = 0x00
    data_size: int = 0x00
    command_class: int = 0x00
    command_id: int = 0x00
    arguments: bytes = field(default=bytes(ARGUMENTS_LEN))
    crc: int = 0x00
    reserved: int = 0x00

    def __post_init__(self):
        if len(self.arguments) > ARGUMENTS_LEN:
            raise ValueError(f"Arguments too long ({len(self.arguments)} > {ARGUMENTS_LEN} bytes)")
        # Keep arguments fixed-width so equality is field-for-field
        padded = bytes(self.arguments).ljust(ARGUMENTS_LEN, b"\x00")
        object.__setattr__(self, "arguments", padded)

    def to_bytes(self) -> bytes:
        return struct.pack(
            REPORT_FORMAT,
            self.status & 0xFF,
            self.transaction_id & 0xFF,
            self.remaining_packets & 0xFFFF,
            self.protocol_type & 0xFF,
            self.data_size & 0xFF,
            self.command_class & 0xFF,
            self.command_id & 0xFF,
            self.arguments,
            self.crc & 0xFF,
            self.reserved & 0xFF,
        )

    def with_crc(self):
        return replace(self, crc=calculate_crc(self.to_bytes()))


def calculate_crc(report_data: bytes) -> int:
    crc = 0
    for i in range(2, CRC_OFFSET):
        if i < len(report_data):
            crc ^= report_data[i]
    return crc


def parse_report(data) -> RazerReport:
    """Parse a raw response buffer into a RazerReport.

    Only the first REPORT_LEN bytes are used. The response CRC is not checked;
    the device's status byte is what matters to callers.
    """
    if data is None or len(data) < REPORT_LEN:
        raise ResponseTooShort(len(data) if data else 0)
    fields = struct.unpack(REPORT_FORMAT, bytes(data[:REPORT_LEN]))
    return RazerReport(*fields)


def construct_razer_report(transaction_id: int, command_class: int, command_id: int,
                           data_size: int, arguments: list) -> RazerReport:
    """Build a report with its CRC filled in. Arguments are zero-padded to 80 bytes."""
    if len(arguments) > ARGUMENTS_LEN:
        raise ValueError("Arguments list too long (max 80 bytes)")
    try:
        arg_bytes = bytes(arguments)
    except (TypeError, ValueError) as e:
        raise ValueError(f"Arguments must be byte-like integers (0-255): {e}") from e
    report = RazerReport(
        transaction_id=transaction_id & 0xFF,
        data_size=data_size & 0xFF,
        command_class=command_class & 0xFF,
        command_id=command_id & 0xFF,
        arguments=arg_bytes,
    )
    return report.with_crc()


def build_arguments(effect: Effect, effect_ids: EffectIds = DEFAULT_EFFECT_IDS) -> tuple:
    """Return (data_size, argument bytes) for an effect on the backlight matrix."""
    effect_id = effect_ids.id_for(effect.name)
    if effect.name == EFFECT_STATIC:
        return STATIC_DATA_SIZE, [VARSTORE, BACKLIGHT_LED, effect_id, 0x00, 0x00, 0x01,
                                  effect.red, effect.green, effect.blue]
    if effect.name == EFFECT_BREATHING:
        return STATIC_DATA_SIZE, [VARSTORE, BACKLIGHT_LED, effect_id, BREATHING_SINGLE_COLOR,
                                  0x00, 0x01, effect.red, effect.green, effect.blue]
    if effect.name == EFFECT_WAVE:
        return ANIMATED_DATA_SIZE, [VARSTORE, BACKLIGHT_LED, effect_id,
                                    effect.direction, effect.speed]
    return ANIMATED_DATA_SIZE, [VARSTORE, BACKLIGHT_LED, effect_id]


def build_effect_report(effect: Effect, effect_ids: EffectIds = DEFAULT_EFFECT_IDS) -> RazerReport:
    data_size, arguments = build_arguments(effect, effect_ids)
    report = construct_razer_report(TRANSACTION_ID, EXTENDED_MATRIX_CLASS, SET_EFFECT_CMD,
                                    data_size, arguments)
    logger.debug("Built %s report: data_size=0x%02X crc=0x%02X",
                 effect.describe(), report.data_size, report.crc)
    return report
