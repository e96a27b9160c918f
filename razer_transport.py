#!/usr/bin/env python3

import time
import logging
import threading

import hid
import usb.core
import usb.util

from razer_common import (
    RAZER_VID,
    ORNATA_V3_PID,
    ORNATA_V3_NAME,
    REPORT_LEN,
    STATUS_NAMES,
    DEFAULT_EFFECT_IDS,
    CommandResult,
    DeviceNotFound,
    ResponseTooShort,
    build_effect_report,
    parse_report,
    status_to_result,
)

logger = logging.getLogger("razer_transport")

# HID class requests over the default control pipe
SET_REPORT_REQUEST_TYPE = 0x21  # host->device | class | interface
GET_REPORT_REQUEST_TYPE = 0xA1  # device->host | class | interface
HID_SET_REPORT = 0x09
HID_GET_REPORT = 0x01
FEATURE_REPORT_VALUE = 0x0300   # report type feature (3), report id 0
LIGHTING_INTERFACE = 0x02

TRANSFER_TIMEOUT_MS = 5000
SETTLE_DELAY = 0.0006           # seconds; device can't be queried right after a write

BACKEND_USB = "usb"
BACKEND_HID = "hid"
BACKENDS = (BACKEND_USB, BACKEND_HID)


class UsbControlChannel:
    """Feature reports as raw HID class control transfers (pyusb)."""

    def __init__(self, dev):
        self.dev = dev

    @property
    def description(self):
        return f"usb {self.dev.idVendor:04X}:{self.dev.idProduct:04X}"

    def set_feature_report(self, payload: bytes, timeout_ms: int = TRANSFER_TIMEOUT_MS) -> int:
        return self.dev.ctrl_transfer(
            SET_REPORT_REQUEST_TYPE,
            HID_SET_REPORT,
            FEATURE_REPORT_VALUE,
            LIGHTING_INTERFACE,
            payload,
            timeout=timeout_ms,
        )

    def get_feature_report(self, length: int, timeout_ms: int = TRANSFER_TIMEOUT_MS) -> bytes:
        data = self.dev.ctrl_transfer(
            GET_REPORT_REQUEST_TYPE,
            HID_GET_REPORT,
            FEATURE_REPORT_VALUE,
            LIGHTING_INTERFACE,
            length,
            timeout=timeout_ms,
        )
        return bytes(data)

    def close(self):
        try:
            usb.util.dispose_resources(self.dev)
        except usb.core.USBError as e:
            logger.debug("dispose_resources failed: %s", e)


class HidFeatureChannel:
    """Feature reports through hidapi on the lighting interface.

    hidapi carries the report id as the first byte in both directions, so it
    is added on write and stripped on read. hidapi has no per-call timeout for
    feature reports; the OS transfer timeout applies.
    """

    def __init__(self, dev, path=None):
        self.dev = dev
        self.path = path

    @property
    def description(self):
        return f"hid {self.path!r}"

    def set_feature_report(self, payload: bytes, timeout_ms: int = TRANSFER_TIMEOUT_MS) -> int:
        written = self.dev.send_feature_report(b"\x00" + bytes(payload))
        if written < 0:
            raise OSError("send_feature_report failed")
        # Don't count the report id prefix
        return max(written - 1, 0)

    def get_feature_report(self, length: int, timeout_ms: int = TRANSFER_TIMEOUT_MS) -> bytes:
        data = self.dev.get_feature_report(0x00, length + 1)
        if not data:
            return b""
        return bytes(data[1:])

    def close(self):
        try:
            self.dev.close()
        except (OSError, ValueError) as e:
            logger.debug("hid close failed: %s", e)


class TransportClient:
    """Write a report, let the device settle, read back its status.

    One command at a time per device handle; send() holds a lock for the
    whole exchange.
    """

    _size_verified = False

    def __init__(self, channel, effect_ids=DEFAULT_EFFECT_IDS,
                 timeout_ms=TRANSFER_TIMEOUT_MS, settle_delay=SETTLE_DELAY):
        self.channel = channel
        self.effect_ids = effect_ids
        self.timeout_ms = timeout_ms
        self.settle_delay = settle_delay
        self._lock = threading.Lock()

    @classmethod
    def _verify_report_size(cls, payload):
        if cls._size_verified:
            return
        if len(payload) != REPORT_LEN:
            raise AssertionError(f"Razer report is {len(payload)} bytes, expected {REPORT_LEN}")
        cls._size_verified = True

    def send(self, report, command_desc: str = "") -> CommandResult:
        payload = report.to_bytes() if hasattr(report, "to_bytes") else bytes(report)
        self._verify_report_size(payload)

        with self._lock:
            try:
                written = self.channel.set_feature_report(payload, self.timeout_ms)
            except (OSError, ValueError) as e:
                logger.warning("[%s] Write transfer failed: %s", command_desc, e)
                return CommandResult.TRANSFER_ERROR
            if written is not None and written != REPORT_LEN:
                logger.warning("[%s] Partial write: %d/%d bytes", command_desc, written, REPORT_LEN)
                return CommandResult.TRANSFER_ERROR

            time.sleep(self.settle_delay)

            try:
                response = self.channel.get_feature_report(REPORT_LEN, self.timeout_ms)
            except (OSError, ValueError) as e:
                logger.warning("[%s] Read transfer failed: %s", command_desc, e)
                return CommandResult.READ_ERROR

        try:
            parsed = parse_report(response)
        except ResponseTooShort as e:
            logger.warning("[%s] %s", command_desc, e)
            return CommandResult.RESPONSE_TOO_SHORT

        result = status_to_result(parsed.status)
        if result.ok:
            logger.debug("[%s] Device status 0x%02X (success)", command_desc, parsed.status)
        else:
            logger.warning("[%s] Device returned %s (status 0x%02X)", command_desc,
                           STATUS_NAMES.get(parsed.status, "unknown"), parsed.status)
        return result

    def send_effect(self, effect) -> CommandResult:
        report = build_effect_report(effect, self.effect_ids)
        return self.send(report, effect.describe())

    def close(self):
        self.channel.close()


def scan_keyboards() -> list:
    """Enumerate Ornata V3 HID interfaces, grouped per physical keyboard."""
    devices_grouped = {}
    try:
        enumerated = hid.enumerate(RAZER_VID, ORNATA_V3_PID)
    except Exception as e:
        logger.error("Error enumerating HID devices: %s", e)
        return []
    for dev in enumerated or []:
        try:
            path = dev['path']
            interface_num = dev.get('interface_number', -1)
            serial = dev.get('serial_number', 'N/A')
            key = (serial, dev['product_id'])
            if key not in devices_grouped:
                devices_grouped[key] = {
                    'name': ORNATA_V3_NAME,
                    'pid': dev['product_id'],
                    'interfaces': []
                }
            # hid.enumerate returns one entry per usage page; keep paths unique
            existing_paths = {i['path'] for i in devices_grouped[key]['interfaces']}
            if path not in existing_paths:
                devices_grouped[key]['interfaces'].append({
                    'path': path,
                    'interface_number': interface_num
                })
        except (KeyError, TypeError) as e:
            logger.warning("Skipping malformed HID entry: %s", e)
            continue
    return list(devices_grouped.values())


def find_usb_device():
    try:
        return usb.core.find(idVendor=RAZER_VID, idProduct=ORNATA_V3_PID)
    except usb.core.NoBackendError as e:
        logger.error("No libusb backend available: %s", e)
        return None


def _lighting_interface_path(keyboard):
    interfaces = sorted(
        keyboard.get('interfaces', []),
        key=lambda iface: (0 if iface.get('interface_number') == LIGHTING_INTERFACE else 1,
                           iface.get('interface_number', 999)),
    )
    return interfaces[0]['path'] if interfaces else None


def _open_hid_channel():
    keyboards = scan_keyboards()
    if not keyboards:
        return None
    path = _lighting_interface_path(keyboards[0])
    if path is None:
        return None
    dev = hid.device()
    try:
        dev.open_path(path)
    except (OSError, IOError) as e:
        logger.warning("Cannot open HID path %r: %s", path, e)
        return None
    return HidFeatureChannel(dev, path)


def open_keyboard(backend: str = BACKEND_USB, required: bool = False):
    """Return an opened control channel for the keyboard, or None."""
    if backend not in BACKENDS:
        raise ValueError(f"Unknown backend: {backend!r}")
    channel = None
    if backend == BACKEND_USB:
        dev = find_usb_device()
        if dev is not None:
            channel = UsbControlChannel(dev)
    else:
        channel = _open_hid_channel()

    if channel is None:
        logger.info("No %s found (Vendor ID: 0x%04X, Product ID: 0x%04X)",
                    ORNATA_V3_NAME, RAZER_VID, ORNATA_V3_PID)
        if required:
            raise DeviceNotFound(f"{ORNATA_V3_NAME} not connected")
        return None
    logger.info("Found keyboard (Vendor ID: 0x%04X, Product ID: 0x%04X) via %s",
                RAZER_VID, ORNATA_V3_PID, channel.description)
    return channel
