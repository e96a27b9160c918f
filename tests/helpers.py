"""Shared test helpers for Razer RGB tests.

This module contains:
1. Mock response/channel helpers for the feature-report protocol
2. Centralized rumps mock (installed once, shared across all test files)
3. make_app factory for tray app tests
"""

import sys
import os
import json
import tempfile
from unittest.mock import patch, MagicMock


# =====================================================================
# Protocol test helpers
# =====================================================================

def make_razer_response(status=0x02, length=90, command_class=0x0F, command_id=0x02):
    """Build a mock 90-byte response as the keyboard returns it.

    Args:
        status: Status byte at report position 0.
        length: Truncate (or pad) the buffer to this many bytes.
    """
    response = [0] * 90
    response[0] = status
    response[1] = 0x1F            # transaction_id
    response[5] = 0x09            # data_size
    response[6] = command_class
    response[7] = command_id
    crc = 0
    for i in range(2, 88):
        crc ^= response[i]
    response[88] = crc
    if length <= 90:
        return bytes(response[:length])
    return bytes(response + [0] * (length - 90))


class MockChannel:
    """Stand-in for a UsbControlChannel / HidFeatureChannel."""

    def __init__(self, response=None, raise_on_set=None, raise_on_get=None,
                 written=None, events=None):
        self.response = make_razer_response() if response is None else response
        self.raise_on_set = raise_on_set
        self.raise_on_get = raise_on_get
        self.written = written
        self.events = events if events is not None else []
        self.sent_reports = []
        self.get_calls = []
        self.closed = False
        self.description = "mock channel"

    def set_feature_report(self, payload, timeout_ms=5000):
        self.events.append("set")
        if self.raise_on_set:
            raise self.raise_on_set
        self.sent_reports.append(bytes(payload))
        return len(payload) if self.written is None else self.written

    def get_feature_report(self, length, timeout_ms=5000):
        self.events.append("get")
        self.get_calls.append((length, timeout_ms))
        if self.raise_on_get:
            raise self.raise_on_get
        return self.response

    def close(self):
        self.closed = True


class MockHIDDevice:
    """Mock hid.device() that returns configurable feature reports."""

    def __init__(self, response=None, raise_on_open=None):
        self.response = response
        self.raise_on_open = raise_on_open
        self.opened_path = None
        self.closed = False
        self.sent_reports = []
        self.get_feature_report_calls = []

    def open_path(self, path):
        if self.raise_on_open:
            raise self.raise_on_open
        self.opened_path = path

    def send_feature_report(self, data):
        self.sent_reports.append(bytes(data))
        return len(data)

    def get_feature_report(self, report_id, length):
        self.get_feature_report_calls.append((report_id, length))
        return self.response

    def close(self):
        self.closed = True


# =====================================================================
# Centralized rumps mock, installed once, shared by all test files
# =====================================================================

if "rumps" not in sys.modules or not hasattr(sys.modules["rumps"], "_is_test_mock"):
    mock_rumps = MagicMock()
    mock_rumps._is_test_mock = True
    mock_rumps.App = type("MockApp", (), {
        "__init__": lambda self, *a, **kw: None,
        "run": lambda self: None,
    })
    mock_rumps.timer = lambda interval: lambda func: func
    mock_rumps.quit_application = MagicMock()
    mock_rumps.notification = MagicMock()
    mock_rumps.alert = MagicMock()

    class _MockMenuItem:
        """Mock rumps.MenuItem with dict-like menu support."""
        def __init__(self, title="", callback=None, **kwargs):
            self.title = title
            self.callback = callback
            self.state = 0
            self._items = {}

        def clear(self):
            self._items = {}

        def add(self, item):
            if isinstance(item, _MockMenuItem):
                self._items[item.title] = item

        def __setitem__(self, key, value):
            self._items[key] = value

        def __getitem__(self, key):
            return self._items[key]

        def keys(self):
            return self._items.keys()

    mock_rumps.MenuItem = _MockMenuItem
    sys.modules["rumps"] = mock_rumps
else:
    mock_rumps = sys.modules["rumps"]

# Redirect settings so tests don't read real user config
import settings as settings_mod
settings_mod.CONFIG_DIR = tempfile.mkdtemp(prefix="razer-rgb-test-")
settings_mod.CONFIG_FILE = os.path.join(settings_mod.CONFIG_DIR, "settings.json")

# Import tray app AFTER rumps mock is installed
from razer_rgb_tray import RazerRGBApp


def reset_settings_file(data=None):
    if os.path.exists(settings_mod.CONFIG_FILE):
        os.remove(settings_mod.CONFIG_FILE)
    if data is not None:
        with open(settings_mod.CONFIG_FILE, "w") as f:
            json.dump(data, f)


class InlineThread:
    """Stand-in for threading.Thread that runs its target on start()."""

    def __init__(self, target=None, args=(), kwargs=None, daemon=None):
        self._target = target
        self._args = args
        self._kwargs = kwargs or {}
        self.daemon = daemon

    def start(self):
        self._target(*self._args, **self._kwargs)


def make_app(channel=None, settings_data=None, thread_cls=InlineThread):
    """Create a RazerRGBApp with mocked device discovery.

    Background work started during startup runs through thread_cls
    (inline by default).
    """
    reset_settings_file(settings_data)
    with patch("razer_rgb_tray.open_keyboard") as mock_open, \
         patch("razer_rgb_tray._setup_wake_observer") as mock_wake, \
         patch("razer_rgb_tray.threading.Thread", thread_cls):
        mock_open.return_value = channel
        mock_wake.return_value = None
        app = RazerRGBApp()
    return app
