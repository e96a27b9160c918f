"""Shared test fixtures for Razer RGB tests.

Mock setup (rumps, settings, make_app) lives in helpers.py to avoid
double-execution issues with pytest conftest loading.
"""

import sys
import os
import pytest

# Ensure the project root and tests dir are on the path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))
sys.path.insert(0, os.path.dirname(__file__))

# Trigger mock setup by importing helpers (runs once per process)
import helpers  # noqa: F401


@pytest.fixture
def mock_keyboard():
    """A keyboard dict matching the structure returned by scan_keyboards()."""
    return {
        "name": "Razer Ornata V3",
        "pid": 0x02A1,
        "interfaces": [
            {"path": b"/dev/mock-kbd-0", "interface_number": 0},
            {"path": b"/dev/mock-kbd-1", "interface_number": 1},
            {"path": b"/dev/mock-kbd-2", "interface_number": 2},
        ],
    }


@pytest.fixture
def hid_entries():
    """Raw hid.enumerate() output: one entry per usage page, paths repeat."""
    def entry(path, iface, usage_page):
        return {
            "path": path,
            "vendor_id": 0x1532,
            "product_id": 0x02A1,
            "serial_number": "",
            "product_string": "Razer Ornata V3",
            "interface_number": iface,
            "usage_page": usage_page,
        }
    return [
        entry(b"/dev/mock-kbd-0", 0, 0x0001),
        entry(b"/dev/mock-kbd-1", 1, 0x000C),
        entry(b"/dev/mock-kbd-1", 1, 0x0001),
        entry(b"/dev/mock-kbd-2", 2, 0x0001),
        entry(b"/dev/mock-kbd-2", 2, 0xFF00),
    ]


@pytest.fixture
def channel():
    """A control channel whose device answers every command with success."""
    return helpers.MockChannel()


@pytest.fixture
def fresh_size_check(monkeypatch):
    """Forget that the report size was already verified in this process."""
    from razer_transport import TransportClient
    monkeypatch.setattr(TransportClient, "_size_verified", False)
