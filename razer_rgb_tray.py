#!/usr/bin/env python3
"""Razer RGB Tray: macOS menu bar lighting control for the Razer Ornata V3."""

import sys
import os
import logging
import subprocess
import threading
import traceback
from logging.handlers import RotatingFileHandler

sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

import rumps
from razer_common import (
    ORNATA_V3_NAME,
    CommandResult,
    Effect,
    __version__,
)
from razer_transport import BACKENDS, TransportClient, open_keyboard
from settings import Settings

# --- Constants ---
WAKE_DELAY = 2.0             # seconds to wait after wake for USB re-enumeration
MAX_CONSECUTIVE_FAILURES = 3 # show warning glyph after this many failures
KEYBOARD_GLYPH = "\u2328\ufe0f"
WARNING_GLYPH = "\u26a0\ufe0f"

COLOR_CHOICES = {
    "Green": (0, 255, 0),
    "Blue": (0, 0, 255),
    "Red": (255, 0, 0),
}

BACKEND_CHOICES = {
    "usb": "USB control transfers",
    "hid": "HID feature reports",
}

# Results that suggest the device handle went stale
HANDLE_FAILURES = (CommandResult.TRANSFER_ERROR, CommandResult.READ_ERROR)

# --- Logging setup ---
LOG_PATH = os.path.expanduser("~/Library/Logs/razer-rgb-tray.log")
os.makedirs(os.path.dirname(LOG_PATH), exist_ok=True)

logger = logging.getLogger("razer_rgb_tray")
logger.setLevel(logging.DEBUG)

_handler_exists = any(
    isinstance(h, RotatingFileHandler) and getattr(h, "baseFilename", None) == LOG_PATH
    for h in logger.handlers
)
if not _handler_exists:
    _handler = RotatingFileHandler(LOG_PATH, maxBytes=5 * 1024 * 1024, backupCount=3)
    _handler.setFormatter(logging.Formatter("%(asctime)s [%(levelname)s] %(message)s"))
    logger.addHandler(_handler)
else:
    _handler = next(
        h for h in logger.handlers
        if isinstance(h, RotatingFileHandler) and getattr(h, "baseFilename", None) == LOG_PATH
    )

# Route protocol and transport logs to the same file so USB errors are visible
for _name in ("razer_common", "razer_transport"):
    logging.getLogger(_name).setLevel(logging.DEBUG)
    if _handler not in logging.getLogger(_name).handlers:
        logging.getLogger(_name).addHandler(_handler)


def effect_for_action(action, settings):
    """Map a menu action key ("static:Red", "spectrum", ...) to an Effect."""
    kind, _, color = action.partition(":")
    if kind in ("static", "breathing"):
        if color not in COLOR_CHOICES:
            raise ValueError(f"Unknown color in action: {action!r}")
        rgb = COLOR_CHOICES[color]
        return Effect.static(*rgb) if kind == "static" else Effect.breathing(*rgb)
    if kind == "spectrum":
        return Effect.spectrum()
    if kind == "wave":
        return Effect.wave(settings.get("wave_direction"), settings.get("wave_speed"))
    raise ValueError(f"Unknown action: {action!r}")


def _setup_wake_observer(callback):
    """Register for NSWorkspaceDidWakeNotification. Returns observer to prevent GC."""
    try:
        import objc
        from Foundation import NSObject
        from AppKit import NSWorkspace

        class WakeObserver(NSObject):
            def initWithCallback_(self, cb):
                self = objc.super(WakeObserver, self).init()
                if self is None:
                    return None
                self._callback = cb
                return self

            def handleWake_(self, notification):
                try:
                    self._callback()
                except Exception:
                    logger.error("Wake callback error: %s", traceback.format_exc())

        observer = WakeObserver.alloc().initWithCallback_(callback)
        center = NSWorkspace.sharedWorkspace().notificationCenter()
        center.addObserver_selector_name_object_(
            observer,
            "handleWake:",
            "NSWorkspaceDidWakeNotification",
            None,
        )
        logger.info("Wake observer registered")
        return observer
    except Exception:
        logger.warning("Could not register wake observer: %s", traceback.format_exc())
        return None


class RazerRGBApp(rumps.App):
    def __init__(self):
        super().__init__("", quit_button=None)
        self.settings = Settings()
        self.client = None
        self.last_result = None
        self.consecutive_failures = 0
        self._command_lock = threading.Lock()
        self._wake_observer = None

        self.device_name_item = rumps.MenuItem("No device found", callback=None)
        self.last_result_item = rumps.MenuItem("Last: --", callback=None)

        self.static_menu = rumps.MenuItem("Static Colors")
        self.breathing_menu = rumps.MenuItem("Breathing")
        for label in COLOR_CHOICES:
            self.static_menu.add(rumps.MenuItem(
                label, callback=self._make_effect_callback(f"static:{label}")))
            self.breathing_menu.add(rumps.MenuItem(
                label, callback=self._make_effect_callback(f"breathing:{label}")))
        self.spectrum_item = rumps.MenuItem(
            "Spectrum Cycling", callback=self._make_effect_callback("spectrum"))
        self.wave_item = rumps.MenuItem("Wave", callback=self._make_effect_callback("wave"))

        self.reconnect_item = rumps.MenuItem("Reconnect", callback=self.reconnect)
        self.open_log_item = rumps.MenuItem("Open Log File", callback=self._open_log_file)
        self.about_item = rumps.MenuItem("About", callback=self._show_about)
        self.quit_item = rumps.MenuItem("Quit", callback=rumps.quit_application)

        self.settings_menu = rumps.MenuItem("Settings")
        self._build_settings_menu()

        self.menu = [
            self.device_name_item,
            self.last_result_item, None,
            self.static_menu,
            self.breathing_menu,
            self.spectrum_item,
            self.wave_item, None,
            self.reconnect_item,
            self.open_log_item, None,
            self.settings_menu,
            self.about_item, None,
            self.quit_item,
        ]
        self.title = KEYBOARD_GLYPH

        logger.info("Starting Razer RGB Tray %s", __version__)
        self.connect()
        if self.settings.get("restore_last_effect") and self.settings.get("last_effect"):
            self._schedule_effect(self.settings.get("last_effect"))

        self._wake_observer = _setup_wake_observer(self._on_wake)

    # --- Settings menu ---
    def _build_settings_menu(self):
        """Build the Settings submenu with current values."""
        if getattr(self.settings_menu, '_menu', None) is not None:
            self.settings_menu.clear()

        backend_menu = rumps.MenuItem("Backend")
        current_backend = self.settings.get("backend")
        for backend in BACKENDS:
            item = rumps.MenuItem(BACKEND_CHOICES[backend],
                                  callback=self._make_backend_callback(backend))
            item.state = 1 if backend == current_backend else 0
            backend_menu.add(item)
        self.settings_menu.add(backend_menu)

        restore_item = rumps.MenuItem("Restore Last Effect", callback=self._toggle_restore)
        restore_item.state = 1 if self.settings.get("restore_last_effect") else 0
        self.settings_menu.add(restore_item)

    def _make_backend_callback(self, backend):
        def callback(_):
            self.settings.set("backend", backend)
            logger.info("Backend changed to %s", backend)
            self._build_settings_menu()
            self.reconnect()
        return callback

    def _toggle_restore(self, sender):
        enabled = not bool(sender.state)
        self.settings.set("restore_last_effect", enabled)
        logger.info("Restore last effect %s", "enabled" if enabled else "disabled")
        self._build_settings_menu()

    def _make_effect_callback(self, action):
        def callback(_):
            self._schedule_effect(action)
        return callback

    def _open_log_file(self, _=None):
        """Reveal the app log file in Finder."""
        try:
            subprocess.run(
                ["open", "-R", LOG_PATH],
                check=False,
                capture_output=True,
                text=True,
                timeout=5,
            )
            logger.info("Opened log file in Finder: %s", LOG_PATH)
        except Exception:
            logger.error("Failed to reveal log file: %s", traceback.format_exc())

    def _show_about(self, _=None):
        rumps.alert(
            title="Razer RGB Control",
            message=f"{ORNATA_V3_NAME} Controller\nVersion {__version__}",
        )

    # --- Device handle ---
    def connect(self):
        """Open the keyboard with the configured backend."""
        self.disconnect()
        try:
            channel = open_keyboard(self.settings.get("backend"))
        except Exception:
            logger.error("connect error: %s", traceback.format_exc())
            channel = None
        if channel is None:
            self.device_name_item.title = "No device found"
            return False
        self.client = TransportClient(channel, effect_ids=self.settings.effect_ids())
        self.device_name_item.title = ORNATA_V3_NAME
        return True

    def disconnect(self):
        if self.client is None:
            return
        try:
            self.client.close()
        except Exception:
            logger.debug("Closing device handle failed: %s", traceback.format_exc())
        self.client = None

    def reconnect(self, _=None):
        logger.info("Reconnect requested")
        self._run_in_background("reconnect", self.connect)

    # --- Commands ---
    def _run_in_background(self, desc, task):
        """Dispatch task to a daemon thread holding the command lock (non-blocking).
        Keeps the main Cocoa run loop responsive; skipped if a command is in flight.
        """
        if not self._command_lock.acquire(blocking=False):
            logger.debug("Command already in progress, skipping %s", desc)
            return False

        def worker():
            try:
                task()
            except Exception:
                logger.error("Background %s error: %s", desc, traceback.format_exc())
            finally:
                self._command_lock.release()

        threading.Thread(target=worker, daemon=True).start()
        return True

    def _schedule_effect(self, action):
        """Run the effect command on a background thread, one at a time."""
        return self._run_in_background(action, lambda: self.apply_effect(action))

    def apply_effect(self, action):
        """Send the effect for a menu action and update the status items."""
        try:
            effect = effect_for_action(action, self.settings)
            if self.client is None:
                self.connect()
            if self.client is None:
                result = CommandResult.DEVICE_NOT_FOUND
            else:
                logger.info("Setting %s", effect.describe())
                result = self.client.send_effect(effect)
        except Exception:
            logger.error("apply_effect error: %s", traceback.format_exc())
            result = CommandResult.COMMAND_FAILED
            effect = None
        self._record_result(action, effect, result)
        return result

    def _record_result(self, action, effect, result):
        self.last_result = result
        self.last_result_item.title = f"Last: {result.label}"
        if result.ok:
            self.consecutive_failures = 0
            self.title = KEYBOARD_GLYPH
            logger.info("Effect applied: %s", effect.describe())
            if self.settings.get("last_effect") != action:
                self.settings.set("last_effect", action)
            return

        self.consecutive_failures += 1
        logger.warning("Effect %s failed: %s", action, result.label)
        if result in HANDLE_FAILURES:
            # Reopen on the next command
            self.disconnect()
            self.device_name_item.title = "No device found"
        if self.consecutive_failures >= MAX_CONSECUTIVE_FAILURES:
            self.title = f"{KEYBOARD_GLYPH} {WARNING_GLYPH}"

    # --- Wake handler ---
    def _on_wake(self):
        logger.info("System wake detected, scheduling reconnect in %.1fs", WAKE_DELAY)
        t = threading.Timer(WAKE_DELAY, self._wake_refresh)
        t.daemon = True
        t.start()

    def _wake_refresh(self):
        if not self._command_lock.acquire(blocking=False):
            logger.debug("Command in progress, skipping wake refresh")
            return
        try:
            self.connect()
            last = self.settings.get("last_effect")
            if self.client is not None and last and self.settings.get("restore_last_effect"):
                self.apply_effect(last)
        except Exception:
            logger.error("Wake refresh error: %s", traceback.format_exc())
        finally:
            self._command_lock.release()


def main():
    RazerRGBApp().run()


if __name__ == "__main__":
    main()
