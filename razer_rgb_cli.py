#!/usr/bin/env python3
"""
Razer Ornata V3 CLI entry point (argparse).
"""

import argparse
import logging
import sys

from razer_common import (
    ORNATA_V3_NAME,
    ORNATA_V3_PID,
    RAZER_VID,
    CommandResult,
    DeviceNotFound,
    Effect,
)
from razer_transport import (
    BACKEND_USB,
    BACKENDS,
    TransportClient,
    find_usb_device,
    open_keyboard,
    scan_keyboards,
)
from settings import Settings

logger = logging.getLogger("razer_rgb_cli")


def _byte(text):
    value = int(text, 0)
    if not 0 <= value <= 0xFF:
        raise argparse.ArgumentTypeError(f"{text} is not in range 0-255")
    return value


def build_parser():
    parser = argparse.ArgumentParser(
        prog="razer-rgb",
        description=f"{ORNATA_V3_NAME} RGB control over USB feature reports",
    )
    parser.add_argument("--backend", choices=BACKENDS,
                        help="Control channel backend (default: from settings)")
    parser.add_argument("-v", "--verbose", action="store_true",
                        help="Log protocol details")
    sub = parser.add_subparsers(dest="command")

    sub.add_parser("scan", help=f"Scan for connected {ORNATA_V3_NAME} keyboards")

    for name, help_text in (("static", "Set a static color"),
                            ("breathing", "Single-color breathing")):
        p = sub.add_parser(name, help=help_text)
        p.add_argument("red", type=_byte)
        p.add_argument("green", type=_byte)
        p.add_argument("blue", type=_byte)

    sub.add_parser("spectrum", help="Cycle through the color spectrum")

    p_wave = sub.add_parser("wave", help="Color wave across the keyboard")
    p_wave.add_argument("--direction", type=_byte, default=None,
                        help="Wave direction byte (default: from settings)")
    p_wave.add_argument("--speed", type=_byte, default=None,
                        help="Wave speed byte (default: from settings)")
    return parser


def _print_not_found():
    print(f"No {ORNATA_V3_NAME} found (0x{RAZER_VID:04X}:0x{ORNATA_V3_PID:04X})")


def cmd_scan(backend):
    if backend == BACKEND_USB:
        dev = find_usb_device()
        if dev is None:
            _print_not_found()
            return 1
        print(f"{ORNATA_V3_NAME} (PID 0x{dev.idProduct:04X}) "
              f"USB bus {dev.bus} address {dev.address}")
        return 0

    keyboards = scan_keyboards()
    if not keyboards:
        _print_not_found()
        return 1
    for kbd in keyboards:
        ifaces = ", ".join(str(i["interface_number"]) for i in kbd["interfaces"])
        print(f"{kbd['name']} (PID 0x{kbd['pid']:04X}) interfaces: {ifaces}")
    return 0


def effect_from_args(args, settings):
    if args.command == "static":
        return Effect.static(args.red, args.green, args.blue)
    if args.command == "breathing":
        return Effect.breathing(args.red, args.green, args.blue)
    if args.command == "spectrum":
        return Effect.spectrum()
    direction = args.direction if args.direction is not None else settings.get("wave_direction")
    speed = args.speed if args.speed is not None else settings.get("wave_speed")
    return Effect.wave(direction, speed)


def cmd_effect(effect, settings, backend):
    try:
        channel = open_keyboard(backend, required=True)
    except DeviceNotFound as e:
        logger.info("%s", e)
        result = CommandResult.DEVICE_NOT_FOUND
    else:
        client = TransportClient(channel, effect_ids=settings.effect_ids())
        try:
            result = client.send_effect(effect)
        finally:
            client.close()
    if result.ok:
        print(f"Set {effect.describe()}")
        return 0
    print(f"Failed to set {effect.describe()}: {result.label}", file=sys.stderr)
    return 1


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

    if not args.command:
        parser.print_help()
        return 1

    settings = Settings()
    backend = args.backend or settings.get("backend")

    if args.command == "scan":
        return cmd_scan(backend)
    try:
        effect = effect_from_args(args, settings)
    except ValueError as e:
        print(f"Invalid effect: {e}", file=sys.stderr)
        return 1
    return cmd_effect(effect, settings, backend)


if __name__ == "__main__":
    sys.exit(main())
