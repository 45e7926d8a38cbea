"""
Command Line Interface

    modular-midi list-serial        refresh and show serial ports
    modular-midi list-midi          refresh and show MIDI outputs
    modular-midi select-serial N    select serial port N (1-based)
    modular-midi select-midi N      select MIDI output N (1-based)
    modular-midi test-midi          wiggle common controllers on the selected output
    modular-midi run                bridge the selected serial port to the selected output
"""

import sys
import signal
import logging
import argparse
from pathlib import Path
from typing import List, Optional

from . import __version__
from .devices import DeviceCatalog, DeviceRole, DeviceStore
from .errors import PipelineStartError, StoreError
from .generators import run_self_test
from .pipeline import PipelineState
from .production import ProductionConfigManager, setup_logging
from .production.config_manager import ConfigSource
from .production.logging import Color, ROOT_LOGGER

log = logging.getLogger(__name__)

BOX_WIDTH = 62

ROLE_TITLES = {
    DeviceRole.SERIAL: "Serial Ports",
    DeviceRole.MIDI: "MIDI Output Ports",
}


def _box_line(text: str = "") -> str:
    return f"║  {text[:BOX_WIDTH - 3]:<{BOX_WIDTH - 2}}║"


def print_catalog(role: DeviceRole, store: DeviceStore, out=None):
    """Print the stored catalog with the current selection marked"""
    out = out or sys.stdout
    entries = store.load_catalog()
    selection = store.load_selection()

    print("╔" + "═" * BOX_WIDTH + "╗", file=out)
    print(_box_line(f"Modular MIDI - {ROLE_TITLES[role]}"), file=out)
    print("╠" + "═" * BOX_WIDTH + "╣", file=out)

    if not entries:
        print(_box_line("No devices found."), file=out)
    for i, entry in enumerate(entries, 1):
        marker = " ← selected" if entry.match_key == selection.chosen_match_key else ""
        print(_box_line(f"[{i}] {entry.display_name} ({entry.path}){marker}"), file=out)

    print("╠" + "═" * BOX_WIDTH + "╣", file=out)
    print(_box_line(f"Use: modular-midi select-{role.value} <number>"), file=out)
    print("╚" + "═" * BOX_WIDTH + "╝", file=out)


def cmd_list(role: DeviceRole, store: DeviceStore, catalog: DeviceCatalog) -> int:
    entries = catalog.enumerate(role)
    store.write_catalog(entries)
    print_catalog(role, store)
    return 0


def cmd_select(role: DeviceRole, store: DeviceStore, number: int) -> int:
    entries = store.load_catalog()
    if not entries:
        print(f"No stored {role.value} devices, run: modular-midi list-{role.value}", file=sys.stderr)
        return 1
    if not 1 <= number <= len(entries):
        print(f"Invalid selection {number}, choose 1-{len(entries)}", file=sys.stderr)
        return 1

    entry = entries[number - 1]
    store.write_selection(entry)
    print(f"Selected: {entry.display_name} ({entry.path})")
    return 0


def cmd_test_midi(pipeline: PipelineState, channel: int) -> int:
    pipeline.start(enable_serial=False)
    try:
        thread = pipeline.run_generator(run_self_test, channel=channel)
        print("Running MIDI self test, press Ctrl+C to abort...")
        while thread.is_alive() and not pipeline.wait(0.5):
            pass
    finally:
        pipeline.stop()

    print(f"✓ Sent {pipeline.writer.metrics['messages_sent']} messages")
    return 0


def cmd_run(pipeline: PipelineState, config: ProductionConfigManager) -> int:
    pipeline.start(enable_serial=True)

    def on_config_change(change):
        if change.key == 'logging.level':
            logging.getLogger(ROOT_LOGGER).setLevel(change.new_value)
            log.info(f"Log level changed to {change.new_value}")
        else:
            log.info(f"Config {change.key} changed, restart to apply")

    config.add_change_callback(on_config_change)
    config.start_hot_reload()

    print("Bridge running, press Ctrl+C to stop...")
    try:
        while not pipeline.wait(1.0):
            pass
    finally:
        config.shutdown()
        if pipeline.health_monitor:
            log.info("\n" + pipeline.health_monitor.get_detailed_report())
        pipeline.stop()
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='modular-midi',
        description="Modular MIDI - bridge a serial controller to MIDI control-change messages",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=f"""
{Color.TURQUOISE}Examples:{Color.RESET}
  %(prog)s list-midi         # Show MIDI outputs
  %(prog)s select-midi 2     # Use the second MIDI output
  %(prog)s test-midi         # Wiggle CC 1, 7, 10 and 74
  %(prog)s run               # Start the bridge
        """
    )
    parser.add_argument('--version', action='version', version=f"%(prog)s {__version__}")

    general = parser.add_argument_group('General')
    general.add_argument('--config', '-c', metavar='PATH', help='Config file (YAML)')
    general.add_argument('--store-dir', metavar='PATH', help='Directory of the device selection files')

    debug = parser.add_argument_group('Debug')
    debug.add_argument('--verbose', '-v', action='store_true', help='Verbose logging')
    debug.add_argument('--log-file', metavar='PATH', help='Log to file')

    commands = parser.add_subparsers(dest='command', metavar='COMMAND')
    commands.required = True

    commands.add_parser('list-serial', help='Refresh and list serial ports')
    commands.add_parser('list-midi', help='Refresh and list MIDI output ports')

    select_serial = commands.add_parser('select-serial', help='Select a serial port')
    select_serial.add_argument('number', type=int, help='Port number from list-serial')

    select_midi = commands.add_parser('select-midi', help='Select a MIDI output port')
    select_midi.add_argument('number', type=int, help='Port number from list-midi')

    test_midi = commands.add_parser('test-midi', help='Send test waveforms to the selected output')
    test_midi.add_argument('--channel', type=int, choices=range(16), metavar='0-15',
                           help='MIDI channel (default from config)')

    commands.add_parser('run', help='Bridge the selected serial port to the selected output')

    return parser


def load_config(args) -> Optional[ProductionConfigManager]:
    config_file = Path(args.config).expanduser() if args.config else None
    config = ProductionConfigManager(
        config_dir=config_file.parent if config_file else None,
        config_file=config_file,
        enable_hot_reload=args.command == 'run',
    )

    result = config.load_config()
    if not result.is_valid:
        for error in result.errors:
            print(f"Config error: {error}", file=sys.stderr)
        return None

    if args.store_dir:
        config.set('devices.store_dir', str(Path(args.store_dir).expanduser()), ConfigSource.RUNTIME)
    return config


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    config = load_config(args)
    if config is None:
        return 1

    log_file = args.log_file or config.get('logging.file')
    logger = setup_logging(args.verbose, Path(log_file).expanduser() if log_file else None)
    if not args.verbose:
        logger.setLevel(config.get('logging.level', 'INFO'))

    store_dir = Path(config.get('devices.store_dir')).expanduser()

    try:
        if args.command in ('list-serial', 'list-midi', 'select-serial', 'select-midi'):
            role = DeviceRole.SERIAL if args.command.endswith('serial') else DeviceRole.MIDI
            store = DeviceStore(role, store_dir)
            if args.command.startswith('list'):
                return cmd_list(role, store, DeviceCatalog())
            return cmd_select(role, store, args.number)

        pipeline = PipelineState.from_config(config)

        def signal_handler(sig, frame):
            log.info(f"Received signal {sig}, shutting down...")
            pipeline.request_stop()

        signal.signal(signal.SIGINT, signal_handler)
        signal.signal(signal.SIGTERM, signal_handler)

        try:
            if args.command == 'test-midi':
                channel = args.channel if args.channel is not None else config.get('serial.channel', 0)
                return cmd_test_midi(pipeline, channel)
            return cmd_run(pipeline, config)
        except PipelineStartError as e:
            error_ctx = pipeline.error_handler.create_error_context(e, 'pipeline_start')
            print(pipeline.error_handler.format_error(error_ctx), file=sys.stderr)
            return 1

    except StoreError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
