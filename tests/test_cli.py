"""
Tests for the modular-midi command line

Uses unittest framework for compatibility.
"""

import io
import json
import tempfile
import unittest
from pathlib import Path
from unittest.mock import Mock, patch

# Add src to path
import sys
from os.path import dirname, join
sys.path.insert(0, join(dirname(dirname(__file__)), 'src'))

from modular_midi import cli
from modular_midi.devices import CatalogEntry, DeviceCatalog, DeviceRole, DeviceStore
from modular_midi.midi import ControlChangeEvent, MidiWriter
from modular_midi.pipeline import PipelineState


class FakeMidiOut:

    def __init__(self, ports):
        self.ports = ports
        self.sent = []

    def get_ports(self):
        return list(self.ports)

    def open_port(self, index):
        pass

    def send_message(self, message):
        self.sent.append(list(message))

    def close_port(self):
        pass


def quick_self_test(queue, channel=0):
    queue.send(ControlChangeEvent(channel, 1, 64))
    return 1


class TestCli(unittest.TestCase):

    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.root = Path(self.tmp.name)
        self.store_dir = self.root / "store"
        self.base_args = ['--config', str(self.root / "config.yaml"), '--store-dir', str(self.store_dir)]

    def tearDown(self):
        self.tmp.cleanup()

    def run_cli(self, *args):
        with patch('sys.stdout', new_callable=io.StringIO) as out, \
                patch('sys.stderr', new_callable=io.StringIO) as err, \
                patch('modular_midi.cli.signal.signal'):
            code = cli.main(self.base_args + list(args))
        return code, out.getvalue(), err.getvalue()

    def test_list_midi_refreshes_catalog(self):
        catalog = Mock()
        catalog.enumerate.return_value = [CatalogEntry("SynthA", "SynthA 20:0")]

        with patch('modular_midi.cli.DeviceCatalog', return_value=catalog):
            code, out, _ = self.run_cli('list-midi')

        self.assertEqual(code, 0)
        catalog.enumerate.assert_called_once_with(DeviceRole.MIDI)
        self.assertIn("[1] SynthA (SynthA 20:0)", out)
        data = json.loads((self.store_dir / "midi_ports.json").read_text())
        self.assertEqual(data["available_midi_ports"], [{"name": "SynthA", "port_path": "SynthA 20:0"}])

    def test_select_serial(self):
        DeviceStore(DeviceRole.SERIAL, self.store_dir).write_catalog([
            CatalogEntry("FTDI", "/dev/ttyUSB0"),
            CatalogEntry("Pico", "/dev/ttyACM0"),
        ])

        code, out, _ = self.run_cli('select-serial', '2')

        self.assertEqual(code, 0)
        self.assertIn("Pico", out)
        data = json.loads((self.store_dir / "usb_ports.json").read_text())
        self.assertEqual(data["selected_usb_device"], "yACM0")

    def test_selection_marked_in_listing(self):
        entry = CatalogEntry("Pico", "/dev/ttyACM0")
        catalog = Mock()
        catalog.enumerate.return_value = [entry]
        DeviceStore(DeviceRole.SERIAL, self.store_dir).write_selection(entry)

        with patch('modular_midi.cli.DeviceCatalog', return_value=catalog):
            _, out, _ = self.run_cli('list-serial')

        self.assertIn("← selected", out)

    def test_select_out_of_range(self):
        DeviceStore(DeviceRole.MIDI, self.store_dir).write_catalog([CatalogEntry("SynthA", "SynthA 20:0")])
        code, _, err = self.run_cli('select-midi', '3')
        self.assertEqual(code, 1)
        self.assertIn("choose 1-1", err)

    def test_select_without_catalog(self):
        code, _, err = self.run_cli('select-midi', '1')
        self.assertEqual(code, 1)
        self.assertIn("list-midi", err)

    def test_invalid_config(self):
        (self.root / "config.yaml").write_text("serial:\n  channel: 99\n")
        code, _, err = self.run_cli('list-midi')
        self.assertEqual(code, 1)
        self.assertIn("MIDI channel", err)

    def make_pipeline(self, ports):
        self.midi_out = FakeMidiOut(ports)
        return PipelineState(
            self.store_dir,
            catalog=DeviceCatalog(midi_out_factory=lambda: self.midi_out, serial_lister=lambda: []),
            writer=MidiWriter(output_factory=lambda: self.midi_out),
        )

    def test_test_midi_without_outputs_prints_report(self):
        pipeline = self.make_pipeline([])

        with patch('modular_midi.cli.PipelineState.from_config', return_value=pipeline):
            code, _, err = self.run_cli('test-midi')

        self.assertEqual(code, 1)
        self.assertIn("No MIDI Output Devices Found", err)
        self.assertIn("╔", err)

    def test_test_midi_runs_self_test(self):
        DeviceStore(DeviceRole.MIDI, self.store_dir).write_selection(CatalogEntry("SynthA", "SynthA 20:0"))
        pipeline = self.make_pipeline(["SynthA 20:0"])

        with patch('modular_midi.cli.PipelineState.from_config', return_value=pipeline), \
                patch('modular_midi.cli.run_self_test', quick_self_test):
            code, out, _ = self.run_cli('test-midi', '--channel', '2')

        self.assertEqual(code, 0)
        self.assertEqual(self.midi_out.sent, [[0xB2, 1, 64]])
        self.assertIn("Sent 1 messages", out)

    def test_command_required(self):
        with patch('sys.stderr', new_callable=io.StringIO):
            with self.assertRaises(SystemExit):
                cli.main([])


if __name__ == '__main__':
    unittest.main()
