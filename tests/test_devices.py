"""
Unit tests for device catalog, selection store and port resolver

Uses unittest framework for compatibility.
"""

import json
import tempfile
import unittest
from pathlib import Path
from unittest.mock import Mock

# Add src to path
import sys
from os.path import dirname, join
sys.path.insert(0, join(dirname(dirname(__file__)), 'src'))

from modular_midi.devices import (
    CatalogEntry, DeviceCatalog, DeviceRole, DeviceStore, Selection, match_key, resolve
)
from modular_midi.devices.catalog import split_midi_port_name
from modular_midi.errors import NoDevicesAvailable, SelectionNotFound, StoreError


def make_port_info(device, product=None, description="n/a"):
    info = Mock()
    info.device = device
    info.product = product
    info.description = description
    return info


class TestMatchKey(unittest.TestCase):
    """Test the five-character match key"""

    def test_last_five_characters(self):
        self.assertEqual(match_key("/dev/ttyUSB0"), "yUSB0")
        self.assertEqual(match_key("/dev/ttyACM12"), "ACM12")

    def test_short_strings_kept_whole(self):
        self.assertEqual(match_key("A"), "A")
        self.assertEqual(match_key(""), "")

    def test_whitespace_removed(self):
        self.assertEqual(match_key("Synth 14:0"), "14:0")
        self.assertEqual(match_key(" A "), "A")

    def test_catalog_entry_computes_key(self):
        entry = CatalogEntry(display_name="Synth", path="Synth 20:0")
        self.assertEqual(entry.match_key, "20:0")

    def test_split_midi_port_name(self):
        self.assertEqual(split_midi_port_name("Midi Through:Midi Through Port-0 14:0"),
                         ("Midi Through:Midi Through Port-0", "14:0"))
        self.assertEqual(split_midi_port_name("Solo"), ("Solo", "Solo"))


class TestResolver(unittest.TestCase):
    """Test resolve() against catalogs"""

    def test_single_match(self):
        catalog = [CatalogEntry("SynthA", "A")]
        self.assertEqual(resolve(catalog, Selection("A")), 0)

    def test_first_match_wins(self):
        catalog = [
            CatalogEntry("One", "/dev/ttyUSB0"),
            CatalogEntry("Two", "/dev/other/ttyUSB0"),
        ]
        self.assertEqual(resolve(catalog, Selection.from_path("/dev/ttyUSB0")), 0)

    def test_idempotent(self):
        catalog = [CatalogEntry("X", "ttyACM0"), CatalogEntry("Y", "ttyACM1")]
        selection = Selection.from_path("ttyACM1")
        self.assertEqual(resolve(catalog, selection), resolve(catalog, selection))
        self.assertEqual(resolve(catalog, selection), 1)

    def test_empty_catalog(self):
        with self.assertRaises(NoDevicesAvailable) as ctx:
            resolve([], Selection("A"), role="MIDI output")
        self.assertIn("MIDI output", str(ctx.exception))

    def test_not_found(self):
        with self.assertRaises(SelectionNotFound) as ctx:
            resolve([CatalogEntry("SynthA", "A")], Selection("B"))
        self.assertEqual(ctx.exception.match_key, "B")

    def test_empty_selection_has_no_special_case(self):
        catalog = [CatalogEntry("SynthA", "A")]
        self.assertTrue(Selection().is_empty)
        with self.assertRaises(SelectionNotFound):
            resolve(catalog, Selection())


class TestDeviceCatalog(unittest.TestCase):
    """Test live enumeration with fake backends"""

    def test_midi_outputs(self):
        midi_out = Mock()
        midi_out.get_ports.return_value = ["Midi Through:Port-0 14:0", "USB MIDI Interface 20:0"]
        catalog = DeviceCatalog(midi_out_factory=lambda: midi_out)

        entries = catalog.enumerate(DeviceRole.MIDI)

        self.assertEqual([e.display_name for e in entries], ["Midi Through:Port-0", "USB MIDI Interface"])
        self.assertEqual(entries[1].path, "USB MIDI Interface 20:0")
        self.assertEqual(entries[1].match_key, "20:0")
        self.assertEqual(catalog.get_metrics()['midi_enumerations'], 1)

    def test_serial_ports_name_fallback(self):
        ports = [
            make_port_info("/dev/ttyACM0", product="Pico"),
            make_port_info("/dev/ttyS0"),
        ]
        catalog = DeviceCatalog(serial_lister=lambda: ports)

        entries = catalog.enumerate(DeviceRole.SERIAL)

        self.assertEqual([e.display_name for e in entries], ["Pico", "ttyS0"])
        self.assertEqual(entries[0].match_key, "yACM0")

    def test_enumeration_failure_returns_empty(self):
        def broken():
            raise OSError("no sequencer")

        catalog = DeviceCatalog(midi_out_factory=broken)
        self.assertEqual(catalog.enumerate_midi_outputs(), [])
        self.assertEqual(catalog.get_metrics()['enumeration_failures'], 1)


class TestDeviceStore(unittest.TestCase):
    """Test the JSON catalog and selection files"""

    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.store_dir = Path(self.tmp.name)

    def tearDown(self):
        self.tmp.cleanup()

    def test_missing_file_is_empty(self):
        store = DeviceStore(DeviceRole.MIDI, self.store_dir)
        self.assertEqual(store.load(), {})
        self.assertEqual(store.load_catalog(), [])
        self.assertTrue(store.load_selection().is_empty)

    def test_midi_file_layout(self):
        store = DeviceStore(DeviceRole.MIDI, self.store_dir)
        entry = CatalogEntry("USB MIDI Interface", "USB MIDI Interface 20:0")
        store.write_catalog([entry])
        store.write_selection(entry)

        data = json.loads((self.store_dir / "midi_ports.json").read_text())
        self.assertEqual(data["available_midi_ports"],
                         [{"name": "USB MIDI Interface", "port_path": "USB MIDI Interface 20:0"}])
        self.assertEqual(data["selected_midi_port"],
                         {"name": "USB MIDI Interface", "port_path": "USB MIDI Interface 20:0"})
        self.assertEqual(store.load_selection().chosen_match_key, "20:0")

    def test_serial_file_layout(self):
        store = DeviceStore(DeviceRole.SERIAL, self.store_dir)
        entry = CatalogEntry("Pico", "/dev/ttyACM0")
        store.write_catalog([entry])
        store.write_selection(entry)

        data = json.loads((self.store_dir / "usb_ports.json").read_text())
        self.assertEqual(data["available_usb_devices"], [{"name": "Pico", "device_path": "/dev/ttyACM0"}])
        self.assertEqual(data["selected_usb_device"], entry.match_key)
        self.assertEqual(store.load_catalog(), [entry])

    def test_catalog_refresh_keeps_selection(self):
        store = DeviceStore(DeviceRole.SERIAL, self.store_dir)
        entry = CatalogEntry("Pico", "/dev/ttyACM0")
        store.write_selection(entry)
        store.write_catalog([entry, CatalogEntry("Other", "/dev/ttyUSB3")])

        self.assertEqual(store.load_selection().chosen_match_key, entry.match_key)

    def test_clear_selection(self):
        store = DeviceStore(DeviceRole.MIDI, self.store_dir)
        store.write_selection(CatalogEntry("A", "A 1:0"))
        store.write_selection(None)

        self.assertTrue(store.load_selection().is_empty)
        data = json.loads(store.file_path.read_text())
        self.assertIsNone(data["selected_midi_port"])

    def test_bare_string_midi_selection(self):
        (self.store_dir / "midi_ports.json").write_text(json.dumps({"selected_midi_port": "Synth 14:0"}))
        store = DeviceStore(DeviceRole.MIDI, self.store_dir)
        self.assertEqual(store.load_selection().chosen_match_key, "14:0")

    def test_malformed_file(self):
        (self.store_dir / "usb_ports.json").write_text("{not json")
        store = DeviceStore(DeviceRole.SERIAL, self.store_dir)
        with self.assertRaises(StoreError):
            store.load_selection()

    def test_non_object_file(self):
        (self.store_dir / "usb_ports.json").write_text("[1, 2]")
        store = DeviceStore(DeviceRole.SERIAL, self.store_dir)
        with self.assertRaises(StoreError):
            store.load()

    def test_write_replaces_unreadable_file(self):
        (self.store_dir / "usb_ports.json").write_text("garbage")
        store = DeviceStore(DeviceRole.SERIAL, self.store_dir)
        store.write_catalog([CatalogEntry("Pico", "/dev/ttyACM0")])
        self.assertEqual(len(store.load_catalog()), 1)


if __name__ == '__main__':
    unittest.main()
