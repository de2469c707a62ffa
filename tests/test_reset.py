"""Tests for the 1200-baud touch and bootloader port discovery."""

import pytest

import samd_flasher.reset as reset_module
from samd_flasher.config import FlasherConfig
from samd_flasher.protocol import TransportError
from samd_flasher.reset import (
    PortInfo,
    PortNotFound,
    ResetSequencer,
    UserCancelled,
)

from fake_target import FakeBoard, FakeBus, FakeTransport

FAST = FlasherConfig(touch_delay=0.0, settle_delay=0.0)


@pytest.fixture
def bus(monkeypatch):
    bus = FakeBus()
    monkeypatch.setattr(reset_module, "list_ports", bus.list_ports)
    return bus


@pytest.fixture
def sleeps(monkeypatch):
    calls = []
    monkeypatch.setattr(reset_module.time, "sleep", calls.append)
    return calls


class TestResetToBootloader:

    def test_touch_toggles_dtr_and_reenumerates(self, bus, sleeps):
        board = bus.add_board(FakeBoard(in_bootloader=False))
        sequencer = ResetSequencer(FlasherConfig(), bus.factory)

        assert sequencer.reset_to_bootloader("/dev/ttyACM0") is True

        touch = bus.transports[0]
        assert touch.baudrate == 1200
        assert touch.rtscts is False
        assert touch.dtr_history == [False, True, False]
        assert not touch.is_open
        assert board.in_bootloader
        assert sleeps == [0.1, 0.1, 2.0]

    def test_unopenable_port_is_not_fatal(self, bus, sleeps):
        bus.add_board(FakeBoard(in_bootloader=False))
        bus.refuse_touch.add("/dev/ttyACM0")
        sequencer = ResetSequencer(FAST, bus.factory)

        assert sequencer.reset_to_bootloader("/dev/ttyACM0") is False
        assert sleeps == []
        assert bus.all_closed()

    def test_dtr_failure_still_closes_port(self, bus, sleeps, monkeypatch):
        bus.add_board(FakeBoard(in_bootloader=False))
        sequencer = ResetSequencer(FAST, bus.factory)

        def vanish(self, state):
            raise TransportError("device disconnected")

        monkeypatch.setattr(FakeTransport, "set_dtr", vanish)

        assert sequencer.reset_to_bootloader("/dev/ttyACM0") is True
        assert bus.all_closed()


class TestDiscovery:

    def test_prefers_newly_appeared_port(self, bus):
        bus.extra_ports.append(PortInfo("/dev/ttyACM5", 0x2341, 0x804D, "Old Arduino"))
        board = bus.add_board(FakeBoard(in_bootloader=False))
        sequencer = ResetSequencer(FAST, bus.factory)

        previous = sequencer.snapshot()
        board.in_bootloader = True

        assert sequencer.discover_bootloader_port(previous) == "/dev/ttyACM1"

    def test_prefers_named_port_when_nothing_new_appeared(self, bus):
        bus.add_board(FakeBoard(in_bootloader=False), boot_port="/dev/ttyACM4",
                      app_port="/dev/ttyACM5", vid=0x2341)
        board = bus.add_board(FakeBoard(in_bootloader=False), boot_port="/dev/ttyACM0",
                              app_port="/dev/ttyACM0")
        sequencer = ResetSequencer(FAST, bus.factory)

        previous = sequencer.snapshot()
        board.in_bootloader = True

        port = sequencer.discover_bootloader_port(previous, preferred="/dev/ttyACM0")
        assert port == "/dev/ttyACM0"

    def test_new_port_beats_named_port(self, bus):
        bus.add_board(FakeBoard(in_bootloader=False), boot_port="/dev/ttyACM4",
                      app_port="/dev/ttyACM5", vid=0x2341)
        board = bus.add_board(FakeBoard(in_bootloader=False))
        sequencer = ResetSequencer(FAST, bus.factory)

        previous = sequencer.snapshot()
        board.in_bootloader = True

        assert sequencer.discover_bootloader_port(previous, preferred="/dev/ttyACM5") == "/dev/ttyACM1"

    def test_ignores_unknown_vendors(self, bus):
        bus.extra_ports.append(PortInfo("/dev/ttyUSB0", 0x0403, 0x6001, "FTDI"))
        bus.add_board(FakeBoard(), vid=0x1B4F)
        sequencer = ResetSequencer(FAST, bus.factory)

        candidates = sequencer.bootloader_candidates()
        assert [p.device for p in candidates] == ["/dev/ttyACM1"]

    def test_discovery_sends_no_traffic(self, bus):
        board = bus.add_board(FakeBoard())
        ResetSequencer(FAST, bus.factory).discover_bootloader_port()

        assert bus.transports == []
        assert board.commands == []

    def test_falls_back_to_chooser(self, bus):
        bus.extra_ports.append(PortInfo("/dev/ttyUSB0", 0x0403, 0x6001, "FTDI"))
        offered = []

        def choose(ports):
            offered.extend(ports)
            return "/dev/ttyUSB0"

        port = ResetSequencer(FAST, bus.factory).discover_bootloader_port(choose_port=choose)

        assert port == "/dev/ttyUSB0"
        assert [p.device for p in offered] == ["/dev/ttyUSB0"]

    def test_chooser_cancel(self, bus):
        with pytest.raises(UserCancelled):
            ResetSequencer(FAST, bus.factory).discover_bootloader_port(choose_port=lambda ports: None)

    def test_no_candidate_and_no_chooser(self, bus):
        with pytest.raises(PortNotFound):
            ResetSequencer(FAST, bus.factory).discover_bootloader_port()


def test_port_info_formatting():
    port = PortInfo("/dev/ttyACM0", 0x239A, 0x800B, "Feather M0")
    assert port.vendor_name == "Adafruit"
    assert port.usb_id() == "239A:800B"

    bare = PortInfo("/dev/ttyS0")
    assert bare.vendor_name == "-"
    assert bare.usb_id() == "-"
