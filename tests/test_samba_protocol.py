"""Tests for the SAM-BA client against the in-process target."""

import threading

import pytest

from samd_flasher.protocol import (
    Mode,
    ProtocolError,
    SamBA,
    SamBAMalformed,
    SamBAUnresponsive,
    TransportError,
)
from samd_flasher.device import DSU_DID_ADDR

from fake_target import SAMD21G18A_DID, VERSION, FakeBoard, FakeBus, connected_samba


class TestConnect:
    """Handshake behaviour."""

    def test_connect_negotiates_binary_and_reads_version(self):
        samba, board, _ = connected_samba()

        assert samba.connected
        assert samba.mode is Mode.BINARY
        assert samba.version == VERSION
        assert board.commands[:2] == ["N#", "V#"]

    def test_connect_opens_transport_if_needed(self):
        bus = FakeBus()
        bus.add_board(FakeBoard())
        transport = bus.factory("/dev/ttyACM1")
        assert not transport.is_open

        SamBA(transport).connect()
        assert transport.is_open

    def test_silent_port_is_unresponsive(self):
        bus = FakeBus()
        board = bus.add_board(FakeBoard())
        board.responsive = False

        with pytest.raises(SamBAUnresponsive):
            SamBA(bus.factory("/dev/ttyACM1")).connect()

    def test_unexpected_handshake_reply_is_unresponsive(self):
        bus = FakeBus()
        board = bus.add_board(FakeBoard())
        board.handshake_reply = b"OK"

        with pytest.raises(SamBAUnresponsive):
            SamBA(bus.factory("/dev/ttyACM1")).connect()

    def test_application_port_does_not_answer(self):
        bus = FakeBus()
        bus.add_board(FakeBoard(in_bootloader=False))

        with pytest.raises(SamBAUnresponsive):
            SamBA(bus.factory("/dev/ttyACM0")).connect()

    def test_missing_port_raises_transport_error(self):
        bus = FakeBus()
        with pytest.raises(TransportError):
            SamBA(bus.factory("/dev/ttyUSB9")).connect()

    def test_commands_require_connection(self):
        bus = FakeBus()
        bus.add_board(FakeBoard())
        samba = SamBA(bus.factory("/dev/ttyACM1"))

        with pytest.raises(ProtocolError):
            samba.read_word(DSU_DID_ADDR)

    def test_disconnect_is_idempotent(self):
        samba, _, bus = connected_samba()

        samba.disconnect()
        samba.disconnect()

        assert not samba.connected
        assert bus.all_closed()

    def test_context_manager_closes_link(self):
        bus = FakeBus()
        bus.add_board(FakeBoard())
        transport = bus.factory("/dev/ttyACM1")

        with SamBA(transport) as samba:
            assert samba.read_word(DSU_DID_ADDR) == SAMD21G18A_DID
        assert not transport.is_open


class TestWordAccess:

    def test_read_word_binary(self):
        samba, _, _ = connected_samba()
        assert samba.read_word(DSU_DID_ADDR) == SAMD21G18A_DID

    def test_write_word_binary(self):
        samba, board, _ = connected_samba()
        samba.write_word(0x20001000, 0xDEADBEEF)

        assert board.memory[0x20001000] == 0xDEADBEEF
        assert samba.read_word(0x20001000) == 0xDEADBEEF
        assert "W20001000,DEADBEEF#" in board.commands

    def test_text_mode_word_access(self):
        samba, board, _ = connected_samba()
        samba.set_text_mode()

        assert samba.mode is Mode.TEXT
        assert samba.read_word(DSU_DID_ADDR) == SAMD21G18A_DID
        samba.write_word(0x20000000, 0x12345678)
        assert board.memory[0x20000000] == 0x12345678

    def test_short_reply_is_malformed(self):
        samba, board, _ = connected_samba()
        board.truncate_next_reply = 2

        with pytest.raises(SamBAMalformed):
            samba.read_word(DSU_DID_ADDR)

    def test_missing_reply_is_unresponsive(self):
        samba, board, _ = connected_samba()
        board.responsive = False

        with pytest.raises(SamBAUnresponsive):
            samba.read_word(DSU_DID_ADDR)

    def test_values_outside_32_bits_rejected(self):
        samba, _, _ = connected_samba()

        with pytest.raises(ValueError):
            samba.read_word(0x1_0000_0000)
        with pytest.raises(ValueError):
            samba.write_word(0, -1)


class TestBlockAccess:

    def test_read_block_is_chunked(self):
        samba, board, _ = connected_samba(max_block=256)
        board.flash[0:1024] = bytes(range(256)) * 4

        data = samba.read_block(0, 1000)

        assert data == bytes(board.flash[:1000])
        reads = [c for c in board.commands if c.startswith("R")]
        assert reads == [
            "R00000000,00000100#",
            "R00000100,00000100#",
            "R00000200,00000100#",
            "R00000300,000000E8#",
        ]

    def test_write_block_is_chunked_into_sram(self):
        samba, board, _ = connected_samba(max_block=32)
        samba.write_block(0x20001000, bytes(range(64)))

        sends = [c for c in board.commands if c.startswith("S")]
        assert sends == ["S20001000,00000020#", "S20001020,00000020#"]
        assert samba.read_word(0x20001000) == 0x03020100
        assert samba.read_word(0x2000103C) == 0x3F3E3D3C

    def test_bulk_write_into_flash_is_rejected_by_target(self):
        samba, board, _ = connected_samba()

        with pytest.raises(AssertionError):
            samba.write_block(0x2000, bytes(64))
        assert board.byte_writes_to_flash == 1

    def test_text_mode_block_read_is_unaligned_safe(self):
        samba, board, _ = connected_samba()
        board.flash[0x100:0x110] = bytes(range(16))
        samba.set_text_mode()

        assert samba.read_block(0x101, 6) == bytes(range(1, 7))

    def test_text_mode_block_write_requires_alignment(self):
        samba, _, _ = connected_samba()
        samba.set_text_mode()

        with pytest.raises(ValueError):
            samba.write_block(0x2002, b"\x00" * 4)

    def test_empty_blocks_send_nothing(self):
        samba, board, _ = connected_samba()
        before = list(board.commands)

        assert samba.read_block(0x2000, 0) == b""
        samba.write_block(0x2000, b"")
        assert board.commands == before

    def test_go_sends_jump(self):
        samba, board, _ = connected_samba()
        samba.go(0x2000)

        assert board.go_address == 0x2000
        assert board.commands[-1] == "G00002000#"


def test_no_overlapping_commands_under_delay_and_concurrency():
    """Concurrent callers never have two commands outstanding on the link."""
    samba, board, bus = connected_samba()
    board.response_delay = 0.001
    board.flash[0:256] = bytes(range(256))
    errors = []

    def worker(address):
        try:
            for _ in range(20):
                assert samba.read_word(DSU_DID_ADDR) == SAMD21G18A_DID
                assert samba.read_block(address, 16) == bytes(board.flash[address: address + 16])
        except Exception as e:
            errors.append(e)

    threads = [threading.Thread(target=worker, args=(i * 16,)) for i in range(4)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert errors == []
    assert bus.overlaps == 0
