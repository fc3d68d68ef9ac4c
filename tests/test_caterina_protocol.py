"""Tests for the Caterina command/response driver."""

import pytest

from caterina_flasher.models import ATMEGA32U4
from caterina_flasher.protocol import (
    BootloaderNotFound,
    BufferAccessUnsupported,
    CaterinaError,
    CommandRejected,
    Memory,
    ResponseTimeout,
    SimulatedCaterina,
    UnsupportedDevice,
    VerifyMismatch,
)

HANDSHAKE = ["S", "V", "v", "p", "a", "b", "t", "T", "Q", "F", "N", "r"]


class TestHandshake:
    """Bootloader detection and identification."""

    def test_detect_collects_bootloader_info(self, connect):
        protocol, device = connect()
        info = protocol.detect()

        assert info.identifier == "CATERIN"
        assert info.software_version == (1, 0)
        assert info.hardware_version is None
        assert info.programmer_type == "S"
        assert info.auto_increment is True
        assert info.buffer_access is True
        assert info.buffer_size == 128
        assert info.device_type == 0x44
        assert info.fuses == {"extended": 0xCB, "low": 0xFF, "high": 0xD8, "lock": 0xEC}
        assert device.commands == HANDSHAKE
        assert protocol.buffer_size == 128

    def test_known_hardware_version_is_decoded(self, connect):
        protocol, _ = connect(SimulatedCaterina(hardware_version=b"12"))
        info = protocol.detect()
        assert info.hardware_version == (1, 2)
        assert info.to_dict()["hardware_version"] == "1.2"

    def test_device_type_list_is_drained(self, connect):
        """Only the first device type is selected; the rest is consumed."""
        protocol, device = connect(SimulatedCaterina(device_types=b"\x44\x45\x46"))
        info = protocol.detect()

        assert info.device_type == 0x44
        assert device.count("T") == 1
        assert len(protocol.buffer) == 0

    def test_wrong_identifier_raises_not_found(self, connect):
        protocol, device = connect(SimulatedCaterina(identifier=b"ARDUINO"))

        with pytest.raises(BootloaderNotFound) as exc_info:
            protocol.detect()

        assert exc_info.value.identifier == b"ARDUINO"
        assert device.commands == ["S"]
        assert protocol.info is None
        assert protocol.detected is False

    def test_buffer_access_declined(self, connect):
        protocol, _ = connect(SimulatedCaterina(buffer_access=False))

        with pytest.raises(BufferAccessUnsupported) as exc_info:
            protocol.detect()
        assert exc_info.value.response == ord("N")
        assert protocol.detected is True
        assert protocol.info is None

    def test_device_type_rejected(self, connect):
        protocol, _ = connect(SimulatedCaterina(reject={"T": 0x3F}))

        with pytest.raises(CommandRejected) as exc_info:
            protocol.detect()
        assert exc_info.value.command == "T"
        assert exc_info.value.response == 0x3F

    def test_silent_device_times_out(self, connect, clock):
        protocol, _ = connect(SimulatedCaterina(silent={"S"}))

        with pytest.raises(ResponseTimeout) as exc_info:
            protocol.detect()
        assert exc_info.value.expected == 7
        assert clock.ticks == 5

    def test_signature_bytes_are_reassembled(self, connect):
        """The device sends 0x87 0x95 0x1E for an ATmega32U4."""
        protocol, device = connect()
        assert device.signature.to_bytes(3, "little") == b"\x87\x95\x1E"

        mcu = protocol.identify()
        assert mcu is ATMEGA32U4
        assert protocol.info.signature == 0x1E9587
        assert protocol.mcu is ATMEGA32U4

    def test_unknown_signature_is_unsupported(self, connect):
        protocol, device = connect(SimulatedCaterina(signature=0x1E9999))

        with pytest.raises(UnsupportedDevice) as exc_info:
            protocol.identify()
        assert exc_info.value.signature == 0x1E9999
        assert "0x1E9999" in str(exc_info.value)
        assert device.count("P") == 0

    def test_buffer_size_unknown_before_detect(self, connect):
        protocol, _ = connect()
        with pytest.raises(CaterinaError):
            protocol.buffer_size


class TestBlockTransfers:
    """Block reads, writes and verification."""

    def test_set_address_is_big_endian(self, connect):
        protocol, device = connect()
        protocol.set_address(0x1234)
        assert device.address == 0x1234

    def test_read_issues_one_command_per_block(self, connect, progress):
        protocol, device = connect()
        device.flash[:256] = bytes(range(256))
        protocol.detect()

        data = protocol.read_memory(256, Memory.FLASH)

        assert data == bytes(range(256))
        assert device.count("g") == 2
        assert progress.ticks == 2

    def test_read_requests_full_blocks_and_truncates(self, connect):
        protocol, device = connect()
        device.flash[:256] = bytes(range(256))
        protocol.detect()

        data = protocol.read_memory(200)

        assert data == bytes(range(200))
        assert device.count("g") == 2
        # two full 128-byte blocks were transferred (64 words each)
        assert device.address == 128

    def test_eeprom_reads_one_byte_per_command(self, connect):
        protocol, device = connect()
        device.eeprom[:4] = b"\x01\x02\x03\x04"
        protocol.detect()

        assert protocol.read_memory(4, Memory.EEPROM) == b"\x01\x02\x03\x04"
        assert device.count("g") == 4

    def test_write_truncates_last_block(self, connect, progress):
        protocol, device = connect()
        protocol.detect()
        data = bytes([0x5A]) * 300

        protocol.write_memory(data, Memory.FLASH)

        assert device.count("B") == 3
        assert progress.ticks == 3
        assert device.flash[:300] == data
        assert device.flash[300] == 0xFF
        assert device.address == 150

    def test_write_discards_stale_bytes_after_set_address(self, connect):
        class NoisyCaterina(SimulatedCaterina):
            def _handle(self, command, args):
                answer = super()._handle(command, args)
                if command == "A":
                    answer += b"\x55"
                return answer

        protocol, device = connect(NoisyCaterina())
        protocol.detect()

        protocol.write_memory(b"\x01\x02\x03", Memory.FLASH)
        assert device.flash[:3] == b"\x01\x02\x03"

    def test_write_block_rejected(self, connect):
        protocol, _ = connect(SimulatedCaterina(reject={"B": 0x15}))
        protocol.detect()

        with pytest.raises(CommandRejected) as exc_info:
            protocol.write_memory(b"\x00" * 10)
        assert exc_info.value.command == "B"
        assert exc_info.value.response == 0x15

    def test_eeprom_write(self, connect):
        protocol, device = connect()
        protocol.detect()

        protocol.write_memory(b"\xA0\xA1\xA2", Memory.EEPROM)

        assert device.count("B") == 3
        assert device.eeprom[:3] == b"\xA0\xA1\xA2"

    def test_verify_reports_first_mismatch(self, connect, progress):
        protocol, _ = connect(SimulatedCaterina(write_faults={0x123: 0x00}))
        protocol.detect()
        image = bytes([0xAA]) * 512
        protocol.write_memory(image)

        with pytest.raises(VerifyMismatch) as exc_info:
            protocol.verify_memory(image)

        assert exc_info.value.offset == 0x123
        assert exc_info.value.expected == 0xAA
        assert exc_info.value.actual == 0x00
        assert "Verify failed at address 0x123" in progress.statuses

    def test_verify_ok(self, connect, progress):
        protocol, _ = connect()
        protocol.detect()
        protocol.write_memory(b"\x11" * 64)

        protocol.verify_memory(b"\x11" * 64)

        assert progress.statuses[-2:] == ["Verify 64 bytes...", "Verify OK"]


class TestModeCommands:
    """Programming mode, erase and exit."""

    def test_mode_transitions(self, connect):
        protocol, device = connect()
        protocol.enter_programming_mode()
        assert device.programming is True
        protocol.leave_programming_mode()
        assert device.programming is False
        protocol.exit_bootloader()
        assert device.exited is True

    def test_erase_uses_erase_budget(self, connect, clock):
        protocol, _ = connect(SimulatedCaterina(silent={"e"}))

        with pytest.raises(ResponseTimeout) as exc_info:
            protocol.erase_all()
        assert exc_info.value.timeout_ticks == 50
        assert clock.ticks == 50

    def test_erase_keeps_boot_section(self, connect):
        protocol, device = connect()
        device.flash[:] = b"\x00" * len(device.flash)

        protocol.erase_all()

        assert device.flash[:ATMEGA32U4.boot_section_addr] == b"\xFF" * ATMEGA32U4.boot_section_addr
        assert device.flash[ATMEGA32U4.boot_section_addr] == 0x00

    def test_programming_mode_rejected(self, connect):
        protocol, _ = connect(SimulatedCaterina(reject={"P": 0x15}))

        with pytest.raises(CommandRejected) as exc_info:
            protocol.enter_programming_mode()
        assert str(exc_info.value) == "Command 'P' failed. res:0x15"
