"""Tests for orchestrated read/write/verify sessions."""

import logging

import pytest

from caterina_flasher.core.operations import (
    identify_device,
    read_eeprom,
    read_firmware,
    verify_firmware,
    write_firmware,
)
from caterina_flasher.models import ATMEGA32U4
from caterina_flasher.protocol import (
    BootloaderNotFound,
    BufferAccessUnsupported,
    CommandRejected,
    ImageTooLarge,
    SimulatedCaterina,
    SimulatedTransport,
    TransportError,
    VerifyMismatch,
)

DESTRUCTIVE = ("P", "e", "B")


class _FailingCloseTransport(SimulatedTransport):
    def close(self) -> None:
        super().close()
        raise TransportError("close failed")


def _kwargs(clock, timeouts, progress):
    return {"clock": clock, "timeouts": timeouts, "progress": progress}


class TestReadFirmware:

    def test_reads_whole_flash_by_default(self, clock, timeouts, progress):
        device = SimulatedCaterina()
        device.flash[:4] = b"\x0C\x94\x5C\x00"
        transport = SimulatedTransport(device)

        firmware = read_firmware(transport, **_kwargs(clock, timeouts, progress))

        assert len(firmware) == ATMEGA32U4.flash_size
        assert firmware[:4] == b"\x0C\x94\x5C\x00"
        assert device.count("g") == ATMEGA32U4.flash_size // 128
        assert device.count("E") == 1
        assert transport.open_count == 1
        assert transport.close_count == 1
        assert progress.statuses == [
            "atmega32u4 found.",
            "Reading 32768 bytes...",
            "Read complete",
        ]

    def test_partial_and_clamped_sizes(self, clock, timeouts, progress):
        device = SimulatedCaterina()
        kwargs = _kwargs(clock, timeouts, progress)

        assert len(read_firmware(SimulatedTransport(device), size=1000, **kwargs)) == 1000
        assert len(read_firmware(SimulatedTransport(device), size=0x10000, **kwargs)) == 32768

    def test_read_eeprom(self, clock, timeouts, progress):
        device = SimulatedCaterina()
        device.eeprom[:2] = b"\x12\x34"
        transport = SimulatedTransport(device)

        data = read_eeprom(transport, size=16, **_kwargs(clock, timeouts, progress))

        assert data[:2] == b"\x12\x34"
        assert len(data) == 16
        assert device.count("g") == 16
        assert transport.close_count == 1

    def test_identify_device(self, clock, timeouts, progress):
        device = SimulatedCaterina()
        info, mcu = identify_device(SimulatedTransport(device), **_kwargs(clock, timeouts, progress))

        assert mcu is ATMEGA32U4
        assert info.signature == 0x1E9587
        assert device.exited is True


class TestWriteFirmware:

    def test_write_erase_program_verify(self, clock, timeouts, progress):
        device = SimulatedCaterina()
        device.flash[:] = b"\x00" * len(device.flash)
        transport = SimulatedTransport(device)
        image = bytes(range(256)) * 4

        write_firmware(transport, image, **_kwargs(clock, timeouts, progress))

        assert device.flash[:len(image)] == image
        assert device.flash[len(image)] == 0xFF
        order = [c for c in device.commands if c in ("P", "e", "B", "L", "E")]
        assert order[:3] == ["P", "e", "B"]
        assert order[-2:] == ["L", "E"]
        assert device.programming is False
        assert transport.close_count == 1
        assert "Verify OK" in progress.statuses

    def test_write_with_eeprom(self, clock, timeouts, progress):
        device = SimulatedCaterina()
        transport = SimulatedTransport(device)

        write_firmware(
            transport, b"\x01" * 10, b"\xEE" * 8, **_kwargs(clock, timeouts, progress)
        )

        assert device.eeprom[:8] == b"\xEE" * 8
        assert device.eeprom[8] == 0xFF
        assert progress.statuses.count("Verify OK") == 2

    def test_image_up_to_boot_section_is_accepted(self, clock, timeouts, progress):
        device = SimulatedCaterina()
        image = b"\x42" * ATMEGA32U4.boot_section_addr

        write_firmware(SimulatedTransport(device), image, **_kwargs(clock, timeouts, progress))
        assert device.flash[:len(image)] == image

    def test_oversized_flash_image_sends_nothing_destructive(self, clock, timeouts, progress):
        device = SimulatedCaterina()
        transport = SimulatedTransport(device)
        image = b"\x00" * (ATMEGA32U4.boot_section_addr + 1)

        with pytest.raises(ImageTooLarge) as exc_info:
            write_firmware(transport, image, **_kwargs(clock, timeouts, progress))

        assert exc_info.value.length == 0x7001
        assert exc_info.value.limit == 0x7000
        for command in DESTRUCTIVE + ("g",):
            assert device.count(command) == 0
        assert device.count("E") == 1
        assert transport.close_count == 1
        assert progress.statuses[-1] == "Flash image size exceeds limit 28673>28672"

    def test_oversized_eeprom_image_checked_before_erase(self, clock, timeouts, progress):
        device = SimulatedCaterina()

        with pytest.raises(ImageTooLarge) as exc_info:
            write_firmware(
                SimulatedTransport(device), b"\x00" * 16, b"\x00" * 1025,
                **_kwargs(clock, timeouts, progress)
            )

        assert exc_info.value.region == "eeprom"
        for command in DESTRUCTIVE:
            assert device.count(command) == 0

    def test_programming_mode_rejected(self, clock, timeouts, progress):
        device = SimulatedCaterina(reject={"P": 0x15})
        transport = SimulatedTransport(device)

        with pytest.raises(CommandRejected) as exc_info:
            write_firmware(transport, b"\x00" * 16, **_kwargs(clock, timeouts, progress))

        assert exc_info.value.response == 0x15
        assert device.count("e") == 0
        assert device.count("E") == 1
        assert transport.close_count == 1
        assert progress.statuses[-1] == "Command 'P' failed. res:0x15"

    def test_verify_failure_stops_before_leaving_programming_mode(self, clock, timeouts, progress):
        device = SimulatedCaterina(write_faults={0x40: 0x00})
        transport = SimulatedTransport(device)

        with pytest.raises(VerifyMismatch) as exc_info:
            write_firmware(transport, b"\xAA" * 128, **_kwargs(clock, timeouts, progress))

        assert exc_info.value.offset == 0x40
        assert device.count("L") == 0
        assert device.count("E") == 1
        assert transport.close_count == 1

    def test_failed_exit_after_error_is_logged(self, clock, timeouts, progress, caplog):
        device = SimulatedCaterina(reject={"P": 0x15, "E": 0x15})
        transport = SimulatedTransport(device)

        with caplog.at_level(logging.WARNING, logger="caterina_flasher"):
            with pytest.raises(CommandRejected) as exc_info:
                write_firmware(transport, b"\x00", **_kwargs(clock, timeouts, progress))

        assert exc_info.value.command == "P"
        assert "Bootloader exit after failure also failed" in caplog.text
        assert transport.close_count == 1


class TestSessionCleanup:

    def test_missing_bootloader_closes_without_exit(self, clock, timeouts, progress):
        device = SimulatedCaterina(identifier=b"ARDUINO")
        transport = SimulatedTransport(device)

        with pytest.raises(BootloaderNotFound):
            read_firmware(transport, **_kwargs(clock, timeouts, progress))

        assert device.count("E") == 0
        assert transport.close_count == 1
        assert progress.statuses[-1].startswith("Caterina bootloader is not found")

    def test_open_failure_still_closes_once(self, clock, timeouts, progress):
        transport = SimulatedTransport(fail_open=True)

        with pytest.raises(TransportError):
            read_firmware(transport, **_kwargs(clock, timeouts, progress))

        assert transport.close_count == 1
        assert transport.device.commands == []

    def test_handshake_failure_after_identifier_still_exits(self, clock, timeouts, progress):
        device = SimulatedCaterina(buffer_access=False)
        transport = SimulatedTransport(device)

        with pytest.raises(BufferAccessUnsupported):
            read_firmware(transport, **_kwargs(clock, timeouts, progress))

        assert device.commands == ["S", "V", "v", "p", "a", "b", "E"]
        assert device.exited is True
        assert transport.close_count == 1

    def test_device_type_rejected_still_exits(self, clock, timeouts, progress):
        device = SimulatedCaterina(reject={"T": 0x3F})
        transport = SimulatedTransport(device)

        with pytest.raises(CommandRejected) as exc_info:
            identify_device(transport, **_kwargs(clock, timeouts, progress))

        assert exc_info.value.command == "T"
        assert device.count("E") == 1
        assert transport.close_count == 1

    def test_close_failure_does_not_hide_first_error(self, clock, timeouts, progress, caplog):
        device = SimulatedCaterina(reject={"P": 0x15})
        transport = _FailingCloseTransport(device)

        with caplog.at_level(logging.WARNING, logger="caterina_flasher"):
            with pytest.raises(CommandRejected):
                write_firmware(transport, b"\x00" * 16, **_kwargs(clock, timeouts, progress))

        assert transport.close_count == 1
        assert "Closing the port after failure also failed" in caplog.text

    def test_close_failure_after_success_is_raised(self, clock, timeouts, progress):
        transport = _FailingCloseTransport(SimulatedCaterina())

        with pytest.raises(TransportError, match="close failed"):
            read_firmware(transport, size=16, **_kwargs(clock, timeouts, progress))

        assert transport.device.exited is True
        assert transport.close_count == 1


class TestVerifyFirmware:

    def test_matching_image(self, clock, timeouts, progress):
        device = SimulatedCaterina()
        device.flash[:64] = b"\x3C" * 64

        verify_firmware(SimulatedTransport(device), b"\x3C" * 64, **_kwargs(clock, timeouts, progress))

        assert progress.statuses[-1] == "Verify OK"
        assert device.count("P") == 0

    def test_mismatching_image(self, clock, timeouts, progress):
        device = SimulatedCaterina()
        transport = SimulatedTransport(device)

        with pytest.raises(VerifyMismatch) as exc_info:
            verify_firmware(transport, b"\xFF" * 10 + b"\x00", **_kwargs(clock, timeouts, progress))

        assert exc_info.value.offset == 10
        assert transport.close_count == 1
