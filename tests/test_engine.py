"""Tests for the bootloader protocol engine against a scripted transport."""

import pytest

from ch55x_flasher.models import BootloaderVariant, get_command_template
from ch55x_flasher.protocol import (
    BootloaderUnknown,
    ChipUnknown,
    FileFormatError,
    FlashMode,
    SerialError,
    SerialTimeout,
    derive_session_key,
)
from ch55x_flasher.protocol.engine import KEY_OFFSETS

V1 = get_command_template(BootloaderVariant.V1)
V2 = get_command_template(BootloaderVariant.V2)

V2_CHIP_REPLY = bytes([0xA1, 0x00, 0x02, 0x00, 0x52, 0x11])
V2_ACK = bytes([0x00, 0x00, 0x02, 0x00, 0x00, 0x00])


def v2_ack(status=0x00):
    return bytes([0x00, 0x00, 0x02, 0x00, status, 0x00])


def set_session(engine, variant, chip_id=0x52, key=bytes(8)):
    engine.state.variant = variant
    engine.state.chip_id = chip_id
    engine.state.session_key = key


class TestReset:
    """DTR/RTS reset sequence."""

    def test_sequence_and_timing(self, engine, transport, sleeps):
        engine.reset()
        assert transport.lines == [
            ("reset", True),
            ("bootsel", True),
            ("reset", False),
            ("bootsel", False),
        ]
        assert sleeps == [0.01, 0.15, 0.1, 0.25]
        assert transport.sent == []

    def test_control_line_errors_ignored(self, engine, transport, sleeps):
        def broken(level):
            raise OSError("line not supported")

        transport.set_reset = broken
        engine.reset()
        assert transport.lines == [("bootsel", True), ("bootsel", False)]
        assert len(sleeps) == 4


class TestBootloaderDetect:
    """Variant detection from the V2 probe."""

    def test_two_byte_reply_is_v1(self, engine, transport):
        transport.queue(b"\x52\x11")
        assert engine.detect_bootloader() is BootloaderVariant.V1
        assert transport.payloads == [V2.chip_detect]

    def test_other_reply_is_v2(self, engine, transport):
        transport.queue(V2_CHIP_REPLY)
        assert engine.detect_bootloader() is BootloaderVariant.V2

    def test_failed_probe_leaves_unknown(self, engine, transport):
        assert engine.detect_bootloader() is BootloaderVariant.UNKNOWN
        assert engine.variant is BootloaderVariant.UNKNOWN

    def test_bad_checksum_leaves_unknown(self, engine, transport):
        transport.queue_raw(b"\x55\xAA\x52\x11\x00")
        assert engine.detect_bootloader() is BootloaderVariant.UNKNOWN

    def test_no_redetection(self, engine, transport):
        transport.queue(b"\x52\x11")
        engine.detect_bootloader()
        engine.detect_bootloader()
        assert len(transport.sent) == 1
        assert engine.variant is BootloaderVariant.V1


class TestChipDetectV1:
    """V1 chip identification."""

    def test_detects_chip_and_version(self, engine, transport):
        engine.state.variant = BootloaderVariant.V1
        transport.queue(b"\x52\x11", b"\x23\x01")

        profile = engine.detect_chip()

        assert profile.name == "CH552"
        assert engine.chip_id == 0x52
        assert engine.state.bootloader_version == "2.1"
        assert transport.payloads == [V1.chip_detect, V1.config_read]

    def test_wrong_chip_reply_length(self, engine, transport):
        engine.state.variant = BootloaderVariant.V1
        transport.queue(b"\x52\x11\x00")
        with pytest.raises(ChipUnknown):
            engine.detect_chip()

    def test_wrong_config_reply_length(self, engine, transport):
        engine.state.variant = BootloaderVariant.V1
        transport.queue(b"\x52\x11", b"\x23")
        with pytest.raises(BootloaderUnknown):
            engine.detect_chip()

    def test_unsupported_chip_id(self, engine, transport):
        engine.state.variant = BootloaderVariant.V1
        transport.queue(b"\x60\x11")
        with pytest.raises(ChipUnknown):
            engine.detect_chip()
        assert engine.chip_id is None

    def test_unknown_variant(self, engine, transport):
        with pytest.raises(BootloaderUnknown):
            engine.detect_chip()
        assert transport.sent == []


class TestKeyDerivation:
    """V2 session key arithmetic."""

    def test_offsets(self):
        assert KEY_OFFSETS == (27, 12, 9, 39, 21, 30, 33)

    def test_known_vector(self, challenge, v2_config):
        key, key_checksum = derive_session_key(challenge, v2_config, 0x52)
        # Mask = 0x10 + 0x20 + 0x30 + 0x40 = 0xA0; request[i] = i - 3
        assert key == bytes([0xB8, 0xA9, 0xA6, 0x84, 0xB2, 0xBB, 0xBE, 0x0A])
        assert key_checksum == 0xC0

    def test_deterministic(self, v2_config):
        challenge = bytes((i * 37 + 11) & 0xFF for i in range(48))
        first = derive_session_key(challenge, v2_config, 0x59)
        second = derive_session_key(challenge, v2_config, 0x59)
        assert first == second

    def test_last_byte_depends_on_chip(self, challenge, v2_config):
        key_a, _ = derive_session_key(challenge, v2_config, 0x51)
        key_b, _ = derive_session_key(challenge, v2_config, 0x52)
        assert key_a[:7] == key_b[:7]
        assert key_b[7] == (key_a[7] + 1) & 0xFF


class TestChipDetectV2:
    """V2 chip identification and key exchange."""

    def test_key_exchange_accepted(self, engine, transport, challenge, v2_config):
        engine.state.variant = BootloaderVariant.V2
        transport.queue(V2_CHIP_REPLY, v2_config, v2_ack(0xC0))

        profile = engine.detect_chip()

        assert profile.chip_id == 0x52
        assert engine.state.bootloader_version == "2.31"
        assert engine.state.session_key == bytes.fromhex("B8A9A684B2BBBE0A")

        key_request = transport.payloads[2]
        assert len(key_request) == 51
        assert key_request[:3] == bytes([0xA3, 0x30, 0x00])
        assert key_request[3:] == challenge

    def test_key_exchange_rejected(self, engine, transport, v2_config):
        engine.state.variant = BootloaderVariant.V2
        transport.queue(V2_CHIP_REPLY, v2_config, v2_ack(0x00))

        with pytest.raises(BootloaderUnknown):
            engine.detect_chip()
        assert engine.state.session_key == bytes(8)

    def test_wrong_config_length(self, engine, transport):
        engine.state.variant = BootloaderVariant.V2
        transport.queue(V2_CHIP_REPLY, bytes(29))
        with pytest.raises(BootloaderUnknown):
            engine.detect_chip()

    def test_wrong_chip_reply_length(self, engine, transport):
        engine.state.variant = BootloaderVariant.V2
        transport.queue(b"\x52\x11")
        with pytest.raises(ChipUnknown):
            engine.detect_chip()

    def test_silent_during_key_exchange(self, engine, transport, v2_config):
        engine.state.variant = BootloaderVariant.V2
        transport.queue(V2_CHIP_REPLY, v2_config)
        with pytest.raises(SerialTimeout):
            engine.detect_chip()


class TestErase:
    """Flash erase for both variants."""

    def test_v1_one_request_per_block(self, engine, transport):
        set_session(engine, BootloaderVariant.V1, chip_id=0x52)
        transport.queue(*([b"\x00\x00"] * 15))

        engine.erase()

        payloads = transport.payloads
        assert payloads[0] == V1.flash_erase
        blocks = payloads[1:]
        assert len(blocks) == 14
        assert blocks[0] == bytes([0xA9, 0x02, 0x00, 0x00])
        assert blocks[13] == bytes([0xA9, 0x02, 0x00, 13 * 4])

    def test_v1_block_rejected(self, engine, transport):
        set_session(engine, BootloaderVariant.V1, chip_id=0x51)
        transport.queue(b"\x00\x00", b"\x00\x00", b"\x01\x00")
        with pytest.raises(ChipUnknown):
            engine.erase()
        assert len(transport.sent) == 3

    def test_v1_erase_command_unanswered(self, engine, transport):
        set_session(engine, BootloaderVariant.V1, chip_id=0x51)
        with pytest.raises(ChipUnknown):
            engine.erase()
        assert len(transport.sent) == 1

    def test_v2_single_request_with_block_count(self, engine, transport):
        set_session(engine, BootloaderVariant.V2, chip_id=0x59)
        transport.queue(V2_ACK)

        engine.erase()

        assert transport.payloads == [bytes([0xA4, 0x01, 0x00, 60])]

    def test_v2_rejected(self, engine, transport):
        set_session(engine, BootloaderVariant.V2, chip_id=0x52)
        transport.queue(v2_ack(0x01))
        with pytest.raises(ChipUnknown):
            engine.erase()

    def test_unknown_variant_sends_nothing(self, engine, transport):
        with pytest.raises(BootloaderUnknown):
            engine.erase()
        assert transport.sent == []


class TestFlashImage:
    """Write/verify transfers through the engine."""

    def test_short_image(self, engine, transport):
        set_session(engine, BootloaderVariant.V1)
        with pytest.raises(FileFormatError):
            engine.flash_image(bytes(31))
        assert transport.sent == []

    def test_unknown_variant(self, engine, transport):
        with pytest.raises(BootloaderUnknown):
            engine.flash_image(bytes(64))

    def test_chip_required(self, engine, transport):
        engine.state.variant = BootloaderVariant.V1
        with pytest.raises(ChipUnknown):
            engine.flash_image(bytes(64))

    def test_v1_write_packets(self, engine, transport):
        set_session(engine, BootloaderVariant.V1)
        image = bytes(range(100))
        transport.queue(b"\x00\x00", b"\x00\x00")

        count = engine.flash_image(image, FlashMode.WRITE)

        assert count == 2
        first, second = transport.payloads
        assert first[:4] == bytes([0xA8, 60, 0x00, 0x00])
        assert first[4:64] == image[:60]
        assert second[:4] == bytes([0xA8, 40, 60, 0x00])
        assert second[4:44] == image[60:]

    def test_v1_verify_opcode(self, engine, transport):
        set_session(engine, BootloaderVariant.V1)
        transport.queue(b"\x00\x00")
        engine.flash_image(bytes(40), FlashMode.VERIFY)
        assert transport.payloads[0][0] == 0xA7

    def test_v1_rejected_packet(self, engine, transport):
        set_session(engine, BootloaderVariant.V1)
        transport.queue(b"\x00\x00", b"\x01\x00")
        with pytest.raises(SerialError):
            engine.flash_image(bytes(100))

    def test_v2_final_packet_ack(self, engine, transport):
        set_session(engine, BootloaderVariant.V2)
        transport.queue(v2_ack(0x00), v2_ack(0xFE))
        assert engine.flash_image(bytes(100)) == 2

    def test_v2_rejected_packet(self, engine, transport):
        set_session(engine, BootloaderVariant.V2)
        transport.queue(v2_ack(0x01))
        with pytest.raises(SerialError):
            engine.flash_image(bytes(100))
        assert len(transport.sent) == 1

    def test_progress_reaches_total(self, engine, transport):
        set_session(engine, BootloaderVariant.V1)
        transport.queue(b"\x00\x00", b"\x00\x00")
        seen = []
        engine.flash_image(bytes(100), progress_cb=lambda done, total: seen.append((done, total)))
        assert seen[0] == (60, 100)
        assert seen[-1] == (100, 100)


class TestFlows:
    """High level write and verify flows."""

    def test_write_fails_without_bootloader(self, engine, transport):
        with pytest.raises(BootloaderUnknown):
            engine.write(bytes(40))
        assert len(transport.sent) == 1

    def test_v2_end_to_end(self, engine, transport, v2_config):
        image = bytes(range(0x40, 0x40 + 40))
        key = bytes.fromhex("B8A9A684B2BBBE0A")
        transport.queue(
            V2_CHIP_REPLY,      # bootloader probe
            V2_CHIP_REPLY,      # chip detect
            v2_config,          # config read
            v2_ack(0xC0),       # key exchange
            V2_ACK,             # erase
            V2_ACK,             # write
            V2_ACK,             # verify
            V2_ACK,             # exit
        )

        engine.write(image)

        payloads = transport.payloads
        assert len(payloads) == 8
        assert payloads[0] == V2.chip_detect
        assert payloads[1] == V2.chip_detect
        assert payloads[2] == V2.config_read
        assert payloads[3][:3] == bytes([0xA3, 0x30, 0x00])
        assert payloads[4] == bytes([0xA4, 0x01, 0x00, 14])

        expected_data = bytes(b ^ key[i % 8] for i, b in enumerate(image))
        assert payloads[5] == bytes([0xA5, 45, 0, 0, 0, 0, 0, 40]) + expected_data
        assert payloads[6] == bytes([0xA6, 45, 0, 0, 0, 0, 0, 40]) + expected_data
        assert payloads[7] == V2.bootloader_exit

    def test_write_stops_after_failed_erase(self, engine, transport, v2_config):
        transport.queue(
            V2_CHIP_REPLY, V2_CHIP_REPLY, v2_config, v2_ack(0xC0), v2_ack(0x01)
        )
        with pytest.raises(ChipUnknown):
            engine.write(bytes(40))
        assert len(transport.sent) == 5

    def test_write_skips_known_chip_detection(self, engine, transport):
        set_session(engine, BootloaderVariant.V1, chip_id=0x51)
        transport.queue(*([b"\x00\x00"] * 11), b"\x00\x00", b"\x00\x00", b"\x00\x00")

        engine.write(bytes(40))

        payloads = transport.payloads
        assert payloads[0] == V1.flash_erase
        assert payloads[11][0] == 0xA8
        assert payloads[12][0] == 0xA7
        assert payloads[13] == V1.bootloader_exit

    def test_verify_flow_v1(self, engine, transport):
        transport.queue(b"\x52\x11", b"\x52\x11", b"\x23\x01", b"\x00\x00")

        engine.verify(bytes(40))

        payloads = transport.payloads
        assert payloads[0] == V2.chip_detect
        assert payloads[1] == V1.chip_detect
        assert payloads[2] == V1.config_read
        assert payloads[3][0] == 0xA7
        assert len(payloads) == 4

    def test_verify_propagates_chip_error(self, engine, transport):
        with pytest.raises(BootloaderUnknown):
            engine.verify(bytes(40))

    def test_exit_requires_variant(self, engine, transport):
        with pytest.raises(BootloaderUnknown):
            engine.exit_bootloader()
