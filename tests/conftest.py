"""Shared fixtures: an in-memory transport that replays scripted replies."""

import pytest

from ch55x_flasher.protocol import BootloaderEngine, SerialError, build_reply


class FakeTransport:
    """
    Deterministic stand-in for the serial port.

    Each write() makes the next queued reply frame readable byte by byte;
    an empty frame (or an exhausted queue) behaves like a silent device.
    """

    def __init__(self):
        self.replies = []
        self.sent = []
        self.lines = []
        self._rx = bytearray()

    def queue(self, *payloads: bytes) -> "FakeTransport":
        """Queue well-formed reply frames around the given payloads."""
        for payload in payloads:
            self.replies.append(build_reply(payload))
        return self

    def queue_raw(self, *frames: bytes) -> "FakeTransport":
        """Queue reply frames exactly as given (b"" means no answer)."""
        self.replies.extend(frames)
        return self

    def write(self, data: bytes) -> None:
        self.sent.append(bytes(data))
        self._rx = bytearray(self.replies.pop(0) if self.replies else b"")

    def read_byte(self) -> bytes:
        if not self._rx:
            return b""
        byte = bytes(self._rx[:1])
        del self._rx[:1]
        return byte

    def set_reset(self, level: bool) -> None:
        self.lines.append(("reset", level))

    def set_bootsel(self, level: bool) -> None:
        self.lines.append(("bootsel", level))

    @property
    def payloads(self):
        """Request payloads sent so far (preamble and checksum stripped)."""
        return [frame[2:-1] for frame in self.sent]


class BrokenLineTransport(FakeTransport):
    """Serves the queued frame, then every further read fails."""

    def read_byte(self) -> bytes:
        if not self._rx:
            raise SerialError("read error")
        return super().read_byte()


# 48 challenge bytes 00..2F make key offsets easy to follow by hand
CHALLENGE = bytes(range(48))


def v2_config_reply(version=(2, 3, 1), mask_bytes=(0x10, 0x20, 0x30, 0x40)) -> bytes:
    """30-byte V2 config reply with version at 19..21 and key mask at 22..25."""
    reply = bytearray(30)
    reply[0] = 0xA7
    reply[19:22] = bytes(version)
    reply[22:26] = bytes(mask_bytes)
    return bytes(reply)


@pytest.fixture
def transport():
    return FakeTransport()


@pytest.fixture
def broken_line():
    return BrokenLineTransport()


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def engine(transport, sleeps):
    return BootloaderEngine(
        transport,
        sleep=sleeps.append,
        randbytes=lambda n: CHALLENGE[:n],
    )


@pytest.fixture
def challenge():
    return CHALLENGE


@pytest.fixture
def v2_config():
    return v2_config_reply()
