"""RTP packets and iteration over the media packets an FEC packet protects."""

from __future__ import annotations

import struct
from collections.abc import Iterator, Sequence
from dataclasses import dataclass, field

_FIXED_HEADER = struct.Struct("!BBHII")
_EXTENSION_HEADER = struct.Struct("!HH")
_MAX_U16 = 0xFFFF
_MAX_U32 = 0xFFFFFFFF


class RtpError(ValueError):
    """Raised when an RTP packet cannot be encoded or decoded."""


def _check_range(name: str, value: int, upper: int) -> None:
    if not 0 <= value <= upper:
        raise RtpError(f"{name} {value} outside 0..{upper}")


@dataclass
class RtpHeader:
    """An RTP header with its CSRC list and an opaque header extension."""

    version: int = 2
    padding: bool = False
    extension: bool = False
    marker: bool = False
    payload_type: int = 0
    sequence_number: int = 0
    timestamp: int = 0
    ssrc: int = 0
    csrc: list[int] = field(default_factory=list)
    extension_profile: int = 0
    extension_payload: bytes = b""

    def _padded_extension(self) -> bytes:
        payload = bytes(self.extension_payload)
        return payload + b"\x00" * (-len(payload) % 4)

    def marshal_size(self) -> int:
        """Return the number of bytes :meth:`marshal` produces."""
        size = _FIXED_HEADER.size + 4 * len(self.csrc)
        if self.extension:
            size += _EXTENSION_HEADER.size + len(self._padded_extension())
        return size

    def _validate(self) -> None:
        _check_range("version", self.version, 3)
        _check_range("payload type", self.payload_type, 0x7F)
        _check_range("sequence number", self.sequence_number, _MAX_U16)
        _check_range("timestamp", self.timestamp, _MAX_U32)
        _check_range("ssrc", self.ssrc, _MAX_U32)
        if len(self.csrc) > 15:
            raise RtpError(f"too many CSRCs: {len(self.csrc)}")
        for csrc in self.csrc:
            _check_range("csrc", csrc, _MAX_U32)
        if self.extension:
            _check_range("extension profile", self.extension_profile, _MAX_U16)
            words = len(self._padded_extension()) // 4
            _check_range("extension length", words, _MAX_U16)

    def marshal(self) -> bytes:
        """Encode the header in network byte order."""
        self._validate()
        first = (
            (self.version << 6)
            | (int(self.padding) << 5)
            | (int(self.extension) << 4)
            | len(self.csrc)
        )
        second = (int(self.marker) << 7) | self.payload_type
        out = bytearray(
            _FIXED_HEADER.pack(first, second, self.sequence_number, self.timestamp, self.ssrc)
        )
        for csrc in self.csrc:
            out += struct.pack("!I", csrc)
        if self.extension:
            body = self._padded_extension()
            out += _EXTENSION_HEADER.pack(self.extension_profile, len(body) // 4)
            out += body
        return bytes(out)

    @classmethod
    def unmarshal(cls, data: bytes) -> RtpHeader:
        """Decode a header from the start of ``data``; trailing bytes are ignored."""
        data = bytes(data)
        if len(data) < _FIXED_HEADER.size:
            raise RtpError(f"header too short: {len(data)} bytes")
        first, second, seq, timestamp, ssrc = _FIXED_HEADER.unpack_from(data)
        csrc_count = first & 0x0F
        offset = _FIXED_HEADER.size
        csrc_end = offset + 4 * csrc_count
        if len(data) < csrc_end:
            raise RtpError(f"header too short for {csrc_count} CSRCs")
        csrc = list(struct.unpack_from(f"!{csrc_count}I", data, offset))
        offset = csrc_end

        extension = bool(first & 0x10)
        profile = 0
        ext_payload = b""
        if extension:
            if len(data) < offset + _EXTENSION_HEADER.size:
                raise RtpError("header too short for extension")
            profile, words = _EXTENSION_HEADER.unpack_from(data, offset)
            offset += _EXTENSION_HEADER.size
            end = offset + 4 * words
            if len(data) < end:
                raise RtpError("header too short for extension payload")
            ext_payload = data[offset:end]

        return cls(
            version=first >> 6,
            padding=bool(first & 0x20),
            extension=extension,
            marker=bool(second & 0x80),
            payload_type=second & 0x7F,
            sequence_number=seq,
            timestamp=timestamp,
            ssrc=ssrc,
            csrc=csrc,
            extension_profile=profile,
            extension_payload=ext_payload,
        )


@dataclass
class RtpPacket:
    """An RTP packet: header, payload and optional trailing padding."""

    header: RtpHeader = field(default_factory=RtpHeader)
    payload: bytes = b""
    padding_size: int = 0

    def marshal_size(self) -> int:
        """Return the number of bytes :meth:`marshal` produces."""
        return self.header.marshal_size() + len(self.payload) + self.padding_size

    def marshal(self) -> bytes:
        """Encode the whole packet, padding included."""
        _check_range("padding size", self.padding_size, 0xFF)
        if self.header.padding and self.padding_size == 0:
            raise RtpError("padding bit set but padding size is zero")
        header = self.header
        if self.padding_size and not header.padding:
            header = RtpHeader(**{**vars(header), "padding": True})
        out = bytearray(header.marshal())
        out += bytes(self.payload)
        if self.padding_size:
            out += b"\x00" * (self.padding_size - 1)
            out.append(self.padding_size)
        return bytes(out)

    @classmethod
    def unmarshal(cls, data: bytes) -> RtpPacket:
        """Decode a complete packet."""
        data = bytes(data)
        header = RtpHeader.unmarshal(data)
        body = data[header.marshal_size():]
        padding_size = 0
        if header.padding:
            if not body:
                raise RtpError("padding bit set but packet has no body")
            padding_size = body[-1]
            if padding_size == 0 or padding_size > len(body):
                raise RtpError(f"invalid padding size {padding_size}")
            body = body[:-padding_size]
        return cls(header=header, payload=body, padding_size=padding_size)


class MediaPacketIterator(Iterator[RtpPacket]):
    """Iterates over the media packets at the given covered indices."""

    def __init__(self, media_packets: Sequence[RtpPacket], covered_indices: Sequence[int]):
        self._media_packets = media_packets
        self._covered_indices = list(covered_indices)
        self._next_index = 0

    def __iter__(self) -> MediaPacketIterator:
        return self

    def __next__(self) -> RtpPacket:
        if self._next_index >= len(self._covered_indices):
            raise StopIteration
        packet = self._media_packets[self._covered_indices[self._next_index]]
        self._next_index += 1
        return packet

    def reset(self) -> MediaPacketIterator:
        """Rewind to the first covered packet and return self."""
        self._next_index = 0
        return self

    def first(self) -> RtpPacket | None:
        """Return the first covered packet, or None when nothing is covered."""
        if not self._covered_indices:
            return None
        return self._media_packets[self._covered_indices[0]]