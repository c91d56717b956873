"""FlexFEC-03 decoding: recovers a lost media packet from FEC repair packets."""

from __future__ import annotations

import logging
import struct
from dataclasses import dataclass
from functools import cmp_to_key

from flexfec.encoder import BASE_RTP_HEADER_SIZE
from flexfec.rtp import RtpError, RtpPacket

_SEQ_MODULO = 0x10000
_SEQ_BREAKPOINT = 0x8000
_RECOVERED_PACKETS_LIMIT = 192
_FEC03_MIN_SIZE = 20


class FlexFecError(ValueError):
    """Raised when a FlexFEC-03 packet cannot be parsed or used for recovery."""


@dataclass(frozen=True)
class FlexFecHeader:
    """The fields of a FlexFEC-03 header protecting a single SSRC."""

    protected_ssrc: int
    seq_num_base: int
    mask0: int
    mask1: int
    mask2: int
    payload: bytes


@dataclass
class _ProtectedPacket:
    seq: int
    packet: RtpPacket | None = None


@dataclass
class _FecPacketState:
    packet: RtpPacket
    flex_fec: FlexFecHeader
    protected_packets: list[_ProtectedPacket]


def is_newer_seq(prev_value: int, value: int) -> bool:
    """Return whether sequence number ``value`` comes after ``prev_value``."""
    diff = (value - prev_value) % _SEQ_MODULO
    if diff == _SEQ_BREAKPOINT:
        return value > prev_value
    return value != prev_value and diff < _SEQ_BREAKPOINT


def seq_diff(a: int, b: int) -> int:
    """Return the shortest distance between two 16-bit sequence numbers."""
    return min((a - b) % _SEQ_MODULO, (b - a) % _SEQ_MODULO)


def decode_mask(mask: int, bit_count: int, seq_num_base: int) -> list[int]:
    """Return the sequence numbers selected by a mask read from its top bit down."""
    return [
        (seq_num_base + i) % _SEQ_MODULO
        for i in range(bit_count)
        if (mask >> (bit_count - 1 - i)) & 1
    ]


def parse_flexfec03_header(data: bytes) -> FlexFecHeader:
    """Parse the FlexFEC-03 header at the start of an FEC packet's payload."""
    data = bytes(data)
    if len(data) < _FEC03_MIN_SIZE:
        raise FlexFecError(f"packet truncated: length {len(data)}")
    if data[0] & 0x80:
        raise FlexFecError("packet with retransmission bit set not supported")
    if data[0] & 0x40:
        raise FlexFecError("packet with inflexible generator matrix not supported")
    ssrc_count = data[8]
    if ssrc_count != 1:
        raise FlexFecError(f"multiple ssrc protection not supported: count {ssrc_count}")

    protected_ssrc, seq_num_base, raw_mask0 = struct.unpack_from("!IHH", data, 12)
    mask0 = raw_mask0 & 0x7FFF
    mask1 = 0
    mask2 = 0

    if raw_mask0 & 0x8000:
        payload = data[20:]
    else:
        if len(data) < 24:
            raise FlexFecError(f"packet truncated: length {len(data)}")
        (raw_mask1,) = struct.unpack_from("!I", data, 20)
        mask1 = raw_mask1 & 0x7FFFFFFF
        if raw_mask1 & 0x80000000:
            payload = data[24:]
        else:
            if len(data) < 32:
                raise FlexFecError(f"packet truncated: length {len(data)}")
            (raw_mask2,) = struct.unpack_from("!Q", data, 24)
            mask2 = raw_mask2 & 0x7FFFFFFFFFFFFFFF
            if not raw_mask2 & 0x8000000000000000:
                raise FlexFecError("k-bit of last optional mask is set to false")
            payload = data[32:]

    return FlexFecHeader(
        protected_ssrc=protected_ssrc,
        seq_num_base=seq_num_base,
        mask0=mask0,
        mask1=mask1,
        mask2=mask2,
        payload=payload,
    )


def _compare_seq(a: int, b: int) -> int:
    if is_newer_seq(a, b):
        return -1
    if is_newer_seq(b, a):
        return 1
    return 0


_PACKET_ORDER = cmp_to_key(
    lambda a, b: _compare_seq(a.header.sequence_number, b.header.sequence_number)
)
_STATE_ORDER = cmp_to_key(
    lambda a, b: _compare_seq(a.packet.header.sequence_number, b.packet.header.sequence_number)
)


class FecDecoder:
    """Collects media and FlexFEC-03 packets and rebuilds single missing media packets."""

    def __init__(
        self,
        ssrc: int,
        protected_stream_ssrc: int,
        max_media_packets: int,
        max_fec_packets: int,
        logger: logging.Logger | None = None,
    ) -> None:
        self.ssrc = ssrc
        self.protected_stream_ssrc = protected_stream_ssrc
        self.max_media_packets = max_media_packets
        self.max_fec_packets = max_fec_packets
        self._logger = logger or logging.getLogger(__name__)
        self._recovered: list[RtpPacket] = []
        self._received_fec: list[_FecPacketState] = []

    def decode_fec(self, received_packet: RtpPacket) -> list[RtpPacket]:
        """Take in one received packet and return the media packets it lets us recover."""
        if len(self._recovered) == self.max_media_packets:
            back = self._recovered[-1]
            if back.header.ssrc == received_packet.header.ssrc:
                gap = seq_diff(
                    received_packet.header.sequence_number, back.header.sequence_number
                )
                if gap > self.max_media_packets % _SEQ_MODULO:
                    self._logger.info("big gap in media sequence numbers - resetting buffers")
                    self._recovered = []
                    self._received_fec = []

        self._insert_packet(received_packet)
        return self._attempt_recovery()

    def _insert_packet(self, packet: RtpPacket) -> None:
        if packet.header.ssrc == self.ssrc:
            self._insert_fec_packet(packet)
        elif packet.header.ssrc == self.protected_stream_ssrc:
            self._insert_media_packet(packet)
        self._discard_old_recovered_packets()

    def _insert_media_packet(self, packet: RtpPacket) -> None:
        seq = packet.header.sequence_number
        if any(known.header.sequence_number == seq for known in self._recovered):
            return
        self._recovered.append(packet)
        self._recovered.sort(key=_PACKET_ORDER)
        self._update_covering_fec_packets(packet)

    def _update_covering_fec_packets(self, packet: RtpPacket) -> None:
        seq = packet.header.sequence_number
        for state in self._received_fec:
            for protected in state.protected_packets:
                if protected.seq == seq:
                    protected.packet = packet

    def _insert_fec_packet(self, fec_packet: RtpPacket) -> None:
        seq = fec_packet.header.sequence_number
        if any(state.packet.header.sequence_number == seq for state in self._received_fec):
            return

        try:
            fec = parse_flexfec03_header(fec_packet.payload)
        except FlexFecError as exc:
            self._logger.error("failed to parse flexfec03 header: %s", exc)
            return

        if fec.protected_ssrc != self.protected_stream_ssrc:
            self._logger.error(
                "fec is protecting unknown ssrc, expected %d, got %d",
                self.protected_stream_ssrc,
                fec.protected_ssrc,
            )
            return

        protected_seqs = decode_mask(fec.mask0, 15, fec.seq_num_base)
        if fec.mask1:
            protected_seqs += decode_mask(fec.mask1, 31, fec.seq_num_base + 15)
        if fec.mask2:
            protected_seqs += decode_mask(fec.mask2, 63, fec.seq_num_base + 46)
        if not protected_seqs:
            self._logger.warning("empty fec packet mask")
            return

        known = {packet.header.sequence_number: packet for packet in self._recovered}
        protected = [_ProtectedPacket(seq, known.get(seq)) for seq in protected_seqs]
        self._received_fec.append(_FecPacketState(fec_packet, fec, protected))
        self._received_fec.sort(key=_STATE_ORDER)
        if len(self._received_fec) > self.max_fec_packets:
            del self._received_fec[0]

    def _attempt_recovery(self) -> list[RtpPacket]:
        recovered: list[RtpPacket] = []
        while True:
            packets_recovered = 0
            for state in list(self._received_fec):
                missing = sum(1 for p in state.protected_packets if p.packet is None)
                if missing != 1:
                    continue
                try:
                    packet = self._recover_packet(state)
                except FlexFecError as exc:
                    self._logger.error("failed to recover packet: %s", exc)
                    continue
                recovered.append(packet)
                self._recovered.append(packet)
                self._recovered.sort(key=_PACKET_ORDER)
                self._update_covering_fec_packets(packet)
                self._discard_old_recovered_packets()
                packets_recovered += 1
            if packets_recovered == 0:
                return recovered

    def _recover_packet(self, state: _FecPacketState) -> RtpPacket:
        header = bytearray(BASE_RTP_HEADER_SIZE)
        header[:10] = state.packet.payload[:10]

        seqnum = 0
        try:
            for protected in state.protected_packets:
                if protected.packet is None:
                    seqnum = protected.seq
                    continue
                received = bytearray(protected.packet.header.marshal())
                length = (protected.packet.marshal_size() - BASE_RTP_HEADER_SIZE) & 0xFFFF
                struct.pack_into("!H", received, 2, length)
                for offset in range(8):
                    header[offset] ^= received[offset]
        except RtpError as exc:
            raise FlexFecError(f"marshal received header: {exc}") from exc

        header[0] = (header[0] | 0x80) & 0xBF
        (payload_length,) = struct.unpack_from("!H", header, 2)
        struct.pack_into("!H", header, 2, seqnum)
        struct.pack_into("!I", header, 8, self.protected_stream_ssrc)

        payload = bytearray(payload_length)
        repair = state.flex_fec.payload[:payload_length]
        payload[: len(repair)] = repair
        try:
            for protected in state.protected_packets:
                if protected.packet is None:
                    continue
                body = protected.packet.marshal()[BASE_RTP_HEADER_SIZE:]
                for offset, value in enumerate(body[:payload_length]):
                    payload[offset] ^= value
        except RtpError as exc:
            raise FlexFecError(f"marshal protected packet: {exc}") from exc

        try:
            return RtpPacket.unmarshal(bytes(header + payload))
        except RtpError as exc:
            raise FlexFecError(f"unmarshal recovered: {exc}") from exc

    def _discard_old_recovered_packets(self) -> None:
        if len(self._recovered) > _RECOVERED_PACKETS_LIMIT:
            self._recovered = self._recovered[-_RECOVERED_PACKETS_LIMIT:]