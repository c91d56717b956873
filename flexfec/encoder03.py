"""FEC packet generation for the FlexFEC-03 draft, as used by browsers."""

from __future__ import annotations

import struct
from collections.abc import Sequence
from itertools import pairwise

from flexfec.coverage import MAX_MEDIA_PACKETS, ProtectionCoverage, new_coverage
from flexfec.encoder import BASE_RTP_HEADER_SIZE, FEC_TIMESTAMP, INITIAL_FEC_SEQUENCE_NUMBER
from flexfec.rtp import MediaPacketIterator, RtpHeader, RtpPacket

# Minimum FlexFEC-03 header size in bytes, including the required first mask.
BASE_FEC03_HEADER_SIZE = 20

_K_BIT = 0b1000_0000


class FlexEncoder03:
    """Generates FlexFEC-03 repair packets that protect batches of media packets."""

    def __init__(self, payload_type: int, ssrc: int) -> None:
        self.payload_type = payload_type
        self.ssrc = ssrc
        self._fec_base_sn = INITIAL_FEC_SEQUENCE_NUMBER
        self._coverage: ProtectionCoverage | None = None

    def encode_fec(
        self, media_packets: Sequence[RtpPacket], num_fec_packets: int
    ) -> list[RtpPacket]:
        """Return ``num_fec_packets`` FEC packets protecting ``media_packets``.

        No packets are produced when the batch is empty, too large, or its
        sequence numbers are not consecutive.
        """
        media_packets = list(media_packets)
        if not 0 < len(media_packets) <= MAX_MEDIA_PACKETS:
            return []
        for previous, current in pairwise(media_packets):
            expected = (previous.header.sequence_number + 1) & 0xFFFF
            if current.header.sequence_number != expected:
                return []
        if num_fec_packets > len(media_packets):
            raise ValueError(
                f"{num_fec_packets} FEC packets cannot each cover "
                f"one of {len(media_packets)} media packets"
            )

        if self._coverage is None:
            self._coverage = new_coverage(media_packets, num_fec_packets)
        else:
            self._coverage.update_coverage(media_packets, num_fec_packets)
        if self._coverage is None:
            return []

        base_sn = media_packets[0].header.sequence_number
        return [self._encode_packet(index, base_sn) for index in range(num_fec_packets)]

    def _encode_packet(self, fec_index: int, media_base_sn: int) -> RtpPacket:
        coverage = self._coverage
        assert coverage is not None
        covered = coverage.get_covered_by(fec_index)
        header = self._encode_header(
            covered,
            coverage.extract_mask1(fec_index),
            coverage.extract_mask2(fec_index),
            coverage.extract_mask3_03(fec_index),
            media_base_sn,
        )
        repair = self._encode_repair_payload(covered.reset())
        packet = RtpPacket(
            header=RtpHeader(
                version=2,
                payload_type=self.payload_type,
                sequence_number=self._fec_base_sn,
                timestamp=FEC_TIMESTAMP,
                ssrc=self.ssrc,
            ),
            payload=header + repair,
        )
        self._fec_base_sn = (self._fec_base_sn + 1) & 0xFFFF
        return packet

    @staticmethod
    def _encode_header(
        media_packets: MediaPacketIterator,
        mask1: int,
        mask2: int,
        mask3: int,
        media_base_sn: int,
    ) -> bytes:
        size = BASE_FEC03_HEADER_SIZE
        if mask2 or mask3:
            size += 4
        if mask3:
            size += 8
        header = bytearray(size)

        for packet in media_packets:
            raw = packet.marshal()
            header[0] ^= raw[0]
            header[1] ^= raw[1]
            header[0] &= 0b0011_1111
            length = (packet.marshal_size() - BASE_RTP_HEADER_SIZE) & 0xFFFF
            header[2] ^= length >> 8
            header[3] ^= length & 0xFF
            for offset in range(4, 8):
                header[offset] ^= raw[offset]

        first = media_packets.first()
        assert first is not None
        header[8] = 1  # SSRC count
        header[9:12] = b"\x00\x00\x00"
        struct.pack_into("!IHH", header, 12, first.header.ssrc, media_base_sn, mask1)

        if not mask2 and not mask3:
            header[18] |= _K_BIT
            return bytes(header)

        struct.pack_into("!I", header, 20, mask2)
        if not mask3:
            header[20] |= _K_BIT
        else:
            struct.pack_into("!Q", header, 24, mask3)
            header[24] |= _K_BIT
        return bytes(header)

    @staticmethod
    def _encode_repair_payload(media_packets: MediaPacketIterator) -> bytes:
        first = media_packets.first()
        assert first is not None
        repair = bytearray(first.marshal_size() - BASE_RTP_HEADER_SIZE)
        for packet in media_packets:
            body = packet.marshal()[BASE_RTP_HEADER_SIZE:]
            if len(repair) < len(body):
                repair.extend(bytes(len(body) - len(repair)))
            for offset, value in enumerate(body):
                repair[offset] ^= value
        return bytes(repair)