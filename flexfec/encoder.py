"""FEC packet generation for the final FlexFEC variant."""

from __future__ import annotations

import struct
from collections.abc import Sequence

from flexfec.coverage import MAX_MEDIA_PACKETS, ProtectionCoverage, new_coverage
from flexfec.rtp import MediaPacketIterator, RtpHeader, RtpPacket

# Minimum RTP header size in bytes.
BASE_RTP_HEADER_SIZE = 12
# Minimum FEC header size in bytes, including the required first mask.
BASE_FEC_HEADER_SIZE = 12
# Sequence number given to the first FEC packet an encoder emits.
INITIAL_FEC_SEQUENCE_NUMBER = 1000
# Timestamp written into every generated FEC packet.
FEC_TIMESTAMP = 54243243

_K_BIT = 0b1000_0000


class FlexEncoder20:
    """Generates FlexFEC repair packets that protect batches of media packets."""

    def __init__(self, payload_type: int, ssrc: int) -> None:
        self.payload_type = payload_type
        self.ssrc = ssrc
        self._fec_base_sn = INITIAL_FEC_SEQUENCE_NUMBER
        self._coverage: ProtectionCoverage | None = None

    def encode_fec(
        self, media_packets: Sequence[RtpPacket], num_fec_packets: int
    ) -> list[RtpPacket]:
        """Return ``num_fec_packets`` FEC packets protecting ``media_packets``.

        Missing or reordered media packets are not detected. A batch that is empty
        or larger than the coverage limit yields no FEC packets.
        """
        media_packets = list(media_packets)
        if not 0 < len(media_packets) <= MAX_MEDIA_PACKETS:
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
            coverage.extract_mask3(fec_index),
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
        size = BASE_FEC_HEADER_SIZE
        if mask2 or mask3:
            size += 4
        if mask3:
            size += 8
        header = bytearray(size)

        for packet in media_packets:
            raw = packet.marshal()
            header[0] ^= raw[0]
            header[1] ^= raw[1]
            length = (packet.marshal_size() - BASE_RTP_HEADER_SIZE) & 0xFFFF
            header[2] ^= length >> 8
            header[3] ^= length & 0xFF
            # The timestamp recovery field of this variant is left zeroed.

        struct.pack_into("!HH", header, 8, media_base_sn, mask1)
        if mask2:
            struct.pack_into("!I", header, 12, mask2)
            header[10] |= _K_BIT
        if mask3:
            struct.pack_into("!Q", header, 16, mask3)
            header[12] |= _K_BIT
        return bytes(header)

    @staticmethod
    def _encode_repair_payload(media_packets: MediaPacketIterator) -> bytes:
        first = media_packets.first()
        assert first is not None
        repair = bytearray(len(first.payload))
        for packet in media_packets:
            payload = packet.payload
            if len(repair) < len(payload):
                repair.extend(bytes(len(payload) - len(repair)))
            for offset, value in enumerate(payload):
                repair[offset] ^= value
        return bytes(repair)