"""Which media packets each FEC packet protects, and the FlexFEC masks for it."""

from __future__ import annotations

from collections.abc import Sequence

from flexfec.bitarray import BitArray
from flexfec.rtp import MediaPacketIterator, RtpPacket

# A single FEC packet protects at most this many media packets of one SSRC.
MAX_MEDIA_PACKETS = 110
MAX_FEC_PACKETS = MAX_MEDIA_PACKETS

_MASK64 = (1 << 64) - 1


class ProtectionCoverage:
    """Interleaved coverage map: media packet X is protected by FEC packet X % N."""

    def __init__(self) -> None:
        self._packet_masks = [BitArray() for _ in range(MAX_FEC_PACKETS)]
        self._num_fec_packets = 0
        self._num_media_packets = 0
        self._media_packets: Sequence[RtpPacket] = []

    def update_coverage(self, media_packets: Sequence[RtpPacket], num_fec_packets: int) -> None:
        """Recompute the map for a new batch; batches of an invalid size are ignored."""
        num_media_packets = len(media_packets)
        if not 0 < num_media_packets <= MAX_MEDIA_PACKETS:
            return
        if not 0 <= num_fec_packets <= MAX_FEC_PACKETS:
            raise ValueError(
                f"number of FEC packets {num_fec_packets} outside 0..{MAX_FEC_PACKETS}"
            )

        self._media_packets = media_packets

        if (
            num_fec_packets == self._num_fec_packets
            and num_media_packets == self._num_media_packets
        ):
            return

        self._num_fec_packets = num_fec_packets
        self._num_media_packets = num_media_packets
        self._reset_coverage()

        for fec_index in range(num_fec_packets):
            mask = self._packet_masks[fec_index]
            for media_index in range(fec_index, num_media_packets, num_fec_packets):
                mask.set_bit(media_index)

    def _reset_coverage(self) -> None:
        for mask in self._packet_masks:
            mask.reset()

    def get_covered_by(self, fec_packet_index: int) -> MediaPacketIterator:
        """Return an iterator over the media packets protected by one FEC packet."""
        mask = self._packet_masks[fec_packet_index]
        covered = [i for i in range(self._num_media_packets) if mask.get_bit(i) == 1]
        return MediaPacketIterator(self._media_packets, covered)

    def extract_mask1(self, fec_packet_index: int) -> int:
        """Return mask bits 0-14, the first mask section of the FEC header."""
        return self._packet_masks[fec_packet_index].lo >> 49

    def extract_mask2(self, fec_packet_index: int) -> int:
        """Return mask bits 15-45, the second mask section of the FEC header."""
        lo = self._packet_masks[fec_packet_index].lo
        return ((lo << 15) & _MASK64) >> 33

    def extract_mask3(self, fec_packet_index: int) -> int:
        """Return mask bits 46-109, the third mask section of the final FlexFEC header."""
        mask = self._packet_masks[fec_packet_index]
        return ((mask.lo << 46) & _MASK64) | (mask.hi >> 18)

    def extract_mask3_03(self, fec_packet_index: int) -> int:
        """Return mask bits 46-108, the third mask section of the FlexFEC-03 header."""
        return self.extract_mask3(fec_packet_index) >> 1


def new_coverage(
    media_packets: Sequence[RtpPacket], num_fec_packets: int
) -> ProtectionCoverage | None:
    """Build a coverage map, or return None when the batch size is unusable."""
    if not 0 < len(media_packets) <= MAX_MEDIA_PACKETS:
        return None
    coverage = ProtectionCoverage()
    coverage.update_coverage(media_packets, num_fec_packets)
    return coverage