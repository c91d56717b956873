import pytest
from hypothesis import given
from hypothesis import strategies as st

from flexfec.coverage import MAX_MEDIA_PACKETS, ProtectionCoverage, new_coverage
from flexfec.rtp import RtpHeader, RtpPacket


def _packets(count, base=0):
    return [
        RtpPacket(header=RtpHeader(sequence_number=base + n), payload=bytes([n % 256]))
        for n in range(count)
    ]


def _covered_indices(coverage, fec_index):
    return [p.header.sequence_number for p in coverage.get_covered_by(fec_index)]


def test_new_coverage_rejects_empty_batch():
    assert new_coverage([], 2) is None


def test_new_coverage_rejects_oversized_batch():
    assert new_coverage(_packets(MAX_MEDIA_PACKETS + 1), 2) is None


def test_too_many_fec_packets_rejected():
    with pytest.raises(ValueError):
        new_coverage(_packets(5), MAX_MEDIA_PACKETS + 1)


@given(
    st.integers(min_value=1, max_value=MAX_MEDIA_PACKETS),
    st.integers(min_value=1, max_value=20),
)
def test_interleaved_coverage(num_media, num_fec):
    coverage = new_coverage(_packets(num_media), num_fec)
    seen = []
    for fec_index in range(num_fec):
        covered = _covered_indices(coverage, fec_index)
        assert all(index % num_fec == fec_index for index in covered)
        assert covered == sorted(covered)
        seen.extend(covered)
    assert sorted(seen) == list(range(num_media))


@given(
    st.integers(min_value=1, max_value=MAX_MEDIA_PACKETS),
    st.integers(min_value=1, max_value=20),
)
def test_masks_agree_with_coverage(num_media, num_fec):
    coverage = new_coverage(_packets(num_media), num_fec)
    for fec_index in range(num_fec):
        covered = set(_covered_indices(coverage, fec_index))
        mask1 = coverage.extract_mask1(fec_index)
        mask2 = coverage.extract_mask2(fec_index)
        mask3 = coverage.extract_mask3_03(fec_index)
        assert mask1 < 1 << 15
        assert mask2 < 1 << 31
        assert mask3 < 1 << 63
        from_masks = {i for i in range(15) if mask1 >> (14 - i) & 1}
        from_masks |= {15 + i for i in range(31) if mask2 >> (30 - i) & 1}
        from_masks |= {46 + i for i in range(63) if mask3 >> (62 - i) & 1}
        assert from_masks == {i for i in covered if i < 109}


def test_single_fec_packet_first_section_full():
    coverage = new_coverage(_packets(15), 1)
    assert coverage.extract_mask1(0) == 0x7FFF
    assert coverage.extract_mask2(0) == 0
    assert coverage.extract_mask3(0) == 0


def test_single_fec_packet_second_section_full():
    coverage = new_coverage(_packets(46), 1)
    assert coverage.extract_mask2(0) == 0x7FFFFFFF
    assert coverage.extract_mask3_03(0) == 0


def test_single_fec_packet_all_sections_full():
    coverage = new_coverage(_packets(MAX_MEDIA_PACKETS), 1)
    assert coverage.extract_mask3(0) == (1 << 64) - 1
    assert coverage.extract_mask3_03(0) == coverage.extract_mask3(0) >> 1


def test_update_with_same_shape_uses_new_packets():
    coverage = new_coverage(_packets(5), 2)
    masks_before = [coverage.extract_mask1(i) for i in range(2)]
    coverage.update_coverage(_packets(5, base=100), 2)
    assert [coverage.extract_mask1(i) for i in range(2)] == masks_before
    assert _covered_indices(coverage, 0) == [100, 102, 104]


def test_update_with_new_shape_recomputes():
    coverage = new_coverage(_packets(6), 3)
    coverage.update_coverage(_packets(6), 2)
    assert _covered_indices(coverage, 0) == [0, 2, 4]
    assert _covered_indices(coverage, 1) == [1, 3, 5]
    assert _covered_indices(coverage, 2) == []


def test_update_with_invalid_batch_keeps_old_map():
    coverage = new_coverage(_packets(4), 2)
    coverage.update_coverage([], 3)
    assert _covered_indices(coverage, 1) == [1, 3]


def test_empty_coverage_covers_nothing():
    coverage = ProtectionCoverage()
    assert list(coverage.get_covered_by(0)) == []
    assert coverage.extract_mask1(0) == 0