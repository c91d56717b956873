import struct

import pytest
from hypothesis import given
from hypothesis import strategies as st

from flexfec.encoder import FEC_TIMESTAMP, INITIAL_FEC_SEQUENCE_NUMBER
from flexfec.encoder03 import BASE_FEC03_HEADER_SIZE, FlexEncoder03
from flexfec.rtp import RtpHeader, RtpPacket

MEDIA_SSRC = 0x1234
FEC_SSRC = 0x5678
FEC_PT = 118


def _packet(seq, payload, timestamp=3000, marker=False, csrc=None):
    return RtpPacket(
        header=RtpHeader(
            payload_type=96,
            sequence_number=seq,
            timestamp=timestamp,
            ssrc=MEDIA_SSRC,
            marker=marker,
            csrc=list(csrc or []),
        ),
        payload=payload,
    )


def _packets(count, start=100, size=10):
    return [
        _packet(start + i, bytes((start + i + j) % 256 for j in range(size)))
        for i in range(count)
    ]


def _xor(*chunks):
    out = bytearray(max((len(c) for c in chunks), default=0))
    for chunk in chunks:
        for i, value in enumerate(chunk):
            out[i] ^= value
    return bytes(out)


def test_empty_batch_yields_nothing():
    assert FlexEncoder03(FEC_PT, FEC_SSRC).encode_fec([], 2) == []


def test_gap_in_sequence_yields_nothing():
    media = [_packet(10, b"a"), _packet(12, b"b")]
    assert FlexEncoder03(FEC_PT, FEC_SSRC).encode_fec(media, 1) == []


def test_reordered_packets_yield_nothing():
    media = [_packet(11, b"a"), _packet(10, b"b")]
    assert FlexEncoder03(FEC_PT, FEC_SSRC).encode_fec(media, 1) == []


def test_sequence_wraparound_counts_as_consecutive():
    media = [_packet(65535, b"a"), _packet(0, b"b")]
    fec = FlexEncoder03(FEC_PT, FEC_SSRC).encode_fec(media, 1)
    assert len(fec) == 1
    assert struct.unpack_from("!H", fec[0].payload, 16)[0] == 65535


def test_more_fec_than_media_packets_is_rejected():
    with pytest.raises(ValueError):
        FlexEncoder03(FEC_PT, FEC_SSRC).encode_fec(_packets(2), 3)


def test_fec_packet_rtp_header_fields():
    fec = FlexEncoder03(FEC_PT, FEC_SSRC).encode_fec(_packets(5), 2)
    assert [p.header.sequence_number for p in fec] == [
        INITIAL_FEC_SEQUENCE_NUMBER,
        INITIAL_FEC_SEQUENCE_NUMBER + 1,
    ]
    for packet in fec:
        assert packet.header.payload_type == FEC_PT
        assert packet.header.ssrc == FEC_SSRC
        assert packet.header.timestamp == FEC_TIMESTAMP


def test_fec_packets_survive_marshal_round_trip():
    fec = FlexEncoder03(FEC_PT, FEC_SSRC).encode_fec(_packets(5), 2)
    for packet in fec:
        assert RtpPacket.unmarshal(packet.marshal()) == packet


def test_header_layout_for_small_batch():
    fec = FlexEncoder03(FEC_PT, FEC_SSRC).encode_fec(_packets(5, start=300), 2)
    payload = fec[0].payload
    assert len(payload) == BASE_FEC03_HEADER_SIZE + 10
    assert payload[0] & 0xC0 == 0
    assert payload[8] == 1
    assert payload[9:12] == b"\x00\x00\x00"
    assert struct.unpack_from("!I", payload, 12)[0] == MEDIA_SSRC
    assert struct.unpack_from("!H", payload, 16)[0] == 300
    assert struct.unpack_from("!H", payload, 18)[0] == 0xD400
    assert struct.unpack_from("!H", fec[1].payload, 18)[0] == 0xA800


def test_timestamp_recovery_is_xor_of_timestamps():
    media = [_packet(1, b"x", timestamp=7), _packet(2, b"y", timestamp=9)]
    fec = FlexEncoder03(FEC_PT, FEC_SSRC).encode_fec(media, 1)
    assert struct.unpack_from("!I", fec[0].payload, 4)[0] == 7 ^ 9


def test_marker_bit_is_recoverable():
    media = [_packet(1, b"x", marker=True), _packet(2, b"y")]
    fec = FlexEncoder03(FEC_PT, FEC_SSRC).encode_fec(media, 1)[0]
    other = media[1].marshal()
    assert (fec.payload[1] ^ other[1]) == media[0].marshal()[1]


def test_two_optional_masks():
    fec = FlexEncoder03(FEC_PT, FEC_SSRC).encode_fec(_packets(20, size=4), 1)
    payload = fec[0].payload
    assert len(payload) == BASE_FEC03_HEADER_SIZE + 4 + 4
    assert payload[18] & 0x80 == 0
    assert payload[20] & 0x80
    assert struct.unpack_from("!I", payload, 20)[0] & 0x7FFFFFFF != 0


def test_three_masks():
    fec = FlexEncoder03(FEC_PT, FEC_SSRC).encode_fec(_packets(50, size=4), 1)
    payload = fec[0].payload
    assert len(payload) == BASE_FEC03_HEADER_SIZE + 12 + 4
    assert payload[18] & 0x80 == 0
    assert payload[20] & 0x80 == 0
    assert payload[24] & 0x80
    assert struct.unpack_from("!Q", payload, 24)[0] & 0x7FFFFFFFFFFFFFFF != 0


def test_repair_payload_covers_csrc_bytes():
    media = [_packet(1, b"ab", csrc=[0xAABBCCDD]), _packet(2, b"cd")]
    fec = FlexEncoder03(FEC_PT, FEC_SSRC).encode_fec(media, 1)[0]
    repair = fec.payload[BASE_FEC03_HEADER_SIZE:]
    assert _xor(repair, media[1].marshal()[12:]) == media[0].marshal()[12:]


def test_interleaved_packet_recovered_from_its_fec():
    media = _packets(5)
    fec = FlexEncoder03(FEC_PT, FEC_SSRC).encode_fec(media, 2)
    repair = fec[1].payload[BASE_FEC03_HEADER_SIZE:]
    assert _xor(repair, media[1].marshal()[12:]) == media[3].marshal()[12:]


@given(
    payloads=st.lists(st.binary(max_size=32), min_size=2, max_size=12),
    timestamps=st.lists(st.integers(0, 0xFFFFFFFF), min_size=12, max_size=12),
    data=st.data(),
)
def test_single_fec_recovers_any_lost_packet(payloads, timestamps, data):
    media = [
        _packet(700 + i, p, timestamp=timestamps[i]) for i, p in enumerate(payloads)
    ]
    fec = FlexEncoder03(FEC_PT, FEC_SSRC).encode_fec(media, 1)[0]
    lost = data.draw(st.integers(min_value=0, max_value=len(media) - 1))
    others = [p.marshal() for i, p in enumerate(media) if i != lost]
    missing = media[lost].marshal()

    length_field = struct.unpack_from("!H", fec.payload, 2)[0]
    for other in others:
        length_field ^= len(other) - 12
    assert length_field == len(missing) - 12

    ts_recovery = _xor(fec.payload[4:8], *(o[4:8] for o in others))
    assert ts_recovery == missing[4:8]

    recovered = _xor(fec.payload[BASE_FEC03_HEADER_SIZE:], *(o[12:] for o in others))
    assert recovered[:length_field] == missing[12:]