# flexfec

Forward error correction for RTP media streams with FlexFEC. The package
builds repair packets that let a receiver rebuild a lost media packet without
asking for it to be sent again, and a decoder that does the rebuilding.

It holds:

- `flexfec.bitarray.BitArray`: a 128-bit mask (`lo`, `hi`) with `set_bit`,
  `get_bit` and `reset`; bit 0 is the leftmost bit of `lo`. Indices outside
  0..127 raise `IndexError`.
- `flexfec.rtp`: plain RTP packets (`RtpHeader`, `RtpPacket`) that marshal to
  bytes and unmarshal from them, raising `RtpError` on bad input, plus
  `MediaPacketIterator` over the packets a repair packet covers.
- `flexfec.coverage`: `new_coverage()` and `ProtectionCoverage`, which spread
  media packets across FEC packets by interleaving (packet *X* goes to FEC
  packet *X mod N*) and pull out the header mask fields
  (`extract_mask1`, `extract_mask2`, `extract_mask3`, `extract_mask3_03`).
  At most 110 media packets fit in one batch.
- `flexfec.encoder.FlexEncoder20` and `flexfec.encoder03.FlexEncoder03`:
  encoders for the flexible mask layout and for the draft-03 layout that
  current browsers understand.
- `flexfec.decoder`: `FecDecoder`, which takes in incoming media and
  FlexFEC-03 packets and gives back the media packets it could recover, and
  the helpers `parse_flexfec03_header()`, `decode_mask()`, `seq_diff()` and
  `is_newer_seq()`.
- `flexfec.interceptor`: `FecInterceptorFactory`, `FecInterceptor` and
  `StreamInfo`. The interceptor wraps an RTP writer, collects media packets
  in batches (five by default) and after each batch writes two FlexFEC-03
  repair packets.

## Installing

```
pip install .
```

The package needs nothing beyond the standard library. To run the tests:

```
pip install ".[test]"
pytest
```

## Encoding

```python
from flexfec.encoder03 import FlexEncoder03
from flexfec.rtp import RtpHeader, RtpPacket

media = [
    RtpPacket(
        header=RtpHeader(payload_type=96, sequence_number=100 + n,
                         timestamp=3000, ssrc=0x1234),
        payload=bytes([n]) * 20,
    )
    for n in range(5)
]

encoder = FlexEncoder03(payload_type=118, ssrc=0x5678)
repair = encoder.encode_fec(media, 2)
```

`FlexEncoder03.encode_fec` returns an empty list when there are no media
packets, when there are more than 110, or when their sequence numbers are
not consecutive. Asking for more FEC packets than there are media packets
raises `ValueError`. Repair packets are numbered from 1000 and count
upwards across calls.

`FlexEncoder20.encode_fec` works the same way but does not check that
sequence numbers are consecutive, and leaves the timestamp recovery field
zeroed.

## Decoding

```python
from flexfec.decoder import FecDecoder

decoder = FecDecoder(
    ssrc=0x5678,
    protected_stream_ssrc=0x1234,
    max_media_packets=110,
    max_fec_packets=110,
)
for packet in incoming:
    for recovered in decoder.decode_fec(packet):
        handle(recovered)
```

Packets whose SSRC is `ssrc` are taken as repair packets, those whose SSRC is
`protected_stream_ssrc` as media; others are ignored. A repair packet that
protects exactly one missing media packet is enough to rebuild that packet's
header and payload. A repair header that cannot be parsed, or that protects
another stream, is logged and skipped; `parse_flexfec03_header()` raises
`FlexFecError` if called directly on a bad header. An optional `logger`
argument takes a `logging.Logger`.

## Sending through the interceptor

```python
from flexfec.interceptor import FecInterceptorFactory, StreamInfo

interceptor = FecInterceptorFactory().new_interceptor("video")
write = interceptor.bind_local_stream(
    StreamInfo(ssrc=0x1234, ssrc_forward_error_correction=0x5678,
               payload_type=96, payload_type_forward_error_correction=118),
    writer,
)
write(header, payload, attributes)
```

A writer is any callable `writer(header, payload, attributes)` returning an
int. Packets from other streams pass straight through. If writing a repair
packet raises, the error is logged and the rest of that batch's repair
packets are dropped. Options given to `FecInterceptorFactory(*opts)` are
callables applied to each new interceptor, for example to change
`min_num_media_packets`.

## What it does not do

The package works on packets in memory only. It does not open sockets,
negotiate sessions, run a signaling server or capture and encode video; the
caller supplies the RTP packets and the writer that sends them.