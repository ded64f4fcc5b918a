# rainbt

Building blocks for BitTorrent clients, written in plain Python.

`rainbt` is a library with no command-line program. Each module can be used
on its own:

| Module | What it has |
| --- | --- |
| `rainbt.bitfield` | `Bitfield` of pieces (BEP 3) and `num_bytes` |
| `rainbt.stree` | `SegmentTree` over closed integer intervals, and `dedup` |
| `rainbt.blocklist` | `Blocklist` of IPv4 CIDR ranges, and `parse_cidr` |
| `rainbt.fast` | `generate_fast_set` for the allowed-fast set (BEP 6) |
| `rainbt.externalip` | `is_public_ip`, `is_external`, `first_external_ip` for this host's interfaces |
| `rainbt.bencode` | `encode` and `decode`, raising `BencodeError` on bad input |
| `rainbt.magnet` | `Magnet` link parsing and formatting |
| `rainbt.metainfo` | `Info`, `MetaInfo`, `FileEntry`, `MetainfoError`, and torrent creation with `new_info_bytes` and `new_torrent_bytes` |
| `rainbt.mse` | Message Stream Encryption: `Stream`, `RC4`, `CryptoMethod`, `MSEError`, `hash_skey`, `wrap_socket`, `SocketTransport` |
| `rainbt.btconn` | Peer handshake over TCP: `dial`, `accept`, `Connection`, `HandshakeResult`, `HandshakeError`, `build_handshake` |
| `rainbt.handshaker` | `IncomingHandshaker` and `OutgoingHandshaker`, which run a handshake and put themselves on a queue |
| `rainbt.acceptor` | `Acceptor`, which puts accepted sockets on a queue |
| `rainbt.filesection` | `Piece` made of `FileSection`s spread across files |
| `rainbt.infodownloader` | `InfoDownloader` for fetching metadata from one peer block by block (BEP 9) |
| `rainbt.bufferpool` | `BufferPool` of reusable zeroed byte buffers |
| `rainbt.dhtannouncer` | `DHTAnnouncer`, which calls an announce function on a schedule |
| `rainbt.logger` | `new_logger`, `set_handler`, `set_debug`, `disable` and `LogFormatter` |

## Installing

```
pip install .
```

To run the tests:

```
pip install ".[test]"
pytest
```

## Examples

Bitfields count bits from the most significant bit of the first byte:

```python
from rainbt.bitfield import Bitfield

bits = Bitfield(10)
bits.set(0)
bits.set(9)
print(bits.hex())    # 8040
print(bits.count())  # 2
print(bits.all())    # False
```

Setting, clearing or testing a bit past the end raises `IndexError`.
`Bitfield.from_bytes(data, length)` raises `ValueError` when `data` is not
exactly the right size, and clears unused bits in the last byte.

Blocklists are loaded from CIDR lines; blank lines and lines starting with
`#` are skipped:

```python
import io
from rainbt.blocklist import Blocklist

blocklist = Blocklist()
blocklist.reload(io.StringIO("6.0.0.0/8\n"))  # returns 1
print(blocklist.blocked("6.1.2.3"))           # True
```

If no line parses but some lines were invalid, `reload` raises `ValueError`
and keeps the previous rules. Addresses that are not IPv4 are never blocked.

The allowed-fast set:

```python
from rainbt.fast import generate_fast_set

generate_fast_set(7, 1313, bytes.fromhex("aa" * 20), "80.4.4.200")
# [1059, 431, 808, 1217, 287, 376, 1188]
```

Magnet links parse into a `Magnet` and format back with `str()`:

```python
from rainbt.magnet import Magnet

link = Magnet.parse(
    "magnet:?xt=urn:btih:F60CC95E3566AF84C1AB223FD4CE80FA88E6438A"
    "&dn=sample_torrent&tr=udp%3a%2f%2ftracker.rain%3a2710"
)
print(link.name)      # sample_torrent
print(link.trackers)  # [['udp://tracker.rain:2710']]
print(str(link))
```

Invalid links raise `ValueError`.

Torrent files are read with `MetaInfo.from_stream`:

```python
from rainbt.metainfo import MetaInfo

with open("example.torrent", "rb") as f:
    torrent = MetaInfo.from_stream(f)
print(torrent.info.name, torrent.info.length, torrent.info.hash.hex())
```

Only HTTP, HTTPS and UDP trackers, and HTTP and HTTPS web seeds, are kept.
Invalid torrents raise `MetainfoError`.

A new torrent is made in two steps: `new_info_bytes(root, paths, ...)` hashes
the files on disk into a bencoded info dictionary, and
`new_torrent_bytes(info, trackers, webseeds, comment, creator)` wraps it.
When no piece length is given, `calculate_piece_length` picks one between
32 KiB and 16 MiB; a given piece length must be a multiple of 16 KiB.

## Handshakes and encryption

`rainbt.btconn.dial(addr, ...)` connects to a `(host, port)` pair and returns
a `HandshakeResult` holding a ready `Connection`, the negotiated
`CryptoMethod`, the peer's extensions, peer id and the info hash. With
encryption enabled it tries the encrypted handshake first and, unless
encryption is forced, dials again in plain text when that fails. Setting the
optional `stop_event` aborts the dial.

`rainbt.btconn.accept(sock, ...)` answers an accepted socket. It detects
whether the peer started with a plain handshake or an encrypted one; the
encrypted one is accepted only when a `get_skey` function is given.

Protocol violations raise `HandshakeError`; a failed encryption handshake
raises `MSEError`. Timeouts are in seconds.

## Logging

Connection-level messages go through `rainbt.logger`. By default they are
written to standard error at INFO level and above; `set_debug()` lets debug
messages through, `disable()` discards messages of loggers created
afterwards, and `set_handler()` installs any `logging.Handler`.

## What this package does not do

It has no command-line program and no torrent session: it does not talk to
trackers, run a DHT node, exchange pieces with peers or store downloaded
data. `DHTAnnouncer` only calls the announce function it is given, and
`Piece` reads and writes file objects that the caller opens.