import hashlib
import io
import os

import pytest

from rainbt.bencode import decode, encode
from rainbt.metainfo import (
    FileEntry,
    Info,
    MetaInfo,
    MetainfoError,
    calculate_piece_length,
    clean_name,
    new_info_bytes,
    new_torrent_bytes,
)


def test_calculate_piece_length():
    assert calculate_piece_length(1) == 32 << 10
    assert calculate_piece_length(1 << 40) == 16 << 20
    assert calculate_piece_length(500 << 20) == 256 << 10
    assert calculate_piece_length(5 << 30) == 4 << 20


@pytest.mark.parametrize(
    "name, cleaned, max_len",
    [
        ("foo.bar", "foo.bar", 10),
        ("foo.bar", "foo.bar", 7),
        ("foo.bar", "fo.bar", 6),
        ("foo.bar", ".bar", 4),
        ("foo.bar", "foo", 3),
        ("foobar", "foobar", 10),
        ("foobar", "fo", 2),
        ("ğğğğ", "ğğğğ", 9),
        ("ğğğğ", "ğğğğ", 8),
        ("ğğğğ", "ğğğ", 7),
        ("ğğğğ", "ğğğ", 6),
    ],
)
def test_clean_name(name, cleaned, max_len):
    assert clean_name(name, max_len) == cleaned


def test_clean_name_replaces_separator():
    assert clean_name("a/b") == "a_b"


def test_clean_name_invalid_utf8():
    assert clean_name(b"ab\xffc") == "ab\ufffdc"


TRACKER1 = "http://tracker.example.com:6969/announce"
TRACKER2 = "http://ipv6.tracker.example.com:6969/announce"


def _single_info(**overrides):
    info = {
        "name": "ubuntu-14.04.1-server-amd64.iso",
        "length": 599785472,
        "piece length": 524288,
        "pieces": bytes(1144 * 20),
    }
    info.update(overrides)
    return info


def test_torrent():
    info = _single_info()
    data = encode(
        {
            "announce": TRACKER1,
            "announce-list": [[TRACKER1], [TRACKER2]],
            "info": info,
        }
    )
    tor = MetaInfo.from_stream(io.BytesIO(data))
    assert tor.info.name == "ubuntu-14.04.1-server-amd64.iso"
    assert tor.info.length == 599785472
    assert tor.info.hash == hashlib.sha1(encode(info)).digest()
    assert tor.announce_list == [[TRACKER1], [TRACKER2]]
    assert tor.info.files == [FileEntry(length=599785472, path="ubuntu-14.04.1-server-amd64.iso")]
    assert tor.info.num_pieces == 1144


def test_announce_used_without_list_and_unsupported_filtered():
    data = encode({"announce": "wss://x.example.com/a", "info": _single_info()})
    assert MetaInfo.from_stream(io.BytesIO(data)).announce_list == []
    data = encode({"announce": "udp://x.example.com:80", "info": _single_info()})
    assert MetaInfo.from_stream(io.BytesIO(data)).announce_list == [["udp://x.example.com:80"]]


def test_announce_list_filters_tiers():
    data = encode(
        {
            "announce-list": [["wss://a.example.com"], ["ftp://b", TRACKER1]],
            "info": _single_info(),
        }
    )
    assert MetaInfo.from_stream(io.BytesIO(data)).announce_list == [[TRACKER1]]


def test_url_list_string_and_list():
    single = encode({"info": _single_info(), "url-list": "http://seed.example.com/f"})
    assert MetaInfo.from_stream(io.BytesIO(single)).url_list == ["http://seed.example.com/f"]
    many = encode({"info": _single_info(), "url-list": ["http://a.example.com/", "udp://b"]})
    assert MetaInfo.from_stream(io.BytesIO(many)).url_list == ["http://a.example.com/"]


def test_missing_info():
    with pytest.raises(MetainfoError, match="no info dict"):
        MetaInfo.from_stream(io.BytesIO(encode({"announce": TRACKER1})))


def test_info_hash_uses_raw_bytes():
    raw = b"d6:lengthi10e4:name1:a12:piece lengthi16384e6:pieces20:" + bytes(20) + b"e"
    info = Info.from_bytes(raw, True, True)
    assert info.raw == raw
    assert info.hash == hashlib.sha1(raw).digest()
    assert info.piece_hash(0) == bytes(20)
    with pytest.raises(IndexError):
        info.piece_hash(1)


@pytest.mark.parametrize(
    "overrides, message",
    [
        ({"piece length": 0}, "zero piece length"),
        ({"pieces": bytes(19)}, "invalid piece data"),
        ({"pieces": b""}, "zero pieces"),
        ({"length": 1}, "invalid piece data"),
        ({"length": 599785472 + 1}, "invalid piece data"),
    ],
)
def test_info_errors(overrides, message):
    with pytest.raises(MetainfoError, match=message):
        Info.from_bytes(encode(_single_info(**overrides)), True, True)


def test_dotdot_rejected():
    info = {
        "name": "x",
        "piece length": 16384,
        "pieces": bytes(20),
        "files": [{"length": 5, "path": ["..", "evil"]}],
    }
    with pytest.raises(MetainfoError, match="invalid file name"):
        Info.from_bytes(encode(info), True, True)


def _multi_info():
    return {
        "name": "dir",
        "name.utf-8": "dír",
        "piece length": 16384,
        "pieces": bytes(20),
        "private": 1,
        "files": [
            {"length": 3, "path": ["a", "b.txt"], "path.utf-8": ["á", "b.txt"]},
            {"length": 2, "path": ["pad"], "attr": "p"},
            {"length": 1, "path": ["_____padding_file_0"]},
        ],
    }


def test_multi_file_utf8_and_padding():
    info = Info.from_bytes(encode(_multi_info()), True, True)
    assert info.name == "dír"
    assert info.length == 6
    assert info.private is True
    assert info.files == [
        FileEntry(3, os.path.join("dír", "á", "b.txt"), False),
        FileEntry(2, os.path.join("dír", "pad"), True),
        FileEntry(1, os.path.join("dír", "_____padding_file_0"), True),
    ]


def test_multi_file_without_overrides():
    info = Info.from_bytes(encode(_multi_info()), False, False)
    assert info.name == "dir"
    assert [f.path for f in info.files][0] == os.path.join("dir", "a", "b.txt")
    assert not any(f.padding for f in info.files)


@pytest.mark.parametrize("value, expected", [(0, False), (1, True), (b"0", False), (b"", False), (b"yes", True)])
def test_private_field(value, expected):
    info = Info.from_bytes(encode(_single_info(private=value)), True, True)
    assert info.private is expected


def test_missing_name_uses_hash():
    data = {k: v for k, v in _single_info().items() if k != "name"}
    info = Info.from_bytes(encode(data), True, True)
    assert info.name == info.hash.hex()


def test_new_info_bytes_single_file(tmp_path):
    content = bytes(range(256)) * 160  # 40960 bytes
    path = tmp_path / "data.bin"
    path.write_bytes(content)
    raw = new_info_bytes("", [str(path)], False, 16384, "")
    info = Info.from_bytes(raw, True, True)
    assert info.name == "data.bin"
    assert info.length == len(content)
    assert info.num_pieces == 3
    assert info.files == [FileEntry(len(content), "data.bin")]
    for i in range(3):
        assert info.piece_hash(i) == hashlib.sha1(content[i * 16384 : (i + 1) * 16384]).digest()


def test_new_info_bytes_directory(tmp_path):
    root = tmp_path / "d"
    (root / "sub").mkdir(parents=True)
    (root / "b.txt").write_bytes(b"B" * 10)
    (root / "a.txt").write_bytes(b"A" * 20)
    (root / "sub" / "c.txt").write_bytes(b"C" * 5)
    raw = new_info_bytes("", [str(root)], True, 0, "")
    info = Info.from_bytes(raw, True, True)
    assert info.name == "d"
    assert info.private is True
    assert info.piece_length == 32 << 10
    assert [(f.path, f.length) for f in info.files] == [
        (os.path.join("d", "a.txt"), 20),
        (os.path.join("d", "b.txt"), 10),
        (os.path.join("d", "sub", "c.txt"), 5),
    ]
    assert info.piece_hash(0) == hashlib.sha1(b"A" * 20 + b"B" * 10 + b"C" * 5).digest()


def test_new_info_bytes_errors(tmp_path):
    empty = tmp_path / "empty"
    empty.write_bytes(b"")
    full = tmp_path / "full"
    full.write_bytes(b"x")
    with pytest.raises(MetainfoError, match="no path"):
        new_info_bytes("", [], False, 0, "")
    with pytest.raises(MetainfoError, match="no root"):
        new_info_bytes("", [str(empty), str(full)], False, 0, "n")
    with pytest.raises(MetainfoError, match="no name"):
        new_info_bytes(str(tmp_path), [str(empty), str(full)], False, 0, "")
    with pytest.raises(MetainfoError, match="no files"):
        new_info_bytes("", [str(empty)], False, 0, "")
    with pytest.raises(MetainfoError, match="multiple of 16K"):
        new_info_bytes("", [str(full)], False, 1000, "")
    with pytest.raises(FileNotFoundError):
        new_info_bytes("", [str(tmp_path / "missing")], False, 0, "")


def test_new_torrent_bytes_round_trip(tmp_path):
    path = tmp_path / "f"
    path.write_bytes(b"hello")
    raw_info = new_info_bytes("", [str(path)], False, 0, "")
    data = new_torrent_bytes(raw_info, [[TRACKER1]], ["http://seed.example.com/"], "note", "maker")
    tor = MetaInfo.from_stream(io.BytesIO(data))
    assert tor.info.hash == hashlib.sha1(raw_info).digest()
    assert tor.announce_list == [[TRACKER1]]
    assert tor.url_list == ["http://seed.example.com/"]
    top = decode(data)
    assert top[b"announce"] == TRACKER1.encode()
    assert top[b"comment"] == b"note"
    assert top[b"created by"] == b"maker"
    assert isinstance(top[b"creation date"], int)


def test_new_torrent_bytes_tiers_and_webseed_list():
    raw_info = encode(_single_info())
    data = new_torrent_bytes(raw_info, [[TRACKER1], [TRACKER2]], ["http://a.example.com/", "http://b.example.com/"])
    top = decode(data)
    assert b"announce" not in top
    assert b"comment" not in top
    tor = MetaInfo.from_stream(io.BytesIO(data))
    assert tor.announce_list == [[TRACKER1], [TRACKER2]]
    assert tor.url_list == ["http://a.example.com/", "http://b.example.com/"]