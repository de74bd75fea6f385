import binascii
import errno
import os

import pytest

from cipherfs.eme import EMECipher
from cipherfs.names import (
    BADNAME_SUFFIX,
    LONG_NAME_PREFIX,
    NAME_MAX,
    LongNameType,
    NameTransform,
    dir_name,
    is_long_content,
    is_valid_name,
    is_valid_xattr_name,
    name_type,
    pad16,
    remove_long_name_suffix,
    unpad16,
)

IV = bytes(16)


def make(raw64=True, long_names=True, long_name_max=0, badname=None):
    return NameTransform(EMECipher(bytes(32)), long_names, long_name_max, raw64, badname, False)


@pytest.mark.parametrize("orig", [b"foo", b"12345678901234567", b"12345678901234567abcdefg"])
def test_pad16(orig):
    padded = pad16(orig)
    assert len(padded) > len(orig)
    assert len(padded) % 16 == 0
    assert unpad16(padded) == orig


@pytest.mark.parametrize(
    "garbage",
    [bytes(0), bytes(16), bytes(1), bytes(17), bytes([16]) * 16, bytes([17]) * 16],
)
def test_unpad16_garbage(garbage):
    with pytest.raises(ValueError):
        unpad16(garbage)


def test_pad16_empty():
    with pytest.raises(ValueError):
        pad16(b"")


@pytest.mark.parametrize(
    "name, want",
    [
        ("", False),
        (".", False),
        ("..", False),
        ("...", True),
        ("asdasd/asdasd", False),
        ("asdasd\000asdasd", False),
        ("hello", True),
        ("x" * 255, True),
        ("x" * 256, False),
    ],
)
def test_is_valid_name(name, want):
    assert is_valid_name(name) is want


@pytest.mark.parametrize(
    "name, want",
    [
        ("", False),
        (".", True),
        ("..", True),
        ("...", True),
        ("asdasd/asdasd", True),
        ("asdasd\000asdasd", False),
        ("hello", True),
        ("x" * 255, True),
        ("x" * 256, True),
    ],
)
def test_is_valid_xattr_name(name, want):
    assert is_valid_xattr_name(name) is want


def test_is_long_name():
    n = "gocryptfs.longname.LkwUdALvV_ANnzQN6ZZMYnxxfARD3IeZWCKnxGJjYmU=.name"
    assert name_type(n) is LongNameType.FILENAME
    n = "gocryptfs.longname.LkwUdALvV_ANnzQN6ZZMYnxxfARD3IeZWCKnxGJjYmU="
    assert name_type(n) is LongNameType.CONTENT
    assert is_long_content(n)
    n = "LkwUdALvV_ANnzQN6ZZMYnxxfARD3IeZWCKnxGJjYmU="
    assert name_type(n) is LongNameType.NONE
    assert not is_long_content(n)


def test_remove_long_name_suffix():
    filename = "gocryptfs.longname.LkwUdALvV_ANnzQN6ZZMYnxxfARD3IeZWCKnxGJjYmU=.name"
    content = "gocryptfs.longname.LkwUdALvV_ANnzQN6ZZMYnxxfARD3IeZWCKnxGJjYmU="
    assert remove_long_name_suffix(filename) == content


def test_long_name_max():
    eme = EMECipher(bytes(32))
    base = NameTransform(eme, True, 0, True, None, False)
    raw_lens = {l: len(base.encrypt_name("x" * l, IV)) for l in range(1, NAME_MAX + 1)}
    for max_ in range(NAME_MAX + 1):
        n = NameTransform(eme, True, max_, True, None, False)
        effective = max_ or NAME_MAX
        for l in range(NAME_MAX + 11):
            name = "x" * l
            if l == 0 or l > NAME_MAX:
                with pytest.raises(OSError):
                    n.encrypt_and_hash_name(name, IV)
                continue
            out = n.encrypt_and_hash_name(name, IV)
            want = LongNameType.CONTENT if raw_lens[l] > effective else LongNameType.NONE
            assert name_type(out) is want, (l, max_)


def test_long_names_disabled_never_hashes():
    n = make(long_names=False)
    out = n.encrypt_and_hash_name("x" * 255, IV)
    assert name_type(out) is LongNameType.NONE
    assert n.decrypt_name(out, IV) == "x" * 255


def test_encrypt_and_hash_name_too_long():
    with pytest.raises(OSError) as info:
        make().encrypt_and_hash_name("x" * 256, IV)
    assert info.value.errno == errno.ENAMETOOLONG


@pytest.mark.parametrize("raw64", [True, False])
@pytest.mark.parametrize("name", ["hello", "a", "x" * 16, "unicode-é", "x" * 200])
def test_name_round_trip(raw64, name):
    n = make(raw64=raw64)
    c_name = n.encrypt_name(name, IV)
    assert ("=" not in c_name) if raw64 else (len(c_name) % 4 == 0)
    assert n.decrypt_name(c_name, IV) == name


def test_iv_matters():
    n = make()
    c1 = n.encrypt_name("hello", IV)
    c2 = n.encrypt_name("hello", b"\x01" * 16)
    assert c1 != c2
    assert n.decrypt_name(c2, b"\x01" * 16) == "hello"


def test_encrypt_invalid_name():
    with pytest.raises(OSError) as info:
        make().encrypt_name("a/b", IV)
    assert info.value.errno == errno.EBADMSG


def test_decrypt_invalid_base64():
    with pytest.raises(binascii.Error):
        make().decrypt_name(".Trash", IV)


def test_decrypt_unaligned_length():
    n = make()
    with pytest.raises(OSError) as info:
        n.decrypt_name(n.b64_encode(b"abc"), IV)
    assert info.value.errno == errno.EBADMSG


def test_padded_mode_rejects_unpadded():
    n = make(raw64=False)
    c_name = n.encrypt_name("hello", IV)
    with pytest.raises(binascii.Error):
        n.b64_decode(c_name.rstrip("="))


def test_b64_round_trip():
    for raw64 in (True, False):
        n = make(raw64=raw64)
        for data in (b"", b"a", b"ab", b"abc", bytes(range(40))):
            assert n.b64_decode(n.b64_encode(data)) == data


def test_hash_long_name_shape():
    raw = make(raw64=True).hash_long_name("something")
    padded = make(raw64=False).hash_long_name("something")
    assert raw.startswith(LONG_NAME_PREFIX)
    assert len(raw) == len(LONG_NAME_PREFIX) + 43
    assert len(padded) == len(LONG_NAME_PREFIX) + 44 and padded.endswith("=")
    assert name_type(raw) is LongNameType.CONTENT


def test_xattr_round_trip():
    n = make()
    for attr in ("user.foo", "user.foo@https://bar", "x" * 300):
        assert n.decrypt_xattr_name(n.encrypt_xattr_name(attr)) == attr


def test_xattr_invalid():
    with pytest.raises(OSError) as info:
        make().encrypt_xattr_name("")
    assert info.value.errno == errno.EBADMSG


def test_badname_decrypt():
    n = make(badname=["*"])
    c_name = n.encrypt_name("hello", IV)
    assert n.decrypt_name(c_name + "XYZ", IV) == "helloXYZ" + BADNAME_SUFFIX


def test_badname_undecryptable_passthrough():
    n = make(badname=["*"])
    assert n.have_badname_patterns()
    assert n.decrypt_name("$$$", IV) == "$$$" + BADNAME_SUFFIX


def test_badname_no_matching_pattern():
    n = make(badname=["nomatch*"])
    with pytest.raises(OSError) as info:
        n.decrypt_name("garbage-name", IV)
    assert info.value.errno == errno.EBADMSG
    assert not make().have_badname_patterns()


@pytest.fixture
def dirfd(tmp_path):
    fd = os.open(tmp_path, os.O_RDONLY)
    yield fd
    os.close(fd)


def test_encrypt_and_hash_bad_name_finds_file(tmp_path, dirfd):
    n = make(badname=["*"])
    target = n.encrypt_name("hello", IV) + "XYZ"
    (tmp_path / target).write_bytes(b"")
    assert n.encrypt_and_hash_bad_name("helloXYZ" + BADNAME_SUFFIX, IV, dirfd) == target


def test_encrypt_and_hash_bad_name_plain_stem(tmp_path, dirfd):
    n = make(badname=["*"])
    (tmp_path / "$$$").write_bytes(b"")
    assert n.encrypt_and_hash_bad_name("$$$" + BADNAME_SUFFIX, IV, dirfd) == "$$$"


def test_encrypt_and_hash_bad_name_missing(dirfd):
    n = make(badname=["*"])
    with pytest.raises(OSError) as info:
        n.encrypt_and_hash_bad_name("helloXYZ" + BADNAME_SUFFIX, IV, dirfd)
    assert info.value.errno == errno.ENOENT


def test_encrypt_and_hash_bad_name_without_suffix(dirfd):
    n = make()
    assert n.encrypt_and_hash_bad_name("hello", IV, dirfd) == n.encrypt_and_hash_name("hello", IV)


@pytest.mark.parametrize(
    "path, want",
    [("foo", ""), ("a/b", "a"), ("a/b/c", "a/b"), ("/a", "/"), ("a//b", "a"), ("", "")],
)
def test_dir_name(path, want):
    assert dir_name(path) == want