import pytest

from cipherfs.pathiv import DIR_IV_LEN, FileIVs, Purpose, block_iv, derive, derive_file


def test_block_iv():
    b0 = bytes(16)
    assert block_iv(b0, 0) == b0
    assert block_iv(b0, 0x27) == bytes.fromhex("00000000000000000000000000000027")
    bff = b"\xff" * 16
    assert block_iv(bff, 0x28) == bytes.fromhex("ffffffffffffffff0000000000000027")


def test_block_iv_does_not_modify_input():
    b0 = bytearray(16)
    block_iv(b0, 5)
    assert b0 == bytearray(16)


@pytest.mark.parametrize("purpose", list(Purpose))
def test_derive_length_and_determinism(purpose):
    a = derive("foo/bar", purpose)
    assert len(a) == DIR_IV_LEN
    assert derive("foo/bar", purpose) == a


def test_derive_differs_by_purpose_and_path():
    values = {derive("foo", p) for p in Purpose}
    assert len(values) == len(Purpose)
    assert derive("foo", Purpose.DIR_IV) != derive("bar", Purpose.DIR_IV)


def test_derive_accepts_plain_strings():
    assert derive("x", "DIRIV") == derive("x", Purpose.DIR_IV)


def test_derive_file():
    ivs = derive_file("a/b/c")
    assert ivs == FileIVs(
        id=derive("a/b/c", Purpose.FILE_ID),
        block0_iv=derive("a/b/c", Purpose.BLOCK0_IV),
    )
    assert ivs.id != ivs.block0_iv