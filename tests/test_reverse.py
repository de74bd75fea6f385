import errno
import stat

import pytest

from cipherfs.eme import EMECipher
from cipherfs.names import LONG_NAME_PREFIX, NameTransform
from cipherfs.pathiv import Purpose, derive
from cipherfs.reverse import (
    CONF_DEFAULT_NAME,
    CONF_REVERSE_NAME,
    VIRTUAL_FILE_MODE,
    FileType,
    ReverseOptions,
    ReverseRoot,
)

LONG = "y" * 200


def make_transform(deterministic=False):
    return NameTransform(EMECipher(bytes(32)), True, 0, True, None, deterministic)


def make_root(tmp_path, **kwargs):
    opts = ReverseOptions(cipherdir=str(tmp_path), **kwargs)
    return ReverseRoot(opts, make_transform(kwargs.get("deterministic_names", False)))


def test_no_exclusions_means_nothing_excluded(tmp_path):
    root = make_root(tmp_path)
    assert root.is_excluded_plain("any/path") is False


def test_root_is_never_excluded(tmp_path):
    root = make_root(tmp_path, exclude_wildcard=["*"])
    assert root.is_excluded_plain("") is False
    assert root.is_excluded_plain("foo") is True


def test_exclude_dir_entries(tmp_path):
    root = make_root(tmp_path, exclude=["dir/b"], exclude_wildcard=["*.o"])
    assert root.exclude_dir_entries("dir", ["a", "b", "c.o"]) == ["a"]
    assert root.exclude_dir_entries("", ["a", "b"]) == ["a", "b"]


def test_derive_dir_iv(tmp_path):
    assert make_root(tmp_path).derive_dir_iv("x") == derive("x", Purpose.DIR_IV)
    assert make_root(tmp_path, deterministic_names=True).derive_dir_iv("x") == bytes(16)
    with pytest.raises(RuntimeError):
        make_root(tmp_path, plaintext_names=True).derive_dir_iv("x")


def test_path_round_trip(tmp_path):
    root = make_root(tmp_path)
    c_path = root.encrypt_path("foo/bar/baz")
    assert c_path.count("/") == 2
    assert "foo" not in c_path
    assert root.decrypt_path(c_path) == "foo/bar/baz"


def test_empty_path_passes_through(tmp_path):
    root = make_root(tmp_path)
    assert root.encrypt_path("") == ""
    assert root.decrypt_path("") == ""


def test_plaintext_names_pass_through(tmp_path):
    root = make_root(tmp_path, plaintext_names=True)
    assert root.encrypt_path("a/b") == "a/b"
    assert root.decrypt_path("a/b") == "a/b"


def test_encrypt_path_rejects_empty_component(tmp_path):
    root = make_root(tmp_path)
    with pytest.raises(OSError) as info:
        root.encrypt_path("a//b")
    assert info.value.errno == errno.EBADMSG


def test_long_name_round_trip(tmp_path):
    (tmp_path / "sub" / LONG).mkdir(parents=True)
    root = make_root(tmp_path)
    c_path = root.encrypt_path("sub/" + LONG)
    assert c_path.split("/")[1].startswith(LONG_NAME_PREFIX)
    assert root.decrypt_path(c_path) == "sub/" + LONG


def test_find_longname_parent(tmp_path):
    (tmp_path / LONG).write_bytes(b"")
    root = make_root(tmp_path)
    iv = root.derive_dir_iv("")
    c_full = root.name_transform.encrypt_name(LONG, iv)
    hashed = root.name_transform.hash_long_name(c_full)
    assert root.find_longname_parent("", iv, hashed) == (LONG, c_full)
    assert root.find_longname_parent("", iv, hashed + ".name") == (LONG, c_full)


def test_find_longname_parent_missing(tmp_path):
    root = make_root(tmp_path)
    with pytest.raises(OSError) as info:
        root.find_longname_parent("", root.derive_dir_iv(""), "gocryptfs.longname.abc")
    assert info.value.errno == errno.ENOENT


def test_decrypt_invalid_base64_is_enoent(tmp_path):
    root = make_root(tmp_path)
    with pytest.raises(OSError) as info:
        root.decrypt_path(".Trash")
    assert info.value.errno == errno.ENOENT


def test_decrypt_name_file_is_einval(tmp_path):
    root = make_root(tmp_path)
    with pytest.raises(OSError) as info:
        root.decrypt_path("gocryptfs.longname.abc.name")
    assert info.value.errno == errno.EINVAL


@pytest.mark.parametrize(
    "name,is_root,kwargs,expected",
    [
        ("gocryptfs.diriv", False, {}, FileType.DIRIV),
        ("gocryptfs.diriv", False, {"deterministic_names": True}, FileType.REAL),
        ("gocryptfs.longname.abc.name", False, {}, FileType.NAME),
        ("gocryptfs.longname.abc", False, {}, FileType.REAL),
        ("gocryptfs.conf", True, {}, FileType.CONFIG),
        ("gocryptfs.conf", False, {}, FileType.REAL),
        ("gocryptfs.conf", True, {"config_custom": True}, FileType.REAL),
        ("gocryptfs.diriv", True, {"plaintext_names": True}, FileType.REAL),
        ("gocryptfs.conf", True, {"plaintext_names": True}, FileType.CONFIG),
    ],
)
def test_lookup_file_type(tmp_path, name, is_root, kwargs, expected):
    assert make_root(tmp_path, **kwargs).lookup_file_type(name, is_root) is expected


def test_list_dir_root(tmp_path):
    (tmp_path / "a.txt").write_bytes(b"x")
    (tmp_path / CONF_REVERSE_NAME).write_bytes(b"{}")
    (tmp_path / LONG).write_bytes(b"")
    root = make_root(tmp_path)
    entries = root.list_dir("")
    names = {e.name for e in entries}
    iv = root.derive_dir_iv("")
    hashed = root.name_transform.hash_long_name(root.name_transform.encrypt_name(LONG, iv))
    assert names == {
        "gocryptfs.diriv",
        CONF_DEFAULT_NAME,
        root.name_transform.encrypt_name("a.txt", iv),
        hashed,
        hashed + ".name",
    }
    modes = {e.name: e.mode for e in entries}
    assert modes["gocryptfs.diriv"] == VIRTUAL_FILE_MODE
    assert modes[CONF_DEFAULT_NAME] == stat.S_IFREG


def test_list_dir_subdir_decrypts(tmp_path):
    (tmp_path / "d").mkdir()
    (tmp_path / "d" / "inner").write_bytes(b"")
    root = make_root(tmp_path)
    c_dir = root.encrypt_path("d")
    names = [e.name for e in root.list_dir(c_dir) if e.name != "gocryptfs.diriv"]
    assert [root.decrypt_path(c_dir + "/" + n) for n in names] == ["d/inner"]


def test_list_dir_deterministic_has_no_diriv(tmp_path):
    (tmp_path / "a").write_bytes(b"")
    root = make_root(tmp_path, deterministic_names=True)
    names = [e.name for e in root.list_dir("")]
    assert names == [root.name_transform.encrypt_name("a", bytes(16))]


def test_list_dir_excludes(tmp_path):
    (tmp_path / "private").mkdir()
    (tmp_path / "public").write_bytes(b"")
    root = make_root(tmp_path, exclude=["private"])
    iv = root.derive_dir_iv("")
    names = {e.name for e in root.list_dir("")}
    assert names == {"gocryptfs.diriv", root.name_transform.encrypt_name("public", iv)}
    with pytest.raises(OSError) as info:
        root.list_dir(root.encrypt_path("private"))
    assert info.value.errno == errno.EPERM


def test_plaintext_names_config_mapping(tmp_path):
    (tmp_path / CONF_REVERSE_NAME).write_bytes(b"{}")
    (tmp_path / "x").write_bytes(b"")
    root = make_root(tmp_path, plaintext_names=True)
    assert {e.name for e in root.list_dir("")} == {CONF_DEFAULT_NAME, "x"}


def test_plaintext_names_config_collision(tmp_path):
    (tmp_path / CONF_REVERSE_NAME).write_bytes(b"{}")
    (tmp_path / CONF_DEFAULT_NAME).write_bytes(b"{}")
    root = make_root(tmp_path, plaintext_names=True)
    names = sorted(e.name for e in root.list_dir(""))
    assert names[0] == CONF_DEFAULT_NAME
    assert names[1].startswith(CONF_DEFAULT_NAME + "_NAME_COLLISION_")
    assert len(names) == 2


def test_missing_cipherdir(tmp_path):
    missing = tmp_path / "missing"
    root = make_root(missing)
    assert root.root_dev == 0
    with pytest.raises(FileNotFoundError):
        make_root(missing, one_file_system=True)


def test_root_dev_recorded(tmp_path):
    root = make_root(tmp_path)
    assert root.root_dev == tmp_path.stat().st_dev