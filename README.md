# cipherfs

Building blocks for an encrypted overlay filesystem, in pure Python.

## Modules

- **`cipherfs.names`** – file name encryption with EME and PKCS#7 padding
  (`pad16`, `unpad16`), padded or raw URL-safe base64, long-name hashing
  (`gocryptfs.longname.<sha256>`), extended-attribute name encryption and a
  fallback for undecryptable names matching configured "badname" patterns.
  Failures are raised as `OSError` with the errno a filesystem would report
  (`EBADMSG`, `ENAMETOOLONG`, `ENOENT`).
- **`cipherfs.eme`** – `EMECipher`, the EME wide-block cipher (1 to 128 AES
  blocks under a 16-byte tweak).
- **`cipherfs.nameio`** – reading and writing `gocryptfs.diriv` and
  `gocryptfs.longname.*.name` files relative to an open directory descriptor.
- **`cipherfs.pathiv`** – 16-byte values derived from a ciphertext path with
  SHA-256 (`derive`, `derive_file`), and per-block IVs (`block_iv`).
- **`cipherfs.inomap`** – `InoMap`, mapping `QIno(dev, tag, ino)` tuples to
  unique 64-bit inode numbers, with a spill map once namespaces run out.
- **`cipherfs.openfiletable`** – `OpenFileTable`, a reference-counted table
  of open files with per-file readers-writer `ContentLock`s and a
  write-operation counter.
- **`cipherfs.siv_aead`** – `SivAead`, AES-SIV (RFC 5297) with a 16-byte
  nonce behind `seal`/`open`.
- **`cipherfs.readpassword`** – reading a password from pass files, an
  external program, stdin or the terminal (`once`, `twice`).
- **`cipherfs.excluder`** – gitignore-style exclusion patterns
  (`GitIgnore`, `get_exclusion_patterns`, `prepare_excluder`).
- **`cipherfs.reverse`** – `ReverseRoot`, the encrypted view of a plaintext
  directory: path encryption and decryption, exclusions and directory
  listings including virtual `gocryptfs.diriv` and `*.name` entries.
- **`cipherfs.speed`** – a small benchmark of AEAD ciphers on 4 KiB blocks.

## Installation

```
pip install cipherfs
```

Python 3.10 or later is required.

## Examples

### Padding and name checks

```python
from cipherfs.names import pad16, unpad16, is_valid_name, name_type, LongNameType

padded = pad16(b"foo")
assert len(padded) == 16
assert unpad16(padded) == b"foo"

assert is_valid_name("hello")
assert not is_valid_name("a/b")   # slashes are never allowed in a name

assert name_type(
    "gocryptfs.longname.LkwUdALvV_ANnzQN6ZZMYnxxfARD3IeZWCKnxGJjYmU=.name"
) is LongNameType.FILENAME
```

### Encrypting file names

```python
from cipherfs.eme import EMECipher
from cipherfs.names import NameTransform

eme_cipher = EMECipher(bytes(32))
# eme_cipher, long_names, long_name_max (0 = 255), raw64, badname, deterministic_names
transform = NameTransform(eme_cipher, True, 0, True, None, False)

dir_iv = bytes(16)
cipher_name = transform.encrypt_name("report.txt", dir_iv)
assert transform.decrypt_name(cipher_name, dir_iv) == "report.txt"

# Names whose encrypted form is longer than long_name_max are hashed:
stored = transform.encrypt_and_hash_name("x" * 200, dir_iv)
assert stored.startswith("gocryptfs.longname.")
```

### Path-derived IVs

```python
from cipherfs.pathiv import derive_file, block_iv

ivs = derive_file("some/relative/cipher/path")
iv_of_block_39 = block_iv(ivs.block0_iv, 0x27)
```

### AES-SIV

```python
from cipherfs.siv_aead import SivAead

aead = SivAead(bytes([1]) * 64)
nonce = bytes([2]) * 16
sealed = aead.seal(nonce, nonce, bytes(range(1, 10)), bytes(24))
plain = aead.open(b"", sealed[:16], sealed[16:], bytes(24))
```

`SivAead` accepts 32, 48 or 64-byte keys; `siv_aead.new` insists on 64.
A tampered ciphertext makes `open` raise `AuthenticationError`.

### Unique inode numbers

```python
from cipherfs.inomap import InoMap, QIno

inode_map = InoMap(0)
assert inode_map.translate(QIno(dev=1, ino=5)) == 5   # first device passes through
other = inode_map.translate(QIno(dev=2, ino=5))        # own namespace in the upper bits
```

### Reverse view

```python
from cipherfs.reverse import ReverseOptions, ReverseRoot

root = ReverseRoot(ReverseOptions(cipherdir="/srv/plain", exclude=["private"]), transform)
c_path = root.encrypt_path("docs/report.txt")
assert root.decrypt_path(c_path) == "docs/report.txt"   # if the path exists
for entry in root.list_dir(""):
    print(entry.name, oct(entry.mode))
```

### Reading a password

```python
from cipherfs.readpassword import once, PasswordError

try:
    pw = once([], ["/path/to/passfile"], "")
except PasswordError as exc:
    print(f"could not read password: {exc}")
```

`once` reads the first line of each pass file and concatenates them, runs an
external program when one is given (a single string is split on spaces),
and otherwise reads a line from stdin or prompts on the terminal.

## Benchmark

```
cipherfs-speed
```

prints the CPU model, whether the CPU reports AES support, and the
encryption throughput of AES-GCM (via `cryptography` and `pycryptodome`),
AES-SIV and XChaCha20-Poly1305 on 4 KiB blocks.

## What this package does not do

It does not mount anything: there is no filesystem driver, no mount command
and no control socket. It has no file content encryption, no configuration
file handling and no master key derivation. `ReverseRoot` computes names,
paths and listings of the encrypted view, but does not serve file contents.

## Running the tests

```
pip install cipherfs[test]
pytest
```