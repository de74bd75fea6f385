"""Building blocks for an encrypted overlay filesystem: name encryption, path-derived IVs, inode mapping, AES-SIV and a reverse-mode path view."""

__version__ = "0.1.0"