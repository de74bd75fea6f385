[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "cipherfs"
version = "0.1.0"
description = "Building blocks for an encrypted overlay filesystem: EME name encryption, path-derived IVs, inode mapping, AES-SIV and a reverse-mode path view"
requires-python = ">=3.10"
keywords = [
    "encryption",
    "filesystem",
    "eme",
    "aes-siv",
    "filename-encryption",
    "reverse-mode",
]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Intended Audience :: System Administrators",
    "Operating System :: POSIX",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Security :: Cryptography",
    "Topic :: System :: Filesystems",
]
dependencies = [
    "cryptography",
    "pycryptodome",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[project.scripts]
cipherfs-speed = "cipherfs.speed:main"

[tool.hatch.build.targets.wheel]
packages = ["cipherfs"]

[tool.pytest.ini_options]
addopts = "-ra"
testpaths = ["tests"]

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.ruff.lint]
select = ["E", "F", "W", "I", "B", "UP"]

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
warn_redundant_casts = true
