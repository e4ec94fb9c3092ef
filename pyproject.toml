[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "protocom"
version = "0.1.0"
description = "Framed request/response protocol over TCP with X25519 key exchange and AES-GCM encryption"
requires-python = ">=3.10"
keywords = ["protocol", "framing", "x25519", "aes-gcm", "tcp", "server", "client"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Operating System :: POSIX",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Networking",
    "Topic :: Security :: Cryptography",
]
dependencies = [
    "cryptography",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[project.scripts]
protocom = "protocom.cli:main"

[tool.hatch.build.targets.wheel]
packages = ["protocom"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
