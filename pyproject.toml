[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "rainbt"
version = "0.1.0"
description = "BitTorrent building blocks: bitfields, blocklists, magnet links, metainfo, MSE encryption and peer handshakes"
requires-python = ">=3.10"
keywords = [
    "bittorrent",
    "torrent",
    "magnet",
    "metainfo",
    "bencode",
    "mse",
    "peer-to-peer",
    "blocklist",
]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Communications :: File Sharing",
    "Topic :: Software Development :: Libraries :: Python Modules",
]
dependencies = [
    "psutil",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[tool.hatch.build.targets.wheel]
packages = ["rainbt"]

[tool.hatch.build.targets.sdist]
include = [
    "rainbt",
    "tests",
]

[tool.pytest.ini_options]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.ruff.lint]
select = ["E", "F", "W", "I", "B", "UP"]

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
warn_redundant_casts = true
