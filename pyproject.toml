[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "nextdnskit"
version = "0.1.0"
description = "Building blocks for a local DNS forwarding proxy: client discovery, profile selection, ARP lookups and a JSON control channel."
requires-python = ">=3.10"
keywords = ["dns", "proxy", "dhcp", "mdns", "arp", "hosts", "discovery"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: System Administrators",
    "Intended Audience :: Developers",
    "Operating System :: POSIX :: Linux",
    "Operating System :: MacOS",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Internet :: Name Service (DNS)",
    "Topic :: System :: Networking",
]
dependencies = [
    "dnspython>=2.3",
    "psutil>=5.9",
]

[project.optional-dependencies]
test = [
    "pytest>=7.0",
]

[project.scripts]
nextdnskit-ctl = "nextdnskit.ctl:main"

[tool.hatch.build.targets.wheel]
packages = ["nextdnskit"]

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
