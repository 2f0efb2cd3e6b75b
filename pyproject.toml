[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "dnschain"
version = "0.1.0"
description = "Composable chain of DNS resolvers: filtering, custom mappings, hosts files, rewriting, conditional and parallel upstreams, metrics and query logging"
requires-python = ">=3.10"
keywords = ["dns", "resolver", "dns-over-https", "dns-over-tls", "hosts", "reverse-dns"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: Developers",
    "Intended Audience :: System Administrators",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Internet :: Name Service (DNS)",
    "Typing :: Typed",
]
dependencies = [
    "dnspython>=2.3",
    "httpx>=0.24",
]

[project.optional-dependencies]
test = [
    "pytest>=7",
]

[tool.hatch.build.targets.wheel]
packages = ["dnschain"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.mypy]
python_version = "3.10"
ignore_missing_imports = true
