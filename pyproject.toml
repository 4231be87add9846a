[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "pinit"
version = "0.1.0"
description = "Building blocks of a small init system: unit files, a service registry, process supervision wrappers and a control utility speaking a length-prefixed binary protocol."
requires-python = ">=3.10"
dependencies = []
keywords = ["init", "service-manager", "supervisor", "daemon", "unit-file"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Environment :: Console",
    "Intended Audience :: System Administrators",
    "Intended Audience :: Developers",
    "Operating System :: POSIX",
    "Operating System :: Android",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Framework :: AsyncIO",
    "Topic :: System :: Boot :: Init",
]

[project.optional-dependencies]
test = [
    "pytest",
    "pytest-asyncio",
]

[project.scripts]
pinitctl = "pinit.cli:main"
pinitd = "pinit.wrapper:main"

[tool.hatch.build.targets.wheel]
packages = ["pinit"]

[tool.hatch.build.targets.sdist]
include = ["pinit", "tests", "README.md", "pyproject.toml"]

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
