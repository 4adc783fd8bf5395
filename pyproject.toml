[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "etshell"
version = "0.1.0"
description = "Headless terminal multiplexer with pane layout state, framed IPC, port-forward parsing and ssh bootstrap helpers"
requires-python = ">=3.10"
dependencies = []
keywords = ["terminal", "multiplexer", "pty", "ssh", "remote shell", "port forwarding"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Environment :: Console",
    "Intended Audience :: Developers",
    "Intended Audience :: System Administrators",
    "Operating System :: POSIX",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Terminals",
    "Topic :: System :: Shells",
]

[project.optional-dependencies]
test = ["pytest"]

[project.scripts]
htm = "etshell.htm_client:main"
htmd = "etshell.htm_server:main"

[tool.hatch.build.targets.wheel]
packages = ["etshell"]

[tool.pytest.ini_options]
addopts = "-ra"

[tool.ruff]
line-length = 88
target-version = "py310"

[tool.ruff.lint]
select = ["E", "F", "W", "I", "B", "UP"]

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
warn_redundant_casts = true
