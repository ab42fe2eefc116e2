[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "fishserver"
version = "0.1.0"
description = "Multiplayer fish-shooting game server with a WebSocket game hub and an HTTP admin API"
requires-python = ">=3.10"
keywords = ["game-server", "websocket", "fish-shooting", "admin-api", "multiplayer"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Framework :: AsyncIO",
    "Framework :: Flask",
    "Operating System :: OS Independent",
    "Topic :: Games/Entertainment",
    "Topic :: Internet :: WWW/HTTP :: HTTP Servers",
]
dependencies = [
    "flask",
    "starlette",
    "uvicorn",
    "werkzeug",
]

[project.optional-dependencies]
test = [
    "pytest",
    "pytest-asyncio",
    "httpx",
]

[tool.hatch.build.targets.wheel]
packages = ["fishserver"]

[tool.hatch.build.targets.sdist]
include = ["fishserver", "tests", "pyproject.toml"]

[tool.pytest.ini_options]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.ruff.lint]
select = ["E", "F", "I", "B", "UP"]

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
warn_redundant_casts = true
