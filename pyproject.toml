[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "photoblog"
version = "0.1.0"
description = "SQLite storage, site settings, visit statistics and upload helpers for a self-hosted photo blog."
requires-python = ">=3.10"
dependencies = []
keywords = ["photo", "blog", "gallery", "sqlite", "statistics", "settings"]
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
    "Topic :: Internet :: WWW/HTTP :: Dynamic Content",
    "Topic :: Database",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["photoblog"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
