[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "houndsearch"
version = "0.7.1"
description = "Regular-expression source code search across many version-controlled repositories"
requires-python = ">=3.10"
dependencies = []
keywords = ["code search", "grep", "index", "git", "mercurial", "subversion", "bazaar"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: Developers",
    "Operating System :: POSIX",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Software Development :: Libraries :: Python Modules",
    "Topic :: Software Development :: Version Control",
    "Topic :: Text Processing :: Indexing",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["houndsearch"]

[tool.pytest.ini_options]
addopts = "-ra"
testpaths = ["tests"]
