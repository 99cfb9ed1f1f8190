"""
gitnotes - A per-user, git-versioned plain-text note store.

Each owner gets a directory tree of notebooks holding Markdown notes. Every
mutation is recorded as a commit in the owner's git repository, so notes can
be browsed through their history, rolled back, and recovered after deletion.
A read-through cache keeps hot notes and previews in memory.
"""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("gitnotes")
except PackageNotFoundError:
    __version__ = "0.3.0"
