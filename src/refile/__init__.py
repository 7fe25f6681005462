"""
refile: virtualize large local files behind small pointer files.

A file is hashed, uploaded to a storage backend, and replaced on disk
by a JSON pointer that records how to fetch it back. Pull restores the
original byte-for-byte after checking its hash.

The original is never deleted until a valid pointer is on disk, and a
pointer is never deleted until the restored file is fully written.
"""

import os

__version__ = "0.1.0"

REFILE_HOME = os.environ.get("REFILE_HOME", "~/.refile")
