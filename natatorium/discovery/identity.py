"""Sender identities for discovery announcements.

Two tokens tell senders apart:

- the *process id* (``pid``) is generated once per operating-system process
  and shared by every transport created in it;
- the *instance id* (``iid``) is generated per transport instance.

Both are 128-bit random hex strings.  They are unrelated to ``os.getpid()``,
which is only used to notice that we are running in a forked child.
"""

from __future__ import annotations

import functools
import os
import secrets
import socket

HOST_NAME = socket.gethostname()


def new_id() -> str:
    """Return a fresh 128-bit random token."""
    return secrets.token_hex(16)


@functools.lru_cache(maxsize=None)
def _process_id_for(os_pid: int) -> str:
    return new_id()


def process_id() -> str:
    """Return this process's discovery identity.

    Stable for the lifetime of the process; a forked child gets its own.
    """
    return _process_id_for(os.getpid())
