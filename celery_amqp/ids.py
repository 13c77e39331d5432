from __future__ import annotations

import uuid
from collections.abc import Callable

# Any zero-argument callable returning a fresh identifier string.
IdGenerator = Callable[[], str]


def uuid4_id() -> str:
    return str(uuid.uuid4())
