from __future__ import annotations

from collections.abc import Iterator

import pytest

from pyrequery import clear_cache, clear_global_options, default_environment


@pytest.fixture(autouse=True)
def _isolate_process_state() -> Iterator[None]:
    clear_cache()
    clear_global_options()
    env = default_environment()
    env.set_hidden(False)
    env.set_offline(False)
    yield
    clear_cache()
    clear_global_options()
