from __future__ import annotations

import sys
from pathlib import Path


def _ensure_on_syspath() -> None:
    # Some pytest import modes (and some Windows invocations) may not include the repo
    # root on sys.path, causing imports like `import overlay_kit` to fail. The tests
    # directory is added too so suites can share `overlay_fakes`.
    tests_dir = Path(__file__).resolve().parent
    for p in (tests_dir.parent, tests_dir):
        p_str = str(p)
        if p_str not in sys.path:
            sys.path.insert(0, p_str)


_ensure_on_syspath()
