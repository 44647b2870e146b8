from __future__ import annotations

import sys
from pathlib import Path

# Lets `import live_detect` work from a plain checkout, without `pip install -e .`.
_REPO_ROOT = str(Path(__file__).resolve().parent.parent)
if _REPO_ROOT not in sys.path:
    sys.path.insert(0, _REPO_ROOT)
