import os
import sys
from pathlib import Path

# Make the repository root (syntx_bridge) and this directory (fakes) importable
# when tests run without an editable install.
root = Path(__file__).resolve().parents[1]
here = Path(__file__).resolve().parent
for p in (root, here):
    if str(p) not in sys.path:
        sys.path.insert(0, str(p))
os.environ.setdefault("PYTHONPATH", str(root))
