from __future__ import annotations

import os
import tempfile

# The services build a module-level app at import time; point its default
# database at a throwaway directory so test runs never touch a real one.
os.environ.setdefault(
    "JOBBOARD_DB_PATH",
    os.path.join(tempfile.mkdtemp(prefix="job-board-tests-"), "jobboard.sqlite3"),
)
os.environ.setdefault("JOBBOARD_CSV_PATHS", "")
