# repository/namespaces.py
from typing import Final

ROOT: Final[str] = "docvault"

UPLOADS: Final[str] = f"{ROOT}:uploads"  # tus session bookkeeping, one hash per upload id
