from __future__ import annotations

import json
import os
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
BACKEND = ROOT / "backend"
os.chdir(BACKEND)
if str(BACKEND) not in sys.path:
    sys.path.insert(0, str(BACKEND))

from registrar.main import Base, SessionLocal, configure_logging, engine, seed_demo_data  # noqa: E402


def main() -> None:
    configure_logging()
    Base.metadata.create_all(engine)
    with SessionLocal() as db:
        summary = seed_demo_data(db)
    print(json.dumps(summary, indent=2))


if __name__ == "__main__":
    main()
