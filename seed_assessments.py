"""
Load assessments from JSON files into the database.

    python seed_assessments.py data/assessments

Each file holds one assessment (or a list of them) in the shape accepted by
``exams.question_bank.import_assessment``.
"""

import glob
import json
import os
import sys

from tqdm import tqdm

from db.database import SessionLocal
from db.init_db import init_db
from exams.errors import ValidationFailed
from exams.question_bank import import_assessment


def load_payloads(folder):
    for path in sorted(glob.glob(os.path.join(folder, "*.json"))):
        with open(path, encoding="utf-8") as f:
            data = json.load(f)
        for payload in data if isinstance(data, list) else [data]:
            yield path, payload


def main(folder):
    init_db()
    db = SessionLocal()
    failed = 0
    try:
        for path, payload in tqdm(list(load_payloads(folder))):
            try:
                import_assessment(db, payload)
            except ValidationFailed as e:
                failed += 1
                print(f"Skipped {os.path.basename(path)}: {e.message}")
    finally:
        db.close()
    return failed


if __name__ == "__main__":
    if len(sys.argv) != 2:
        print("usage: python seed_assessments.py <folder>")
        sys.exit(2)
    print("Seeding assessments...")
    sys.exit(1 if main(sys.argv[1]) else 0)
