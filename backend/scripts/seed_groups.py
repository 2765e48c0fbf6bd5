"""CLI script to load study groups from a JSON file into the backend DB.
Usage: python scripts/seed_groups.py groups.json

The file holds a list of objects with `university`, `degree` and `year`.
Groups that already exist are left untouched.
"""
import sys
import json
import argparse
import pathlib
# Ensure `backend/` is on sys.path so `lecturechat` imports work when running this script directly
ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))
from sqlmodel import Session
from lecturechat.database import engine, create_db_and_tables
from lecturechat.services import DatastoreAccess


def load_groups(path: pathlib.Path) -> list:
    """Read and minimally validate the group definitions in `path`."""
    data = json.loads(path.read_text(encoding='utf-8'))
    if not isinstance(data, list):
        raise ValueError('expected a JSON list of groups')
    return data


def main(path: pathlib.Path):
    """Add every group from `path`, printing one line per entry."""
    groups = load_groups(path)
    create_db_and_tables()
    with Session(engine) as session:
        access = DatastoreAccess(session)
        before = len(access.get_all_groups())
        for item in groups:
            try:
                group_id = access.add_group(item['university'], item['degree'], int(item['year']))
                print(f"{item['university']} / {item['degree']} / year {item['year']}: id {group_id}")
            except (KeyError, TypeError, ValueError) as e:
                print(f'Skipping {item!r}: {e}')
        created = len(access.get_all_groups()) - before
    print(f'Groups created: {created}, already present or skipped: {len(groups) - created}')


if __name__ == '__main__':
    parser = argparse.ArgumentParser()
    parser.add_argument('path', type=pathlib.Path, help='JSON file with a list of groups')
    args = parser.parse_args()
    main(args.path)
