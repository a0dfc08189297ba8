import argparse
import asyncio
import os
import sys
import uuid

# Add the project root to the Python path
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from counselbook.core.db import SessionLocal, init_models
from counselbook.core.security import Principal
from counselbook.modules.cases.service import CaseService

async def main(count: int, issued_by: uuid.UUID | None):
    """
    Issues registration codes from the command line, e.g. for a walk-in desk batch.
    """
    await init_models()
    principal = Principal(user_id=issued_by or uuid.UUID(int=0), role="admin")
    async with SessionLocal() as db:
        codes = await CaseService(db).issue_registration_codes(principal, count)
    print(f"Issued {len(codes)} registration codes:")
    for code in codes:
        print(f"  {code}")

if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Issue one-time registration codes")
    parser.add_argument("count", type=int, nargs="?", default=10)
    parser.add_argument("--issued-by", type=uuid.UUID, default=None, help="user id recorded as creator")
    args = parser.parse_args()
    asyncio.run(main(args.count, args.issued_by))
