"""
Ask one business question from the command line.

Usage:
    python scripts/ask.py "Top 10 depositors yesterday from UK" [user_id]

Prints the pipeline result as JSON. Needs OPENAI_API_KEY (or
LLM_PROVIDER=ollama) and, for the dry-run layer, DRY_RUN_DATABASE_URL.
"""

import asyncio
import json
import os
import sys
from pathlib import Path

# Add project root to Python path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))
os.chdir(project_root)

from loguru import logger

from bizsql.pipeline import QueryPipeline
from bizsql.utils.cancellation import CancellationToken
from bizsql.utils.errors import AnalysisError
from bizsql.utils.logger import setup_logger


async def run(question: str, user_id: str) -> int:
    pipeline = QueryPipeline.from_settings()
    token = CancellationToken(deadline_seconds=120)
    try:
        result = await pipeline.process_query(question, user_id, token=token)
    except AnalysisError as e:
        logger.error(f"❌ {e}")
        return 2

    print(json.dumps(result.to_dict(), indent=2, default=str))
    return 0 if result.succeeded else 1


def main():
    setup_logger()
    if len(sys.argv) < 2:
        print(__doc__)
        sys.exit(2)
    user_id = sys.argv[2] if len(sys.argv) > 2 else "cli"
    sys.exit(asyncio.run(run(sys.argv[1], user_id)))


if __name__ == "__main__":
    main()
