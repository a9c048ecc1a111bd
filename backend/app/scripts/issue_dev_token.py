"""Issue a bearer token for local development.

Run with: python -m app.scripts.issue_dev_token --user alice --role manager
"""

import argparse
import sys
from pathlib import Path

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).parent.parent.parent))

from app.core.security import create_access_token_for_subject  # noqa: E402
from app.models.domain import RoleName  # noqa: E402


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Issue a dev access token")
    parser.add_argument("--user", required=True, help="value of the 'sub' claim")
    parser.add_argument(
        "--role",
        required=True,
        choices=[r.value for r in RoleName],
        help="workflow role carried in the 'role' claim",
    )
    parser.add_argument("--minutes", type=int, default=None, help="token lifetime in minutes")
    return parser.parse_args(argv)


def main(argv=None) -> int:
    args = parse_args(argv)
    token = create_access_token_for_subject(args.user, args.role, expires_minutes=args.minutes)
    print(token)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
