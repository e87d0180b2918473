"""
Generate an API key for the DeepSearch server.

Keys are not stored server-side: add the printed key to API_KEYS (comma
separated) in .env. The user id is what chats saved with this key belong to.

Usage:
  python tools/create_api_key.py
  python tools/create_api_key.py --prefix staging --count 3
"""

import argparse
import sys
from pathlib import Path

# Ensure repo root is importable when script is executed via path (tools/create_api_key.py).
PROJECT_ROOT = Path(__file__).resolve().parent.parent
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from utils.api_key_utils import generate_api_key, user_id_for_api_key  # noqa: E402


def main() -> None:
    parser = argparse.ArgumentParser(description="Generate API keys for API_KEYS")
    parser.add_argument("--prefix", default="deepsearch", help="Prefix for generated keys")
    parser.add_argument("--count", type=int, default=1, help="Number of keys to generate")
    args = parser.parse_args()

    keys = [generate_api_key(prefix=args.prefix) for _ in range(max(1, args.count))]
    for key in keys:
        print(f"X-API-Key: {key}")
        print(f"user_id:   {user_id_for_api_key(key)}\n")

    print("Add to .env:")
    print(f"API_KEYS={','.join(keys)}")


if __name__ == "__main__":
    main()
