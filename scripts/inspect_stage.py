#!/usr/bin/env python3
"""Debug script: show what the stage resolver and challenge guard make of a saved page.

Usage:
    python scripts/inspect_stage.py --url https://www.upwork.com/nx/create-profile/title --html page.html
    python scripts/inspect_stage.py --account-id 3
"""

import argparse
import json
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from src.identity.session_state import SessionState
from src.runner.config import load_config
from src.store.account_store import AccountStore
from src.wizard.challenge_guard import find_challenge, find_login_error
from src.wizard.stage_detector import detect_stage, landmark_stage


def inspect_page(url: str, html: str):
    print("=" * 80)
    print(f"URL: {url or '(none)'}")
    print("=" * 80)
    print(f"  stage from url:       {detect_stage(url).value}")
    overlay = landmark_stage(html, overlays_only=True)
    landmark = landmark_stage(html)
    print(f"  overlay landmark:     {overlay.value if overlay else '-'}")
    print(f"  heading landmark:     {landmark.value if landmark else '-'}")
    challenge = find_challenge(html)
    print(f"  challenge:            {f'{challenge.kind} ({challenge.evidence})' if challenge else '-'}")
    print(f"  login error:          {find_login_error(html) or '-'}")


def inspect_account(account_id: int):
    config = load_config()
    store = AccountStore(config.database_url)
    account = store.get(account_id)
    print("=" * 80)
    print(f"ACCOUNT {account.id}: {account.email}")
    print("=" * 80)
    print(f"  last status:   {account.last_status} [{account.last_error_code or '-'}]")
    print(f"  attempts:      {account.attempt_count}")
    print(f"  proxy port:    {account.last_proxy_port or '-'}")
    if not account.last_session_state:
        print("  session:       (none)")
        return
    try:
        state = SessionState.decode(account.last_session_state)
    except ValueError as e:
        print(f"  session:       unreadable ({e})")
        return
    print(f"  session meta:  {json.dumps(state.to_dict()['meta'])}")
    for group in state.cookies:
        print(f"    {group.origin}: {len(group.items)} cookies")
    for snapshot in state.storage:
        print(f"    {snapshot.origin}: {len(snapshot.local_storage)} localStorage keys")
    for run in store.runs_for(account_id)[-5:]:
        print(f"  run {run.started_at:%Y-%m-%d %H:%M}: {run.status} at {run.stage} [{run.error_kind or '-'}]")


def main():
    parser = argparse.ArgumentParser(description="Inspect a saved page or an account's stored state")
    parser.add_argument("--url", default="")
    parser.add_argument("--html", default=None, help="Path to a saved page")
    parser.add_argument("--account-id", type=int, default=None)
    args = parser.parse_args()

    if args.html is None and args.account_id is None and not args.url:
        parser.error("give --url/--html or --account-id")
    if args.url or args.html:
        html = Path(args.html).read_text(encoding="utf-8") if args.html else ""
        inspect_page(args.url, html)
    if args.account_id is not None:
        inspect_account(args.account_id)


if __name__ == "__main__":
    main()
