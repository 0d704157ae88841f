#!/usr/bin/env python3
"""PRD wizard CLI entrypoint: drive chat sessions locally."""

import sys
import logging
import argparse
from pathlib import Path

from prdwizard.lib.config import PRDPaths
from prdwizard.lib.locking import LockDirCreateFailed, LockTimeout
from prdwizard.pm.errors import PRDError
from prdwizard.pm.wizard import PRDWizard


def get_paths(args) -> PRDPaths:
    """Control dir defaults to ./.prdwizard, project dir to the cwd."""
    project_dir = Path(args.project_dir or Path.cwd())
    control_dir = Path(args.control_dir) if args.control_dir else project_dir / ".prdwizard"
    return PRDPaths.from_dirs(control_dir, project_dir)


def run_and_print(fn) -> int:
    try:
        reply = fn()
    except (PRDError, LockTimeout, LockDirCreateFailed) as e:
        print(f"ERROR: {e}")
        return 1
    print(reply)
    return 0


def cmd_prd(args):
    wizard = PRDWizard(get_paths(args))
    return run_and_print(lambda: wizard.command(args.chat_id, " ".join(args.args)))


def cmd_say(args):
    wizard = PRDWizard(get_paths(args))
    text = " ".join(args.text)
    if not wizard.has_active_session(args.chat_id):
        print("ERROR: no active PRD session (run: prdwizard prd <chat_id> start)")
        return 1
    return run_and_print(lambda: wizard.handle_input(args.chat_id, text))


def main():
    parser = argparse.ArgumentParser(prog='prdwizard', description='PRD session wizard')
    parser.add_argument('--control-dir', '-c', help='Control dir for sessions and reports (default: <project>/.prdwizard)')
    parser.add_argument('--project-dir', '-p', help='Project dir for documents and the issue queue (default: cwd)')
    parser.add_argument('--verbose', '-v', action='store_true', help='Debug logging')
    subparsers = parser.add_subparsers(dest='command', required=True)

    # prdwizard prd
    p_prd = subparsers.add_parser('prd', help='Run a /prd sub-command')
    p_prd.add_argument('chat_id', type=int, help='Chat ID')
    p_prd.add_argument('args', nargs=argparse.REMAINDER, help='Sub-command and arguments (e.g. start Wallet)')
    p_prd.set_defaults(func=cmd_prd)

    # prdwizard say
    p_say = subparsers.add_parser('say', help='Send free text to the active session')
    p_say.add_argument('chat_id', type=int, help='Chat ID')
    p_say.add_argument('text', nargs='+', help='Message text')
    p_say.set_defaults(func=cmd_say)

    args = parser.parse_args()
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    return args.func(args)


if __name__ == '__main__':
    sys.exit(main())
