"""
purge_expired.py
────────────────
Physically deletes expired rows. Reads already ignore them (expiry is
checked on every query), so this only reclaims space; run it from cron.

  • sessions past their 30-day TTL (and every conversation they own)
  • conversations past their TTL, with messages, intent, requests, results
  • search requests / results past their TTL
  • attachments past their TTL, their voice inputs and stored blobs

Usage:
    python purge_expired.py
    python purge_expired.py --dry-run    # show what would be deleted
"""

import argparse
import json
import os
import sys

sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from marketplace.database.engine import SessionLocal
from marketplace.database.repositories.attachment_repository import AttachmentRepository
from marketplace.database.repositories.conversation_repository import ConversationRepository
from marketplace.database.repositories.session_repository import CustomerSessionRepository
from marketplace.services.storage_service import object_storage

# ── ANSI colours ─────────────────────────────────────────────────────────────
GREEN  = "\033[92m"
YELLOW = "\033[93m"
BOLD   = "\033[1m"
RESET  = "\033[0m"


def purge(db, dry_run: bool = False) -> dict:
    sessions = CustomerSessionRepository(db)
    conversations = ConversationRepository(db)
    attachments = AttachmentRepository(db)

    expired_sessions = sessions.expired_ids()
    conversation_ids = set(conversations.expired_conversation_ids())
    for session_id in expired_sessions:
        conversation_ids.update(conversations.conversation_ids_for_session(session_id))
    expired_attachments = attachments.list_expired()
    for session_id in expired_sessions:
        expired_attachments.extend(attachments.list_for_session(session_id))
    expired_attachments.extend(attachments.list_for_conversations(sorted(conversation_ids)))
    expired_attachments = list({a.id: a for a in expired_attachments}.values())

    summary = {
        "sessions": len(expired_sessions),
        "conversations": len(conversation_ids),
        "attachments": len(expired_attachments),
        "results": 0,
        "requests": 0,
    }
    if dry_run:
        return summary

    for attachment in expired_attachments:
        key = json.loads(attachment.metadata_json or "{}").get("key")
        if key:
            object_storage.delete(key)
    attachments.delete_attachments([a.id for a in expired_attachments])
    conversations.delete_conversations(sorted(conversation_ids))
    summary["results"], summary["requests"] = conversations.purge_expired_searches()
    sessions.delete_many(expired_sessions)
    return summary


def main():
    parser = argparse.ArgumentParser(description="Delete expired sessions, conversations and uploads")
    parser.add_argument("--dry-run", action="store_true", help="Show counts without deleting")
    args = parser.parse_args()

    with SessionLocal() as db:
        summary = purge(db, dry_run=args.dry_run)

    label = f"{YELLOW}[dry-run]{RESET} " if args.dry_run else ""
    print(f"\n{BOLD}{label}Expired records{RESET}")
    for name, count in summary.items():
        print(f"   {name:<13}: {count}")
    if not args.dry_run:
        print(f"{GREEN}✓  Purge complete{RESET}")


if __name__ == "__main__":
    main()
