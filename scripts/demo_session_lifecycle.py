#!/usr/bin/env python3
"""
Session Lifecycle Demo

Walks a user's session through its life with in-memory adapters:
1. Creates a session and attaches a desktop view
2. Attaches a tablet view, then shows a second desktop being rejected
3. Stores and reads session data
4. Closes the desktop view (one offline event)
5. Lets the session go idle and purges it (offline event for the tablet)

Usage:
    python scripts/demo_session_lifecycle.py
"""

import asyncio
import json
import logging
import os
import sys
from datetime import timedelta

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from auth_sessions.config import SessionSettings
from auth_sessions.events import EventManager, create_topic_filter
from auth_sessions.session import (
    DeviceClass,
    DeviceConflictError,
    SessionManager,
    View,
    utcnow,
)
from auth_sessions.storage import InMemoryDocumentStore

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


# ANSI colors for pretty output
class Colors:
    HEADER = '\033[95m'
    CYAN = '\033[96m'
    GREEN = '\033[92m'
    YELLOW = '\033[93m'
    RED = '\033[91m'
    ENDC = '\033[0m'
    BOLD = '\033[1m'


def print_step(title):
    print(f"\n{Colors.BOLD}{title}{Colors.ENDC}")


def print_session(session):
    summary = session.to_summary_dict()
    print(f"    {Colors.CYAN}{json.dumps(summary)}{Colors.ENDC}")


async def demo_session_lifecycle():
    """Run the full desktop/tablet scenario."""
    print(f"\n{Colors.HEADER}{'='*60}{Colors.ENDC}")
    print(f"{Colors.HEADER}   Session Lifecycle Demo{Colors.ENDC}")
    print(f"{Colors.HEADER}{'='*60}{Colors.ENDC}")

    store = InMemoryDocumentStore()
    events = EventManager()
    manager = SessionManager(
        store=store,
        events=events,
        settings=SessionSettings(debug=True, purge_interval_seconds=0),
    )

    offline = await events.subscribe(filter=create_topic_filter("sessions:event:user.offline"))
    received = []

    async def consume():
        async for message in offline:
            received.append(message)
            print(f"    {Colors.YELLOW}<- {message.topic}: view {message.payload['viewId']}{Colors.ENDC}")

    consumer = asyncio.create_task(consume())

    print_step("1. Creating session with a desktop view")
    session = await manager.create_session()
    desktop = View(device_class=DeviceClass.DESKTOP)
    session = await manager.register_view(session.id, desktop)
    print_session(session)

    print_step("2. Adding a tablet view")
    tablet = View(device_class=DeviceClass.TABLET)
    session = await manager.register_view(session.id, tablet)
    print_session(session)

    print_step("   Opening a second desktop view")
    try:
        await manager.register_view(session.id, View(device_class=DeviceClass.DESKTOP))
    except DeviceConflictError as e:
        print(f"    {Colors.RED}Rejected: {e}{Colors.ENDC}")

    print_step("3. Storing session data")
    await manager.store_data(session.id, {"theme": "dark", "locale": "en"})
    data = await manager.get_data(session.id, ["theme", "locale", "missing"])
    print(f"    {Colors.GREEN}{data}{Colors.ENDC}")

    print_step("4. Closing the desktop view")
    session = await manager.remove_view(session.id, desktop.id)
    print_session(session)

    print_step("5. Purging idle sessions")
    purged = await manager.purge_old_sessions(utcnow() + timedelta(seconds=1))
    print(f"    {Colors.GREEN}Purged {purged} session(s){Colors.ENDC}")

    await asyncio.sleep(0.1)
    consumer.cancel()
    offline.close()

    print(f"\n{Colors.HEADER}{'-'*60}{Colors.ENDC}")
    print(f"\n{Colors.BOLD}Demo Complete!{Colors.ENDC}")
    print(f"Offline events received: {len(received)}")

    await events.close()


if __name__ == "__main__":
    asyncio.run(demo_session_lifecycle())
