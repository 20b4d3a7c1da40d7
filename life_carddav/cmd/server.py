"""CardDAV server command-line tool."""

import argparse
import asyncio
import os
import sys

from life_carddav.carddav.vcard import ContactEmail, ContactPhone, VCardContact


async def seed(engine, user_id: str) -> None:
    """Populate the default address book with a few sample entries."""
    books = await engine.address_books(user_id)
    book = books[0]

    ada = await engine.save_contact(
        user_id,
        book.id,
        VCardContact(
            given_name="Ada",
            family_name="Lovelace",
            organization="Analytical Engines Ltd",
            emails=[ContactEmail(value="ada@example.com", type="work")],
            phone_numbers=[ContactPhone(value="+44 20 7946 0000", type="mobile")],
            birthday="1815-12-10",
        ),
    )
    grace = await engine.save_contact(
        user_id,
        book.id,
        VCardContact(
            given_name="Grace",
            family_name="Hopper",
            job_title="Rear Admiral",
            emails=[ContactEmail(value="grace@example.com", type="home")],
        ),
    )
    await engine.save_group(
        user_id,
        book.id,
        "Pioneers",
        [ada.id, grace.id],
        description="Computing pioneers",
    )


def main() -> None:
    """Main entry point for the CardDAV server."""
    parser = argparse.ArgumentParser(
        description="CardDAV server",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Start server with a single account
  life-carddav-server --user me@example.com --password secret

  # Listen on all interfaces with sample contacts
  life-carddav-server --addr 0.0.0.0 --user me@example.com --password secret --seed

Settings not given on the command line are read from CARDDAV_* environment
variables (CARDDAV_HOST, CARDDAV_PORT, CARDDAV_PREFIX, CARDDAV_REALM,
CARDDAV_DEBUG, CARDDAV_VCARD_VERSION, CARDDAV_MAX_RESOURCE_SIZE).

Endpoints:
  - CardDAV:  http://localhost:PORT/carddav/
  - Discovery: http://localhost:PORT/.well-known/carddav
  - Health:   http://localhost:PORT/health
        """,
    )
    parser.add_argument("--addr", help="listening address (default: 127.0.0.1)")
    parser.add_argument("--port", type=int, help="listening port (default: 8080)")
    parser.add_argument("--prefix", help="URL prefix of the CardDAV tree (default: /carddav)")
    parser.add_argument(
        "--debug",
        action="store_true",
        help="enable debug logging (logs request/response bodies with formatted XML)",
    )
    parser.add_argument(
        "--user",
        default=os.getenv("CARDDAV_USER"),
        help="email of the account to create (default: $CARDDAV_USER)",
    )
    parser.add_argument(
        "--password",
        default=os.getenv("CARDDAV_PASSWORD"),
        help="password of the account to create (default: $CARDDAV_PASSWORD)",
    )
    parser.add_argument(
        "--seed",
        action="store_true",
        help="add sample contacts and a group to the account",
    )

    args = parser.parse_args()

    from dataclasses import replace

    from life_carddav.config import CardDAVConfig

    overrides = {
        "host": args.addr,
        "port": args.port,
        "prefix": args.prefix,
        "debug": args.debug or None,
    }
    try:
        config = CardDAVConfig.from_env()
        config = replace(config, **{k: v for k, v in overrides.items() if v is not None})
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)

    if not args.user or not args.password:
        print("Error: --user and --password are required", file=sys.stderr)
        sys.exit(1)

    from life_carddav.debug import setup_logging

    setup_logging(debug=config.debug)

    from life_carddav.auth import MemoryUserDirectory
    from life_carddav.carddav import MemoryCardDAVStore
    from life_carddav.server import create_app

    store = MemoryCardDAVStore()
    users = MemoryUserDirectory()
    user = users.add_user(args.user, args.password)

    app = create_app(store, users, config)

    if args.seed:
        asyncio.run(seed(app.state.engine, user.id))

    # Run with uvicorn
    import uvicorn

    print(f"CardDAV server listening on {config.host}:{config.port}")
    print(f"  Principal: http://{config.host}:{config.port}{config.prefix}/")
    print(f"  Account:   {user.email}")

    uvicorn.run(
        app,
        host=config.host,
        port=config.port,
        log_level="debug" if config.debug else "info",
    )


if __name__ == "__main__":
    main()
