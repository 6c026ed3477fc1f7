"""
Seed a user with linked Strava and Spotify credentials.

Tokens come from a completed OAuth exchange (e.g. the provider's developer
console). Expired tokens are fine: the token manager refreshes them on first use.

Usage:
    python scripts/seed_demo_user.py --athlete 987654 \
        --strava-access ... --strava-refresh ... \
        --spotify-access ... --spotify-refresh ...
"""
import argparse
import asyncio
import logging

from sqlalchemy import select

from src.database import async_session_factory
from src.models.auth_token import PROVIDER_SPOTIFY, PROVIDER_STRAVA
from src.models.user import User
from src.services.token_manager import store_credentials

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


async def seed(args: argparse.Namespace) -> None:
    async with async_session_factory() as db:
        result = await db.execute(select(User).where(User.strava_athlete_id == args.athlete))
        user = result.scalar_one_or_none()
        if user is None:
            user = User(strava_athlete_id=args.athlete, email=args.email, name=args.name)
            db.add(user)
            await db.flush()
            logger.info("Created user %s for athlete %s", user.id, args.athlete)
        else:
            logger.info("User %s already exists for athlete %s", user.id, args.athlete)

        await store_credentials(
            db, user.id, PROVIDER_STRAVA, args.strava_access, args.strava_refresh, args.expires_in,
        )
        await store_credentials(
            db, user.id, PROVIDER_SPOTIFY, args.spotify_access, args.spotify_refresh, args.expires_in,
        )
        await db.commit()
        logger.info("Credentials stored for user %s", user.id)


def main():
    parser = argparse.ArgumentParser(description="Seed a user with provider credentials")
    parser.add_argument("--athlete", type=int, required=True, help="Strava athlete ID")
    parser.add_argument("--email", default=None)
    parser.add_argument("--name", default=None)
    parser.add_argument("--strava-access", required=True)
    parser.add_argument("--strava-refresh", required=True)
    parser.add_argument("--spotify-access", required=True)
    parser.add_argument("--spotify-refresh", required=True)
    parser.add_argument("--expires-in", type=int, default=0, help="Seconds until the access tokens expire")
    asyncio.run(seed(parser.parse_args()))


if __name__ == "__main__":
    main()
