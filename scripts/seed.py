# scripts/seed.py — run from the repo root: python -m scripts.seed --env dev

import argparse
from typing import Dict, List, Tuple

from dotenv import load_dotenv
from sqlalchemy.engine import Engine
from sqlmodel import Session, select

from core.config import settings
from core.database import build_engine, create_db_and_tables
from core.security import create_token_for_user
from models.models import User

# ✅ Load environment variables
load_dotenv()

# (email, first name) per environment
SEED_USERS: Dict[str, List[Tuple[str, str]]] = {
    "dev": [
        ("owner@demo.com", "Owner"),
        ("member1@demo.com", "Member1"),
        ("member2@demo.com", "Member2"),
    ],
    "staging": [
        ("staging-owner@teamflow.com", "Staging"),
    ],
}


def seed_users(engine: Engine, env: str = "dev") -> Dict[str, str]:
    """
    Create the demo users of `env` if missing and return {email: bearer token}.
    Organizations are created through the API afterwards, so they go through checkout.
    """
    tokens: Dict[str, str] = {}
    with Session(engine) as session:
        for email, first_name in SEED_USERS[env]:
            user = session.exec(select(User).where(User.email == email)).first()
            if not user:
                user = User(email=email, first_name=first_name, is_active=True)
                session.add(user)
                session.commit()
                session.refresh(user)
                print(f"✅ Added {email}")
            tokens[email] = create_token_for_user(user)
    return tokens


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Seed the TeamFlow database.")
    parser.add_argument(
        "--env",
        choices=sorted(SEED_USERS),
        default="dev",
        help="Select environment to seed (dev or staging)",
    )
    args = parser.parse_args()

    print(f"🌱 Seeding {args.env} users...")
    engine = build_engine(settings.DATABASE_URL)
    create_db_and_tables(engine)
    for email, token in seed_users(engine, args.env).items():
        print(f"🔑 {email}: Bearer {token}")
    engine.dispose()
    print("🌱 Seeding complete.")
