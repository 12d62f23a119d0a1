import os
from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker
from dotenv import load_dotenv

# Load environment variables from a .env file (for local development)
load_dotenv()

# Get the database URL from environment variables
# For local dev it falls back to SQLite
DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./tree.db")

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

# Optional guard against cyclic parent references in API traversals
TREE_MAX_DEPTH = int(os.environ["TREE_MAX_DEPTH"]) if os.getenv("TREE_MAX_DEPTH") else None

SEED_DATABASE = os.getenv("SEED_DATABASE", "true").lower() in ("1", "true", "yes")

# SQLite requires connect_args, the server databases need no extra arguments
if DATABASE_URL.startswith("sqlite"):
    engine = create_engine(
        DATABASE_URL, connect_args={"check_same_thread": False}
    )
else:
    engine = create_engine(DATABASE_URL)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()
