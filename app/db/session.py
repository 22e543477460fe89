from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from app.core.config import settings

# Claims hold a row lock on the drop for the whole transaction, so a stale
# pooled connection must be detected before the lock is requested.
engine = create_engine(settings.DATABASE_URL, pool_pre_ping=True)

# One session per request or sweep run; the services commit or roll back.
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
