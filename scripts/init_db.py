import sys
import os

sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from dancecoin.config import settings
from dancecoin.database.connection import build_engine, create_tables


def init_db():
    """데이터베이스 초기화"""
    try:
        engine = build_engine(settings)
        create_tables(engine)
        print(f"Database initialized successfully: {engine.url.render_as_string(hide_password=True)}")
    except Exception as e:
        print(f"Database initialization failed: {str(e)}")
        raise


if __name__ == "__main__":
    init_db()
