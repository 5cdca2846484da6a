from videogen.models.database import Base, create_db_engine, init_db, make_session_maker
from videogen.models.render_job import RenderJobRecord

__all__ = [
    "Base",
    "RenderJobRecord",
    "create_db_engine",
    "init_db",
    "make_session_maker",
]
