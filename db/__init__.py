from .db import (
    Base,
    UTCDateTime,
    utcnow,
    get_engine,
    get_session_maker,
    create_all,
    dispose_engine,
)  # noqa: F401
