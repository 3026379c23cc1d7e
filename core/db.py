import os

from sqlalchemy import create_engine
from sqlalchemy.engine import make_url
from sqlalchemy.orm import sessionmaker

from core.config import cfg
from core.log import get_logger
from core.events import log_event, E

logger = get_logger(__name__)


class Db:
    def __init__(self, db_url: str = None):
        self.db_url = db_url or str(cfg.get("db", "sqlite:///data/aifans.db"))
        self.engine = None
        self.Session = None
        self.init()

    def init(self):
        url = make_url(self.db_url)
        connect_args = {}
        if url.get_backend_name() == "sqlite":
            # FastAPI 同步路由在线程池中执行，sqlite 连接需允许跨线程
            connect_args["check_same_thread"] = False
            if url.database and url.database != ":memory:":
                folder = os.path.dirname(os.path.abspath(url.database))
                os.makedirs(folder, exist_ok=True)
        self.engine = create_engine(
            self.db_url,
            connect_args=connect_args,
            pool_pre_ping=True,
        )
        self.Session = sessionmaker(bind=self.engine, autoflush=False, expire_on_commit=False)

    def create_tables(self):
        from core.models.base import Base
        import core.models  # noqa: F401  注册全部模型

        Base.metadata.create_all(self.engine)
        log_event(logger, E.SYSTEM_DB_INIT, level="debug", url=self.engine.url.render_as_string(hide_password=True))

    def get_session(self):
        return self.Session()


DB = Db()
