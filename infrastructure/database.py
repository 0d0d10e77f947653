"""
数据库配置和连接管理
"""
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine, async_sessionmaker
from sqlalchemy.engine import make_url

from core.config import settings
from infrastructure.models import Base


def _build_async_url(database_url: str) -> str:
    """确保数据库URL使用异步驱动"""
    url = make_url(database_url)
    drivername = url.drivername

    if "+" in drivername:
        return database_url

    driver_map = {
        "postgresql": "postgresql+asyncpg",
        "postgres": "postgresql+asyncpg",
        "sqlite": "sqlite+aiosqlite",
    }

    if drivername not in driver_map:
        raise ValueError(f"不支持的数据库驱动: {drivername}. 请使用 async 驱动或更新 DATABASE__URL")

    return url.set(drivername=driver_map[drivername]).render_as_string(hide_password=False)


def _enable_sqlite_savepoints(engine: AsyncEngine) -> None:
    """
    pysqlite 默认自行管理 BEGIN，导致 SAVEPOINT 失效。
    按 SQLAlchemy 文档的做法：关闭驱动的事务处理，由 SQLAlchemy 显式发出 BEGIN。
    """

    @event.listens_for(engine.sync_engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(engine.sync_engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN")


def build_engine(database_url: str, *, echo: bool = False) -> AsyncEngine:
    engine = create_async_engine(_build_async_url(database_url), echo=echo)
    if engine.dialect.name == "sqlite":
        _enable_sqlite_savepoints(engine)
    return engine


engine = build_engine(settings.database.url, echo=settings.database.echo)

# 创建异步会话工厂
AsyncSessionLocal = async_sessionmaker(
    bind=engine,
    expire_on_commit=False,
)


async def create_tables(target: AsyncEngine = engine):
    """
    创建所有表

    根据models中定义的所有模型创建对应的数据库表
    """
    async with target.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def drop_tables(target: AsyncEngine = engine):
    """
    删除所有表

    警告：仅用于测试环境，会删除所有数据！
    """
    async with target.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
