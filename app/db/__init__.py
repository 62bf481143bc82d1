from .base import Base
from .session import engine


def init_db():
    # 导入模型以注册到 metadata
    import app.models  # noqa: F401

    Base.metadata.create_all(bind=engine)

# Export for convenience
__all__ = ["Base", "engine", "init_db"]
