from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    """
    SQLAlchemy 声明式基类 (Declarative Base)
    所有数据库模型都应继承此类，表名在各模型中显式声明。
    """
