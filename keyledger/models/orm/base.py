from datetime import datetime, timezone

from sqlalchemy.orm import declarative_base


def utcnow() -> datetime:
    """Naive UTC timestamp, the form every DateTime column stores."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class CustomBase:
    # Columns never rendered by __repr__ (e.g. credential hashes)
    __repr_exclude__ = ()

    def __repr__(self) -> str:
        class_name = self.__class__.__name__

        columns = [
            (c.name, getattr(self, c.name))
            for c in self.__table__.columns
            if c.name not in self.__repr_exclude__
        ]

        column_str = ", ".join(f"{name}={repr(value)}" for name, value in columns)

        return f"{class_name}({column_str})"

    def to_dict(self, exclude=()):
        """Converts the ORM object to a dictionary of column values."""
        return {
            column.name: getattr(self, column.name)
            for column in self.__table__.columns
            if column.name not in exclude
        }


Base = declarative_base(cls=CustomBase)
