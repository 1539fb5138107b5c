"""SequenceCounter: named, monotonically increasing counters.

Incremented only through ``utils.numbering.next_value`` with a single
atomic UPDATE, so concurrent request handlers never hand out the same value.
"""

from sqlalchemy import Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from pickflow.database import Base


class SequenceCounter(Base):
    __tablename__ = "sequence_counters"

    # e.g. "pick_list", "load:20260218"
    name: Mapped[str] = mapped_column(String(100), primary_key=True)
    value: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
