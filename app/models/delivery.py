from datetime import date

from sqlalchemy import BigInteger, Date, Enum, Index, String, Text, text
from sqlalchemy.orm import Mapped, mapped_column

from app.core.ids import gen_id
from app.models.base import Base, TimestampMixin
from app.services.delivery_state import DeliveryStatus, INITIAL_STATUS

ACTIVE_SLOT_WHERE = text("status <> 'cancelled'")


class Delivery(TimestampMixin, Base):
    __tablename__ = "deliveries"
    __table_args__ = (
        # One live delivery per courier per day; cancelled rows free the slot.
        Index(
            "uq_deliveries_courier_date_active",
            "courier_id",
            "scheduled_date",
            unique=True,
            postgresql_where=ACTIVE_SLOT_WHERE,
            sqlite_where=ACTIVE_SLOT_WHERE,
        ),
        Index("ix_deliveries_date_status", "scheduled_date", "status"),
    )

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: gen_id("dly"))
    courier_id: Mapped[int] = mapped_column(BigInteger, nullable=False, index=True)

    status: Mapped[DeliveryStatus] = mapped_column(
        Enum(
            DeliveryStatus,
            name="delivery_status",
            native_enum=False,
            length=30,
            values_callable=lambda e: [m.value for m in e],
        ),
        nullable=False,
        default=INITIAL_STATUS,
    )
    scheduled_date: Mapped[date] = mapped_column(Date, nullable=False)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_by_user_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
