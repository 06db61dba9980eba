"""Sale model."""
from decimal import Decimal
from sqlalchemy import Column, Integer, String, Numeric, DateTime, Enum
from sqlalchemy.orm import relationship
from app.database import Base, new_id, utcnow
import enum


def _enum_values(enum_cls):
    return [member.value for member in enum_cls]


class SaleStatus(str, enum.Enum):
    """Sale lifecycle status."""
    DRAFT = 'draft'
    HELD = 'held'
    COMPLETED = 'completed'
    VOIDED = 'voided'

    @property
    def is_terminal(self):
        return self in (SaleStatus.COMPLETED, SaleStatus.VOIDED)


class DiscountType(str, enum.Enum):
    """Discount input type, shared by sale-level and line-level discounts."""
    PERCENT = 'percent'
    FIXED = 'fixed'


class Sale(Base):
    """
    Sale - POS checkout record.

    subtotal, total and payment_total are derived values written by the
    sale aggregate on every mutation. ``version`` is the optimistic lock:
    every UPDATE is issued as ``WHERE id = ? AND version = ?``.
    """
    
    __tablename__ = 'sale'
    
    id = Column(String(36), primary_key=True, default=new_id)
    status = Column(
        Enum(SaleStatus, name='sale_status', values_callable=_enum_values),
        nullable=False,
        default=SaleStatus.DRAFT,
        index=True
    )
    
    # Sale-level discount inputs
    discount_amount = Column(Numeric(12, 2), nullable=False, default=Decimal('0'))
    discount_type = Column(
        Enum(DiscountType, name='discount_type', values_callable=_enum_values),
        nullable=False,
        default=DiscountType.FIXED
    )
    
    # Derived totals
    subtotal = Column(Numeric(12, 2), nullable=False, default=Decimal('0'))
    total = Column(Numeric(12, 2), nullable=False, default=Decimal('0'))
    payment_total = Column(Numeric(12, 2), nullable=False, default=Decimal('0'))
    
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, index=True)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    voided_at = Column(DateTime(timezone=True), nullable=True)
    
    version = Column(Integer, nullable=False)
    
    # Relationships
    lines = relationship(
        'SaleLine',
        back_populates='sale',
        cascade='all, delete-orphan',
        order_by='SaleLine.position'
    )
    payments = relationship(
        'SalePayment',
        back_populates='sale',
        cascade='all, delete-orphan',
        order_by='SalePayment.position'
    )
    
    __mapper_args__ = {'version_id_col': version}
    
    @property
    def amount_due(self):
        """Amount still owed: total - payment_total, never negative."""
        due = (self.total or 0) - (self.payment_total or 0)
        return due if due > 0 else Decimal('0.00')
    
    @property
    def change_due(self):
        """Overpayment on the sale (informational, no refund bookkeeping)."""
        change = (self.payment_total or 0) - (self.total or 0)
        return change if change > 0 else Decimal('0.00')

    def __repr__(self):
        return f"<Sale(id={self.id}, total={self.total}, status={self.status.value})>"
