"""Sale Payment model for mixed payment methods."""
from sqlalchemy import Column, Integer, String, Numeric, DateTime, Enum, ForeignKey
from sqlalchemy.orm import relationship
from app.database import Base, new_id, utcnow
from app.models.sale import _enum_values
import enum


class PaymentMethod(str, enum.Enum):
    """Accepted tender types."""
    CASH = 'cash'
    CARD = 'card'
    GCASH = 'gcash'
    GOOGLE_PAY = 'google_pay'
    PAYMAYA = 'paymaya'
    BANK_TRANSFER = 'bank_transfer'
    OTHER = 'other'

    @property
    def requires_reference(self):
        """E-wallet and transfer tenders must carry a transaction reference."""
        return self in PAYMENT_METHODS_REQUIRING_REFERENCE


PAYMENT_METHODS_REQUIRING_REFERENCE = frozenset({
    PaymentMethod.GCASH,
    PaymentMethod.GOOGLE_PAY,
    PaymentMethod.PAYMAYA,
    PaymentMethod.BANK_TRANSFER,
})


class SalePayment(Base):
    """
    Sale Payment - Individual payment for a sale.
    
    Allows mixed payment methods (e.g., CASH + GCASH).
    Payments are append-only: there is no update or removal path.
    """
    
    __tablename__ = 'sale_payment'
    
    id = Column(String(36), primary_key=True, default=new_id)
    sale_id = Column(String(36), ForeignKey('sale.id', ondelete='CASCADE'), nullable=False, index=True)
    position = Column(Integer, nullable=False, default=0)
    
    method = Column(Enum(PaymentMethod, name='payment_method', values_callable=_enum_values), nullable=False)
    amount = Column(Numeric(12, 2), nullable=False)
    reference = Column(String(100), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    
    # Relationships
    sale = relationship('Sale', back_populates='payments')
    
    def __repr__(self):
        return f"<SalePayment(id={self.id}, sale_id={self.sale_id}, method={self.method.value}, amount={self.amount})>"
