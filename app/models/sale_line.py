"""Sale Line model."""
from decimal import Decimal
from sqlalchemy import Column, Integer, String, Numeric, Enum, ForeignKey
from sqlalchemy.orm import relationship
from app.database import Base, new_id
from app.models.sale import DiscountType, _enum_values


class SaleLine(Base):
    """
    Sale Line - one product entry in a sale.

    unit_price is captured when the line is added and never re-read from
    the catalog. line_total is the rounded copy of the exact line amount
    kept for listings; the sale subtotal is summed from exact amounts.
    """
    
    __tablename__ = 'sale_line'
    
    id = Column(String(36), primary_key=True, default=new_id)
    sale_id = Column(String(36), ForeignKey('sale.id', ondelete='CASCADE'), nullable=False, index=True)
    product_id = Column(String(36), ForeignKey('product.id'), nullable=False, index=True)
    position = Column(Integer, nullable=False, default=0)
    
    quantity = Column(Integer, nullable=False)
    unit_price = Column(Numeric(12, 4), nullable=False)
    
    # Item-level discount (applied to this line only)
    line_discount_amount = Column(Numeric(12, 4), nullable=False, default=Decimal('0'))
    line_discount_type = Column(
        Enum(DiscountType, name='discount_type', values_callable=_enum_values),
        nullable=False,
        default=DiscountType.FIXED
    )
    line_total = Column(Numeric(12, 2), nullable=False, default=Decimal('0'))
    
    # Relationships
    sale = relationship('Sale', back_populates='lines')
    product = relationship('Product')
    
    def __repr__(self):
        return f"<SaleLine(id={self.id}, product_id={self.product_id}, quantity={self.quantity})>"
