"""Delivery model (created from completed POS sales)."""
from sqlalchemy import Column, String, Text, DateTime, ForeignKey
from sqlalchemy.orm import relationship
from app.database import Base, new_id, utcnow


class Delivery(Base):
    """
    Delivery - draft delivery record spawned by a completed sale.

    Only the creation hook lives here; status workflow belongs to the
    delivery module.
    """
    
    __tablename__ = 'delivery'
    
    id = Column(String(36), primary_key=True, default=new_id)
    sale_id = Column(String(36), ForeignKey('sale.id'), nullable=False, index=True)
    tracking_number = Column(String(32), nullable=False, unique=True)
    order_reference = Column(String(32), nullable=False)
    status = Column(String(20), nullable=False, default='draft')
    
    customer_name = Column(String(200), nullable=True)
    customer_address = Column(Text, nullable=True)  # Optional for draft deliveries
    customer_phone = Column(String(50), nullable=True)
    customer_email = Column(String(200), nullable=True)
    notes = Column(Text, nullable=True)
    
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    
    # Relationships
    sale = relationship('Sale')
    
    def __repr__(self):
        return f"<Delivery(id={self.id}, tracking_number={self.tracking_number}, sale_id={self.sale_id})>"
