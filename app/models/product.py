"""Product model (catalog entry read by the POS)."""
from sqlalchemy import Column, String, Boolean, Integer, Numeric, DateTime
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from app.database import Base, new_id


class Product(Base):
    """Product model."""
    
    __tablename__ = 'product'
    
    id = Column(String(36), primary_key=True, default=new_id)
    sku = Column(String(64), nullable=False, unique=True)
    name = Column(String, nullable=False)
    unit = Column(String(20), nullable=False, default='pcs')  # e.g. pcs, kg, bag
    list_price = Column(Numeric(12, 2), nullable=False, default=0)
    reorder_level = Column(Integer, nullable=False, default=0, server_default='0')
    active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())
    
    # Relationships
    stock = relationship('ProductStock', uselist=False, back_populates='product', cascade="all, delete-orphan")
    
    def __repr__(self):
        return f"<Product(id={self.id}, name='{self.name}', sku='{self.sku}')>"
    
    @property
    def on_hand_qty(self):
        """Get on hand quantity from stock."""
        if self.stock:
            return self.stock.on_hand_qty
        return 0

    @property
    def is_low_stock(self):
        """True when on-hand quantity is at or below the reorder level."""
        return self.reorder_level > 0 and self.on_hand_qty <= self.reorder_level
