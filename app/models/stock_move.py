"""Stock Move model."""
from sqlalchemy import Column, BigInteger, Integer, String, DateTime, Text, Enum, ForeignKey
from sqlalchemy.sql import func
from app.database import Base
import enum


class StockMoveType(enum.Enum):
    """Stock move type enum."""
    IN = "IN"
    OUT = "OUT"
    ADJUST = "ADJUST"


class StockMove(Base):
    """
    Stock Move - one row per quantity delta committed by the stock ledger.

    The reference ties a move to the operation that caused it
    ('sale:<id>' on completion, 'void:<id>' on void), so a void can
    replay exactly what a completion committed.
    """
    
    __tablename__ = 'stock_move'
    
    id = Column(BigInteger().with_variant(Integer, 'sqlite'), primary_key=True, autoincrement=True)
    product_id = Column(String(36), ForeignKey('product.id'), nullable=False, index=True)
    type = Column(Enum(StockMoveType, name='stock_move_type'), nullable=False)
    quantity = Column(Integer, nullable=False)  # signed: negative for OUT
    reference = Column(String(64), nullable=True, index=True)
    note = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    
    def __repr__(self):
        return f"<StockMove(id={self.id}, product_id={self.product_id}, quantity={self.quantity}, reference={self.reference})>"
