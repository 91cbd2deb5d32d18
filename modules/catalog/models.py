"""
Catalog Module - Models
========================
MenuItem, ModifierGroup, Modifier and ModifierRule.
The authoritative source of every price used at checkout.
"""

from sqlalchemy import (
    Column, Integer, String, Numeric, Boolean, Text,
    ForeignKey, DateTime, JSON, Index,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from config.database import Base


# ==========================================
# 🍽️ Menu Item
# ==========================================

class MenuItem(Base):
    __tablename__ = "menu_items"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(200), nullable=False)
    description = Column(Text, nullable=True)
    price = Column(Numeric(10, 2), nullable=False)   # dollars
    available = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    modifier_groups = relationship(
        "ModifierGroup", back_populates="item",
        cascade="all, delete-orphan", order_by="ModifierGroup.sort_order",
    )
    rules = relationship("ModifierRule", back_populates="item", cascade="all, delete-orphan")

    def __repr__(self):
        return f"<MenuItem {self.name} ${self.price}>"


# ==========================================
# 🧩 Modifier Group
# ==========================================

class ModifierGroup(Base):
    __tablename__ = "modifier_groups"

    id = Column(Integer, primary_key=True)
    item_id = Column(Integer, ForeignKey("menu_items.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String(100), nullable=False)
    type = Column(String(20), default="radio", nullable=False)  # radio / checkbox / quantity
    required = Column(Boolean, default=False, nullable=False)
    min_selections = Column(Integer, default=0, nullable=False)
    max_selections = Column(Integer, nullable=True)   # NULL = unlimited
    sort_order = Column(Integer, default=0, nullable=False)
    active = Column(Boolean, default=True, nullable=False)

    item = relationship("MenuItem", back_populates="modifier_groups")
    modifiers = relationship(
        "Modifier", back_populates="group",
        cascade="all, delete-orphan", order_by="Modifier.sort_order",
    )

    def __repr__(self):
        return f"<ModifierGroup {self.name} item={self.item_id}>"


# ==========================================
# ➕ Modifier
# ==========================================

class Modifier(Base):
    __tablename__ = "modifiers"

    id = Column(Integer, primary_key=True)
    group_id = Column(Integer, ForeignKey("modifier_groups.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String(100), nullable=False)
    price_adjustment = Column(Numeric(10, 2), default=0, nullable=False)   # dollars
    available = Column(Boolean, default=True, nullable=False)
    sort_order = Column(Integer, default=0, nullable=False)

    group = relationship("ModifierGroup", back_populates="modifiers")


# ==========================================
# 🔀 Modifier Rule (conditional visibility)
# ==========================================

class ModifierRule(Base):
    __tablename__ = "modifier_rules"

    id = Column(Integer, primary_key=True)
    item_id = Column(Integer, ForeignKey("menu_items.id", ondelete="CASCADE"), nullable=False)
    controlled_group_id = Column(Integer, ForeignKey("modifier_groups.id", ondelete="CASCADE"), nullable=False)
    effect = Column(String(10), nullable=False)  # show / hide / require / disable
    # [{"operator": ..., "target_group_id": ..., "target_modifier_id": ...}]
    conditions = Column(JSON, nullable=False, default=list)
    sort_order = Column(Integer, default=0, nullable=False)

    item = relationship("MenuItem", back_populates="rules")

    __table_args__ = (
        Index("ix_modifier_rule_item", "item_id", "sort_order"),
    )
