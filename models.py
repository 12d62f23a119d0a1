from sqlalchemy import Column, Integer, String, JSON, ForeignKey
from sqlalchemy.orm import relationship
from database import Base
from recursive import HasRecursiveRelationships


class Node(Base, HasRecursiveRelationships):
    __tablename__ = "nodes"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    label = Column(String, index=True)
    parent_id = Column(Integer, ForeignKey("nodes.id"), nullable=True, index=True)

    meta = Column(JSON, nullable=True)

    parent = relationship("Node", remote_side=[id], backref="children", foreign_keys=[parent_id])

    def __repr__(self):
        return f"<Node id={self.id} parent_id={self.parent_id} label={self.label!r}>"
