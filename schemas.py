from pydantic import BaseModel, ConfigDict
from typing import Dict, List, Optional, Any

# --- Schemas for Admin Panel (CRUD) ---

class NodeBase(BaseModel):
    label: str
    parent_id: Optional[int] = None
    meta: Optional[Dict[str, Any]] = {}

class NodeCreate(NodeBase):
    pass

# --- Schema for API Responses ---

class Node(NodeBase):
    model_config = ConfigDict(from_attributes=True)

    id: int

# --- Schema for rows loaded from a recursive expression ---

class TreeNode(Node):
    depth: int
    path: str

# --- Schema for Paginated Response ---
class NodePage(BaseModel):
    total: int
    nodes: List[Node]
