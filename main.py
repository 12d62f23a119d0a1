import io
import json
import logging
from contextlib import asynccontextmanager
from typing import List, Literal, Optional

import pandas as pd
from fastapi import FastAPI, Depends, HTTPException, Query, Request, UploadFile, File
from fastapi.responses import JSONResponse, StreamingResponse
from sqlalchemy.orm import Session
from sqlalchemy import func, cast, String, text

# --- Import local modules ---
import models
import schemas
from database import SessionLocal, engine, LOG_LEVEL, SEED_DATABASE, TREE_MAX_DEPTH
from exceptions import UnsupportedDatabaseError

logging.basicConfig(level=LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
logger = logging.getLogger(__name__)


# --- Database Seeding Logic ---
def init_db(db: Session):
    if db.query(models.Node).count() == 0:
        logger.info("Database is empty, seeding with initial data...")

        initial_nodes = [
            models.Node(id=1, label="Catalog", parent_id=None),
            models.Node(id=2, label="Clothing", parent_id=1),
            models.Node(id=3, label="Footwear", parent_id=1),
            models.Node(id=4, label="Shirts", parent_id=2),
            models.Node(id=5, label="Trousers", parent_id=2),
            models.Node(id=6, label="Boots", parent_id=3),
            models.Node(id=7, label="Slim fit", parent_id=4, meta={"style_factor": 0.95}),
            models.Node(id=8, label="Regular fit", parent_id=4, meta={"style_factor": 1.05}),
            models.Node(id=9, label="Chinos", parent_id=5),
        ]
        db.add_all(initial_nodes)
        db.commit()

        # Synchronize the auto-increment counter (sequence) in PostgreSQL
        # with the manually inserted ids, otherwise the next insert collides.
        if db.bind.dialect.name == "postgresql":
            max_id = db.query(func.max(models.Node.id)).scalar()
            # The sequence name is typically tablename_colname_seq
            db.execute(text(f"SELECT setval('nodes_id_seq', {max_id}, true);"))
            db.commit()

        logger.info("Database initialized with %d nodes", len(initial_nodes))


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Create database tables
    models.Base.metadata.create_all(bind=engine)
    if SEED_DATABASE:
        with SessionLocal() as db:
            init_db(db)
    yield


app = FastAPI(title="Adjacency Tree", lifespan=lifespan)


# --- Dependency to get DB session ---
def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@app.exception_handler(UnsupportedDatabaseError)
async def unsupported_database_handler(request: Request, exc: UnsupportedDatabaseError):
    logger.error("Tree query rejected for %s: %s", request.url.path, exc)
    return JSONResponse(status_code=500, content={"detail": str(exc)})


def get_node_or_404(node_id: int, db: Session) -> models.Node:
    db_node = db.query(models.Node).filter(models.Node.id == node_id).first()
    if not db_node:
        raise HTTPException(status_code=404, detail="Node not found")
    return db_node


def ensure_parent_exists(parent_id: Optional[int], db: Session):
    if parent_id:
        parent = db.query(models.Node).filter(models.Node.id == parent_id).first()
        if not parent:
            raise HTTPException(status_code=400, detail=f"Parent with id {parent_id} not found")


def is_in_subtree(db_node: models.Node, candidate_id: int, db: Session) -> bool:
    # A valid tree is never deeper than it has rows, so this bound only cuts
    # walks that are already looping through a cycle.
    bound = db.query(func.count(models.Node.id)).scalar()
    subtree = db_node.descendants_and_self(db, max_depth=bound).all()
    return candidate_id in {n.id for n in subtree}


def ordered(query, order: str):
    if order == "depth":
        return query.depth_first()
    return query.breadth_first()


# --- Export must be registered before /api/nodes/{node_id} ---
@app.get("/api/nodes/export")
def export_nodes(db: Session = Depends(get_db)):
    nodes = models.Node.tree(db, max_depth=TREE_MAX_DEPTH).depth_first().all()
    if not nodes:
        raise HTTPException(status_code=404, detail="No nodes to export.")
    df_data = []
    for node in nodes:
        node_dict = {c.name: getattr(node, c.name) for c in node.__table__.columns}
        node_dict["meta"] = json.dumps(node.meta) if node.meta is not None else None
        node_dict["depth"] = node.depth
        node_dict["path"] = node.path
        df_data.append(node_dict)
    df = pd.DataFrame(df_data)
    output = io.BytesIO()
    with pd.ExcelWriter(output, engine='openpyxl') as writer:
        df.to_excel(writer, index=False, sheet_name='Nodes')
    output.seek(0)
    headers = {'Content-Disposition': 'attachment; filename="nodes_export.xlsx"'}
    return StreamingResponse(output, headers=headers, media_type='application/vnd.openxmlformats-officedocument.spreadsheetml.sheet')


@app.post("/api/nodes/import")
def import_nodes(file: UploadFile = File(...), db: Session = Depends(get_db)):
    if not file.filename.endswith('.xlsx'):
        raise HTTPException(status_code=400, detail="Invalid file format. Please upload an .xlsx file.")
    columns = {c.name for c in models.Node.__table__.columns}
    imported_ids = []
    try:
        df = pd.read_excel(file.file)
        df = df.astype(object).where(pd.notnull(df), None)
        for record in df.to_dict(orient="records"):
            # depth/path columns of an export are computed, never stored
            node_data = {k: v for k, v in record.items() if k in columns}
            if not node_data.get('id'):
                continue
            node_data['id'] = int(node_data['id'])
            if node_data.get('parent_id') is not None:
                node_data['parent_id'] = int(node_data['parent_id'])
            if isinstance(node_data.get('meta'), str):
                node_data['meta'] = json.loads(node_data['meta'])
            existing_node = db.query(models.Node).filter(models.Node.id == node_data['id']).first()
            if existing_node:
                for key, value in node_data.items():
                    setattr(existing_node, key, value)
            else:
                db.add(models.Node(**node_data))
            imported_ids.append(node_data['id'])

        # Rows may reference each other, so parents are checked once all are in place
        db.flush()
        for node_id in imported_ids:
            db_node = db.get(models.Node, node_id)
            if db_node.parent_id is None:
                continue
            if db.get(models.Node, db_node.parent_id) is None:
                raise HTTPException(status_code=400, detail=f"Parent with id {db_node.parent_id} not found")
            if is_in_subtree(db_node, db_node.parent_id, db):
                raise HTTPException(status_code=400, detail=f"Node {node_id} cannot be moved below itself.")

        db.commit()
        logger.info("Imported %d rows from %s", len(df), file.filename)
        return {"detail": f"Successfully processed {len(df)} rows."}
    except HTTPException:
        db.rollback()
        logger.warning("Import of %s rejected", file.filename)
        raise
    except Exception as e:
        db.rollback()
        logger.warning("Import of %s failed: %s", file.filename, e)
        raise HTTPException(status_code=400, detail=f"Failed to process Excel file: {str(e)}")


@app.get("/api/nodes", response_model=schemas.NodePage)
def get_all_nodes(search: Optional[str] = None, page: int = Query(1, ge=1), page_size: int = Query(25, ge=1),
                  db: Session = Depends(get_db)):
    query = db.query(models.Node)
    if search:
        search_term = f"%{search}%"
        query = query.filter(
            (models.Node.label.like(search_term)) |
            (cast(models.Node.id, String).like(search_term))
        )

    total = query.count()
    nodes = query.order_by(models.Node.id).offset((page - 1) * page_size).limit(page_size).all()
    return {"nodes": nodes, "total": total}


@app.post("/api/nodes", response_model=schemas.Node)
def create_node(node: schemas.NodeCreate, db: Session = Depends(get_db)):
    ensure_parent_exists(node.parent_id, db)
    # We don't pass an ID, we let the database generate it
    db_node = models.Node(**node.model_dump())
    db.add(db_node)
    db.commit()
    db.refresh(db_node)
    return db_node


@app.get("/api/nodes/{node_id}", response_model=schemas.Node)
def get_node(node_id: int, db: Session = Depends(get_db)):
    return get_node_or_404(node_id, db)


@app.put("/api/nodes/{node_id}", response_model=schemas.Node)
def update_node(node_id: int, node: schemas.NodeCreate, db: Session = Depends(get_db)):
    db_node = get_node_or_404(node_id, db)
    ensure_parent_exists(node.parent_id, db)
    if node.parent_id is not None:
        # Re-parenting under its own subtree would close a cycle
        if is_in_subtree(db_node, node.parent_id, db):
            raise HTTPException(status_code=400, detail="A node cannot be moved below itself.")

    for key, value in node.model_dump().items():
        setattr(db_node, key, value)

    db.commit()
    db.refresh(db_node)
    return db_node


@app.delete("/api/nodes/{node_id}")
def delete_node(node_id: int, db: Session = Depends(get_db)):
    db_node = get_node_or_404(node_id, db)

    children_count = db.query(models.Node).filter(models.Node.parent_id == node_id).count()
    if children_count > 0:
        raise HTTPException(status_code=400, detail=f"Cannot delete node. It is a parent to {children_count} other nodes.")

    db.delete(db_node)
    db.commit()
    return {"detail": "Node deleted successfully"}


@app.get("/api/nodes/{node_id}/ancestors", response_model=List[schemas.TreeNode])
def get_ancestors(node_id: int, include_self: bool = False, order: Literal["breadth", "depth"] = "breadth",
                  max_depth: Optional[int] = None, db: Session = Depends(get_db)):
    node = get_node_or_404(node_id, db)
    if include_self:
        query = node.ancestors_and_self(db, max_depth=TREE_MAX_DEPTH)
    else:
        query = node.ancestors(db, max_depth=TREE_MAX_DEPTH)
    if max_depth is not None:
        query = query.where_depth(">=", -max_depth)
    return ordered(query, order).all()


@app.get("/api/nodes/{node_id}/descendants", response_model=List[schemas.TreeNode])
def get_descendants(node_id: int, include_self: bool = False, order: Literal["breadth", "depth"] = "depth",
                    max_depth: Optional[int] = None, db: Session = Depends(get_db)):
    node = get_node_or_404(node_id, db)
    if include_self:
        query = node.descendants_and_self(db, max_depth=TREE_MAX_DEPTH)
    else:
        query = node.descendants(db, max_depth=TREE_MAX_DEPTH)
    if max_depth is not None:
        query = query.where_depth("<=", max_depth)
    return ordered(query, order).all()


@app.get("/api/nodes/{node_id}/siblings", response_model=List[schemas.TreeNode])
def get_siblings(node_id: int, include_self: bool = False, db: Session = Depends(get_db)):
    node = get_node_or_404(node_id, db)
    query = node.siblings_and_self(db) if include_self else node.siblings(db)
    return query.depth_first().all()


@app.get("/api/search-parents", response_model=List[schemas.Node])
def search_parents(q: str, db: Session = Depends(get_db)):
    search_term = f"%{q}%"
    return db.query(models.Node).filter(
        (models.Node.label.like(search_term)) | (cast(models.Node.id, String).like(search_term))
    ).order_by(models.Node.id).limit(10).all()


@app.get("/api/tree", response_model=List[schemas.TreeNode])
def get_tree(db: Session = Depends(get_db)):
    return models.Node.tree(db, max_depth=TREE_MAX_DEPTH).depth_first().all()


@app.get("/api/tree/roots", response_model=List[schemas.Node])
def get_tree_roots(db: Session = Depends(get_db)):
    return models.Node.query_tree(db).is_root().order_by(models.Node.id).all()


@app.get("/api/tree/leaves", response_model=List[schemas.Node])
def get_tree_leaves(db: Session = Depends(get_db)):
    return models.Node.query_tree(db).is_leaf().order_by(models.Node.id).all()


@app.get("/api/tree/children/{node_id}", response_model=List[schemas.Node])
def get_tree_children(node_id: int, db: Session = Depends(get_db)):
    return db.query(models.Node).filter(models.Node.parent_id == node_id).order_by(models.Node.id).all()


@app.get("/api/tree/path/{node_id}", response_model=List[int])
def get_node_path(node_id: int, db: Session = Depends(get_db)):
    node = get_node_or_404(node_id, db)
    # depth runs from -n at the root up to 0 at the node itself
    return [n.id for n in node.ancestors_and_self(db, max_depth=TREE_MAX_DEPTH).breadth_first().all()]


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="127.0.0.1", port=8000)
