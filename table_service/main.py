import logging
from typing import List, Literal, Optional

from fastapi import Depends, FastAPI, Query
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
import uvicorn

from table_service import models
from table_service.database import Base, SessionLocal, engine
from pos_common.config import configure_logging
from pos_common.context import BRANCH_ADMIN, RequestContext, get_context, require_roles
from pos_common.envelope import Envelope, success
from pos_common.errors import ConflictError, InvalidStateError, NotFoundError, install_error_handlers

configure_logging()
logger = logging.getLogger(__name__)

# 1. Create tables if missing
Base.metadata.create_all(bind=engine)

app = FastAPI(title="table_service")

# 2. CORS for the dashboard
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
install_error_handlers(app)


# 3. DEPENDENCIES
def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


# 4. PYDANTIC MODELS
class HallCreate(BaseModel):
    name: str = Field(min_length=1)
    capacity: int = Field(default=0, ge=0)
    branch_id: Optional[int] = None


class HallResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    capacity: int
    branch_id: Optional[int] = None
    terminal: Optional[int] = None


class TableCreate(BaseModel):
    hall_id: int
    table_number: str = Field(min_length=1)
    capacity: int = Field(default=4, ge=1)


class TableResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    hall_id: int
    table_number: str
    capacity: int
    status: str
    branch_id: Optional[int] = None
    terminal: Optional[int] = None


class TableStatusUpdate(BaseModel):
    status: Literal["Available", "Running"]


def load_hall(db: Session, ctx: RequestContext, hall_id: int) -> models.Hall:
    hall = db.query(models.Hall).filter(models.Hall.id == hall_id).first()
    if not hall or not ctx.can_see(hall.branch_id):
        raise NotFoundError(f"Hall {hall_id} not found")
    return hall


def load_table(db: Session, ctx: RequestContext, table_id: int) -> models.DiningTable:
    table = db.query(models.DiningTable).filter(models.DiningTable.id == table_id).first()
    if not table or not ctx.can_see(table.branch_id):
        raise NotFoundError(f"Table {table_id} not found")
    return table


# ==========================================
# HALLS
# ==========================================
@app.post("/halls", response_model=Envelope[HallResponse])
def create_hall(hall: HallCreate, ctx: RequestContext = Depends(get_context), db: Session = Depends(get_db)):
    require_roles(ctx, BRANCH_ADMIN)
    branch_id = hall.branch_id if ctx.is_super_admin and hall.branch_id is not None else ctx.branch_id
    new_hall = models.Hall(name=hall.name.strip(), capacity=hall.capacity,
                           branch_id=branch_id, terminal=ctx.terminal)
    db.add(new_hall)
    db.commit()
    db.refresh(new_hall)
    return success(HallResponse.model_validate(new_hall))


@app.get("/halls", response_model=Envelope[List[HallResponse]])
def get_halls(branch_id: Optional[int] = None, ctx: RequestContext = Depends(get_context),
              db: Session = Depends(get_db)):
    query = db.query(models.Hall)
    scope = ctx.scope_branch(branch_id)
    if scope is not None:
        query = query.filter(models.Hall.branch_id == scope)
    return success([HallResponse.model_validate(h) for h in query.order_by(models.Hall.name).all()])


@app.get("/halls/{hall_id}", response_model=Envelope[HallResponse])
def get_hall_detail(hall_id: int, ctx: RequestContext = Depends(get_context), db: Session = Depends(get_db)):
    return success(HallResponse.model_validate(load_hall(db, ctx, hall_id)))


@app.delete("/halls/{hall_id}", response_model=Envelope[HallResponse])
def delete_hall(hall_id: int, ctx: RequestContext = Depends(get_context), db: Session = Depends(get_db)):
    require_roles(ctx, BRANCH_ADMIN)
    hall = load_hall(db, ctx, hall_id)
    if any(t.status == models.RUNNING for t in hall.tables):
        raise InvalidStateError(f"Hall '{hall.name}' still has running tables")
    result = HallResponse.model_validate(hall)
    db.delete(hall)
    db.commit()
    return success(result)


# ==========================================
# TABLES
# ==========================================
@app.post("/tables", response_model=Envelope[TableResponse])
def create_table(table: TableCreate, ctx: RequestContext = Depends(get_context), db: Session = Depends(get_db)):
    require_roles(ctx, BRANCH_ADMIN)
    hall = load_hall(db, ctx, table.hall_id)
    new_table = models.DiningTable(
        hall_id=hall.id, table_number=table.table_number.strip(), capacity=table.capacity,
        status=models.AVAILABLE, branch_id=hall.branch_id, terminal=hall.terminal,
    )
    db.add(new_table)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise ConflictError(f"Table '{table.table_number}' already exists in hall '{hall.name}'")
    db.refresh(new_table)
    return success(TableResponse.model_validate(new_table))


@app.get("/tables", response_model=Envelope[List[TableResponse]])
def get_tables(hall_id: Optional[int] = Query(None), status: Optional[str] = Query(None),
               branch_id: Optional[int] = None, ctx: RequestContext = Depends(get_context),
               db: Session = Depends(get_db)):
    query = db.query(models.DiningTable)
    scope = ctx.scope_branch(branch_id)
    if scope is not None:
        query = query.filter(models.DiningTable.branch_id == scope)
    if hall_id:
        query = query.filter(models.DiningTable.hall_id == hall_id)
    if status:
        query = query.filter(models.DiningTable.status == status)
    tables = query.order_by(models.DiningTable.hall_id, models.DiningTable.table_number).all()
    return success([TableResponse.model_validate(t) for t in tables])


@app.get("/tables/{table_id}", response_model=Envelope[TableResponse])
def get_table_detail(table_id: int, ctx: RequestContext = Depends(get_context), db: Session = Depends(get_db)):
    return success(TableResponse.model_validate(load_table(db, ctx, table_id)))


@app.put("/tables/{table_id}/status", response_model=Envelope[TableResponse])
def update_table_status(table_id: int, payload: TableStatusUpdate, ctx: RequestContext = Depends(get_context),
                        db: Session = Depends(get_db)):
    # Order service pushes with its service token; admins may fix a table by hand
    require_roles(ctx, BRANCH_ADMIN)
    table = load_table(db, ctx, table_id)
    if table.status != payload.status:
        logger.info("Table %s (%s): %s -> %s", table.id, table.table_number, table.status, payload.status)
        table.status = payload.status
        db.commit()
        db.refresh(table)
    return success(TableResponse.model_validate(table))


@app.delete("/tables/{table_id}", response_model=Envelope[TableResponse])
def delete_table(table_id: int, ctx: RequestContext = Depends(get_context), db: Session = Depends(get_db)):
    require_roles(ctx, BRANCH_ADMIN)
    table = load_table(db, ctx, table_id)
    if table.status == models.RUNNING:
        raise InvalidStateError(f"Table '{table.table_number}' is running")
    result = TableResponse.model_validate(table)
    db.delete(table)
    db.commit()
    return success(result)


if __name__ == "__main__":
    uvicorn.run(app, host="0.0.0.0", port=8002)
