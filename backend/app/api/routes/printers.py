import logging

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.database import get_db
from backend.app.models.printer import Printer
from backend.app.schemas.printer import PrinterCreate, PrinterResponse, PrinterUpdate

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/printers", tags=["printers"])


async def _ensure_serial_free(db: AsyncSession, serial: str | None, printer_id: int | None = None):
    if not serial:
        return
    query = select(Printer).where(Printer.bambu_serial == serial)
    if printer_id is not None:
        query = query.where(Printer.id != printer_id)
    result = await db.execute(query)
    if result.scalar_one_or_none():
        raise HTTPException(400, "Printer with this serial number already exists")


@router.get("/", response_model=list[PrinterResponse])
async def list_printers(db: AsyncSession = Depends(get_db)):
    """List all configured printers."""
    result = await db.execute(select(Printer).order_by(Printer.name))
    return list(result.scalars().all())


@router.post("/", response_model=PrinterResponse)
async def create_printer(
    printer_data: PrinterCreate,
    db: AsyncSession = Depends(get_db),
):
    """Register a printer so bridge events can be matched to it."""
    await _ensure_serial_free(db, printer_data.bambu_serial)

    printer = Printer(**printer_data.model_dump())
    db.add(printer)
    await db.commit()
    await db.refresh(printer)

    logger.info(f"Registered printer {printer.name} (serial={printer.bambu_serial})")
    return printer


@router.get("/{printer_id}", response_model=PrinterResponse)
async def get_printer(printer_id: int, db: AsyncSession = Depends(get_db)):
    """Get a specific printer."""
    result = await db.execute(select(Printer).where(Printer.id == printer_id))
    printer = result.scalar_one_or_none()
    if not printer:
        raise HTTPException(404, "Printer not found")
    return printer


@router.patch("/{printer_id}", response_model=PrinterResponse)
async def update_printer(
    printer_id: int,
    printer_data: PrinterUpdate,
    db: AsyncSession = Depends(get_db),
):
    """Update printer details. Status is owned by the event reconciler."""
    result = await db.execute(select(Printer).where(Printer.id == printer_id))
    printer = result.scalar_one_or_none()
    if not printer:
        raise HTTPException(404, "Printer not found")

    update_data = printer_data.model_dump(exclude_unset=True)
    if "bambu_serial" in update_data:
        await _ensure_serial_free(db, update_data["bambu_serial"], printer_id)

    for field, value in update_data.items():
        setattr(printer, field, value)

    await db.commit()
    await db.refresh(printer)
    return printer


@router.delete("/{printer_id}")
async def delete_printer(printer_id: int, db: AsyncSession = Depends(get_db)):
    """Delete a printer and its planned cycles."""
    result = await db.execute(select(Printer).where(Printer.id == printer_id))
    printer = result.scalar_one_or_none()
    if not printer:
        raise HTTPException(404, "Printer not found")

    await db.delete(printer)
    await db.commit()
    return {"status": "deleted"}
