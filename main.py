import logging
import os

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pymongo.errors import PyMongoError

import admin
import auth
import bookings
import branches
import database
import payments
import vehicles
from listing import FilterError

logger = logging.getLogger("rental")
if not logger.handlers:
    h = logging.StreamHandler()
    h.setFormatter(logging.Formatter("[RENTAL] %(levelname)s %(name)s: %(message)s"))
    logger.addHandler(h)
logger.setLevel(os.getenv("LOG_LEVEL", "INFO").upper())

ALLOW_ORIGINS = [o.strip() for o in os.getenv("ALLOW_ORIGINS", "*").split(",") if o.strip()]

app = FastAPI(title="Vehicle Rental API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOW_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(status_code=400, content={"detail": jsonable_encoder(exc.errors())})


@app.exception_handler(FilterError)
async def filter_error_handler(request: Request, exc: FilterError):
    return JSONResponse(status_code=400, content={"detail": str(exc)})


@app.exception_handler(PyMongoError)
async def database_error_handler(request: Request, exc: PyMongoError):
    logger.exception(f"database error on {request.method} {request.url.path}")
    return JSONResponse(status_code=500, content={"detail": str(exc)})


@app.exception_handler(payments.PaymentError)
async def payment_error_handler(request: Request, exc: payments.PaymentError):
    logger.warning(f"payment provider error on {request.url.path}: {exc.message}")
    return JSONResponse(status_code=500, content={"detail": exc.message})


@app.exception_handler(Exception)
async def server_error_handler(request: Request, exc: Exception):
    logger.exception(f"unhandled error on {request.method} {request.url.path}")
    return JSONResponse(status_code=500, content={"detail": str(exc)})


@app.on_event("startup")
def create_indexes():
    if database.db is not None:
        database.ensure_indexes(database.db)
        logger.info(f"connected to database {database.db.name}")
    else:
        logger.warning("DATABASE_URL not set, database routes will return 500")


# Health + DB test
@app.get("/")
def read_root():
    return {"message": "Vehicle Rental Backend Running"}


@app.get("/test")
def test_database():
    db = database.db
    response = {
        "backend": "✅ Running",
        "database": "❌ Not Available" if db is None else "✅ Connected & Working",
        "database_url": "✅ Set" if os.getenv("DATABASE_URL") else "❌ Not Set",
        "database_name": db.name if db is not None else None,
        "payments": "✅ Configured" if payments.STRIPE_SECRET_KEY else "❌ Not Configured",
        "collections": []
    }
    if db is not None:
        try:
            response["collections"] = db.list_collection_names()
        except PyMongoError as e:
            response["database"] = f"⚠️ Connected but Error: {str(e)[:80]}"
    return response


app.include_router(auth.router)
app.include_router(vehicles.router)
app.include_router(bookings.router)
app.include_router(branches.router)
app.include_router(admin.router)
app.include_router(payments.router)


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
