import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from vaxtrack.api.inventory import router as inventory_router
from vaxtrack.api.reconciliation import router as reconciliation_router

logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")

app = FastAPI(title="vaxtrack")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

@app.get("/")
async def root():
    return {"status": "ok", "message": "vaxtrack running"}


# include routers implemented in vaxtrack/api
app.include_router(inventory_router)
app.include_router(reconciliation_router)
