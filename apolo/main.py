from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .config import CORS_ORIGINS
from .database import create_tables
from .logging_config import configure_logging
from .routers import auth, tables

configure_logging()

# Create FastAPI app
app = FastAPI(
    title="Apolo API",
    description="Remote tabular store and identity service for the Apolo project client",
    version="1.0.0"
)

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(auth.router, prefix="/api/auth", tags=["auth"])
app.include_router(tables.router, prefix="/api", tags=["tables"])

# Create tables on startup
@app.on_event("startup")
def on_startup():
    create_tables()

@app.get("/")
def read_root():
    return {"message": "Apolo API"}

@app.get("/health")
def health_check():
    return {"status": "healthy"}
