"""
Domain Provisioning Platform API - Main Application.

FastAPI application with CORS enabled for frontend communication.
"""

import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from api import __version__

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

# Create FastAPI application
app = FastAPI(
    title="Domain Provisioning Platform API",
    description="REST API for domain checkout, registration tracking and pending-domain operations",
    version=__version__,
    docs_url="/docs",
    redoc_url="/redoc",
)

# Configure CORS - Allow all origins for development
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/health", tags=["Health"])
def health_check():
    """
    Health check endpoint.

    Returns the API status and version.
    """
    return {
        "status": "healthy",
        "version": __version__,
        "service": "domain-provisioning-api"
    }


@app.get("/", tags=["Root"])
def root():
    """
    Root endpoint with API information.
    """
    return {
        "message": "Domain Provisioning Platform API",
        "version": __version__,
        "docs": "/docs",
        "health": "/health"
    }


# Import and include routers
from api.routers import domains, orders, pending_domains, tld_pricing

app.include_router(orders.router, prefix="/api/v1", tags=["Orders"])
app.include_router(domains.router, prefix="/api/v1", tags=["Domains"])
app.include_router(tld_pricing.router, prefix="/api/v1", tags=["TLD Pricing"])
app.include_router(pending_domains.router, prefix="/api/v1", tags=["Pending Domains"])
