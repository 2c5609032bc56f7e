from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
import logging
from dotenv import load_dotenv

from backoffice.routers import admin, booking_pass, calendly_webhook, jobs, me, stripe_webhook
from backoffice.core.config import settings

load_dotenv()

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(levelname)s - %(name)s - %(message)s',
    handlers=[logging.StreamHandler()]
)

app = FastAPI(
    title="Backoffice API",
    description="Membership credits, booking links and waivers for a class studio",
    version="1.0.0",
    redirect_slashes=False
)

# CORS configuration
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"] if settings.environment == "development" else [settings.frontend_url],
    allow_credentials=False if settings.environment == "development" else True,
    allow_methods=["GET", "POST", "PATCH", "OPTIONS"],
    allow_headers=["*"],
)


# Health check endpoint
@app.get("/health")
async def health_check():
    return JSONResponse(content={
        "status": "healthy",
        "service": "Backoffice API",
        "version": "1.0.0"
    })


# Include routers
app.include_router(stripe_webhook.router, prefix="/api/webhooks/stripe", tags=["Webhooks"])
app.include_router(calendly_webhook.router, prefix="/api/webhooks/calendly", tags=["Webhooks"])
app.include_router(booking_pass.router, prefix="/api/booking-pass", tags=["Booking Pass"])
app.include_router(me.router, prefix="/api/me", tags=["Member"])
app.include_router(admin.router, prefix="/api/admin", tags=["Admin"])
app.include_router(jobs.router, prefix="/api/jobs", tags=["Jobs"])

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
