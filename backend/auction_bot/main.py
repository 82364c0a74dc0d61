from contextlib import asynccontextmanager
from fastapi import FastAPI
from auction_bot.api.webhook import router as webhook_router, handler
from auction_bot.core.logger import logger

@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    # Cancel in-flight searches so their browsers are closed before exit
    logger.info("Shutting down, cancelling running searches")
    await handler.shutdown()

app = FastAPI(title="Auction Search Bot API", lifespan=lifespan)

@app.get("/")
async def root():
    return {"message": "Auction Search Bot API is running"}

@app.get("/health")
async def health():
    return {"status": "healthy"}

app.include_router(webhook_router)
