import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from transcript_rag.api.routes.indexing import router as indexing_router
from transcript_rag.api.routes.retrieve import router as retrieve_router

logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")

app = FastAPI(
    title="Transcript Retrieval API",
    description="Hybrid chunk retrieval over sales call transcripts",
    version="0.1.0",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        "http://localhost:3000",
        "http://localhost:8080",
    ],
    allow_origin_regex=r"http://localhost:\d+",
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(retrieve_router)
app.include_router(indexing_router)


@app.get("/health")
async def health() -> dict[str, str]:
    return {"status": "healthy"}
