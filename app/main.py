from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse

from app.catalog.base import CatalogError
from app.config import settings
from app.crawl.base import CrawlServiceError
from app.dependencies import Services, build_services
from app.schemas import AccessionResponse, CreateAccessionRequest, CreateAccessionResponse
from app.storage.base import StorageError

logger = logging.getLogger(__name__)


def get_services(request: Request) -> Services:
    return request.app.state.services


def create_app(services: Services | None = None) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logging.basicConfig(
            level=settings.log_level.upper(),
            format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        )
        app.state.services = services or build_services(settings)
        try:
            yield
        finally:
            await app.state.services.aclose()

    app = FastAPI(title=settings.app_name, lifespan=lifespan)

    @app.get("/health")
    async def health(svc: Services = Depends(get_services)):
        return JSONResponse({"ok": True, "running_sagas": len(svc.supervisor)})

    @app.post("/api/v1/accessions", status_code=201, response_model=CreateAccessionResponse)
    async def create_accession(payload: CreateAccessionRequest, svc: Services = Depends(get_services)):
        try:
            subjects_ok = await svc.reader.subjects_exist(payload.metadata_subjects, payload.metadata_language)
        except CatalogError as exc:
            logger.exception("Subject lookup failed")
            raise HTTPException(status_code=500, detail=str(exc)) from exc
        if not subjects_ok:
            raise HTTPException(status_code=400, detail="Subjects do not exist")

        archive_request = payload.to_archive_request()
        svc.supervisor.spawn(svc.orchestrator.run(archive_request), name=f"archive:{archive_request.url}")
        return CreateAccessionResponse(message="Started browsertrix crawl task!", url=archive_request.url)

    @app.get("/api/v1/accessions/{accession_id}", response_model=AccessionResponse)
    async def get_accession(accession_id: int, svc: Services = Depends(get_services)):
        try:
            row = await svc.reader.get_accession(accession_id)
        except CatalogError as exc:
            logger.exception("Error retrieving accession %s", accession_id)
            raise HTTPException(status_code=500, detail="Internal database error") from exc
        if row is None or row.get("is_private"):
            raise HTTPException(status_code=404, detail="No such record")

        try:
            if row.get("s3_filename"):
                wacz_url = await svc.store.presigned_url(row["s3_filename"], svc.signed_url_ttl)
            else:
                wacz_url = await svc.crawler.replay_url(row["job_run_id"])
        except (StorageError, CrawlServiceError) as exc:
            logger.error("Error retrieving wacz url for accession %s: %s", accession_id, exc)
            raise HTTPException(status_code=500, detail="Error retrieving wacz url") from exc

        return AccessionResponse(accession=row, wacz_url=wacz_url)

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8000)
