"""FastAPI server exposing medication search to UI clients."""

from fastapi import FastAPI, Query
from loguru import logger

from medsearch.exceptions import NotFoundError
from medsearch.models import Medication, SearchOptions, SearchResult
from medsearch.search.service import MedicationSearchService


class SearchServer:
    """HTTP server wrapping a MedicationSearchService."""

    def __init__(self, service: MedicationSearchService):
        self.service = service
        self.app = FastAPI(title="Medication Search")

        # Register routes (search before the id route so it is not shadowed)
        self.app.get("/medications/search", response_model=SearchResult)(self.search)
        self.app.get("/medications/{medication_id}", response_model=Medication)(
            self.get_medication
        )
        self.app.get("/health")(self.health_check)
        self.app.delete("/cache")(self.clear_cache)
        self.app.post("/requests/cancel")(self.cancel_requests)

    async def search(
        self,
        q: str = Query(default=""),
        limit: int | None = Query(default=None, ge=1, le=100),
        include_generics: bool = Query(default=True),
    ) -> SearchResult:
        """Search medications; never fails for upstream problems."""
        return await self.service.search(
            q, SearchOptions(limit=limit, include_generics=include_generics)
        )

    async def get_medication(self, medication_id: str) -> Medication:
        medication = await self.service.get_medication(medication_id)
        if medication is None:
            raise NotFoundError(f"Medication {medication_id} not found")
        return medication

    async def health_check(self):
        """Cache, upstream and catalog statistics."""
        return await self.service.get_stats()

    async def clear_cache(self):
        await self.service.clear_cache()
        return {"status": "cleared"}

    async def cancel_requests(self):
        cancelled = self.service.cancel_all_requests()
        logger.info(f"Cancelled {cancelled} upstream requests via API")
        return {"status": "cancelled", "count": cancelled}


def create_search_server(service: MedicationSearchService) -> FastAPI:
    """Create FastAPI app for a search service.

    Args:
        service: MedicationSearchService instance

    Returns:
        FastAPI app
    """
    server = SearchServer(service)
    return server.app
