from fastapi import APIRouter

from coachforce import __version__

router = APIRouter()


@router.get("/health")
async def health():
    return {"status": "healthy", "version": __version__}
