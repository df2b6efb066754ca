from fastapi import APIRouter

router = APIRouter(tags=["health"])


@router.get("/test")
def test() -> dict:
    return {"message": "API is working!"}
